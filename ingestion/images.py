"""Download cover art and store it under a content-independent filename."""

from __future__ import annotations

import hashlib
import io
import logging
from typing import Any

from PIL import Image, UnidentifiedImageError

from ingestion.deadline import Deadline
from ingestion.errors import ImageDownloadFailed, StorageError
from sources.http import HttpFetcher, SourceRequestError
from storage.blobs import BlobStore

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_TIMEOUT = 30.0

_EXTENSIONS = {
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def extension_for(content_type: str) -> str:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(media_type, "jpg")


def image_filename(url: str, timestamp: Any, extension: str) -> str:
    """Return ``<16 hex chars>.<extension>`` derived from ``url`` and ``timestamp``."""

    digest = hashlib.sha256(f"{url}|{timestamp}".encode("utf-8")).digest()
    return f"{digest[:8].hex()}.{extension}"


def _verify_image(data: bytes) -> None:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise ImageDownloadFailed(f"not a valid image: {exc}") from exc


class ImageFetcher:
    def __init__(
        self,
        fetcher: HttpFetcher,
        blobs: BlobStore,
        *,
        timeout: float = DEFAULT_IMAGE_TIMEOUT,
    ) -> None:
        self._fetcher = fetcher
        self._blobs = blobs
        self._timeout = timeout

    def fetch(self, url: str, deadline: Deadline, *, timestamp: Any) -> str:
        """Download ``url`` into the blob store and return the stored filename."""

        if not url:
            raise ImageDownloadFailed("no image url")
        try:
            result = self._fetcher.get(url, timeout=deadline.timeout_for(self._timeout))
        except SourceRequestError as exc:
            raise ImageDownloadFailed(f"download failed: {exc}", url=url) from exc

        if result.status != 200:
            raise ImageDownloadFailed(f"unexpected status code: {result.status}", url=url)
        content_type = result.content_type
        if not content_type.lower().startswith("image/"):
            raise ImageDownloadFailed(f"unexpected content type: {content_type!r}", url=url)
        if not result.body:
            raise ImageDownloadFailed("empty image body", url=url)
        _verify_image(result.body)

        filename = image_filename(url, timestamp, extension_for(content_type))
        try:
            return self._blobs.save(result.body, filename)
        except StorageError as exc:
            raise ImageDownloadFailed(f"failed to store image: {exc}", url=url) from exc


__all__ = ["ImageFetcher", "extension_for", "image_filename"]
