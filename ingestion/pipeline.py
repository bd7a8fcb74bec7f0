"""Per-item ingestion: resolve, dedup, parse, fetch cover, persist."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from ingestion.deadline import Deadline
from ingestion.errors import (
    ImageDownloadFailed,
    IngestionError,
    IngestionTimeout,
    ParseError,
)
from ingestion.images import ImageFetcher
from ingestion.models import IngestionItem, ItemOutcome, ParsedGameRecord, Source
from ingestion.persister import DedupChecker, GamePersister
from sources.resolvers import ChainFactory

logger = logging.getLogger(__name__)

INTERNAL_ERROR_REASON = "internal error"


class PageParser(Protocol):
    def parse(self, url: str, deadline: Deadline, payload: Any = None) -> ParsedGameRecord: ...


class ItemPipeline:
    def __init__(
        self,
        *,
        chains: ChainFactory,
        parsers: Mapping[Source, PageParser],
        dedup: DedupChecker,
        images: ImageFetcher,
        persister: GamePersister,
        timestamp: Any,
    ) -> None:
        self._chains = chains
        self._parsers = parsers
        self._dedup = dedup
        self._images = images
        self._persister = persister
        self._timestamp = timestamp

    def run(self, item: IngestionItem, requester_user_id: int, deadline: Deadline) -> ItemOutcome:
        """Run every step for ``item``; never raises."""

        try:
            record = self._process(item, requester_user_id, deadline)
        except IngestionTimeout as exc:
            return self._failed(item, exc)
        except IngestionError as exc:
            # A step that failed because its capped timeout ran out is a timeout.
            if deadline.expired():
                return self._failed(item, IngestionTimeout())
            return self._failed(item, exc)
        except Exception:
            logger.exception("Unexpected failure ingesting %r from %s", item.name, item.source.value)
            return ItemOutcome.failure(item.name, INTERNAL_ERROR_REASON, kind="internal")
        logger.info("Ingested %r as game %s", item.name, record.id)
        return ItemOutcome.success(item.name, record)

    def _process(self, item: IngestionItem, requester_user_id: int, deadline: Deadline):
        deadline.check("resolve")
        found = self._chains(item.source).resolve(item.name, deadline)

        deadline.check("dedup")
        self._dedup.ensure_new(found.url)

        deadline.check("parse")
        parser = self._parsers.get(found.source)
        if parser is None:
            raise ParseError(f"no parser for source {found.source.value}")
        parsed = parser.parse(found.url, deadline, found.payload)

        deadline.check("image")
        filename = self._fetch_cover(parsed, deadline)

        try:
            deadline.check("persist")
        except IngestionTimeout:
            self._persister.discard_image(filename)
            raise
        return self._persister.persist(parsed, requester_user_id, filename)

    def _fetch_cover(self, parsed: ParsedGameRecord, deadline: Deadline) -> str:
        if not parsed.cover_image_url:
            return ""
        try:
            return self._images.fetch(parsed.cover_image_url, deadline, timestamp=self._timestamp)
        except ImageDownloadFailed as exc:
            if deadline.expired():
                raise IngestionTimeout("timed out during image") from exc
            logger.warning(
                "Cover download failed for %s (%s): %s",
                parsed.canonical_url,
                parsed.cover_image_url,
                exc,
            )
            return ""

    @staticmethod
    def _failed(item: IngestionItem, exc: IngestionError) -> ItemOutcome:
        reason = IngestionTimeout.message if isinstance(exc, IngestionTimeout) else exc.reason
        logger.warning(
            "Ingestion of %r from %s failed (%s): %s",
            item.name,
            item.source.value,
            exc.kind,
            exc,
        )
        return ItemOutcome.failure(item.name, reason, kind=exc.kind)


__all__ = ["INTERNAL_ERROR_REASON", "ItemPipeline", "PageParser"]
