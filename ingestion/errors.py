"""Error taxonomy for the bulk ingestion pipeline."""

from __future__ import annotations

from typing import Any


class IngestionError(Exception):
    """Base class for classified ingestion failures."""

    kind: str = "internal"
    message: str = "ingestion failed"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    @property
    def reason(self) -> str:
        return self.message


class ResolutionNotFound(IngestionError):
    kind = "not_found"
    message = "game not found"


class DuplicateRecord(IngestionError):
    kind = "duplicate"
    message = "game already exists"


class ParseError(IngestionError):
    kind = "parse"
    message = "failed to parse document"


class ParseInsufficientData(ParseError):
    message = "insufficient data"


class ImageDownloadFailed(IngestionError):
    """Cover download failure. Never surfaced in a batch result."""

    kind = "image"
    message = "failed to download image"


class SourceUnavailable(IngestionError):
    kind = "source_unavailable"
    message = "source unavailable"


class StorageError(IngestionError):
    kind = "storage"
    message = "storage unavailable"


class PersistFailed(IngestionError):
    kind = "persist"
    message = "failed to create"


class IngestionTimeout(IngestionError):
    kind = "timeout"
    message = "timed out"


class Unauthorized(IngestionError):
    kind = "unauthorized"
    message = "unauthorized"


class InvalidSource(IngestionError):
    kind = "invalid_source"
    message = "invalid source"


class BatchEmpty(IngestionError):
    kind = "batch_empty"
    message = "no games names"


class BatchTooLarge(IngestionError):
    kind = "batch_too_large"
    message = "too many games"


BATCH_ERRORS = (BatchEmpty, BatchTooLarge, Unauthorized, InvalidSource)


__all__ = [
    "BATCH_ERRORS",
    "BatchEmpty",
    "BatchTooLarge",
    "DuplicateRecord",
    "ImageDownloadFailed",
    "IngestionError",
    "IngestionTimeout",
    "InvalidSource",
    "ParseError",
    "ParseInsufficientData",
    "PersistFailed",
    "ResolutionNotFound",
    "SourceUnavailable",
    "StorageError",
    "Unauthorized",
]
