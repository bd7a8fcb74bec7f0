"""Request, intermediate and result types for bulk ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from catalog.models import GameRecord
from ingestion.errors import InvalidSource, ParseInsufficientData


class Source(str, Enum):
    WIKI = "Wiki"
    STEAM = "Steam"
    CATALOG = "Catalog"

    @classmethod
    def parse(cls, value: Any) -> 'Source':
        """Return the source named by ``value`` or raise :class:`InvalidSource`."""

        if isinstance(value, Source):
            return value
        text = str(value or "").strip()
        for member in cls:
            if member.value == text:
                return member
        raise InvalidSource(f"invalid source: {text!r}" if text else "missing source")


@dataclass(frozen=True)
class IngestionItem:
    name: str
    source: Source

    @classmethod
    def from_payload(
        cls, payload: Any, *, default_source: Source | None = None
    ) -> 'IngestionItem':
        if not isinstance(payload, Mapping):
            raise InvalidSource("each game must be an object")
        name_value = payload.get("name")
        if name_value is None:
            # Older clients sent the field as ``names``.
            name_value = payload.get("names")
        name = str(name_value or "").strip()
        if not name:
            raise InvalidSource("missing game name")
        if default_source is not None:
            return cls(name=name, source=default_source)
        return cls(name=name, source=Source.parse(payload.get("source")))


WIKI_REQUIRED_FIELDS = (
    "title",
    "synopsis",
    "cover_image_url",
    "developer",
    "publisher",
    "release_year",
    "genre",
    "canonical_url",
)
STEAM_REQUIRED_FIELDS = (
    "title",
    "developer",
    "publisher",
    "release_year",
    "genre",
    "canonical_url",
)
CATALOG_REQUIRED_FIELDS = ("title", "canonical_url")


@dataclass
class ParsedGameRecord:
    """Fields scraped for one game; optional until :meth:`validate` passes."""

    title: Optional[str] = None
    synopsis: Optional[str] = None
    cover_image_url: Optional[str] = None
    developer: Optional[str] = None
    publisher: Optional[str] = None
    release_year: Optional[str] = None
    genre: Optional[str] = None
    canonical_url: Optional[str] = None

    def missing(self, required: Iterable[str]) -> list[str]:
        return [name for name in required if not (getattr(self, name) or "").strip()]

    def validate(self, required: Sequence[str] = WIKI_REQUIRED_FIELDS) -> 'ParsedGameRecord':
        missing = self.missing(required)
        if missing:
            raise ParseInsufficientData(
                "insufficient data", missing=missing, url=self.canonical_url
            )
        return self


@dataclass(frozen=True)
class ItemOutcome:
    """Result of one item pipeline: exactly one of ``record`` or ``reason``."""

    name: str
    record: Optional[GameRecord] = None
    reason: Optional[str] = None
    kind: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.record is None) == (self.reason is None):
            raise ValueError("outcome must be either a success or a failure")

    @property
    def ok(self) -> bool:
        return self.record is not None

    @classmethod
    def success(cls, name: str, record: GameRecord) -> 'ItemOutcome':
        return cls(name=name, record=record)

    @classmethod
    def failure(cls, name: str, reason: str, kind: str = "internal") -> 'ItemOutcome':
        return cls(name=name, reason=reason, kind=kind)


class BatchStatus(str, Enum):
    CREATED = "created"
    PARTIAL_SUCCESS = "partial_success"
    INTERNAL_ERROR = "internal_error"


@dataclass
class BatchResult:
    successes: list[GameRecord] = field(default_factory=list)
    failures: list[dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[ItemOutcome]) -> 'BatchResult':
        result = cls()
        for outcome in outcomes:
            if outcome.ok:
                result.successes.append(outcome.record)  # type: ignore[arg-type]
            else:
                result.failures.append({"name": outcome.name, "reason": outcome.reason or ""})
        return result

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def status(self) -> BatchStatus:
        if not self.failures:
            return BatchStatus.CREATED
        if not self.successes:
            return BatchStatus.INTERNAL_ERROR
        return BatchStatus.PARTIAL_SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": [record.to_dict() for record in self.successes],
            "errors": [
                {"name": failure["name"], "error": failure["reason"]}
                for failure in self.failures
            ],
        }


__all__ = [
    "BatchResult",
    "BatchStatus",
    "CATALOG_REQUIRED_FIELDS",
    "IngestionItem",
    "ItemOutcome",
    "ParsedGameRecord",
    "STEAM_REQUIRED_FIELDS",
    "Source",
    "WIKI_REQUIRED_FIELDS",
]
