"""Persisted catalog records and per-user library links."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

MIN_PRIORITY = 0
MAX_PRIORITY = 10


class GameStatus(str, Enum):
    PLANNED = "planned"
    PLAYING = "playing"
    FINISHED = "finished"
    DROPPED = "dropped"


def clamp_priority(value: Any) -> int:
    """Return ``value`` as a priority in ``[0, 10]``; anything else becomes ``0``."""

    if isinstance(value, bool):
        return MIN_PRIORITY
    try:
        priority = int(value)
    except (TypeError, ValueError):
        return MIN_PRIORITY
    if priority < MIN_PRIORITY or priority > MAX_PRIORITY:
        return MIN_PRIORITY
    return priority


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


@dataclass
class GameRecord:
    title: str
    synopsis: str
    cover_image_filename: str
    developer: str
    publisher: str
    release_year: str
    genre: str
    canonical_url: str
    creator_user_id: int
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Return the public JSON representation of the record."""

        return {
            'id': self.id,
            'title': self.title,
            'preambula': self.synopsis,
            'image': self.cover_image_filename,
            'developer': self.developer,
            'publisher': self.publisher,
            'year': self.release_year,
            'genre': self.genre,
            'url': self.canonical_url,
            'creator': self.creator_user_id,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'GameRecord':
        return cls(
            id=row.get('id'),
            title=str(row.get('title') or ''),
            synopsis=str(row.get('preambula') or ''),
            cover_image_filename=str(row.get('image') or ''),
            developer=str(row.get('developer') or ''),
            publisher=str(row.get('publisher') or ''),
            release_year=str(row.get('year') or ''),
            genre=str(row.get('genre') or ''),
            canonical_url=str(row.get('url') or ''),
            creator_user_id=int(row.get('creator') or 0),
            created_at=_coerce_datetime(row.get('created_at')),
            updated_at=_coerce_datetime(row.get('updated_at')),
        )


@dataclass
class UserGameLink:
    user_id: int
    game_id: int
    status: GameStatus = GameStatus.PLANNED
    priority: int = field(default=MIN_PRIORITY)

    def __post_init__(self) -> None:
        self.status = GameStatus(self.status)
        self.priority = clamp_priority(self.priority)


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


__all__ = [
    'GameRecord',
    'GameStatus',
    'MAX_PRIORITY',
    'MIN_PRIORITY',
    'UserGameLink',
    'clamp_priority',
    'utc_now',
]
