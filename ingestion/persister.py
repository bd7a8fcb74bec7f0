"""Catalog dedup pre-check and game persistence with compensation."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from catalog.models import GameRecord, GameStatus, UserGameLink
from catalog.store import UniqueViolation
from ingestion.errors import DuplicateRecord, PersistFailed, StorageError
from ingestion.models import ParsedGameRecord
from storage.blobs import BlobNotFound

logger = logging.getLogger(__name__)


class GameStore(Protocol):
    def exists(self, url: str) -> bool: ...

    def insert(self, record: GameRecord) -> GameRecord: ...

    def insert_user_link(self, link: UserGameLink) -> None: ...

    def delete(self, game_id: int) -> None: ...


class FileStore(Protocol):
    def delete(self, filename: str) -> None: ...


class DedupChecker:
    def __init__(self, store: GameStore) -> None:
        self._store = store

    def exists(self, canonical_url: str) -> bool:
        return self._store.exists(canonical_url)

    def ensure_new(self, canonical_url: str) -> None:
        if self.exists(canonical_url):
            raise DuplicateRecord(url=canonical_url)


class GamePersister:
    """Insert the game and the requester's library link.

    If either write fails the uploaded cover is removed; a failed link
    insert also removes the game row inserted just before it.
    """

    def __init__(self, store: GameStore, blobs: FileStore) -> None:
        self._store = store
        self._blobs = blobs

    def persist(
        self,
        parsed: ParsedGameRecord,
        creator_user_id: int,
        image_filename: str = "",
    ) -> GameRecord:
        record = GameRecord(
            title=parsed.title or "",
            synopsis=parsed.synopsis or "",
            cover_image_filename=image_filename or "",
            developer=parsed.developer or "",
            publisher=parsed.publisher or "",
            release_year=parsed.release_year or "",
            genre=parsed.genre or "",
            canonical_url=parsed.canonical_url or "",
            creator_user_id=creator_user_id,
        )

        try:
            saved = self._store.insert(record)
        except UniqueViolation as exc:
            self.discard_image(image_filename)
            raise DuplicateRecord(url=record.canonical_url) from exc
        except StorageError as exc:
            self.discard_image(image_filename)
            raise PersistFailed(url=record.canonical_url, cause=str(exc)) from exc

        link = UserGameLink(
            user_id=creator_user_id,
            game_id=saved.id,  # type: ignore[arg-type]
            status=GameStatus.PLANNED,
            priority=0,
        )
        try:
            self._store.insert_user_link(link)
        except StorageError as exc:
            logger.warning(
                "Failed to link game %s to user %s: %s", saved.id, creator_user_id, exc
            )
            self.discard_image(image_filename)
            self._discard_game(saved.id)
            raise PersistFailed(url=record.canonical_url, cause=str(exc)) from exc

        return saved

    def discard_image(self, filename: Optional[str]) -> None:
        """Delete a cover this persister would otherwise have owned."""

        if not filename:
            return
        try:
            self._blobs.delete(filename)
        except BlobNotFound:
            logger.warning("Cover %s already gone during rollback", filename)
        except StorageError as exc:
            logger.error("Failed to delete cover %s during rollback: %s", filename, exc)

    def _discard_game(self, game_id: Optional[int]) -> None:
        if game_id is None:
            return
        try:
            self._store.delete(game_id)
        except StorageError as exc:
            logger.error("Failed to delete game %s during rollback: %s", game_id, exc)


__all__ = ["DedupChecker", "GamePersister"]
