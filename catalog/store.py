"""SQL persistence for catalog games and user library links."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from catalog.models import GameRecord, UserGameLink, utc_now
from db.utils import DatabaseEngine
from ingestion.errors import StorageError

logger = logging.getLogger(__name__)

GAMES_TABLE = "games"
USER_GAMES_TABLE = "user_games"

_GAME_COLUMNS = (
    "id, title, preambula, image, developer, publisher, year, genre, url, "
    "creator, created_at, updated_at"
)

_SCHEMA = {
    "sqlite": (
        f"""
        CREATE TABLE IF NOT EXISTS {GAMES_TABLE} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            preambula TEXT NOT NULL DEFAULT '',
            image TEXT NOT NULL DEFAULT '',
            developer TEXT NOT NULL DEFAULT '',
            publisher TEXT NOT NULL DEFAULT '',
            year TEXT NOT NULL DEFAULT '',
            genre TEXT NOT NULL DEFAULT '',
            url TEXT NOT NULL UNIQUE,
            creator INTEGER NOT NULL,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {USER_GAMES_TABLE} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            game_id INTEGER NOT NULL REFERENCES {GAMES_TABLE}(id) ON DELETE CASCADE,
            status TEXT NOT NULL DEFAULT 'planned',
            priority INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP,
            updated_at TIMESTAMP,
            UNIQUE (user_id, game_id)
        )
        """,
    ),
    "mysql": (
        f"""
        CREATE TABLE IF NOT EXISTS {GAMES_TABLE} (
            id BIGINT NOT NULL AUTO_INCREMENT PRIMARY KEY,
            title VARCHAR(255) NOT NULL,
            preambula TEXT NOT NULL,
            image VARCHAR(255) NOT NULL DEFAULT '',
            developer VARCHAR(255) NOT NULL DEFAULT '',
            publisher VARCHAR(255) NOT NULL DEFAULT '',
            year VARCHAR(16) NOT NULL DEFAULT '',
            genre VARCHAR(255) NOT NULL DEFAULT '',
            url VARCHAR(512) NOT NULL,
            creator BIGINT NOT NULL,
            created_at DATETIME NULL,
            updated_at DATETIME NULL,
            UNIQUE KEY games_url_uq (url)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {USER_GAMES_TABLE} (
            id BIGINT NOT NULL AUTO_INCREMENT PRIMARY KEY,
            user_id BIGINT NOT NULL,
            game_id BIGINT NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'planned',
            priority INT NOT NULL DEFAULT 0,
            created_at DATETIME NULL,
            updated_at DATETIME NULL,
            UNIQUE KEY user_games_user_game_uq (user_id, game_id),
            CONSTRAINT user_games_game_fk FOREIGN KEY (game_id)
                REFERENCES {GAMES_TABLE}(id) ON DELETE CASCADE
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
    ),
}
_SCHEMA["mariadb"] = _SCHEMA["mysql"]


class UniqueViolation(StorageError):
    """Raised when an insert collides with a unique constraint."""

    kind = "duplicate"
    message = "unique constraint violated"


def ensure_schema(db: DatabaseEngine) -> None:
    """Create the catalog tables for the engine's dialect when missing."""

    statements = _SCHEMA.get(db.dialect_name)
    if statements is None:
        raise RuntimeError(f"unsupported database dialect: {db.dialect_name}")
    with db.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    logger.info("Catalog schema ready on %s", db.dialect_name)


def _naive_utc_now():
    # DATETIME columns on MariaDB carry no zone; everything is stored as UTC.
    return utc_now().replace(tzinfo=None)


class CatalogStore:
    def __init__(self, db: DatabaseEngine) -> None:
        self._db = db

    def get_by_url(self, url: str) -> Optional[GameRecord]:
        statement = text(
            f"SELECT {_GAME_COLUMNS} FROM {GAMES_TABLE} WHERE url = :url"
        ).columns(created_at=DateTime(), updated_at=DateTime())
        try:
            with self._db.sa_connection() as conn:
                row = conn.execute(statement, {"url": url}).mappings().first()
        except SQLAlchemyError as exc:
            raise StorageError(f"catalog lookup failed: {exc}", url=url) from exc
        return GameRecord.from_row(row) if row is not None else None

    def exists(self, url: str) -> bool:
        try:
            with self._db.sa_connection() as conn:
                found = conn.execute(
                    text(f"SELECT 1 FROM {GAMES_TABLE} WHERE url = :url LIMIT 1"),
                    {"url": url},
                ).first()
        except SQLAlchemyError as exc:
            raise StorageError(f"catalog lookup failed: {exc}", url=url) from exc
        return found is not None

    def insert(self, record: GameRecord) -> GameRecord:
        """Insert ``record`` and return it with its id and timestamps set."""

        now = _naive_utc_now()
        statement = text(
            f"""
            INSERT INTO {GAMES_TABLE}
                (title, preambula, image, developer, publisher, year, genre, url,
                 creator, created_at, updated_at)
            VALUES
                (:title, :preambula, :image, :developer, :publisher, :year, :genre,
                 :url, :creator, :created_at, :updated_at)
            """
        ).bindparams(
            bindparam("created_at", type_=DateTime()),
            bindparam("updated_at", type_=DateTime()),
        )
        params = {
            "title": record.title,
            "preambula": record.synopsis,
            "image": record.cover_image_filename,
            "developer": record.developer,
            "publisher": record.publisher,
            "year": record.release_year,
            "genre": record.genre,
            "url": record.canonical_url,
            "creator": record.creator_user_id,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self._db.begin() as conn:
                result = conn.execute(statement, params)
                game_id = result.lastrowid
        except IntegrityError as exc:
            raise UniqueViolation(url=record.canonical_url) from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"catalog insert failed: {exc}", url=record.canonical_url) from exc
        return replace(record, id=int(game_id), created_at=now, updated_at=now)

    def insert_user_link(self, link: UserGameLink) -> None:
        now = _naive_utc_now()
        statement = text(
            f"""
            INSERT INTO {USER_GAMES_TABLE}
                (user_id, game_id, status, priority, created_at, updated_at)
            VALUES (:user_id, :game_id, :status, :priority, :created_at, :updated_at)
            """
        ).bindparams(
            bindparam("created_at", type_=DateTime()),
            bindparam("updated_at", type_=DateTime()),
        )
        params = {
            "user_id": link.user_id,
            "game_id": link.game_id,
            "status": link.status.value,
            "priority": link.priority,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self._db.begin() as conn:
                conn.execute(statement, params)
        except IntegrityError as exc:
            raise UniqueViolation(user_id=link.user_id, game_id=link.game_id) from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"user link insert failed: {exc}") from exc

    def delete(self, game_id: int) -> None:
        try:
            with self._db.begin() as conn:
                conn.execute(
                    text(f"DELETE FROM {USER_GAMES_TABLE} WHERE game_id = :game_id"),
                    {"game_id": game_id},
                )
                conn.execute(
                    text(f"DELETE FROM {GAMES_TABLE} WHERE id = :game_id"),
                    {"game_id": game_id},
                )
        except SQLAlchemyError as exc:
            raise StorageError(f"catalog delete failed: {exc}", game_id=game_id) from exc

    def count(self) -> int:
        with self._db.sa_connection() as conn:
            return int(conn.execute(text(f"SELECT COUNT(*) FROM {GAMES_TABLE}")).scalar_one())

    def user_links(self, user_id: int) -> list[UserGameLink]:
        with self._db.sa_connection() as conn:
            rows = conn.execute(
                text(
                    f"SELECT user_id, game_id, status, priority FROM {USER_GAMES_TABLE} "
                    "WHERE user_id = :user_id ORDER BY game_id"
                ),
                {"user_id": user_id},
            ).mappings().all()
        return [UserGameLink(**dict(row)) for row in rows]


__all__ = ["CatalogStore", "UniqueViolation", "ensure_schema"]
