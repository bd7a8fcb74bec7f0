"""Engine construction and connection helpers for the catalog database."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)


class DatabaseEngine:
    """Wrapper exposing context-managed SQLAlchemy connections."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        """Yield a plain connection; the caller commits."""

        with self._engine.connect() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction committed on exit."""

        with self._engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        self._engine.dispose()


def _configure_sqlite_connection(conn: Any, *, busy_timeout: float | None = None) -> Any:
    """Apply pragmas that let several worker threads share one SQLite file."""

    if not isinstance(conn, sqlite3.Connection):
        return conn

    busy_timeout_ms = None
    if busy_timeout is not None:
        busy_timeout_ms = int(max(busy_timeout, 0) * 1000) or None

    pragmas: tuple[tuple[str, str | int | None, bool], ...] = (
        ("busy_timeout", busy_timeout_ms, False),
        ("journal_mode", "WAL", True),
        ("foreign_keys", "ON", False),
    )

    for name, value, fetch_result in pragmas:
        if value is None:
            continue
        try:
            cursor = conn.execute(f"PRAGMA {name}={value}")
            if fetch_result:
                cursor.fetchone()
        except sqlite3.OperationalError:  # pragma: no cover - best effort only
            logger.debug("SQLite pragma %s not applied", name)

    return conn


def _configure_mariadb_connection(conn: Any, *, lock_timeout: float | None = None) -> Any:
    """Cap how long a MariaDB session waits on row locks."""

    if lock_timeout is None:
        return conn

    cursor = conn.cursor()
    try:
        cursor.execute(
            "SET SESSION innodb_lock_wait_timeout = %s", (max(int(lock_timeout), 1),)
        )
    finally:
        cursor.close()
    return conn


def _resolve_sqlite_path_from_dsn(dsn: str) -> str:
    """Extract a filesystem path from a ``sqlite:///`` DSN string."""

    parsed = urlparse(dsn)
    if parsed.scheme != "sqlite":
        raise ValueError(f"Unsupported DSN scheme for SQLite resolver: {parsed.scheme}")

    path = unquote(parsed.path or "")
    if not path:
        raise ValueError("SQLite DSN must include a filesystem path")

    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = candidate.resolve()
    return os.fspath(candidate)


def build_engine_from_dsn(
    dsn: str,
    *,
    timeout: float | None = None,
    pool_size: int = 10,
    pool_recycle: int = 1_800,
    pool_pre_ping: bool = True,
) -> DatabaseEngine:
    """Return a :class:`DatabaseEngine` configured from ``dsn``.

    The pool is sized for one batch worth of concurrent item pipelines.
    """

    parsed = urlparse(dsn)
    connect_args: dict[str, object] = {}
    effective_timeout = timeout if timeout is not None else 5.0

    if parsed.scheme == "sqlite":
        normalized_dsn = f"sqlite:///{_resolve_sqlite_path_from_dsn(dsn)}"
        connect_args["check_same_thread"] = False
    else:
        normalized_dsn = dsn

    dialect_name = parsed.scheme.split("+", 1)[0]

    engine = create_engine(
        normalized_dsn,
        future=True,
        pool_size=pool_size,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        connect_args=connect_args,
    )

    if dialect_name == "sqlite":

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, connection_record):  # type: ignore[override]
            _configure_sqlite_connection(dbapi_conn, busy_timeout=effective_timeout)

    elif dialect_name in {"mysql", "mariadb"}:

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, connection_record):  # type: ignore[override]
            _configure_mariadb_connection(dbapi_conn, lock_timeout=effective_timeout)

    logger.debug("Created %s engine", dialect_name)
    return DatabaseEngine(engine)


__all__ = ["DatabaseEngine", "build_engine_from_dsn"]
