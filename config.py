"""Application-wide configuration helpers and constants."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final
from urllib.parse import quote_plus

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _clean_text(value: str | None) -> str:
    """Return ``value`` stripped of surrounding whitespace."""

    if value is None:
        return ""
    return value.strip()


def _path_from(env_value: str | None, default: str | Path) -> Path:
    """Resolve a filesystem path using an environment override when provided."""

    text = _clean_text(env_value)
    candidate = Path(text) if text else Path(default)
    candidate = candidate.expanduser()
    if candidate.is_absolute():
        try:
            return candidate.resolve()
        except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
            return candidate
    return candidate


def _coerce_positive_float(value: str | None, default: float) -> float:
    """Return ``value`` coerced to a positive float or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    """Return ``value`` coerced to a positive integer or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(float(text))
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_truthy_env(value: str | None) -> bool:
    """Return ``True`` when ``value`` represents an affirmative flag."""

    if value is None:
        return False
    text = value.strip().lower()
    return text in {"1", "true", "yes", "on"}


UPLOAD_DIR_PATH: Final[Path] = _path_from(os.environ.get("UPLOAD_DIR"), "uploads")
UPLOAD_DIR: Final[str] = os.fspath(UPLOAD_DIR_PATH)

LOG_DIR_PATH: Final[Path] = _path_from(os.environ.get("LOG_DIR"), BASE_DIR / "logs")
LOG_DIR: Final[str] = os.fspath(LOG_DIR_PATH)
LOG_FILE_PATH: Final[Path] = _path_from(
    os.environ.get("LOG_FILE"), LOG_DIR_PATH / "app.log"
)
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)

DB_HOST: Final[str] = _clean_text(os.environ.get("DB_HOST")) or "localhost"
DB_PORT: Final[int] = _coerce_positive_int(os.environ.get("DB_PORT"), 3306)
DB_NAME: Final[str] = _clean_text(os.environ.get("DB_NAME")) or "games"
DB_USER: Final[str] = _clean_text(os.environ.get("DB_USER"))
DB_PASSWORD: Final[str] = _clean_text(os.environ.get("DB_PASSWORD"))


def _build_db_dsn() -> str:
    """Return a database DSN constructed from environment configuration."""

    explicit = _clean_text(os.environ.get("DB_DSN"))
    if explicit:
        return explicit

    maria_overrides = {
        key: _clean_text(os.environ.get(key))
        for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")
    }
    if any(value for value in maria_overrides.values()):
        auth = ""
        if DB_USER:
            password = quote_plus(DB_PASSWORD) if DB_PASSWORD else ""
            auth = DB_USER
            if password:
                auth = f"{auth}:{password}"
            auth = f"{auth}@"
        return f"mariadb+pymysql://{auth}{DB_HOST}:{DB_PORT}/{DB_NAME}?charset=utf8mb4"

    sqlite_path = _path_from(None, BASE_DIR / "games.db").resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


DB_DSN: Final[str] = _build_db_dsn()

DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)

DEFAULT_IGDB_USER_AGENT: Final[str] = "GamesLibrary/1.0 (support@example.com)"
IGDB_USER_AGENT: Final[str] = (
    _clean_text(os.environ.get("IGDB_USER_AGENT")) or DEFAULT_IGDB_USER_AGENT
)

TWITCH_CLIENT_ID: Final[str] = _clean_text(
    os.environ.get("TWITCH_CLIENT_ID") or os.environ.get("IGDB_CLIENT_ID")
)
TWITCH_CLIENT_SECRET: Final[str] = _clean_text(
    os.environ.get("TWITCH_CLIENT_SECRET") or os.environ.get("IGDB_CLIENT_SECRET")
)
IGDB_ENABLED: bool = True

IDENTITY_URL: Final[str] = _clean_text(os.environ.get("IDENTITY_URL"))
IDENTITY_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("IDENTITY_TIMEOUT"), 5.0
)

INGEST_MAX_ITEMS: Final[int] = _coerce_positive_int(
    os.environ.get("INGEST_MAX_ITEMS"), 100
)
INGEST_MAX_IN_FLIGHT: Final[int] = _coerce_positive_int(
    os.environ.get("INGEST_MAX_IN_FLIGHT"), 10
)
INGEST_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("INGEST_TIMEOUT_SECONDS"), 10.0
)
IMAGE_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("IMAGE_TIMEOUT_SECONDS"), 30.0
)
SOURCE_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("SOURCE_TIMEOUT_SECONDS"), 3.0
)

APP_SECRET_KEY: Final[str] = _clean_text(os.environ.get("APP_SECRET_KEY")) or "dev-secret"
FLASK_DEBUG: Final[bool] = _coerce_truthy_env(os.environ.get("FLASK_DEBUG"))


def validate_igdb_credentials() -> bool:
    """Ensure Twitch credentials are configured and update ``IGDB_ENABLED``."""

    global IGDB_ENABLED

    missing = [
        name
        for name, value in (
            ("TWITCH_CLIENT_ID", TWITCH_CLIENT_ID),
            ("TWITCH_CLIENT_SECRET", TWITCH_CLIENT_SECRET),
        )
        if not value
    ]

    IGDB_ENABLED = not missing
    if missing:
        logger.error(
            "Missing required IGDB credentials; set %s.", " and ".join(missing)
        )

    return IGDB_ENABLED


def _validate_settings() -> None:
    """Sanity-check critical configuration values."""

    if not APP_SECRET_KEY:
        raise RuntimeError("APP_SECRET_KEY must not be empty")
    if INGEST_MAX_IN_FLIGHT > INGEST_MAX_ITEMS:
        raise RuntimeError("INGEST_MAX_IN_FLIGHT must not exceed INGEST_MAX_ITEMS")


_validate_settings()


__all__ = [
    "APP_SECRET_KEY",
    "BASE_DIR",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "DB_HOST",
    "DB_NAME",
    "DB_PASSWORD",
    "DB_PORT",
    "DB_USER",
    "DEFAULT_IGDB_USER_AGENT",
    "FLASK_DEBUG",
    "IDENTITY_TIMEOUT_SECONDS",
    "IDENTITY_URL",
    "IGDB_ENABLED",
    "IGDB_USER_AGENT",
    "IMAGE_TIMEOUT_SECONDS",
    "INGEST_MAX_IN_FLIGHT",
    "INGEST_MAX_ITEMS",
    "INGEST_TIMEOUT_SECONDS",
    "LOG_DIR",
    "LOG_DIR_PATH",
    "LOG_FILE",
    "LOG_FILE_PATH",
    "SOURCE_TIMEOUT_SECONDS",
    "TWITCH_CLIENT_ID",
    "TWITCH_CLIENT_SECRET",
    "UPLOAD_DIR",
    "UPLOAD_DIR_PATH",
    "validate_igdb_credentials",
]
