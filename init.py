"""Application startup orchestration helpers."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from catalog.store import ensure_schema
from db import utils as db_utils

logger = logging.getLogger(__name__)

T = TypeVar("T")


def initialize_app(
    *,
    ensure_dirs: Callable[[], None],
    connection_factory: Callable[[], db_utils.DatabaseEngine],
    build_services: Callable[[db_utils.DatabaseEngine], T],
) -> T:
    """Perform the core startup tasks required for the application.

    Creates the upload directory, opens the database engine, makes sure the
    catalog tables exist and hands the engine to ``build_services``. The
    callables mirror helpers in :mod:`app` so startup stays testable.
    """

    ensure_dirs()

    engine = connection_factory()
    try:
        ensure_schema(engine)
    except Exception:
        logger.exception("Failed to prepare the catalog schema during startup")
        engine.dispose()
        raise

    return build_services(engine)


__all__ = ["initialize_app"]
