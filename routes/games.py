"""Bulk game ingestion API routes."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from flask import Blueprint, g, jsonify, request

from auth.identity import IdentityValidator, require_user
from ingestion.errors import InvalidSource
from ingestion.models import BatchStatus, IngestionItem, Source
from ingestion.orchestrator import IngestionOrchestrator
from routes.api_utils import (
    BadRequestError,
    ServiceUnavailableError,
    handle_api_errors,
)

logger = logging.getLogger(__name__)

games_blueprint = Blueprint("games", __name__)

_context: dict[str, Any] = {}

SCRAPED_SOURCES = (Source.WIKI, Source.STEAM)

STATUS_CODES = {
    BatchStatus.CREATED: 201,
    BatchStatus.PARTIAL_SUCCESS: 207,
    BatchStatus.INTERNAL_ERROR: 500,
}


def configure(context: Mapping[str, Any]) -> None:
    """Provide the orchestrator and identity validator used by the endpoints."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"games routes missing context value: {key}")
    return _context[key]


def _identity() -> IdentityValidator:
    return _ctx("get_identity")()


def _orchestrator() -> IngestionOrchestrator:
    return _ctx("get_orchestrator")()


def _catalog_enabled() -> bool:
    return bool(_ctx("catalog_enabled")())


def _read_items(default_source: Optional[Source] = None) -> list[IngestionItem]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise BadRequestError("invalid JSON body")
    games = payload.get("games")
    if games is None:
        games = []
    if not isinstance(games, list):
        raise BadRequestError("games must be a list")

    items = [IngestionItem.from_payload(entry, default_source=default_source) for entry in games]
    if default_source is None:
        for item in items:
            if item.source not in SCRAPED_SOURCES:
                raise InvalidSource(f"invalid source: {item.source.value!r}")
    return items


def _run_batch(items: list[IngestionItem]):
    result = _orchestrator().run(items, g.user_id)
    return jsonify(result.to_dict()), STATUS_CODES[result.status]


@games_blueprint.route("/api/games/multi", methods=["POST"])
@handle_api_errors
@require_user(_identity)
def api_games_multi():
    return _run_batch(_read_items())


@games_blueprint.route("/api/games/multi/catalog", methods=["POST"])
@handle_api_errors
@require_user(_identity)
def api_games_multi_catalog():
    items = _read_items(default_source=Source.CATALOG)
    _orchestrator().validate(items, g.user_id)
    if not _catalog_enabled():
        raise ServiceUnavailableError("catalog source is not configured")
    return _run_batch(items)


@games_blueprint.route("/api/health")
def api_health():
    return jsonify({"status": "ok"})


__all__ = ["configure", "games_blueprint"]
