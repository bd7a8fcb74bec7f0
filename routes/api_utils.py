"""Shared helpers for API routes (error handling and logging)."""

from __future__ import annotations

import json
from functools import wraps
from typing import Any, Callable, ParamSpec, TypeVar

from flask import current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from ingestion.errors import BATCH_ERRORS, IngestionError, Unauthorized

P = ParamSpec("P")
R = TypeVar("R")


class APIError(Exception):
    """Base class for API errors that includes an HTTP status code."""

    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self) -> dict[str, Any]:
        data = {"error": self.message}
        data.update(self.payload)
        return data


class BadRequestError(APIError):
    status_code = 400
    message = "Invalid request."


class UnauthorizedError(APIError):
    status_code = 401
    message = "Unauthorized."


class ServiceUnavailableError(APIError):
    status_code = 503
    message = "Service unavailable."


def api_error_for(exc: IngestionError) -> APIError:
    """Map a batch-level ingestion error onto its HTTP error."""

    if isinstance(exc, Unauthorized):
        return UnauthorizedError(exc.reason)
    return BadRequestError(exc.reason)


def _resolve_user() -> str:
    user_id = g.get("user_id")
    return str(user_id) if user_id is not None else "anonymous"


def _collect_request_context() -> dict[str, Any]:
    context: dict[str, Any] = {
        "route": request.path,
        "endpoint": request.endpoint,
        "method": request.method,
        "user": _resolve_user(),
        "args": request.args.to_dict(flat=False),
    }

    json_payload = request.get_json(silent=True)
    if isinstance(json_payload, dict):
        games = json_payload.get("games")
        # Batches can hold a hundred entries; log the size, not the names.
        context["games"] = len(games) if isinstance(games, list) else games

    return context


def _serialize_context(context: dict[str, Any]) -> str:
    try:
        return json.dumps(context, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(context)


def _log_api_error(exc: Exception, *, status_code: int, handled: bool) -> None:
    context = _collect_request_context()
    context["status_code"] = status_code
    context_str = _serialize_context(context)
    if handled and status_code < 500:
        current_app.logger.warning(
            "Handled API error (%s): %s | context=%s", status_code, exc, context_str
        )
        return
    if handled:
        current_app.logger.error(
            "Handled API error (%s): %s | context=%s", status_code, exc, context_str,
            exc_info=exc,
        )
        return
    current_app.logger.exception(
        "Unhandled API error (%s): %s | context=%s", status_code, exc, context_str
    )


def handle_api_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator that centralizes API error handling and logging."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[misc]
        try:
            return func(*args, **kwargs)
        except APIError as exc:
            status_code = exc.status_code
            _log_api_error(exc, status_code=status_code, handled=True)
            return jsonify(exc.to_dict()), status_code
        except BATCH_ERRORS as exc:
            api_error = api_error_for(exc)
            _log_api_error(exc, status_code=api_error.status_code, handled=True)
            return jsonify(api_error.to_dict()), api_error.status_code
        except HTTPException as exc:
            status_code = exc.code or 500
            message = exc.description or str(exc)
            api_error = APIError(message=message, status_code=status_code)
            _log_api_error(exc, status_code=status_code, handled=True)
            return jsonify(api_error.to_dict()), status_code
        except Exception as exc:  # pragma: no cover
            _log_api_error(exc, status_code=500, handled=False)
            return jsonify({"error": "Internal server error"}), 500

    return wrapper


__all__ = [
    "APIError",
    "BadRequestError",
    "ServiceUnavailableError",
    "UnauthorizedError",
    "api_error_for",
    "handle_api_errors",
]
