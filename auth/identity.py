"""Bearer-token validation against the external identity service."""

from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any, Callable, Optional, ParamSpec, Protocol, TypeVar

from flask import g, request

from routes.api_utils import ServiceUnavailableError, UnauthorizedError
from sources.http import HttpFetcher, SourceRequestError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class IdentityUnavailable(RuntimeError):
    """The identity service could not give an answer."""


class IdentityValidator(Protocol):
    def validate(self, token: str) -> Optional[int]: ...


class IdentityClient:
    """Ask the identity service whether a token is valid and whose it is."""

    def __init__(self, url: str, fetcher: HttpFetcher, *, timeout: float = 5.0) -> None:
        self._url = url
        self._fetcher = fetcher
        self._timeout = timeout

    def validate(self, token: str) -> Optional[int]:
        if not token or not self._url:
            return None
        body = json.dumps({"token": token}).encode("utf-8")
        try:
            result = self._fetcher.post(
                self._url,
                body,
                timeout=self._timeout,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
            payload = result.json()
        except SourceRequestError as exc:
            if exc.status is not None and exc.status < 500:
                logger.info("Identity service rejected token: %s", exc)
                return None
            logger.warning("Identity service unavailable: %s", exc)
            raise IdentityUnavailable(str(exc)) from exc
        if result.status >= 500:
            raise IdentityUnavailable(f"identity service returned {result.status}")
        if result.status != 200 or not isinstance(payload, dict):
            return None
        if not payload.get("valid"):
            return None
        return _coerce_user_id(payload.get("user_id"))


def _coerce_user_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        user_id = int(value)
    except (TypeError, ValueError):
        return None
    return user_id if user_id > 0 else None


def bearer_token(header_value: Optional[str]) -> str:
    scheme, _, token = (header_value or "").strip().partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def require_user(
    get_validator: Callable[[], IdentityValidator],
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Reject the request with 401 unless its bearer token maps to a user.

    An unreachable identity service yields 503 instead.

    The resolved id is stored on ``g.user_id``.
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            token = bearer_token(request.headers.get("Authorization"))
            if not token:
                raise UnauthorizedError("missing bearer token")
            try:
                user_id = get_validator().validate(token)
            except IdentityUnavailable as exc:
                raise ServiceUnavailableError("identity service unavailable") from exc
            if user_id is None:
                raise UnauthorizedError("invalid token")
            g.user_id = user_id
            return func(*args, **kwargs)

        return wrapper

    return decorator


__all__ = ["IdentityClient", "IdentityUnavailable", "IdentityValidator", "bearer_token", "require_user"]
