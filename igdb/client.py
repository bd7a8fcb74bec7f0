"""IGDB client and Twitch authentication helpers."""

from __future__ import annotations

import json
import logging
import numbers
import os
import threading
import time
from typing import Any, Callable, Mapping

from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from helpers import _collect_company_names, _parse_iterable

logger = logging.getLogger(__name__)


__all__ = [
    "IGDBClient",
    "IGDBError",
    "TokenCache",
    "cover_url_from_cover",
    "rewrite_cover_size",
]

DEFAULT_COVER_SIZE = "t_cover_big"

GAME_FIELDS = (
    "id,name,summary,url,first_release_date,category,"
    "genres.name,"
    "involved_companies.company.name,"
    "involved_companies.developer,"
    "involved_companies.publisher,"
    "cover.url,cover.image_id,total_rating_count"
)

# Released, not a bundle, not a version of another game, rated at least once.
SEARCH_FILTER = (
    "category != 3 & version_parent = null & "
    "first_release_date != null & first_release_date < {now} & "
    "total_rating_count >= 1"
)


class IGDBError(RuntimeError):
    """Raised when IGDB or Twitch returns an error or an unusable payload."""


def cover_url_from_cover(value: Any, size: str = DEFAULT_COVER_SIZE) -> str:
    """Return the IGDB image URL for a cover payload or identifier."""

    image_id: str | None = None
    if isinstance(value, Mapping):
        raw_id = value.get("image_id")
        if isinstance(raw_id, str):
            image_id = raw_id.strip()
        elif raw_id is not None:
            image_id = str(raw_id).strip()
        if not image_id and value.get("url"):
            return rewrite_cover_size(value.get("url"), size)
    elif isinstance(value, str):
        image_id = value.strip()
    elif value is not None:
        image_id = str(value).strip()
    if not image_id:
        return ""
    size_key = str(size).strip() if size else DEFAULT_COVER_SIZE
    return "https://images.igdb.com/igdb/image/upload/" f"{size_key}/{image_id}.jpg"


def rewrite_cover_size(url: Any, size: str = DEFAULT_COVER_SIZE) -> str:
    """Rewrite an IGDB image URL (usually ``t_thumb``) to ``size``."""

    text = str(url or "").strip()
    if not text:
        return ""
    if text.startswith("//"):
        text = f"https:{text}"
    marker = "/upload/"
    head, sep, tail = text.partition(marker)
    if not sep:
        return text
    segments = tail.split("/")
    if len(segments) >= 2 and segments[0].startswith("t_"):
        segments[0] = size
    return head + sep + "/".join(segments)


def _quote_search_term(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class IGDBClient:
    """High level helper that manages IGDB authentication and game lookups."""

    BASE_URL = "https://api.igdb.com/v4"
    TOKEN_URL = "https://id.twitch.tv/oauth2/token"

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        user_agent: str | None = None,
        max_retries: int = 3,
        rate_limit_wait: float = 1.0,
        request_factory: Callable[..., Any] | None = None,
        opener: Callable[..., Any] | None = None,
        sleep: Callable[[float], None] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._client_id = (client_id or "").strip()
        self._client_secret = (client_secret or "").strip()
        self._user_agent = (user_agent or "").strip()
        self._max_retries = max(1, int(max_retries)) if max_retries else 3
        self._rate_limit_wait = rate_limit_wait if rate_limit_wait and rate_limit_wait > 0 else 1.0
        self._request_factory = request_factory or Request
        self._opener = opener or urlopen
        self._sleep = sleep or time.sleep
        self._env = env if env is not None else os.environ

    @property
    def user_agent(self) -> str:
        if self._user_agent:
            return self._user_agent
        env_agent = self._env.get("IGDB_USER_AGENT")
        if env_agent:
            return env_agent.strip()
        return "GamesLibrary/1.0 (support@example.com)"

    def exchange_twitch_credentials(self, *, timeout: float = 10.0) -> tuple[str, str]:
        """Return a Twitch access token paired with the resolved client id."""

        resolved_client_id = (
            self._client_id or self._env.get("TWITCH_CLIENT_ID") or ""
        ).strip()
        resolved_client_secret = (
            self._client_secret or self._env.get("TWITCH_CLIENT_SECRET") or ""
        ).strip()
        if not resolved_client_id or not resolved_client_secret:
            raise IGDBError("missing twitch client credentials")

        payload = urlencode(
            {
                "client_id": resolved_client_id,
                "client_secret": resolved_client_secret,
                "grant_type": "client_credentials",
            }
        ).encode("utf-8")

        request = self._request_factory(self.TOKEN_URL, data=payload, method="POST")
        request.add_header("Content-Type", "application/x-www-form-urlencoded")

        data = self._request_json(
            request,
            timeout=timeout,
            error_prefix="failed to obtain twitch token",
            allow_rate_limit=False,
        )

        token = data.get("access_token") if isinstance(data, Mapping) else None
        if not token:
            raise IGDBError("missing access token in twitch response")
        return str(token), resolved_client_id

    def search_game(
        self,
        name: str,
        access_token: str,
        client_id: str,
        *,
        timeout: float = 10.0,
        now: Callable[[], float] = time.time,
    ) -> dict[str, Any] | None:
        """Return the best released, non-bundle match for ``name``."""

        term = _quote_search_term(str(name).strip())
        query = (
            f'search "{term}"; '
            f"fields {GAME_FIELDS}; "
            f"where {SEARCH_FILTER.format(now=int(now()))}; "
            "limit 1;"
        )
        results = self._query_games(query, access_token, client_id, timeout=timeout)
        return results[0] if results else None

    def fetch_game_by_url(
        self,
        url: str,
        access_token: str,
        client_id: str,
        *,
        timeout: float = 10.0,
    ) -> dict[str, Any] | None:
        query = (
            f"fields {GAME_FIELDS}; "
            f'where url = "{_quote_search_term(str(url).strip())}"; '
            "limit 1;"
        )
        results = self._query_games(query, access_token, client_id, timeout=timeout)
        return results[0] if results else None

    def _query_games(
        self,
        query: str,
        access_token: str,
        client_id: str,
        *,
        timeout: float,
    ) -> list[dict[str, Any]]:
        request = self._request_factory(
            f"{self.BASE_URL}/games",
            data=query.encode("utf-8"),
            method="POST",
        )
        self._apply_headers(request, client_id, access_token)

        payload = self._request_json(
            request,
            timeout=timeout,
            error_prefix="IGDB request failed",
        )

        results: list[dict[str, Any]] = []
        for item in payload or []:
            normalized_item = self.normalize_game(item)
            if normalized_item is not None:
                results.append(normalized_item)
        return results

    def normalize_game(self, item: Mapping[str, Any]) -> dict[str, Any] | None:
        """Return a normalized representation of an IGDB payload."""

        if not isinstance(item, Mapping):
            return None

        raw_id = item.get("id")
        try:
            igdb_id = int(str(raw_id).strip())
        except (TypeError, ValueError):
            logger.warning("Skipping IGDB entry with invalid id %s", raw_id)
            return None

        name_value = item.get("name")
        name = name_value.strip() if isinstance(name_value, str) else ""

        summary_value = item.get("summary")
        summary = summary_value.strip() if isinstance(summary_value, str) else ""

        url_value = item.get("url")
        url = url_value.strip() if isinstance(url_value, str) else ""

        companies = item.get("involved_companies")
        return {
            "id": igdb_id,
            "name": name,
            "summary": summary,
            "url": url,
            "first_release_date": item.get("first_release_date"),
            "category": item.get("category"),
            "cover_url": cover_url_from_cover(item.get("cover")),
            "rating_count": self._coerce_rating_count(item.get("total_rating_count")),
            "developers": _collect_company_names(companies, "developer"),
            "publishers": _collect_company_names(companies, "publisher"),
            "genres": _parse_iterable(item.get("genres")),
        }

    @staticmethod
    def _coerce_rating_count(value: Any) -> int | None:
        if value in (None, "") or isinstance(value, bool):
            return None
        if isinstance(value, numbers.Real):
            return int(float(value))
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError):
            return None

    def _apply_headers(self, request: Any, client_id: str, access_token: str) -> None:
        request.add_header("Client-ID", client_id)
        request.add_header("Authorization", f"Bearer {access_token}")
        request.add_header("Accept", "application/json")
        request.add_header("User-Agent", self.user_agent)

    def _request_json(
        self,
        request: Any,
        *,
        timeout: float,
        error_prefix: str,
        allow_rate_limit: bool = True,
    ) -> Any:
        attempts = self._max_retries if allow_rate_limit else 1
        for attempt in range(attempts):
            try:
                with self._opener(request, timeout=timeout) as response:
                    body = response.read()
            except HTTPError as exc:
                if allow_rate_limit and exc.code == 429 and attempt + 1 < attempts:
                    delay = min(self._retry_delay(exc), timeout)
                    if delay > 0:
                        self._sleep(delay)
                    continue
                raise IGDBError(_format_http_error(error_prefix, exc)) from exc
            except (URLError, OSError) as exc:
                raise IGDBError(f"{error_prefix}: {exc}") from exc
            text = body.decode("utf-8", errors="replace") if body else ""
            try:
                return json.loads(text) if text else []
            except ValueError as exc:
                raise IGDBError("invalid JSON response from IGDB") from exc
        return []

    def _retry_delay(self, error: HTTPError) -> float:
        headers = getattr(error, "headers", None)
        if headers is not None:
            for key in ("Retry-After", "retry-after"):
                value = headers.get(key)
                if value:
                    try:
                        delay = float(value)
                        if delay > 0:
                            return delay
                    except (TypeError, ValueError):
                        continue
        return self._rate_limit_wait


class TokenCache:
    """Exchange Twitch credentials at most once per batch.

    Every catalog item of a batch shares one instance; concurrent callers
    wait on the lock while the first one performs the exchange.
    """

    def __init__(self, client: IGDBClient) -> None:
        self._client = client
        self._lock = threading.Lock()
        self._credentials: tuple[str, str] | None = None

    def get(self, *, timeout: float = 10.0) -> tuple[str, str]:
        with self._lock:
            if self._credentials is None:
                self._credentials = self._client.exchange_twitch_credentials(timeout=timeout)
                logger.debug("Obtained Twitch access token for IGDB")
            return self._credentials


def _format_http_error(prefix: str, error: HTTPError) -> str:
    message = f"{prefix}: {error.code}"
    error_message = ""
    try:
        error_body = error.read()
    except Exception:  # pragma: no cover - best effort to capture error body
        error_body = b""
    if error_body:
        error_message = error_body.decode("utf-8", errors="replace").strip()
    if not error_message and error.reason:
        error_message = str(error.reason)
    if error_message:
        message = f"{message} {error_message}"
    return message
