"""Thin urllib wrapper shared by the metadata sources and the image fetcher."""

from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)


BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.36"
)
RU_ACCEPT_LANGUAGE = "ru-RU,ru;q=0.8,en-US;q=0.6,en;q=0.4"

Opener = Callable[..., Any]


class SourceRequestError(RuntimeError):
    """Raised when an upstream request fails or returns an unusable response."""

    def __init__(self, message: str, *, status: int | None = None, url: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.url = url


@dataclass
class FetchResult:
    url: str
    status: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return str(self.headers.get("content-type") or "").strip()

    @property
    def charset(self) -> str:
        for part in self.content_type.split(";")[1:]:
            key, _, value = part.partition("=")
            if key.strip().lower() == "charset" and value.strip():
                return value.strip().strip('"')
        return "utf-8"

    def text(self) -> str:
        try:
            return self.body.decode(self.charset, errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        text = self.text()
        if not text:
            return []
        try:
            return json.loads(text)
        except ValueError as exc:
            raise SourceRequestError(f"invalid JSON response from {self.url}", url=self.url) from exc


def with_query(url: str, **params: str) -> str:
    """Return ``url`` with ``params`` set in its query string."""

    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


def cookie_header(cookies: Mapping[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


class HttpFetcher:
    """Issue HTTP requests through an injectable urllib-style opener."""

    def __init__(
        self,
        *,
        opener: Opener | None = None,
        request_factory: Callable[..., Any] | None = None,
        user_agent: str | None = None,
    ) -> None:
        self._opener = opener or urlopen
        self._request_factory = request_factory or Request
        self._user_agent = (user_agent or "").strip() or BROWSER_USER_AGENT

    def get(
        self,
        url: str,
        *,
        timeout: float,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        cookies: Mapping[str, str] | None = None,
    ) -> FetchResult:
        if params:
            url = with_query(url, **dict(params))
        return self._send(url, None, "GET", timeout=timeout, headers=headers, cookies=cookies)

    def post(
        self,
        url: str,
        data: bytes,
        *,
        timeout: float,
        headers: Mapping[str, str] | None = None,
    ) -> FetchResult:
        return self._send(url, data, "POST", timeout=timeout, headers=headers, cookies=None)

    def get_text(self, url: str, *, timeout: float, **kwargs: Any) -> str:
        result = self.get(url, timeout=timeout, **kwargs)
        if result.status != 200:
            raise SourceRequestError(
                f"unexpected status code: {result.status}", status=result.status, url=url
            )
        return result.text()

    def get_json(self, url: str, *, timeout: float, **kwargs: Any) -> Any:
        result = self.get(url, timeout=timeout, **kwargs)
        if result.status != 200:
            raise SourceRequestError(
                f"unexpected status code: {result.status}", status=result.status, url=url
            )
        return result.json()

    def _send(
        self,
        url: str,
        data: bytes | None,
        method: str,
        *,
        timeout: float,
        headers: Mapping[str, str] | None,
        cookies: Mapping[str, str] | None,
    ) -> FetchResult:
        request = self._request_factory(url, data=data, method=method)
        request.add_header("User-Agent", self._user_agent)
        for key, value in (headers or {}).items():
            request.add_header(key, value)
        if cookies:
            request.add_header("Cookie", cookie_header(cookies))

        try:
            with self._opener(request, timeout=timeout) as response:
                body = response.read()
                status = int(getattr(response, "status", None) or response.getcode())
                raw_headers = getattr(response, "headers", None) or {}
                response_headers = {
                    str(key).lower(): str(value) for key, value in raw_headers.items()
                }
                final_url = response.geturl() if hasattr(response, "geturl") else url
        except HTTPError as exc:
            raise SourceRequestError(_format_http_error(method, url, exc), status=exc.code, url=url) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise SourceRequestError(f"{method} {url} timed out", url=url) from exc
        except URLError as exc:
            raise SourceRequestError(f"{method} {url} failed: {exc.reason}", url=url) from exc
        except OSError as exc:
            raise SourceRequestError(f"{method} {url} failed: {exc}", url=url) from exc

        logger.debug("%s %s -> %s (%d bytes)", method, url, status, len(body or b""))
        return FetchResult(url=final_url or url, status=status, body=body or b"", headers=response_headers)


def _format_http_error(method: str, url: str, error: HTTPError) -> str:
    message = f"{method} {url} returned {error.code}"
    error_message = ""
    try:
        error_body = error.read()
    except Exception:  # pragma: no cover - best effort to capture error body
        error_body = b""
    if error_body:
        error_message = error_body.decode("utf-8", errors="replace").strip()[:200]
    if not error_message and error.reason:
        error_message = str(error.reason)
    if error_message:
        message = f"{message}: {error_message}"
    return message


__all__ = [
    "BROWSER_USER_AGENT",
    "FetchResult",
    "HttpFetcher",
    "RU_ACCEPT_LANGUAGE",
    "SourceRequestError",
    "cookie_header",
    "with_query",
]
