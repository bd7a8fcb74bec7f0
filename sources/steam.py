"""Extract game fields from a storefront app page."""

from __future__ import annotations

import logging
import re
from typing import Sequence

from bs4 import BeautifulSoup

from helpers import _normalize_whitespace, extract_release_year, scheme_qualified_url
from ingestion.deadline import Deadline
from ingestion.errors import ParseError
from ingestion.models import STEAM_REQUIRED_FIELDS, ParsedGameRecord
from sources.http import (
    BROWSER_USER_AGENT,
    RU_ACCEPT_LANGUAGE,
    HttpFetcher,
    SourceRequestError,
    with_query,
)
from sources.resolvers import DEFAULT_SOURCE_TIMEOUT, STEAM_COOKIES

logger = logging.getLogger(__name__)

TITLE_LABELS = ("Название", "Title")
GENRE_LABELS = ("Жанр", "Genre")
DEVELOPER_LABELS = ("Разработчик", "Developer")
PUBLISHER_LABELS = ("Издатель", "Publisher")
RELEASE_LABELS = ("Дата выхода", "Release Date")

# Any label that may follow a value inside the details block.
_STOP_LABELS = (
    TITLE_LABELS
    + GENRE_LABELS
    + DEVELOPER_LABELS
    + PUBLISHER_LABELS
    + RELEASE_LABELS
    + ("Серия", "Франшиза", "Franchise", "Early Access Release Date", "Дата выхода в раннем доступе")
)
_YEAR_RE = re.compile(r"(20\d{2}|19\d{2})")


def _alternation(labels: Sequence[str]) -> str:
    ordered = sorted(set(labels), key=len, reverse=True)
    return "|".join(re.escape(label) for label in ordered)


def _field_pattern(labels: Sequence[str]) -> re.Pattern[str]:
    return re.compile(
        rf"(?:{_alternation(labels)}):\s*(.*?)\s*(?=(?:{_alternation(_STOP_LABELS)}):|$)"
    )


_TITLE_RE = _field_pattern(TITLE_LABELS)
_GENRE_RE = _field_pattern(GENRE_LABELS)
_DEVELOPER_RE = _field_pattern(DEVELOPER_LABELS)
_PUBLISHER_RE = _field_pattern(PUBLISHER_LABELS)
_RELEASE_RE = _field_pattern(RELEASE_LABELS)


def _capture(pattern: re.Pattern[str], text: str) -> str:
    match = pattern.search(text)
    return match.group(1).strip() if match else ""


def _release_year(value: str) -> str:
    match = _YEAR_RE.search(value)
    if match:
        return match.group(1)
    return extract_release_year(value)


def parse_steam_html(html: str, url: str) -> ParsedGameRecord:
    """Return the fields found in ``html``; unvalidated."""

    soup = BeautifulSoup(html, "html.parser")
    details = " ".join(
        node.get_text(" ") for node in soup.select("div.details_block, #genresAndManufacturer")
    )
    text = _normalize_whitespace(details)

    title = _capture(_TITLE_RE, text)
    if not title:
        name_node = soup.select_one("#appHubAppName, div.apphub_AppName")
        title = _normalize_whitespace(name_node.get_text(" ")) if name_node else ""

    snippet = soup.select_one("div.game_description_snippet")
    header_image = soup.select_one("img.game_header_image_full")

    return ParsedGameRecord(
        title=title,
        synopsis=_normalize_whitespace(snippet.get_text(" ")) if snippet else "",
        cover_image_url=scheme_qualified_url(header_image.get("src")) if header_image else "",
        developer=_capture(_DEVELOPER_RE, text),
        publisher=_capture(_PUBLISHER_RE, text),
        release_year=_release_year(_capture(_RELEASE_RE, text)),
        genre=_capture(_GENRE_RE, text),
        canonical_url=url,
    )


class SteamParser:
    def __init__(self, fetcher: HttpFetcher, *, timeout: float = DEFAULT_SOURCE_TIMEOUT) -> None:
        self._fetcher = fetcher
        self._timeout = timeout

    def parse(self, url: str, deadline: Deadline, payload: object = None) -> ParsedGameRecord:
        page_url = with_query(url, l="russian")
        try:
            html = self._fetcher.get_text(
                page_url,
                timeout=deadline.timeout_for(self._timeout),
                headers={
                    "User-Agent": BROWSER_USER_AGENT,
                    "Accept-Language": RU_ACCEPT_LANGUAGE,
                },
                cookies=STEAM_COOKIES,
            )
        except SourceRequestError as exc:
            raise ParseError(f"failed to fetch page: {exc}", url=url) from exc
        record = parse_steam_html(html, url)
        return record.validate(STEAM_REQUIRED_FIELDS)


__all__ = ["SteamParser", "parse_steam_html"]
