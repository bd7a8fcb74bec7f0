"""Extract game fields from a Russian-language encyclopedia article."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from bs4 import BeautifulSoup, Tag

from helpers import (
    _first_token,
    _normalize_whitespace,
    extract_release_year,
    scheme_qualified_url,
)
from ingestion.deadline import Deadline
from ingestion.errors import ParseError
from ingestion.models import WIKI_REQUIRED_FIELDS, ParsedGameRecord
from sources.http import RU_ACCEPT_LANGUAGE, HttpFetcher, SourceRequestError

logger = logging.getLogger(__name__)

DEVELOPER_LABELS = ("Разработчик", "Разработчики")
PUBLISHER_LABELS = ("Издатель", "Издатели")
GENRE_LABELS = ("Жанр", "Жанры")
RELEASE_LABELS = ("Даты выпуска", "Дата выпуска")

DEFAULT_PAGE_TIMEOUT = 3.0


def _label_text(cell: Tag) -> str:
    return _normalize_whitespace(cell.get_text(" ")).rstrip(":").strip()


def _value_cell(infobox: Tag, label: str) -> Optional[Tag]:
    """Return the cell next to the row label that reads exactly ``label``."""

    for row in infobox.find_all("tr"):
        header = row.find(["th", "td"])
        if header is None or _label_text(header) != label:
            continue
        value = header.find_next_sibling(["td", "th"])
        if value is not None:
            return value
    return None


def _cell_text(cell: Optional[Tag]) -> str:
    if cell is None:
        return ""
    return _normalize_whitespace(cell.get_text(" "))


def _party(infobox: Tag, singular: str, plural: str) -> str:
    """Single label keeps the whole cell; plural keeps its first token."""

    text = _cell_text(_value_cell(infobox, singular))
    if text:
        return text
    return _first_token(_cell_text(_value_cell(infobox, plural)))


def _first_labelled(infobox: Tag, labels: Iterable[str]) -> str:
    for label in labels:
        text = _cell_text(_value_cell(infobox, label))
        if text:
            return text
    return ""


def _synopsis(infobox: Tag) -> str:
    for sibling in infobox.find_next_siblings():
        if isinstance(sibling, Tag) and sibling.name == "p":
            text = _normalize_whitespace(sibling.get_text(" "))
            if text:
                return text
    return ""


def _cover_url(infobox: Tag) -> str:
    image = infobox.select_one("td.infobox-image img")
    if image is None:
        return ""
    return scheme_qualified_url(image.get("src"))


def parse_wiki_html(html: str, url: str) -> ParsedGameRecord:
    """Return the fields found in ``html``; unvalidated."""

    soup = BeautifulSoup(html, "html.parser")
    infobox = soup.select_one("table.infobox")
    if infobox is None:
        return ParsedGameRecord(canonical_url=url)

    title_cell = infobox.select_one("th.infobox-above")
    return ParsedGameRecord(
        title=_cell_text(title_cell),
        synopsis=_synopsis(infobox),
        cover_image_url=_cover_url(infobox),
        developer=_party(infobox, *DEVELOPER_LABELS),
        publisher=_party(infobox, *PUBLISHER_LABELS),
        release_year=extract_release_year(_first_labelled(infobox, RELEASE_LABELS)),
        genre=_first_labelled(infobox, GENRE_LABELS),
        canonical_url=url,
    )


class WikiParser:
    def __init__(self, fetcher: HttpFetcher, *, timeout: float = DEFAULT_PAGE_TIMEOUT) -> None:
        self._fetcher = fetcher
        self._timeout = timeout

    def parse(self, url: str, deadline: Deadline, payload: object = None) -> ParsedGameRecord:
        try:
            html = self._fetcher.get_text(
                url,
                timeout=deadline.timeout_for(self._timeout),
                headers={"Accept-Language": RU_ACCEPT_LANGUAGE},
            )
        except SourceRequestError as exc:
            raise ParseError(f"failed to fetch page: {exc}", url=url) from exc
        record = parse_wiki_html(html, url)
        return record.validate(WIKI_REQUIRED_FIELDS)


__all__ = ["WikiParser", "parse_wiki_html"]
