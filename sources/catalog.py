"""Map IGDB game payloads onto parsed game records."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from helpers import _format_name_list, release_year_from_timestamp
from igdb.client import IGDBClient, IGDBError, TokenCache, rewrite_cover_size
from ingestion.deadline import Deadline
from ingestion.errors import ParseError
from ingestion.models import CATALOG_REQUIRED_FIELDS, ParsedGameRecord
from sources.resolvers import DEFAULT_CATALOG_TIMEOUT


def record_from_igdb(game: Mapping[str, Any], url: str = "") -> ParsedGameRecord:
    genres = game.get("genres") or []
    return ParsedGameRecord(
        title=str(game.get("name") or "").strip(),
        synopsis=str(game.get("summary") or "").strip(),
        cover_image_url=rewrite_cover_size(game.get("cover_url")),
        developer=_format_name_list(game.get("developers")),
        publisher=_format_name_list(game.get("publishers")),
        release_year=release_year_from_timestamp(game.get("first_release_date")),
        genre=str(genres[0]).strip() if genres else "",
        canonical_url=str(game.get("url") or url).strip(),
    )


class CatalogParser:
    """Build records from the payload matched at resolution time.

    When no payload is available the game is looked up again by its URL.
    """

    def __init__(
        self,
        client: IGDBClient,
        tokens: TokenCache,
        *,
        timeout: float = DEFAULT_CATALOG_TIMEOUT,
    ) -> None:
        self._client = client
        self._tokens = tokens
        self._timeout = timeout

    def parse(
        self,
        url: str,
        deadline: Deadline,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> ParsedGameRecord:
        game = payload if isinstance(payload, Mapping) else self._lookup(url, deadline)
        if not game:
            raise ParseError("game not found in catalog", url=url)
        return record_from_igdb(game, url).validate(CATALOG_REQUIRED_FIELDS)

    def _lookup(self, url: str, deadline: Deadline) -> Optional[Mapping[str, Any]]:
        try:
            access_token, client_id = self._tokens.get(
                timeout=deadline.timeout_for(self._timeout)
            )
            return self._client.fetch_game_by_url(
                url,
                access_token,
                client_id,
                timeout=deadline.timeout_for(self._timeout),
            )
        except IGDBError as exc:
            raise ParseError(f"catalog lookup failed: {exc}", url=url) from exc


__all__ = ["CatalogParser", "record_from_igdb"]
