"""Turn a free-text game name into a canonical page URL for each source."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence, Union

from bs4 import BeautifulSoup

from igdb.client import IGDBClient, IGDBError, TokenCache
from ingestion.deadline import Deadline
from ingestion.errors import ResolutionNotFound, SourceUnavailable
from ingestion.models import Source
from sources.http import (
    BROWSER_USER_AGENT,
    RU_ACCEPT_LANGUAGE,
    HttpFetcher,
    SourceRequestError,
)

logger = logging.getLogger(__name__)

WIKI_OPENSEARCH_URL = "https://ru.wikipedia.org/w/api.php"
STEAM_SUGGEST_URL = "https://store.steampowered.com/search/suggest"

STEAM_COOKIES = {
    "steamCountry": "RU|Moscow",
    "birthtime": "473385601",
    "wants_mature_content": "1",
    "Steam_Language": "russian",
}

DEFAULT_SOURCE_TIMEOUT = 3.0
DEFAULT_CATALOG_TIMEOUT = 10.0


@dataclass(frozen=True)
class Found:
    url: str
    source: Source
    payload: Any = None


@dataclass(frozen=True)
class NotFound:
    reason: str = "game not found"


@dataclass(frozen=True)
class TransientError:
    reason: str


ResolveOutcome = Union[Found, NotFound, TransientError]


class Resolver(Protocol):
    source: Source

    def resolve(self, name: str, deadline: Deadline) -> ResolveOutcome:
        ...


class WikiResolver:
    """Look a name up through the encyclopedia opensearch API."""

    source = Source.WIKI

    def __init__(self, fetcher: HttpFetcher, *, timeout: float = DEFAULT_SOURCE_TIMEOUT) -> None:
        self._fetcher = fetcher
        self._timeout = timeout

    def resolve(self, name: str, deadline: Deadline) -> ResolveOutcome:
        params = {
            "action": "opensearch",
            "format": "json",
            "formatversion": "2",
            "search": name,
            "namespace": "0",
            "limit": "10",
        }
        try:
            data = self._fetcher.get_json(
                WIKI_OPENSEARCH_URL,
                timeout=deadline.timeout_for(self._timeout),
                params=params,
            )
        except SourceRequestError as exc:
            return TransientError(str(exc))

        # [term, titles, descriptions, links]
        if not isinstance(data, list) or len(data) < 4:
            return NotFound()
        links = data[3]
        if not isinstance(links, list) or not links:
            return NotFound()
        first = str(links[0] or "").strip()
        if not first:
            return NotFound()
        return Found(url=first, source=self.source)


class SteamResolver:
    """Look a name up through the storefront search-suggest endpoint."""

    source = Source.STEAM

    def __init__(self, fetcher: HttpFetcher, *, timeout: float = DEFAULT_SOURCE_TIMEOUT) -> None:
        self._fetcher = fetcher
        self._timeout = timeout

    def resolve(self, name: str, deadline: Deadline) -> ResolveOutcome:
        params = {
            "term": name,
            "f": "games",
            "cc": "RU",
            "l": "russian",
            "realm": "1",
        }
        headers = {
            "User-Agent": BROWSER_USER_AGENT,
            "Accept-Language": RU_ACCEPT_LANGUAGE,
        }
        try:
            result = self._fetcher.get(
                STEAM_SUGGEST_URL,
                timeout=deadline.timeout_for(self._timeout),
                params=params,
                headers=headers,
                cookies=STEAM_COOKIES,
            )
        except SourceRequestError as exc:
            return TransientError(str(exc))
        if result.status != 200:
            return TransientError(f"unexpected status code: {result.status}")

        soup = BeautifulSoup(result.text(), "html.parser")
        for anchor in soup.select("a.match"):
            href = str(anchor.get("href") or "").strip()
            if href:
                return Found(url=href, source=self.source)
        return NotFound()


class CatalogResolver:
    """Search the IGDB catalog, reusing one Twitch token per batch."""

    source = Source.CATALOG

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

    def resolve(self, name: str, deadline: Deadline) -> ResolveOutcome:
        try:
            access_token, client_id = self._tokens.get(
                timeout=deadline.timeout_for(self._timeout)
            )
            match = self._client.search_game(
                name,
                access_token,
                client_id,
                timeout=deadline.timeout_for(self._timeout),
            )
        except IGDBError as exc:
            return TransientError(str(exc))
        if not match or not match.get("url"):
            return NotFound()
        return Found(url=match["url"], source=self.source, payload=match)


class ResolverChain:
    """Try each resolver in order and stop at the first :class:`Found`."""

    def __init__(self, resolvers: Sequence[Resolver]) -> None:
        if not resolvers:
            raise ValueError("a resolver chain needs at least one resolver")
        self._resolvers = list(resolvers)

    @property
    def sources(self) -> list[Source]:
        return [resolver.source for resolver in self._resolvers]

    def resolve(self, name: str, deadline: Deadline) -> Found:
        last: Optional[ResolveOutcome] = None
        unavailable = True
        for resolver in self._resolvers:
            deadline.check("resolve")
            outcome = resolver.resolve(name, deadline)
            if isinstance(outcome, Found):
                return outcome
            if isinstance(outcome, TransientError):
                logger.warning(
                    "%s lookup for %r failed: %s", resolver.source.value, name, outcome.reason
                )
            else:
                unavailable = False
            last = outcome
        deadline.check("resolve")
        if unavailable and isinstance(last, TransientError):
            # No source answered.
            raise SourceUnavailable(source=self._resolvers[0].source.value, last=last.reason)
        raise ResolutionNotFound(source=self._resolvers[0].source.value, last=last)


ChainFactory = Callable[[Source], ResolverChain]


def build_chain_factory(
    fetcher: HttpFetcher,
    *,
    igdb_client: Optional[IGDBClient] = None,
    tokens: Optional[TokenCache] = None,
    source_timeout: float = DEFAULT_SOURCE_TIMEOUT,
) -> ChainFactory:
    """Return a callable mapping a :class:`Source` to its resolver chain.

    Steam falls back to Wiki; the other sources are single-step chains. The
    catalog chain is only available when an IGDB client is configured.
    """

    wiki = WikiResolver(fetcher, timeout=source_timeout)
    steam = SteamResolver(fetcher, timeout=source_timeout)
    catalog: Optional[CatalogResolver] = None
    if igdb_client is not None:
        catalog = CatalogResolver(igdb_client, tokens or TokenCache(igdb_client))

    chains = {
        Source.WIKI: ResolverChain([wiki]),
        Source.STEAM: ResolverChain([steam, wiki]),
    }
    if catalog is not None:
        chains[Source.CATALOG] = ResolverChain([catalog])

    def chain_for(source: Source) -> ResolverChain:
        try:
            return chains[source]
        except KeyError:
            raise ResolutionNotFound(f"source {source.value} is not configured") from None

    return chain_for


__all__ = [
    "CatalogResolver",
    "ChainFactory",
    "Found",
    "NotFound",
    "ResolveOutcome",
    "ResolverChain",
    "STEAM_COOKIES",
    "SteamResolver",
    "TransientError",
    "WikiResolver",
    "build_chain_factory",
]
