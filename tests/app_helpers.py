"""Shared testing helpers: fake urllib openers, page fixtures and app loading."""

from __future__ import annotations

import importlib.util
import io
import json
import re
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from PIL import Image
from urllib.error import HTTPError, URLError

from auth.identity import IdentityUnavailable
from catalog.store import CatalogStore, ensure_schema
from db.utils import build_engine_from_dsn
from igdb.client import IGDBClient
from ingestion.orchestrator import IngestionServices
from sources.http import HttpFetcher
from storage.blobs import BlobStore

APP_PATH = Path(__file__).resolve().parents[1] / "app.py"

WIKI_URL = "https://ru.wikipedia.org/wiki/Half-Life_2"
STEAM_APP_URL = "https://store.steampowered.com/app/220/HalfLife_2/"
WIKI_IMAGE_URL = "https://upload.wikimedia.org/wikipedia/ru/hl2.png"
STEAM_IMAGE_URL = "https://cdn.akamai.steamstatic.com/steam/apps/220/header.jpg"


class FakeResponse:
    def __init__(
        self,
        body: bytes | str = b"",
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
        url: str = "",
    ) -> None:
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self.status = status
        self.headers = dict(headers or {})
        self._url = url

    def read(self) -> bytes:
        return self._body

    def getcode(self) -> int:
        return self.status

    def geturl(self) -> str:
        return self._url

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


def json_response(payload: Any, *, status: int = 200) -> FakeResponse:
    return FakeResponse(
        json.dumps(payload, ensure_ascii=False),
        status=status,
        headers={"Content-Type": "application/json; charset=utf-8"},
    )


def html_response(body: str, *, status: int = 200) -> FakeResponse:
    return FakeResponse(body, status=status, headers={"Content-Type": "text/html; charset=utf-8"})


def http_error(url: str, code: int) -> HTTPError:
    return HTTPError(url, code, "error", {}, io.BytesIO(b""))


Responder = Any


class FakeOpener:
    """Route urllib requests by URL substring; the first matching route wins.

    A route value may be a :class:`FakeResponse`, an exception to raise or a
    callable receiving the request.
    """

    def __init__(self, routes: Iterable[tuple[str, Responder]] = ()) -> None:
        self.routes: list[tuple[str, Responder]] = list(routes)
        self.requests: list[Any] = []
        self.timeouts: list[float | None] = []
        self._lock = threading.Lock()

    def add(self, fragment: str, responder: Responder) -> "FakeOpener":
        self.routes.append((fragment, responder))
        return self

    def __call__(self, request: Any, timeout: float | None = None) -> FakeResponse:
        with self._lock:
            self.requests.append(request)
            self.timeouts.append(timeout)
        url = request.full_url
        for fragment, responder in self.routes:
            if fragment not in url:
                continue
            if isinstance(responder, BaseException):
                raise responder
            if callable(responder) and not isinstance(responder, FakeResponse):
                return responder(request)
            if not responder._url:
                responder._url = url
            return responder
        raise URLError(f"no fake route for {url}")

    def urls(self, fragment: str = "") -> list[str]:
        return [request.full_url for request in self.requests if fragment in request.full_url]


def png_bytes(size: tuple[int, int] = (4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def image_response(data: bytes | None = None, *, content_type: str = "image/png") -> FakeResponse:
    return FakeResponse(data if data is not None else png_bytes(), headers={"Content-Type": content_type})


def wiki_opensearch(term: str, links: list[str]) -> list[Any]:
    return [term, [term for _ in links], ["" for _ in links], links]


def wiki_article_html(
    *,
    title: str = "Half-Life 2",
    developer_label: str = "Разработчик",
    developer: str = "Valve",
    publisher_label: str = "Издатели",
    publisher: str = "Valve Corporation Electronic Arts",
    release_label: str = "Даты выпуска",
    release: str = "16 ноября 2004",
    genre: str = "шутер от первого лица",
    image_src: str = "//upload.wikimedia.org/wikipedia/ru/hl2.png",
    synopsis: str = "Half-Life 2 — компьютерная игра в жанре шутера от первого лица.",
) -> str:
    image_row = (
        f'<tr><td colspan="2" class="infobox-image"><span><img src="{image_src}"></span></td></tr>'
        if image_src
        else ""
    )
    return f"""
    <html><body><div class="mw-parser-output">
    <div class="hatnote">Не путать с Half-Life.</div>
    <table class="infobox">
      <tbody>
        <tr><th colspan="2" class="infobox-above">{title}</th></tr>
        {image_row}
        <tr><th>{developer_label}</th><td><a href="/wiki/Valve">{developer}</a></td></tr>
        <tr><th>{publisher_label}</th><td>{publisher}</td></tr>
        <tr><th><a href="/wiki/Date">{release_label}</a></th><td>{release}</td></tr>
        <tr><th>Жанр</th><td>{genre}</td></tr>
      </tbody>
    </table>
    <p>{synopsis}</p>
    <p>Второй абзац.</p>
    </div></body></html>
    """


def steam_suggest_html(hrefs: list[str]) -> str:
    anchors = "".join(
        f'<a class="match ds_collapse_flag" data-ds-appid="220" href="{href}">'
        '<div class="match_name">Half-Life 2</div></a>'
        for href in hrefs
    )
    return f"<div>{anchors}</div>"


def steam_page_html(
    *,
    title_label: str = "Название",
    title: str = "Half-Life 2",
    genre_label: str = "Жанр",
    genre: str = "Экшены",
    developer_label: str = "Разработчик",
    developer: str = "Valve",
    publisher_label: str = "Издатель",
    publisher: str = "Valve",
    release_label: str = "Дата выхода",
    release: str = "16 ноя. 2004",
    image_src: str = STEAM_IMAGE_URL,
    snippet: str = "1998. HALF-LIFE sends a shock through the game industry.",
) -> str:
    return f"""
    <html><body>
    <div class="apphub_AppName" id="appHubAppName">{title}</div>
    <img class="game_header_image_full" src="{image_src}">
    <div class="game_description_snippet">
        {snippet}
    </div>
    <div id="genresAndManufacturer" class="details_block">
        <b>{title_label}:</b> {title}<br>
        <b>{genre_label}:</b> <span><a href="#">{genre}</a></span><br>
        <div class="dev_row"><b>{developer_label}:</b> <a href="#">{developer}</a></div>
        <div class="dev_row"><b>{publisher_label}:</b> <a href="#">{publisher}</a></div>
        <b>Серия:</b> <a href="#">Half-Life</a><br>
        <b>{release_label}:</b> {release}<br>
    </div>
    </body></html>
    """


def igdb_game_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": 233,
        "name": "Half-Life 2",
        "summary": "Gordon Freeman returns.",
        "url": "https://www.igdb.com/games/half-life-2",
        "first_release_date": 1100563200,
        "category": 0,
        "genres": [{"id": 5, "name": "Shooter"}],
        "involved_companies": [
            {"company": {"name": "Valve"}, "developer": True, "publisher": False},
            {"company": {"name": "Valve"}, "developer": False, "publisher": True},
            {"company": {"name": "Sierra Entertainment"}, "developer": False, "publisher": True},
        ],
        "cover": {"url": "//images.igdb.com/igdb/image/upload/t_thumb/co1nmw.jpg"},
        "total_rating_count": 2500,
    }
    payload.update(overrides)
    return payload


_IGDB_SEARCH_RE = re.compile(r'search "((?:[^"\\]|\\.)*)";')


def igdb_routes() -> list[tuple[str, Responder]]:
    """Twitch token and IGDB game routes; each search term gets its own game."""

    def games(request: Any) -> FakeResponse:
        match = _IGDB_SEARCH_RE.search(request.data.decode("utf-8"))
        if match is None:
            return json_response([igdb_game_payload()])
        term = match.group(1)
        slug = re.sub(r"[^a-z0-9]+", "-", term.lower()).strip("-")
        return json_response(
            [
                igdb_game_payload(
                    name=term,
                    url=f"https://www.igdb.com/games/{slug}",
                    cover={"url": f"//images.igdb.com/igdb/image/upload/t_thumb/{slug}.jpg"},
                )
            ]
        )

    return [
        ("id.twitch.tv", json_response({"access_token": "token-abc", "expires_in": 3600})),
        ("api.igdb.com/v4/games", games),
        ("images.igdb.com", image_response(content_type="image/jpeg")),
    ]


def make_igdb_client(opener: Callable[..., Any]) -> IGDBClient:
    return IGDBClient(
        client_id="client-123",
        client_secret="secret-456",
        opener=opener,
        sleep=lambda _seconds: None,
        env={},
    )


def wiki_routes(
    *,
    term: str = "Half-Life 2",
    links: list[str] | None = None,
    article: str | None = None,
    image: Responder | None = None,
) -> list[tuple[str, Responder]]:
    return [
        ("ru.wikipedia.org/w/api.php", json_response(wiki_opensearch(term, links if links is not None else [WIKI_URL]))),
        ("ru.wikipedia.org/wiki/", html_response(article if article is not None else wiki_article_html())),
        ("upload.wikimedia.org", image if image is not None else image_response()),
    ]


def make_services(
    tmp_path: Path,
    opener: Callable[..., Any],
    *,
    igdb_client: Any = None,
) -> IngestionServices:
    engine = build_engine_from_dsn(f"sqlite:///{(tmp_path / 'games.db').as_posix()}")
    ensure_schema(engine)
    return IngestionServices(
        fetcher=HttpFetcher(opener=opener),
        store=CatalogStore(engine),
        blobs=BlobStore(tmp_path / "uploads"),
        igdb_client=igdb_client,
    )


class FakeIdentity:
    def __init__(self, tokens: Mapping[str, int] | None = None, *, unavailable: bool = False) -> None:
        self.tokens = dict(tokens or {"good-token": 7})
        self.unavailable = unavailable
        self.calls: list[str] = []

    def validate(self, token: str) -> int | None:
        self.calls.append(token)
        if self.unavailable:
            raise IdentityUnavailable("identity service returned 503")
        return self.tokens.get(token)


def load_app(tmp_path: Path, services: IngestionServices, *, identity: Any = None, orchestrator: Any = None) -> object:
    """Import a fresh copy of the application module wired to ``services``."""

    module_name = f"app_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(module_name, APP_PATH)
    if spec is None or spec.loader is None:
        raise RuntimeError("Unable to load app module specification")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    module.set_services(services, identity=identity or FakeIdentity(), orchestrator=orchestrator)
    module.app.config['TESTING'] = True
    module.app.testing = True
    return module


def auth_headers(token: str = "good-token") -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
