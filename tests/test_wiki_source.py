from urllib.parse import parse_qs, urlsplit

import pytest

from ingestion.errors import ParseError, ParseInsufficientData
from ingestion.models import Source
from sources.resolvers import Found, NotFound, TransientError, WikiResolver
from sources.wiki import WikiParser, parse_wiki_html
from tests.app_helpers import (
    WIKI_URL,
    html_response,
    http_error,
    json_response,
    wiki_article_html,
    wiki_opensearch,
)


def test_resolver_returns_first_opensearch_link(opener, fetcher, deadline):
    other = "https://ru.wikipedia.org/wiki/Half-Life_2:_Episode_One"
    opener.add("api.php", json_response(wiki_opensearch("Half-Life 2", [WIKI_URL, other])))

    outcome = WikiResolver(fetcher).resolve("Half-Life 2", deadline)

    assert isinstance(outcome, Found)
    assert outcome.url == WIKI_URL
    assert outcome.source is Source.WIKI
    query = parse_qs(urlsplit(opener.requests[0].full_url).query)
    assert query["action"] == ["opensearch"]
    assert query["search"] == ["Half-Life 2"]
    assert query["namespace"] == ["0"]
    assert query["limit"] == ["10"]
    assert query["formatversion"] == ["2"]


def test_resolver_reports_not_found_without_links(opener, fetcher, deadline):
    opener.add("api.php", json_response(wiki_opensearch("UnknownGarbageNameXYZ", [])))

    outcome = WikiResolver(fetcher).resolve("UnknownGarbageNameXYZ", deadline)

    assert isinstance(outcome, NotFound)


def test_resolver_reports_not_found_for_short_array(opener, fetcher, deadline):
    opener.add("api.php", json_response(["Half-Life 2", []]))

    outcome = WikiResolver(fetcher).resolve("Half-Life 2", deadline)

    assert isinstance(outcome, NotFound)


def test_resolver_reports_transient_error_on_http_failure(opener, fetcher, deadline):
    opener.add("api.php", http_error("https://ru.wikipedia.org/w/api.php", 503))

    outcome = WikiResolver(fetcher).resolve("Half-Life 2", deadline)

    assert isinstance(outcome, TransientError)
    assert "503" in outcome.reason


def test_resolver_caps_timeout_at_three_seconds(opener, fetcher, deadline):
    opener.add("api.php", json_response(wiki_opensearch("Half-Life 2", [WIKI_URL])))

    WikiResolver(fetcher).resolve("Half-Life 2", deadline)

    assert 0 < opener.timeouts[0] <= 3.0


def test_parse_extracts_infobox_fields():
    record = parse_wiki_html(wiki_article_html(), WIKI_URL)

    assert record.title == "Half-Life 2"
    assert record.developer == "Valve"
    # Plural label keeps only the first token.
    assert record.publisher == "Valve"
    assert record.release_year == "2004"
    assert record.genre == "шутер от первого лица"
    assert record.synopsis.startswith("Half-Life 2 — компьютерная игра")
    assert record.cover_image_url == "https://upload.wikimedia.org/wikipedia/ru/hl2.png"
    assert record.canonical_url == WIKI_URL


def test_parse_prefers_singular_label_over_plural():
    html = wiki_article_html(
        developer_label="Разработчики",
        developer="Valve Corporation",
        publisher_label="Издатель",
        publisher="Electronic Arts",
    )

    record = parse_wiki_html(html, WIKI_URL)

    assert record.developer == "Valve"
    assert record.publisher == "Electronic Arts"


def test_parse_reads_single_release_date_label():
    html = wiki_article_html(release_label="Дата выпуска", release="весна 1998 года")

    record = parse_wiki_html(html, WIKI_URL)

    assert record.release_year == "1998"


def test_parse_ignores_years_outside_range():
    html = wiki_article_html(release="в 1899 и 2004 годах")

    record = parse_wiki_html(html, WIKI_URL)

    assert record.release_year == "2004"


def test_parse_keeps_absolute_image_source():
    html = wiki_article_html(image_src="https://example.org/cover.jpg")

    record = parse_wiki_html(html, WIKI_URL)

    assert record.cover_image_url == "https://example.org/cover.jpg"


def test_parse_without_infobox_is_insufficient(opener, fetcher, deadline):
    opener.add("/wiki/", html_response("<html><body><p>Disambiguation</p></body></html>"))

    with pytest.raises(ParseInsufficientData) as excinfo:
        WikiParser(fetcher).parse(WIKI_URL, deadline)

    assert excinfo.value.reason == "insufficient data"


def test_parser_requires_every_field(opener, fetcher, deadline):
    opener.add("/wiki/", html_response(wiki_article_html(image_src="")))

    with pytest.raises(ParseInsufficientData) as excinfo:
        WikiParser(fetcher).parse(WIKI_URL, deadline)

    assert excinfo.value.details["missing"] == ["cover_image_url"]


def test_parser_wraps_fetch_failures(opener, fetcher, deadline):
    opener.add("/wiki/", http_error(WIKI_URL, 404))

    with pytest.raises(ParseError) as excinfo:
        WikiParser(fetcher).parse(WIKI_URL, deadline)

    assert not isinstance(excinfo.value, ParseInsufficientData)
    assert "404" in excinfo.value.reason


def test_parser_returns_validated_record(opener, fetcher, deadline):
    opener.add("/wiki/", html_response(wiki_article_html()))

    record = WikiParser(fetcher).parse(WIKI_URL, deadline)

    assert record.missing(["title", "synopsis", "genre"]) == []
