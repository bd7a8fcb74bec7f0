import json
from urllib.error import URLError

import pytest

from auth.identity import IdentityClient, IdentityUnavailable, bearer_token
from tests.app_helpers import http_error, json_response

IDENTITY_URL = "https://auth.example.org/validate"


def _client(fetcher):
    return IdentityClient(IDENTITY_URL, fetcher, timeout=2.0)


def test_valid_token_returns_user_id(opener, fetcher):
    opener.add("auth.example.org", json_response({"valid": True, "user_id": 42}))

    assert _client(fetcher).validate("abc") == 42

    request = opener.requests[0]
    assert request.get_method() == "POST"
    assert json.loads(request.data) == {"token": "abc"}
    assert opener.timeouts == [2.0]


@pytest.mark.parametrize(
    "payload",
    [
        {"valid": False, "user_id": 42},
        {"valid": True},
        {"valid": True, "user_id": 0},
        {"valid": True, "user_id": "nobody"},
        {"valid": True, "user_id": True},
        ["valid"],
    ],
)
def test_rejected_or_malformed_answers_yield_no_user(opener, fetcher, payload):
    opener.add("auth.example.org", json_response(payload))

    assert _client(fetcher).validate("abc") is None


def test_numeric_string_user_id_is_accepted(opener, fetcher):
    opener.add("auth.example.org", json_response({"valid": True, "user_id": "15"}))

    assert _client(fetcher).validate("abc") == 15


def test_server_error_is_reported_as_unavailable(opener, fetcher):
    opener.add("auth.example.org", http_error(IDENTITY_URL, 503))

    with pytest.raises(IdentityUnavailable):
        _client(fetcher).validate("abc")


def test_unreachable_service_is_reported_as_unavailable(opener, fetcher):
    opener.add("auth.example.org", URLError("connection refused"))

    with pytest.raises(IdentityUnavailable):
        _client(fetcher).validate("abc")


def test_client_error_from_service_yields_no_user(opener, fetcher):
    opener.add("auth.example.org", http_error(IDENTITY_URL, 401))

    assert _client(fetcher).validate("abc") is None


def test_empty_token_skips_the_service(opener, fetcher):
    assert _client(fetcher).validate("") is None
    assert opener.requests == []


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc", "abc"),
        ("bearer   abc ", "abc"),
        ("Basic abc", ""),
        ("Bearer", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected
