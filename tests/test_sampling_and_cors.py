import math

import pytest

from chat_gateway.services.cors import cors_headers, resolve_allowed_origin
from chat_gateway.services.sampling import normalize_temperature


@pytest.mark.parametrize(
    "value, expected",
    [
        (-5, 0.0),
        (10, 2.0),
        (0.7, 0.7),
        (0, 0.0),
        (math.nan, None),
        ("0.5", None),
        (None, None),
        (True, None),
        (10**400, 2.0),
        (-10**400, 0.0),
    ],
)
def test_normalize_temperature(value, expected):
    assert normalize_temperature(value) == expected


def test_empty_allow_list_echoes_origin():
    assert resolve_allowed_origin("http://example.com", []) == "http://example.com"
    assert resolve_allowed_origin(None, []) == "*"


def test_wildcard_allow_list_echoes_origin():
    assert resolve_allowed_origin("http://a.test", ["*"]) == "http://a.test"


def test_matching_origin_is_echoed():
    allowed = ["http://a.test", "http://b.test"]
    assert resolve_allowed_origin("http://b.test", allowed) == "http://b.test"


def test_unlisted_origin_gets_first_configured():
    allowed = ["http://a.test", "http://b.test"]
    assert resolve_allowed_origin("http://evil.test", allowed) == "http://a.test"
    assert resolve_allowed_origin(None, allowed) == "http://a.test"


def test_cors_headers():
    assert cors_headers("http://x.test", []) == {
        "Access-Control-Allow-Origin": "http://x.test",
        "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type,Authorization",
    }
