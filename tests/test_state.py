import pytest

from rivet.errors import ApiError, ConfigurationError
from rivet.requests import Headers, Request, RequestParts, parse_cookies
from rivet.state import StateRegistry


class Database:
    pass


class Cache:
    pass


def test_registry_is_type_keyed() -> None:
    registry = StateRegistry()
    db = Database()
    registry.register(db)
    registry.register("redis://", as_type=Cache)
    assert registry.get(Database) is db
    assert registry.require(Cache) == "redis://"
    assert Database in registry
    assert len(registry) == 2


def test_registry_rejects_duplicates_and_writes_after_freeze() -> None:
    registry = StateRegistry()
    registry.register(Database())
    with pytest.raises(ConfigurationError):
        registry.register(Database())
    registry.freeze()
    assert registry.frozen
    with pytest.raises(ConfigurationError):
        registry.register(Cache())


def test_require_missing_names_type() -> None:
    with pytest.raises(ConfigurationError, match="Cache"):
        StateRegistry().require(Cache)


def test_headers_are_case_insensitive_and_keep_repeats() -> None:
    headers = Headers([("Accept", "text/html"), ("accept", "application/json"), ("X-A", "1")])
    assert headers["ACCEPT"] == "text/html"
    assert headers.getlist("accept") == ["text/html", "application/json"]
    assert list(headers) == ["accept", "x-a"]
    assert len(headers) == 2
    assert headers.get("missing") is None


def test_parse_cookies() -> None:
    assert parse_cookies("a=1; b=two") == {"a": "1", "b": "two"}
    assert parse_cookies(None) == {}


def test_request_parts_query_and_client_ip() -> None:
    parts = RequestParts(
        "get",
        "/search",
        query_string="q=a&q=b&empty=",
        headers={"X-Forwarded-For": " 10.1.1.1 , 10.0.0.2"},
        client=("192.0.2.1", 1234),
    )
    assert parts.method == "GET"
    assert parts.query == {"q": ["a", "b"], "empty": [""]}
    assert parts.client_ip() == "10.1.1.1"
    assert parts.client_ip(trust_proxy=False) == "192.0.2.1"


def test_body_can_be_taken_once() -> None:
    request = Request(RequestParts("POST", "/"), b"payload")
    assert request.take_body() == b"payload"
    assert request.body_consumed
    with pytest.raises(ApiError) as info:
        request.take_body()
    assert info.value.status == 500
    # head data stays readable after the body is gone
    assert request.method == "POST"


def test_request_from_scope() -> None:
    scope = {
        "type": "http",
        "method": "PUT",
        "path": "/items/1",
        "query_string": b"a=1",
        "headers": [(b"content-type", b"application/json")],
        "client": ("203.0.113.9", 5000),
    }
    request = Request.from_scope(scope, b"{}", path_params={"id": "1"}, route="/items/{id}")
    assert request.method == "PUT"
    assert request.headers["Content-Type"] == "application/json"
    assert request.query == {"a": ["1"]}
    assert request.path_params == {"id": "1"}
    assert request.parts.client_ip() == "203.0.113.9"
    assert request.parts.route == "/items/{id}"


def test_client_ip_skips_unparseable_forwarded_entry() -> None:
    parts = RequestParts(
        "GET",
        "/",
        headers={"X-Forwarded-For": "not-an-ip, 1.2.3.4"},
        client=("192.0.2.1", 1234),
    )
    assert parts.client_ip() == "192.0.2.1"

    ipv6 = RequestParts("GET", "/", headers={"X-Forwarded-For": "2001:db8::1"})
    assert ipv6.client_ip() == "2001:db8::1"

    unix = RequestParts("GET", "/", client=("unix-socket", 0))
    assert unix.client_ip() == "127.0.0.1"
