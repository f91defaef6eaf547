"""Request objects handed to extractors, middleware and handlers."""

from __future__ import annotations

import ipaddress
from http.cookies import CookieError, SimpleCookie
from types import SimpleNamespace
from typing import Any, Iterable, Iterator, Mapping
from urllib.parse import parse_qs

from .errors import ApiError
from .state import StateRegistry


class Headers(Mapping[str, str]):
    """Case-insensitive, read-only header mapping.

    Repeated headers keep every value; item access returns the first one.
    """

    def __init__(
        self, raw: Mapping[str, str] | Iterable[tuple[str, str]] | None = None
    ) -> None:
        items = raw.items() if isinstance(raw, Mapping) else (raw or ())
        self._items: list[tuple[str, str]] = [(k.lower(), v) for k, v in items]

    @classmethod
    def from_asgi(cls, raw: Iterable[tuple[bytes, bytes]]) -> "Headers":
        return cls((k.decode("latin-1"), v.decode("latin-1")) for k, v in raw)

    def __getitem__(self, key: str) -> str:
        lowered = key.lower()
        for name, value in self._items:
            if name == lowered:
                return value
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        seen: list[str] = []
        for name, _ in self._items:
            if name not in seen:
                seen.append(name)
        return iter(seen)

    def __len__(self) -> int:
        return len({name for name, _ in self._items})

    def getlist(self, key: str) -> list[str]:
        lowered = key.lower()
        return [value for name, value in self._items if name == lowered]

    def raw(self) -> list[tuple[str, str]]:
        return list(self._items)

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


def parse_cookies(header: str | None) -> dict[str, str]:
    if not header:
        return {}
    jar: SimpleCookie = SimpleCookie()
    try:
        jar.load(header)
    except CookieError:
        return {}
    return {key: morsel.value for key, morsel in jar.items()}


class RequestParts:
    """Head-only view of a request.

    Everything here is available before and after the body is read, so head
    extractors and middleware can run against it.
    """

    def __init__(
        self,
        method: str,
        path: str,
        *,
        query_string: str = "",
        headers: Headers | Mapping[str, str] | None = None,
        path_params: Mapping[str, str] | None = None,
        client: tuple[str, int] | None = None,
        state: StateRegistry | None = None,
        route: str | None = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.query_string = query_string
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)
        self.path_params = dict(path_params or {})
        self.client = client
        self.state = state if state is not None else StateRegistry()
        self.route = route
        self.scope = SimpleNamespace()
        self._query: dict[str, list[str]] | None = None
        self._cookies: dict[str, str] | None = None

    @property
    def query(self) -> dict[str, list[str]]:
        """Query parameters; repeated keys keep every value in order."""

        if self._query is None:
            self._query = parse_qs(self.query_string, keep_blank_values=True)
        return self._query

    @property
    def cookies(self) -> dict[str, str]:
        if self._cookies is None:
            self._cookies = parse_cookies(self.headers.get("cookie"))
        return self._cookies

    def client_ip(self, trust_proxy: bool = True) -> str:
        """First parseable address of ``X-Forwarded-For``, the peer, or loopback."""

        if trust_proxy:
            forwarded = self.headers.get("x-forwarded-for")
            if forwarded:
                try:
                    return str(ipaddress.ip_address(forwarded.split(",")[0].strip()))
                except ValueError:
                    pass
        if self.client:
            try:
                return str(ipaddress.ip_address(self.client[0]))
            except ValueError:
                pass
        return "127.0.0.1"


class Request:
    """A request whose body can be taken exactly once."""

    def __init__(self, parts: RequestParts, body: bytes = b"") -> None:
        self.parts = parts
        self._body: bytes | None = body

    @classmethod
    def from_scope(
        cls,
        scope: Mapping[str, Any],
        body: bytes,
        *,
        state: StateRegistry | None = None,
        path_params: Mapping[str, str] | None = None,
        route: str | None = None,
    ) -> "Request":
        query = scope.get("query_string", b"")
        if isinstance(query, bytes):
            query = query.decode("latin-1")
        client = scope.get("client")
        parts = RequestParts(
            scope.get("method", "GET"),
            scope.get("path", "/"),
            query_string=query,
            headers=Headers.from_asgi(scope.get("headers", [])),
            path_params=path_params,
            client=tuple(client) if client else None,
            state=state,
            route=route,
        )
        return cls(parts, body)

    @property
    def method(self) -> str:
        return self.parts.method

    @property
    def path(self) -> str:
        return self.parts.path

    @property
    def headers(self) -> Headers:
        return self.parts.headers

    @property
    def path_params(self) -> dict[str, str]:
        return self.parts.path_params

    @property
    def query(self) -> dict[str, list[str]]:
        return self.parts.query

    @property
    def state(self) -> StateRegistry:
        return self.parts.state

    @property
    def scope(self) -> SimpleNamespace:
        return self.parts.scope

    @property
    def body_consumed(self) -> bool:
        return self._body is None

    def take_body(self) -> bytes:
        """Return the body and mark it consumed."""

        if self._body is None:
            raise ApiError.internal("request body already consumed").with_internal(
                "take_body() called twice for one request"
            )
        body, self._body = self._body, None
        return body


__all__ = ["Headers", "Request", "RequestParts", "parse_cookies"]
