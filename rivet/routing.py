"""Segment-trie router mapping ``{method, path}`` to registered routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator
from urllib.parse import unquote

from .errors import ConfigurationError

logger = logging.getLogger("rivet.routing")

HTTP_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE")

_LITERAL_EXTRA = set("-_.~*")


def validate_path(path: str) -> None:
    """Raise :class:`ConfigurationError` if *path* is not a valid route pattern."""

    if not path.startswith("/"):
        raise ConfigurationError(f"route path must start with '/', got: {path!r}")
    if "//" in path:
        raise ConfigurationError(
            f"route path contains empty segment (double slash): {path!r}"
        )
    depth = 0
    start = -1
    for i, ch in enumerate(path):
        if ch == "{":
            if depth:
                raise ConfigurationError(
                    f"nested braces are not allowed in route path at position {i}: {path!r}"
                )
            depth = 1
            start = i
        elif ch == "}":
            if not depth:
                raise ConfigurationError(
                    f"unmatched closing brace '}}' at position {i} in route path: {path!r}"
                )
            depth = 0
            name = path[start + 1 : i]
            if not name:
                raise ConfigurationError(
                    f"empty parameter name '{{}}' at position {start} in route path: {path!r}"
                )
            if not all(c.isalnum() or c == "_" for c in name):
                raise ConfigurationError(
                    f"invalid parameter name '{{{name}}}' at position {start}: {path!r}"
                )
            if name[0].isdigit():
                raise ConfigurationError(
                    f"parameter name '{{{name}}}' cannot start with a digit: {path!r}"
                )
        elif not depth and ch != "/" and not (ch.isalnum() or ch in _LITERAL_EXTRA):
            raise ConfigurationError(
                f"invalid character {ch!r} at position {i} in route path: {path!r}"
            )
    if depth:
        raise ConfigurationError(
            f"unclosed brace '{{' in route path (missing closing '}}'): {path!r}"
        )


def _split(path: str) -> list[str]:
    return path.split("/")[1:]


def _param_name(segment: str) -> str | None:
    if segment.startswith("{") and segment.endswith("}"):
        return segment[1:-1]
    if "{" in segment:
        raise ConfigurationError(
            f"parameters must span a whole path segment, got {segment!r}"
        )
    return None


def param_names(path: str) -> tuple[str, ...]:
    """Return capture names of *path* in declaration order."""

    names = []
    for segment in _split(path):
        name = _param_name(segment)
        if name is not None:
            names.append(name)
    return tuple(names)


def join_path(prefix: str, path: str) -> str:
    """Mount *path* under *prefix*; ``/`` under a prefix is the prefix itself."""

    prefix = prefix.rstrip("/")
    if not prefix:
        return path
    return prefix if path == "/" else prefix + path


def normalize_path(path: str) -> str:
    """Erase capture names so equivalent shapes compare equal."""

    parts = ["{}" if _param_name(s) is not None else s for s in _split(path)]
    return "/" + "/".join(parts)


@dataclass(frozen=True)
class Route:
    """Immutable route registration."""

    method: str
    path: str
    endpoint: Any
    param_names: tuple[str, ...] = ()
    name: str | None = None
    tags: tuple[str, ...] = ()
    summary: str | None = None


@dataclass
class RouteMatch:
    """Result of :meth:`Router.match`."""

    kind: str
    route: Route | None = None
    params: dict[str, str] = field(default_factory=dict)
    allowed: tuple[str, ...] = ()

    @classmethod
    def found(cls, route: Route, params: dict[str, str]) -> "RouteMatch":
        return cls("found", route=route, params=params)

    @classmethod
    def not_found(cls) -> "RouteMatch":
        return cls("not_found")

    @classmethod
    def method_not_allowed(cls, allowed: tuple[str, ...]) -> "RouteMatch":
        return cls("method_not_allowed", allowed=allowed)

    @property
    def is_found(self) -> bool:
        return self.kind == "found"


class _Node:
    __slots__ = ("literals", "param", "routes")

    def __init__(self) -> None:
        self.literals: dict[str, _Node] = {}
        self.param: _Node | None = None
        self.routes: dict[str, Route] = {}

    def allowed(self) -> set[str]:
        methods = set(self.routes)
        if "GET" in methods:
            methods.add("HEAD")
        return methods

    def lookup(self, method: str) -> Route | None:
        route = self.routes.get(method)
        if route is None and method == "HEAD":
            route = self.routes.get("GET")
        return route


class Router:
    """HTTP router with literal-over-parameter precedence."""

    def __init__(self, prefix: str = "") -> None:
        if prefix:
            validate_path(prefix)
            if "{" in prefix:
                raise ConfigurationError("router prefix cannot contain parameters")
        self._prefix = prefix.rstrip("/")
        self._root = _Node()
        self._routes: list[Route] = []

    @property
    def prefix(self) -> str:
        return self._prefix

    def add_route(
        self,
        path: str,
        method: str,
        endpoint: Any,
        *,
        name: str | None = None,
        tags: list[str] | tuple[str, ...] | None = None,
        summary: str | None = None,
    ) -> Route:
        """Register *endpoint* for *method* and *path*.

        Registering the same method twice for an equivalent path (capture
        names ignored) is a configuration error.
        """

        full_path = join_path(self._prefix, path)
        validate_path(full_path)
        method = method.upper()
        if method not in HTTP_METHODS:
            raise ConfigurationError(f"unsupported HTTP method {method!r}")
        names = param_names(full_path)
        if len(set(names)) != len(names):
            raise ConfigurationError(f"duplicate parameter names in {full_path!r}")

        node = self._root
        for segment in _split(full_path):
            if _param_name(segment) is not None:
                if node.param is None:
                    node.param = _Node()
                node = node.param
            else:
                node = node.literals.setdefault(segment, _Node())

        if method in node.routes:
            existing = node.routes[method]
            raise ConfigurationError(
                f"route conflict: {method} {full_path} overlaps "
                f"{existing.method} {existing.path}"
            )
        route = Route(
            method=method,
            path=full_path,
            endpoint=endpoint,
            param_names=names,
            name=name,
            tags=tuple(tags or ()),
            summary=summary,
        )
        node.routes[method] = route
        self._routes.append(route)
        logger.info("Route registered: %s %s", method, full_path)
        return route

    def _candidates(
        self, node: _Node, segments: list[str], idx: int, captured: list[str]
    ) -> Iterator[tuple[_Node, list[str]]]:
        if idx == len(segments):
            if node.routes:
                yield node, captured
            return
        segment = unquote(segments[idx])
        child = node.literals.get(segment)
        if child is not None:
            yield from self._candidates(child, segments, idx + 1, captured)
        if node.param is not None and segment:
            yield from self._candidates(
                node.param, segments, idx + 1, captured + [segment]
            )

    def match(self, method: str, path: str) -> RouteMatch:
        """Match *method* and the percent-encoded *path* to a route."""

        method = method.upper()
        segments = _split(path) if path.startswith("/") else _split("/" + path)
        allowed: set[str] = set()
        for node, captured in self._candidates(self._root, segments, 0, []):
            route = node.lookup(method)
            if route is not None:
                params = dict(zip(route.param_names, captured))
                logger.debug("Route matched: %s %s -> %s", method, path, route.path)
                return RouteMatch.found(route, params)
            allowed |= node.allowed()
        if allowed:
            return RouteMatch.method_not_allowed(tuple(sorted(allowed)))
        return RouteMatch.not_found()

    def routes(self) -> list[Route]:
        """Return all registered routes in registration order."""

        return list(self._routes)

    def include_router(self, router: "Router", prefix: str = "") -> None:
        """Copy routes from *router* under *prefix*."""

        for route in router.routes():
            self.add_route(
                join_path(prefix, route.path),
                route.method,
                route.endpoint,
                name=route.name,
                tags=route.tags,
                summary=route.summary,
            )


__all__ = [
    "HTTP_METHODS",
    "Route",
    "RouteMatch",
    "Router",
    "join_path",
    "normalize_path",
    "param_names",
    "validate_path",
]
