"""ASGI application tying routing, extraction and response conversion together."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List
from urllib.parse import quote

import uvicorn

from .config import Settings, configure_logging
from .errors import ApiError, ConfigurationError
from .handler import ExceptionHandler, Handler, lookup_exception_handler
from .requests import Request
from .responses import Response, error_response, into_response
from .routing import Route, Router, join_path, param_names, validate_path
from .state import StateRegistry

logger = logging.getLogger("rivet")

Scope = Dict[str, Any]
Receive = Callable[[], Awaitable[Dict[str, Any]]]
Send = Callable[[Dict[str, Any]], Awaitable[None]]
EventHandler = Callable[[], Awaitable[None] | None]
Middleware = Callable[[Request, Callable[[Request], Awaitable[Response]]], Any]


class ClientDisconnect(Exception):
    """The client went away before the request body was read."""


class _Registrar:
    """Decorator surface shared by :class:`RivetApp` and :class:`APIRouter`."""

    def add_route(
        self,
        path: str,
        endpoint: Callable[..., Any],
        methods: Iterable[str] = ("GET",),
        *,
        name: str | None = None,
        tags: list[str] | None = None,
        summary: str | None = None,
    ) -> None:
        raise NotImplementedError

    def route(
        self,
        path: str,
        methods: Iterable[str] = ("GET",),
        *,
        name: str | None = None,
        tags: list[str] | None = None,
        summary: str | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Register the decorated function for *methods* on *path*."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.add_route(
                path, func, methods, name=name, tags=tags, summary=summary
            )
            return func

        return decorator

    def get(self, path: str, **meta: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ["GET"], **meta)

    def post(self, path: str, **meta: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ["POST"], **meta)

    def put(self, path: str, **meta: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ["PUT"], **meta)

    def patch(self, path: str, **meta: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ["PATCH"], **meta)

    def delete(self, path: str, **meta: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ["DELETE"], **meta)

    def head(self, path: str, **meta: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ["HEAD"], **meta)

    def options(self, path: str, **meta: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(path, ["OPTIONS"], **meta)


class APIRouter(_Registrar):
    """Group of routes attached to an app with :meth:`RivetApp.include_router`."""

    def __init__(self, prefix: str = "", tags: list[str] | None = None) -> None:
        if prefix:
            validate_path(prefix)
        self.prefix = prefix.rstrip("/")
        self.tags = list(tags or [])
        self.routes: List[Dict[str, Any]] = []

    def add_route(
        self,
        path: str,
        endpoint: Callable[..., Any],
        methods: Iterable[str] = ("GET",),
        *,
        name: str | None = None,
        tags: list[str] | None = None,
        summary: str | None = None,
    ) -> None:
        self.routes.append(
            {
                "path": join_path(self.prefix, path),
                "endpoint": endpoint,
                "methods": [m.upper() for m in methods],
                "name": name,
                "tags": list(dict.fromkeys(self.tags + list(tags or []))),
                "summary": summary,
            }
        )

    def include_router(self, router: "APIRouter", prefix: str = "") -> None:
        """Nest *router* under *prefix*."""

        for entry in router.routes:
            self.add_route(
                join_path(prefix, entry["path"]),
                entry["endpoint"],
                entry["methods"],
                name=entry["name"],
                tags=entry["tags"],
                summary=entry["summary"],
            )


def _routing_path(scope: Scope) -> str:
    raw = scope.get("raw_path")
    if raw:
        return raw.decode("latin-1").split("?", 1)[0]
    return quote(str(scope.get("path", "/")))


class RivetApp(_Registrar):
    """Typed request pipeline exposed as an ASGI 3 application."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings if settings is not None else Settings.from_env()
        self.router = Router()
        self.exception_handlers: Dict[type, ExceptionHandler] = {}
        self._state = StateRegistry()
        self._middleware: List[Middleware] = []
        self._startup: List[EventHandler] = []
        self._shutdown: List[EventHandler] = []
        self._built = False

    # -- configuration -----------------------------------------------------

    @property
    def built(self) -> bool:
        return self._built

    @property
    def routes(self) -> list[Route]:
        return self.router.routes()

    @property
    def registry(self) -> StateRegistry:
        return self._state

    def _ensure_mutable(self) -> None:
        if self._built:
            raise ConfigurationError("application is already built; register before build()")

    def add_route(
        self,
        path: str,
        endpoint: Callable[..., Any],
        methods: Iterable[str] = ("GET",),
        *,
        name: str | None = None,
        tags: list[str] | None = None,
        summary: str | None = None,
    ) -> None:
        """Compile *endpoint* and register it for every method in *methods*."""

        self._ensure_mutable()
        validate_path(path)
        handler = Handler.from_callable(endpoint, param_names(path), self.settings)
        for method in methods:
            self.router.add_route(
                path,
                method,
                handler,
                name=name or getattr(endpoint, "__name__", None),
                tags=tags,
                summary=summary,
            )

    def include_router(self, router: APIRouter, prefix: str = "") -> None:
        """Attach routes from *router* under *prefix*."""

        for entry in router.routes:
            self.add_route(
                join_path(prefix, entry["path"]),
                entry["endpoint"],
                entry["methods"],
                name=entry["name"],
                tags=entry["tags"],
                summary=entry["summary"],
            )

    def state(self, value: Any, as_type: type | None = None) -> Any:
        """Share *value* with handlers declaring ``State[type(value)]``."""

        self._ensure_mutable()
        self._state.register(value, as_type)
        return value

    def add_middleware(self, middleware: Any, **options: Any) -> None:
        """Attach *middleware*; a class is instantiated with *options*."""

        self._ensure_mutable()
        if isinstance(middleware, type):
            middleware = middleware(**options)
        self._middleware.append(middleware)

    def middleware(self, typ: str) -> Callable[[Middleware], Middleware]:
        """Register the decorated function as ``http`` middleware."""

        if typ != "http":
            raise ValueError("only http middleware supported")

        def decorator(func: Middleware) -> Middleware:
            self.add_middleware(func)
            return func

        return decorator

    def add_exception_handler(
        self, exc_type: type[Exception], handler: ExceptionHandler
    ) -> None:
        """Register a custom *handler* for exceptions of type *exc_type*."""

        self._ensure_mutable()
        self.exception_handlers[exc_type] = handler

    def exception_handler(
        self, exc_type: type[Exception]
    ) -> Callable[[ExceptionHandler], ExceptionHandler]:
        def decorator(func: ExceptionHandler) -> ExceptionHandler:
            self.add_exception_handler(exc_type, func)
            return func

        return decorator

    def on_event(self, event: str) -> Callable[[EventHandler], EventHandler]:
        """Register a startup or shutdown handler."""

        self._ensure_mutable()
        if event not in ("startup", "shutdown"):
            raise ValueError(f"unknown event {event!r}")
        collection = self._startup if event == "startup" else self._shutdown

        def decorator(func: EventHandler) -> EventHandler:
            collection.append(func)
            return func

        return decorator

    def build(self) -> "RivetApp":
        """Check state requirements and freeze the application.

        Safe to call more than once.
        """

        if self._built:
            return self
        for route in self.router.routes():
            handler: Handler = route.endpoint
            for state_type in handler.required_state:
                if state_type not in self._state:
                    raise ConfigurationError(
                        f"{route.method} {route.path}: handler {handler.name} requires "
                        f"state of type {state_type.__name__}, which is not registered"
                    )
        self._state.freeze()
        self._built = True
        logger.info("Application built with %d routes", len(self.router.routes()))
        return self

    # -- lifecycle ---------------------------------------------------------

    async def _run_hooks(self, hooks: List[EventHandler]) -> None:
        for func in hooks:
            result = func()
            if inspect.isawaitable(result):
                await result

    async def startup(self) -> None:
        self.build()
        await self._run_hooks(self._startup)

    async def shutdown(self) -> None:
        await self._run_hooks(self._shutdown)

    def run(self, host: str = "127.0.0.1", port: int = 8000, **kwargs: Any) -> None:
        """Serve the application with uvicorn."""

        configure_logging(self.settings)
        self.build()
        kwargs.setdefault("log_level", self.settings.effective_log_level.lower())
        uvicorn.run(self, host=host, port=port, **kwargs)

    # -- ASGI --------------------------------------------------------------

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Dispatch ASGI *scope* to handlers."""

        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
        elif scope["type"] == "http":
            await self._handle_http(scope, receive, send)
        else:
            raise NotImplementedError(f"Unsupported scope type {scope['type']}")

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    await self.startup()
                except Exception as exc:
                    logger.exception("Application startup failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self._built:
            self.build()
        try:
            response = await self._dispatch(scope, receive)
        except ClientDisconnect:
            logger.debug("Client disconnected: %s %s", scope.get("method"), scope.get("path"))
            return
        await self._send(send, response, head=scope.get("method", "").upper() == "HEAD")

    async def _read_body(self, request: Request, receive: Receive) -> bytes:
        limit = self.settings.body_limit
        declared = request.headers.get("content-length")
        if declared is not None:
            try:
                length = int(declared)
            except ValueError:
                raise ApiError.bad_request("Invalid Content-Length header") from None
            if limit is not None and length > limit:
                raise ApiError.payload_too_large(limit)
        body = bytearray()
        more = True
        while more:
            message = await receive()
            if message["type"] == "http.disconnect":
                raise ClientDisconnect()
            body += message.get("body", b"")
            if limit is not None and len(body) > limit:
                raise ApiError.payload_too_large(limit)
            more = message.get("more_body", False)
        return bytes(body)

    async def _dispatch(self, scope: Scope, receive: Receive) -> Response:
        request = Request.from_scope(scope, b"", state=self._state)
        try:
            body = await self._read_body(request, receive)
            match = self.router.match(request.method, _routing_path(scope))
            if match.kind == "not_found":
                raise ApiError.not_found()
            if match.kind == "method_not_allowed":
                raise ApiError.method_not_allowed(match.allowed)
            route = match.route
            request = Request(request.parts, body)
            request.parts.path_params = match.params
            request.parts.route = route.path  # type: ignore[union-attr]
            return await self._run(request, route.endpoint)  # type: ignore[union-attr]
        except ApiError as exc:
            return await self._handle_error(request, exc)
        except ClientDisconnect:
            raise
        except Exception as exc:
            custom = lookup_exception_handler(self.exception_handlers, exc)
            if custom is not None:
                return await self._render_custom(custom, request, exc)
            error = ApiError.internal().with_internal(f"{type(exc).__name__}: {exc}")
            logger.error(
                "Unhandled exception in middleware [error_id=%s]",
                error.error_id,
                exc_info=exc,
            )
            return await self._handle_error(request, error)

    async def _run(self, request: Request, handler: Handler) -> Response:
        async def endpoint(req: Request) -> Response:
            try:
                return await handler(req, self.exception_handlers)
            except ApiError as exc:
                return await self._handle_error(req, exc)

        def wrap(mw: Middleware, nxt: Callable[[Request], Awaitable[Response]]):
            async def wrapped(req: Request) -> Response:
                result = mw(req, nxt)
                if inspect.isawaitable(result):
                    result = await result
                return into_response(result, production=self.settings.is_production)

            return wrapped

        call: Callable[[Request], Awaitable[Response]] = endpoint
        for mw in reversed(self._middleware):
            call = wrap(mw, call)

        timeout = self.settings.request_timeout
        if timeout is None:
            return await call(request)
        try:
            return await asyncio.wait_for(call(request), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Request timed out after %ss: %s %s", timeout, request.method, request.path
            )
            raise ApiError.request_timeout(timeout) from None

    async def _render_custom(
        self, custom: ExceptionHandler, request: Request, exc: Exception
    ) -> Response:
        outcome = custom(request, exc)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return into_response(outcome, production=self.settings.is_production)

    async def _handle_error(self, request: Request, exc: ApiError) -> Response:
        custom = lookup_exception_handler(self.exception_handlers, exc)
        if custom is not None:
            return await self._render_custom(custom, request, exc)
        if exc.status >= 500 and exc.__cause__ is None:
            logger.error(
                "Server error %s [error_id=%s]: %s",
                exc.status,
                exc.error_id,
                exc.internal or exc.message,
            )
        return error_response(exc, production=self.settings.is_production)

    async def _send(self, send: Send, response: Response, *, head: bool) -> None:
        headers = response.raw_headers()
        status = response.status_code
        if not response.streaming and status not in (204, 304) and status >= 200:
            if "content-length" not in response.headers:
                headers.append((b"content-length", str(len(response.body)).encode()))
        await send({"type": "http.response.start", "status": status, "headers": headers})
        if head or status in (204, 304):
            await send({"type": "http.response.body", "body": b""})
            return
        if response.streaming:
            async for chunk in response.body_iter():  # type: ignore[attr-defined]
                await send({"type": "http.response.body", "body": chunk, "more_body": True})
            await send({"type": "http.response.body", "body": b""})
            return
        await send({"type": "http.response.body", "body": response.body})


__all__ = ["APIRouter", "ClientDisconnect", "RivetApp"]
