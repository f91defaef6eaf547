"""Request middleware.

A middleware is any ``async def mw(request, call_next) -> Response``
callable. The first one added to an app runs outermost.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from .errors import ApiError
from .requests import Request
from .responses import Response

if TYPE_CHECKING:  # pragma: no cover
    from .app import RivetApp

CallNext = Callable[[Request], Awaitable[Response]]


async def _call(call_next: Callable[[Request], Any], request: Request) -> Response:
    response = call_next(request)
    if inspect.isawaitable(response):
        response = await response
    return response


class RequestLoggerMiddleware:
    """Emit one structured JSON log line per request."""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        *,
        level: int = logging.INFO,
    ) -> None:
        self.logger = logger or logging.getLogger("rivet.request")
        self.level = level

    def _ensure_request_id(self, request: Request) -> str:
        """Return a stable request identifier, generating one if absent."""

        request_id = getattr(request.scope, "request_id", None)
        if not request_id:
            request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
            request.scope.request_id = request_id
        return request_id

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        request_id = self._ensure_request_id(request)
        start = time.perf_counter()
        try:
            response = await _call(call_next, request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            self._log_failure(request, duration_ms, exc)
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        self._log_success(request, response, duration_ms)
        response.headers.setdefault("x-request-id", request_id)
        return response

    def _base_payload(self, request: Request, duration_ms: float) -> dict[str, Any]:
        return {
            "event": "request",
            "method": request.method,
            "path": request.path,
            "route": request.parts.route or request.path,
            "duration_ms": round(duration_ms, 3),
            "request_id": self._ensure_request_id(request),
        }

    def _log_success(
        self, request: Request, response: Response, duration_ms: float
    ) -> None:
        payload = self._base_payload(request, duration_ms)
        payload["status"] = response.status_code
        self.logger.log(self.level, json.dumps(payload, separators=(",", ":")))

    def _log_failure(
        self, request: Request, duration_ms: float, exc: Exception
    ) -> None:
        payload = self._base_payload(request, duration_ms)
        if isinstance(exc, ApiError):
            payload["status"] = exc.status
            payload["error_type"] = exc.error_type
            self.logger.log(self.level, json.dumps(payload, separators=(",", ":")))
            return
        payload["status"] = 500
        payload["error"] = f"{exc.__class__.__name__}: {exc}"
        self.logger.error(json.dumps(payload, separators=(",", ":")), exc_info=True)


class MetricsMiddleware:
    """Count requests and observe latency with ``prometheus_client``.

    Each instance owns a :class:`CollectorRegistry` unless one is passed in,
    so several apps can live in one process.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self.requests_total = Counter(
            "rivet_requests_total",
            "Total HTTP requests",
            ["method", "route", "status"],
            registry=self.registry,
        )
        self.request_duration = Histogram(
            "rivet_request_duration_seconds",
            "HTTP request duration",
            ["method", "route"],
            registry=self.registry,
        )

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        route = request.parts.route or request.path
        start = time.perf_counter()
        status = 500
        try:
            response = await _call(call_next, request)
            status = response.status_code
            return response
        except ApiError as exc:
            status = exc.status
            raise
        finally:
            self.request_duration.labels(request.method, route).observe(
                time.perf_counter() - start
            )
            self.requests_total.labels(request.method, route, str(status)).inc()

    def exposition(self) -> Response:
        """Render the registry in the Prometheus text format."""

        return Response(
            generate_latest(self.registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    def mount(self, app: "RivetApp", path: str = "/metrics") -> None:
        """Register this middleware and a scrape endpoint at *path*."""

        app.add_middleware(self)

        async def metrics() -> Response:
            return self.exposition()

        app.add_route(path, metrics, methods=["GET"], name="metrics")


class TimeoutMiddleware:
    """Fail with 408 when the wrapped stack takes longer than *seconds*."""

    def __init__(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        self.seconds = seconds

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        try:
            return await asyncio.wait_for(_call(call_next, request), self.seconds)
        except asyncio.TimeoutError:
            raise ApiError.request_timeout(self.seconds) from None


__all__ = [
    "CallNext",
    "MetricsMiddleware",
    "RequestLoggerMiddleware",
    "TimeoutMiddleware",
]
