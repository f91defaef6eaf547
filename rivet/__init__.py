"""Rivet: a typed request pipeline for ASGI."""

__version__ = "0.1.0"

from .app import APIRouter, RivetApp
from .config import Settings, configure_logging
from .errors import ApiError, ConfigurationError, FieldError, ValidationError
from .extract import (
    Body,
    ClientIp,
    Cookies,
    Header,
    Json,
    Path,
    Query,
    State,
    Valid,
)
from .handler import MAX_EXTRACTORS, Handler
from .middleware import MetricsMiddleware, RequestLoggerMiddleware, TimeoutMiddleware
from .requests import Headers, Request, RequestParts
from .responses import (
    Accepted,
    Created,
    HTMLResponse,
    Html,
    JSONResponse,
    NoContent,
    PlainTextResponse,
    Redirect,
    RedirectResponse,
    Response,
    Status,
    StreamingResponse,
    into_response,
)
from .routing import Route, RouteMatch, Router
from .state import StateRegistry
from .testclient import Response as TestResponse
from .testclient import TestClient
from .validation import (
    Check,
    Each,
    Email,
    Length,
    OneOf,
    Range,
    Regex,
    Required,
    Url,
    ValidationResult,
    validate,
)

__all__ = [
    "__version__",
    "APIRouter",
    "Accepted",
    "ApiError",
    "Body",
    "Check",
    "ClientIp",
    "ConfigurationError",
    "Cookies",
    "Created",
    "Each",
    "Email",
    "FieldError",
    "HTMLResponse",
    "Handler",
    "Header",
    "Headers",
    "Html",
    "JSONResponse",
    "Json",
    "Length",
    "MAX_EXTRACTORS",
    "MetricsMiddleware",
    "NoContent",
    "OneOf",
    "Path",
    "PlainTextResponse",
    "Query",
    "Range",
    "Redirect",
    "RedirectResponse",
    "Regex",
    "Request",
    "RequestLoggerMiddleware",
    "RequestParts",
    "Required",
    "Response",
    "RivetApp",
    "Route",
    "RouteMatch",
    "Router",
    "Settings",
    "State",
    "StateRegistry",
    "Status",
    "StreamingResponse",
    "TestClient",
    "TestResponse",
    "TimeoutMiddleware",
    "Url",
    "Valid",
    "ValidationError",
    "ValidationResult",
    "configure_logging",
    "into_response",
    "validate",
]
