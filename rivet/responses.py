"""Response classes and conversion of handler return values."""

from __future__ import annotations

import json
import logging
from http import HTTPStatus
from http.cookies import SimpleCookie
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Mapping

from pydantic_core import PydanticSerializationError, to_jsonable_python

from .errors import ApiError

logger = logging.getLogger("rivet")


class Response:
    """HTTP response container with header and cookie management."""

    media_type: str | None = None

    def __init__(
        self,
        content: str | bytes | None = b"",
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        media_type: str | None = None,
    ) -> None:
        if isinstance(content, str):
            self.body = content.encode()
            default_type: str | None = "text/plain; charset=utf-8"
        else:
            self.body = content or b""
            default_type = "application/octet-stream" if self.body else None
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.media_type = media_type or self.media_type or default_type
        if self.media_type:
            self.headers.setdefault("content-type", self.media_type)
        self._cookies: SimpleCookie = SimpleCookie()

    @property
    def streaming(self) -> bool:
        return False

    def set_header(self, key: str, value: str) -> None:
        """Set or replace a header."""
        self.headers[key.lower()] = value

    def set_cookie(self, key: str, value: str, **params: Any) -> None:
        """Attach a cookie to the response."""
        self._cookies[key] = value
        for k, v in params.items():
            self._cookies[key][k.replace("_", "-")] = str(v)

    def raw_headers(self) -> list[tuple[bytes, bytes]]:
        """Headers encoded for an ASGI ``http.response.start`` message."""

        raw = [(k.encode("latin-1"), v.encode("latin-1")) for k, v in self.headers.items()]
        for morsel in self._cookies.values():
            raw.append((b"set-cookie", morsel.OutputString().encode("latin-1")))
        return raw

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(status_code={self.status_code})"


class JSONResponse(Response):
    """Serialize content to JSON."""

    media_type = "application/json"

    def __init__(
        self,
        content: Any,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        body = json.dumps(
            to_jsonable_python(content), separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")
        super().__init__(body, status_code=status_code, headers=headers)


class PlainTextResponse(Response):
    """Return plain text content."""

    media_type = "text/plain; charset=utf-8"

    def __init__(
        self,
        content: str,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(content, status_code=status_code, headers=headers)


class HTMLResponse(Response):
    """Return HTML content."""

    media_type = "text/html; charset=utf-8"

    def __init__(
        self,
        content: str,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(content, status_code=status_code, headers=headers)


class RedirectResponse(Response):
    """Redirect to a different URL."""

    def __init__(
        self,
        url: str,
        *,
        status_code: int = 307,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        hdrs = {"location": url, **(headers or {})}
        super().__init__(b"", status_code=status_code, headers=hdrs)


class StreamingResponse(Response):
    """Return streaming content from a sync or async iterator."""

    def __init__(
        self,
        content: Iterable[bytes | str] | AsyncIterable[bytes | str],
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        media_type: str | None = None,
    ) -> None:
        super().__init__(
            b"",
            status_code=status_code,
            headers=headers,
            media_type=media_type or "application/octet-stream",
        )
        self._content = content

    @property
    def streaming(self) -> bool:
        return True

    async def body_iter(self) -> AsyncIterator[bytes]:
        """Yield response body chunks."""

        if hasattr(self._content, "__aiter__"):
            async for chunk in self._content:  # type: ignore[union-attr]
                yield chunk.encode() if isinstance(chunk, str) else chunk
        else:
            for chunk in self._content:  # type: ignore[union-attr]
                yield chunk.encode() if isinstance(chunk, str) else chunk


def error_response(error: ApiError, *, production: bool = False) -> JSONResponse:
    """Render *error* as the structured JSON error body."""

    return JSONResponse(
        error.to_payload(production=production),
        status_code=error.status,
        headers=error.headers,
    )


# -- return-value wrappers ---------------------------------------------------


class IntoResponse:
    """Values that know how to become a :class:`Response`."""

    def into_response(self) -> Response:
        raise NotImplementedError


class Status(IntoResponse):
    """Bare status code with an empty body."""

    def __init__(self, code: int | HTTPStatus) -> None:
        self.code = int(code)

    def into_response(self) -> Response:
        return Response(status_code=self.code)


class Json(IntoResponse):
    def __init__(self, value: Any, status: int = 200, headers: Mapping[str, str] | None = None) -> None:
        self.value = value
        self.status = status
        self.headers = headers

    def into_response(self) -> Response:
        return json_response(self.value, self.status, self.headers)


class Created(IntoResponse):
    """201 with an optional JSON body and ``Location`` header."""

    def __init__(self, value: Any = None, location: str | None = None) -> None:
        self.value = value
        self.location = location

    def into_response(self) -> Response:
        headers = {"location": self.location} if self.location else None
        if self.value is None:
            return Response(status_code=201, headers=headers)
        return json_response(self.value, 201, headers)


class Accepted(IntoResponse):
    def __init__(self, value: Any = None) -> None:
        self.value = value

    def into_response(self) -> Response:
        if self.value is None:
            return Response(status_code=202)
        return json_response(self.value, 202)


class NoContent(IntoResponse):
    def into_response(self) -> Response:
        return Response(status_code=204)


class Html(IntoResponse):
    def __init__(self, content: str, status: int = 200) -> None:
        self.content = content
        self.status = status

    def into_response(self) -> Response:
        return HTMLResponse(self.content, status_code=self.status)


class Redirect(IntoResponse):
    def __init__(self, url: str, status: int = 302) -> None:
        self.url = url
        self.status = status

    @classmethod
    def to(cls, url: str) -> "Redirect":
        return cls(url, 302)

    @classmethod
    def permanent(cls, url: str) -> "Redirect":
        return cls(url, 301)

    @classmethod
    def temporary(cls, url: str) -> "Redirect":
        return cls(url, 307)

    def into_response(self) -> Response:
        return RedirectResponse(self.url, status_code=self.status)


def _check_status(status: Any) -> int:
    if isinstance(status, bool) or not isinstance(status, int) or not 100 <= status <= 599:
        raise ApiError.internal().with_internal(f"invalid response status {status!r}")
    return int(status)


def into_response(value: Any, *, production: bool = False) -> Response:
    """Convert a handler return value into a :class:`Response`.

    Values that cannot be serialized become a 500 ``internal_error``.
    """

    if isinstance(value, Response):
        return value
    if isinstance(value, ApiError):
        return error_response(value, production=production)
    if isinstance(value, IntoResponse):
        return value.into_response()
    if value is None:
        return Response()
    if isinstance(value, HTTPStatus):
        return Response(status_code=int(value))
    if isinstance(value, str):
        return PlainTextResponse(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Response(bytes(value), media_type="application/octet-stream")
    if isinstance(value, tuple):
        if len(value) == 2:
            status, body = value
            headers: Mapping[str, str] = {}
        elif len(value) == 3:
            status, headers, body = value
        else:
            raise ApiError.internal().with_internal(
                f"cannot convert tuple of length {len(value)} into a response"
            )
        response = into_response(body, production=production)
        response.status_code = _check_status(status)
        for key, header_value in dict(headers).items():
            response.set_header(key, header_value)
        return response
    return json_response(value)


def json_response(
    value: Any, status_code: int = 200, headers: Mapping[str, str] | None = None
) -> JSONResponse:
    """Build a JSON response, mapping serialization failures to a 500."""

    try:
        return JSONResponse(value, status_code=status_code, headers=headers)
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        error = ApiError.internal("Failed to serialize response").with_internal(
            f"{type(value).__name__} is not JSON serializable: {exc}"
        )
        logger.error(
            "Response serialization failed [error_id=%s]: %s", error.error_id, exc
        )
        raise error from exc


__all__ = [
    "Accepted",
    "Created",
    "HTMLResponse",
    "Html",
    "IntoResponse",
    "JSONResponse",
    "Json",
    "NoContent",
    "PlainTextResponse",
    "Redirect",
    "RedirectResponse",
    "Response",
    "Status",
    "StreamingResponse",
    "error_response",
    "into_response",
    "json_response",
]
