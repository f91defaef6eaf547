"""Simple in-memory HTTP client for RivetApp."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import unquote, urlencode

from .app import RivetApp


@dataclass
class Response:
    """Container for HTTP response data."""

    status_code: int
    text: str
    headers: Mapping[str, str]
    content: bytes
    chunks: list[bytes] = field(default_factory=list)

    def json(self) -> Any:
        """Return the body parsed as JSON."""
        return json.loads(self.text)


class TestClient:
    """Execute requests against a ``RivetApp`` without a server."""

    __test__ = False  # prevent Pytest from treating this as a test case

    def __init__(
        self,
        app: RivetApp,
        *,
        client: tuple[str, int] = ("127.0.0.1", 50000),
    ) -> None:
        self.app = app
        self.client = client
        app.build()

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        body: bytes | str | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        chunk_size: int | None = None,
        disconnect: bool = False,
    ) -> Response | None:
        """Send an HTTP request and return the response.

        ``chunk_size`` splits the body over several ``http.request`` messages;
        ``disconnect`` sends ``http.disconnect`` instead of the body, in which
        case nothing is returned.
        """
        if body is not None and json_body is not None:
            raise ValueError("provide either json_body or body")
        hdrs = {k.lower(): v for k, v in (headers or {}).items()}
        if json_body is not None:
            body_bytes = json.dumps(json_body).encode()
            hdrs.setdefault("content-type", "application/json")
        elif isinstance(body, str):
            body_bytes = body.encode()
        else:
            body_bytes = body or b""
        if body_bytes:
            hdrs.setdefault("content-length", str(len(body_bytes)))

        raw_path, _, query = path.partition("?")
        if params:
            extra = urlencode(params, doseq=True)
            query = f"{query}&{extra}" if query else extra

        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method.upper(),
            "scheme": "http",
            "path": unquote(raw_path),
            "raw_path": raw_path.encode(),
            "query_string": query.encode(),
            "root_path": "",
            "headers": [(k.encode("latin-1"), v.encode("latin-1")) for k, v in hdrs.items()],
            "client": self.client,
            "server": ("testserver", 80),
        }

        if disconnect:
            messages = [{"type": "http.disconnect"}]
        elif chunk_size and body_bytes:
            pieces = [
                body_bytes[i : i + chunk_size]
                for i in range(0, len(body_bytes), chunk_size)
            ]
            messages = [
                {"type": "http.request", "body": piece, "more_body": i < len(pieces) - 1}
                for i, piece in enumerate(pieces)
            ]
        else:
            messages = [{"type": "http.request", "body": body_bytes, "more_body": False}]

        sent: list[dict[str, Any]] = []

        async def receive() -> dict[str, Any]:
            if messages:
                return messages.pop(0)
            return {"type": "http.disconnect"}

        async def send(message: dict[str, Any]) -> None:
            sent.append(message)

        asyncio.run(self.app(scope, receive, send))

        start = next((m for m in sent if m["type"] == "http.response.start"), None)
        if start is None:
            return None
        resp_headers: dict[str, str] = {}
        for key, value in start.get("headers", []):
            name = key.decode("latin-1").lower()
            text_value = value.decode("latin-1")
            if name in resp_headers:
                resp_headers[name] = f"{resp_headers[name]}, {text_value}"
            else:
                resp_headers[name] = text_value
        chunks = [m.get("body", b"") for m in sent if m["type"] == "http.response.body"]
        content = b"".join(chunks)
        try:
            text = content.decode()
        except UnicodeDecodeError:
            text = content.decode("latin1")
        return Response(start["status"], text, resp_headers, content, chunks)

    def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a GET request."""
        return self.request("GET", path, params=params, headers=headers)

    def head(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a HEAD request."""
        return self.request("HEAD", path, params=params, headers=headers)

    def delete(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a DELETE request."""
        return self.request("DELETE", path, params=params, headers=headers)

    def post(
        self,
        path: str,
        json_body: Any = None,
        *,
        body: bytes | str | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a POST request."""
        return self.request(
            "POST", path, json_body=json_body, body=body, params=params, headers=headers
        )

    def put(
        self,
        path: str,
        json_body: Any = None,
        *,
        body: bytes | str | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a PUT request."""
        return self.request(
            "PUT", path, json_body=json_body, body=body, params=params, headers=headers
        )

    def patch(
        self,
        path: str,
        json_body: Any = None,
        *,
        body: bytes | str | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a PATCH request."""
        return self.request(
            "PATCH", path, json_body=json_body, body=body, params=params, headers=headers
        )


__all__ = ["Response", "TestClient"]
