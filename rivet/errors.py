"""Structured error type shared by every failure path of the pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

INTERNAL_ERROR_MESSAGE = "An internal error occurred"


@dataclass
class FieldError:
    """A single field-level failure (``address.city``, ``tags[2]``)."""

    field: str
    code: str
    message: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "field": self.field,
            "code": self.code,
            "message": self.message,
        }
        if self.params:
            data["params"] = dict(self.params)
        return data


def new_error_id() -> str:
    """Return a fresh correlation id for server-side faults."""

    return f"err_{uuid.uuid4().hex}"


class ApiError(Exception):
    """Error carrying an HTTP status, a machine-readable kind and a message.

    This is the only type the pipeline serializes as an error body. Extractors,
    validators and handlers raise it; unexpected exceptions are wrapped into
    :meth:`internal` at the invocation boundary.
    """

    def __init__(
        self,
        status: int,
        error_type: str,
        message: str,
        *,
        fields: Iterable[FieldError] | None = None,
        internal: str | None = None,
        headers: Mapping[str, str] | None = None,
        error_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.error_type = error_type
        self.message = message
        self.fields = list(fields) if fields is not None else None
        self.internal = internal
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        if error_id is None and status >= 500:
            error_id = new_error_id()
        self.error_id = error_id

    def __str__(self) -> str:
        return f"{self.error_type}: {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(status={self.status}, "
            f"error_type={self.error_type!r}, message={self.message!r})"
        )

    def with_internal(self, details: str) -> "ApiError":
        """Attach details kept out of production responses."""

        self.internal = details
        return self

    def to_payload(self, *, production: bool = False) -> dict[str, Any]:
        """Return the JSON body for this error.

        In production the message of a server fault is masked; the
        correlation id is always kept so clients can quote it.
        """

        message = self.message
        if production and self.status >= 500:
            message = INTERNAL_ERROR_MESSAGE
        payload: dict[str, Any] = {
            "status": self.status,
            "error_type": self.error_type,
            "message": message,
        }
        if self.error_id is not None:
            payload["error_id"] = self.error_id
        if self.fields is not None:
            payload["fields"] = [f.to_dict() for f in self.fields]
        if not production and self.internal:
            payload["internal"] = self.internal
        return payload

    @classmethod
    def bad_request(cls, message: str) -> "ApiError":
        return cls(400, "bad_request", message)

    @classmethod
    def invalid_json(cls, message: str) -> "ApiError":
        return cls(400, "invalid_json", message)

    @classmethod
    def unauthorized(cls, message: str = "Unauthorized") -> "ApiError":
        return cls(401, "unauthorized", message)

    @classmethod
    def forbidden(cls, message: str = "Forbidden") -> "ApiError":
        return cls(403, "forbidden", message)

    @classmethod
    def not_found(cls, message: str = "Not Found") -> "ApiError":
        return cls(404, "not_found", message)

    @classmethod
    def method_not_allowed(cls, allowed: Iterable[str]) -> "ApiError":
        allow = ", ".join(allowed)
        return cls(
            405,
            "method_not_allowed",
            "Method Not Allowed",
            headers={"allow": allow},
        )

    @classmethod
    def request_timeout(cls, timeout: float) -> "ApiError":
        millis = int(timeout * 1000)
        return cls(
            408,
            "request_timeout",
            f"Request exceeded timeout of {millis}ms",
        )

    @classmethod
    def conflict(cls, message: str) -> "ApiError":
        return cls(409, "conflict", message)

    @classmethod
    def payload_too_large(cls, limit: int) -> "ApiError":
        return cls(
            413,
            "payload_too_large",
            f"Request body exceeds limit of {limit} bytes",
        )

    @classmethod
    def unsupported_media_type(cls, message: str) -> "ApiError":
        return cls(415, "unsupported_media_type", message)

    @classmethod
    def validation(
        cls, fields: Iterable[FieldError], message: str = "Request validation failed"
    ) -> "ValidationError":
        return ValidationError(fields, message)

    @classmethod
    def internal(cls, message: str = "Internal Server Error") -> "ApiError":
        return cls(500, "internal_error", message)

    @classmethod
    def service_unavailable(cls, message: str) -> "ApiError":
        return cls(503, "service_unavailable", message)


class ValidationError(ApiError):
    """422 failure listing every offending field."""

    def __init__(
        self,
        fields: Iterable[FieldError],
        message: str = "Request validation failed",
    ) -> None:
        super().__init__(422, "validation_error", message, fields=fields)


class ConfigurationError(Exception):
    """Invalid application setup detected before serving any request."""


__all__ = [
    "ApiError",
    "ConfigurationError",
    "FieldError",
    "INTERNAL_ERROR_MESSAGE",
    "ValidationError",
    "new_error_id",
]
