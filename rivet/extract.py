"""Parameter extractors.

A handler declares what it needs through its signature::

    async def update(id: Path[int], item: Valid[Item], db: State[Database]):
        ...

Each parameter resolves to one :class:`Extractor`. Head extractors read the
:class:`~rivet.requests.RequestParts` only; at most one body extractor may
consume the body.
"""

from __future__ import annotations

import dataclasses
import inspect
import json
import typing
from typing import Annotated, Any, Mapping

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .errors import ApiError, ConfigurationError, FieldError
from .requests import Headers, Request, RequestParts
from .responses import Json as JsonWrapper
from .validation import unwrap_optional, validate

_MISSING = inspect.Parameter.empty

JSON_CONTENT_TYPE_MESSAGE = "Expected request with `Content-Type: application/json`"


# -- markers -----------------------------------------------------------------


class Marker:
    """Base for ``Annotated`` metadata markers.

    Subscribing a marker class is shorthand for ``Annotated[T, Marker()]``.
    """

    def __init__(self, alias: str | None = None) -> None:
        self.alias = alias

    def __class_getitem__(cls, item: Any) -> Any:
        return Annotated[item, cls()]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(alias={self.alias!r})"


class Path(Marker):
    """Typed path capture."""


class Query(Marker):
    """Query-string value, or the whole query string when the type is a model."""


class Header(Marker):
    """Single request header; the name defaults to the parameter name with dashes."""


class Json(Marker, JsonWrapper):
    """JSON body extractor (``Json[Item]``) and JSON response (``Json(value)``)."""

    def __init__(
        self, value: Any = None, status: int = 200, headers: Mapping[str, str] | None = None
    ) -> None:
        JsonWrapper.__init__(self, value, status, headers)
        self.alias = None


class Valid(Marker):
    """JSON body deserialized and then checked with :func:`rivet.validation.validate`."""


class State(Marker):
    """Shared state looked up by type."""


class Body(bytes):
    """Raw request body."""


class Cookies(dict):
    """Cookies parsed from the ``Cookie`` header."""


class ClientIp(str):
    """Client address, honouring ``X-Forwarded-For`` when proxies are trusted."""


# -- helpers -----------------------------------------------------------------


def _is_model(tp: Any) -> bool:
    return isinstance(tp, type) and (
        issubclass(tp, BaseModel) or dataclasses.is_dataclass(tp)
    )


def _is_sequence(tp: Any) -> bool:
    return typing.get_origin(tp) in (list, tuple, set, frozenset)


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", repr(tp))


def field_path(loc: tuple[Any, ...]) -> str:
    """Render a pydantic error location as ``a.b[0].c``."""

    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path = f"{path}.{part}" if path else str(part)
    return path


def fields_from_pydantic(exc: PydanticValidationError, prefix: str = "") -> list[FieldError]:
    fields = []
    for err in exc.errors(include_url=False):
        path = field_path(tuple(err.get("loc", ())))
        if prefix:
            if not path or path.startswith("["):
                path = prefix + path
            else:
                path = f"{prefix}.{path}"
        fields.append(FieldError(path or "body", err["type"], err["msg"]))
    return fields


def _first_reason(exc: PydanticValidationError) -> str:
    errors = exc.errors(include_url=False)
    return errors[0]["msg"] if errors else str(exc)


def is_json_content_type(value: str | None) -> bool:
    if not value:
        return False
    media = value.split(";", 1)[0].strip().lower()
    return media == "application/json" or media.endswith("+json")


# -- extractors --------------------------------------------------------------


class Extractor:
    """Produce one handler argument from a request."""

    consumes_body = False

    def __init__(self, name: str, annotation: Any = Any, default: Any = _MISSING) -> None:
        self.name = name
        self.annotation = annotation
        self.default = default

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING

    async def extract(self, request: Request, settings: Settings) -> Any:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class PathParam(Extractor):
    def __init__(self, name: str, annotation: Any, alias: str | None = None) -> None:
        super().__init__(name, annotation)
        self.key = alias or name
        self.adapter: TypeAdapter[Any] = TypeAdapter(annotation)

    async def extract(self, request: Request, settings: Settings) -> Any:
        try:
            raw = request.path_params[self.key]
        except KeyError:
            raise ApiError.bad_request(f"Missing path parameter `{self.key}`") from None
        try:
            return self.adapter.validate_python(raw)
        except PydanticValidationError as exc:
            raise ApiError.bad_request(
                f"Invalid path parameter `{self.key}`: {_first_reason(exc)}"
            ) from None


class QueryParam(Extractor):
    """Scalar query value, repeated keys collected for sequence types."""

    def __init__(
        self, name: str, annotation: Any, default: Any = _MISSING, alias: str | None = None
    ) -> None:
        super().__init__(name, annotation, default)
        self.key = alias or name
        inner, self.optional = unwrap_optional(annotation)
        self.many = _is_sequence(inner)
        self.adapter: TypeAdapter[Any] = TypeAdapter(annotation)

    async def extract(self, request: Request, settings: Settings) -> Any:
        values = request.parts.query.get(self.key)
        if not values:
            if self.has_default:
                return self.default
            if self.optional:
                return None
            raise ApiError.validation(
                [FieldError(self.key, "missing", "Field required")]
            )
        raw: Any = values if self.many else values[0]
        try:
            return self.adapter.validate_python(raw)
        except PydanticValidationError as exc:
            raise ApiError.validation(fields_from_pydantic(exc, self.key)) from None


class QueryModel(Extractor):
    """Whole query string parsed into a model or dataclass."""

    def __init__(self, name: str, annotation: Any) -> None:
        super().__init__(name, annotation)
        self.adapter: TypeAdapter[Any] = TypeAdapter(annotation)
        self.list_fields = self._list_fields(annotation)

    @staticmethod
    def _list_fields(model: type) -> set[str]:
        if issubclass(model, BaseModel):
            hints = {n: f.annotation for n, f in model.model_fields.items()}
        else:
            hints = typing.get_type_hints(model)
        result = set()
        for field_name, hint in hints.items():
            inner, _ = unwrap_optional(hint)
            if _is_sequence(inner):
                result.add(field_name)
        return result

    async def extract(self, request: Request, settings: Settings) -> Any:
        data: dict[str, Any] = {}
        for key, values in request.parts.query.items():
            data[key] = values if key in self.list_fields else values[0]
        try:
            return self.adapter.validate_python(data)
        except PydanticValidationError as exc:
            raise ApiError.validation(fields_from_pydantic(exc)) from None


class HeaderParam(Extractor):
    def __init__(
        self, name: str, annotation: Any, default: Any = _MISSING, alias: str | None = None
    ) -> None:
        super().__init__(name, annotation, default)
        self.header = (alias or name.replace("_", "-")).lower()
        _, self.optional = unwrap_optional(annotation)
        self.adapter: TypeAdapter[Any] = TypeAdapter(annotation)

    async def extract(self, request: Request, settings: Settings) -> Any:
        raw = request.headers.get(self.header)
        if raw is None:
            if self.has_default:
                return self.default
            if self.optional:
                return None
            raise ApiError.bad_request(f"Missing required header: {self.header}")
        try:
            return self.adapter.validate_python(raw)
        except PydanticValidationError as exc:
            raise ApiError.bad_request(
                f"Invalid header `{self.header}`: {_first_reason(exc)}"
            ) from None


class HeadersParam(Extractor):
    async def extract(self, request: Request, settings: Settings) -> Headers:
        return request.headers


class CookiesParam(Extractor):
    async def extract(self, request: Request, settings: Settings) -> Cookies:
        return Cookies(request.parts.cookies)


class ClientIpParam(Extractor):
    async def extract(self, request: Request, settings: Settings) -> ClientIp:
        return ClientIp(request.parts.client_ip(settings.trust_proxy))


class PartsParam(Extractor):
    async def extract(self, request: Request, settings: Settings) -> RequestParts:
        return request.parts


class StateParam(Extractor):
    def __init__(self, name: str, state_type: type) -> None:
        super().__init__(name, state_type)
        self.state_type = state_type

    async def extract(self, request: Request, settings: Settings) -> Any:
        value = request.state.get(self.state_type)
        if value is None:
            raise ApiError.internal().with_internal(
                f"state of type {_type_name(self.state_type)} is not registered"
            )
        return value


class CustomHeadParam(Extractor):
    """Type providing ``from_request_parts(parts)``; may be a coroutine."""

    async def extract(self, request: Request, settings: Settings) -> Any:
        result = self.annotation.from_request_parts(request.parts)
        if inspect.isawaitable(result):
            result = await result
        return result


class CustomBodyParam(Extractor):
    """Type providing ``from_request(request)``; may be a coroutine."""

    consumes_body = True

    async def extract(self, request: Request, settings: Settings) -> Any:
        result = self.annotation.from_request(request)
        if inspect.isawaitable(result):
            result = await result
        return result


class RequestParam(Extractor):
    """The full request; the handler takes the body itself."""

    consumes_body = True

    async def extract(self, request: Request, settings: Settings) -> Request:
        return request


class RawBody(Extractor):
    consumes_body = True

    async def extract(self, request: Request, settings: Settings) -> Body:
        return Body(request.take_body())


class JsonBody(Extractor):
    """Deserialize a JSON body.

    Failure order: wrong content type (415), bad bytes (400 ``invalid_json``),
    schema mismatch (422).
    """

    consumes_body = True

    def __init__(self, name: str, annotation: Any) -> None:
        super().__init__(name, annotation)
        self.adapter: TypeAdapter[Any] = TypeAdapter(annotation)

    async def extract(self, request: Request, settings: Settings) -> Any:
        if not is_json_content_type(request.headers.get("content-type")):
            raise ApiError.unsupported_media_type(JSON_CONTENT_TYPE_MESSAGE)
        body = request.take_body()
        try:
            data = json.loads(body.decode("utf-8"))
        except UnicodeDecodeError:
            raise ApiError.invalid_json("Request body is not valid UTF-8") from None
        except json.JSONDecodeError as exc:
            raise ApiError.invalid_json(f"Failed to parse JSON body: {exc}") from None
        try:
            return self.adapter.validate_python(data)
        except PydanticValidationError as exc:
            raise ApiError.validation(fields_from_pydantic(exc)) from None


class ValidatedBody(JsonBody):
    async def extract(self, request: Request, settings: Settings) -> Any:
        value = await super().extract(request, settings)
        validate(value).raise_for_errors()
        return value


class OptionalParam(Extractor):
    """Run *inner* and yield ``None`` instead of failing."""

    def __init__(self, inner: Extractor) -> None:
        super().__init__(inner.name, inner.annotation, inner.default)
        self.inner = inner
        self.consumes_body = inner.consumes_body

    async def extract(self, request: Request, settings: Settings) -> Any:
        try:
            return await self.inner.extract(request, settings)
        except ApiError:
            return None

    def __repr__(self) -> str:
        return f"OptionalParam({self.inner!r})"


# -- resolution --------------------------------------------------------------


def _split_annotated(annotation: Any) -> tuple[Any, list[Any]]:
    if typing.get_origin(annotation) is Annotated:
        base, *metadata = typing.get_args(annotation)
        return base, metadata
    return annotation, []


def _is_explicit(annotation: Any) -> bool:
    _, metadata = _split_annotated(annotation)
    if any(isinstance(m, Marker) for m in metadata):
        return True
    return isinstance(annotation, type) and (
        hasattr(annotation, "from_request_parts") or hasattr(annotation, "from_request")
    )


def resolve_extractor(
    param: inspect.Parameter, annotation: Any, path_params: tuple[str, ...]
) -> Extractor:
    """Choose the extractor for one handler parameter.

    ``Optional[...]`` around a marker or a custom extractor type makes the
    parameter ``None`` when extraction fails.
    """

    inner, optional = unwrap_optional(annotation)
    if optional and _is_explicit(inner):
        return OptionalParam(_resolve(param.name, param.default, inner, path_params))
    return _resolve(param.name, param.default, annotation, path_params)


def _resolve(
    name: str, default: Any, annotation: Any, path_params: tuple[str, ...]
) -> Extractor:
    base, metadata = _split_annotated(annotation)
    marker = next((m for m in metadata if isinstance(m, Marker)), None)
    if isinstance(marker, Path):
        return PathParam(name, base, marker.alias)
    if isinstance(marker, Query):
        if _is_model(base):
            return QueryModel(name, base)
        return QueryParam(name, base, default, marker.alias)
    if isinstance(marker, Header):
        return HeaderParam(name, base, default, marker.alias)
    if isinstance(marker, Valid):
        return ValidatedBody(name, base)
    if isinstance(marker, Json):
        return JsonBody(name, base)
    if isinstance(marker, State):
        state_type, optional = unwrap_optional(base)
        if not isinstance(state_type, type):
            raise ConfigurationError(f"State parameter `{name}` must name a class")
        state = StateParam(name, state_type)
        return OptionalParam(state) if optional else state

    if base is RequestParts:
        return PartsParam(name, base)
    if base is Request:
        return RequestParam(name, base)
    if base is Headers:
        return HeadersParam(name, base)
    if base is Cookies:
        return CookiesParam(name, base)
    if base is ClientIp:
        return ClientIpParam(name, base)
    if base is Body or base is bytes:
        return RawBody(name, base)
    if isinstance(base, type) and hasattr(base, "from_request_parts"):
        return CustomHeadParam(name, base)
    if isinstance(base, type) and hasattr(base, "from_request"):
        return CustomBodyParam(name, base)
    if name in path_params:
        return PathParam(name, str if base is _MISSING else base)
    if _is_model(base):
        return JsonBody(name, base)
    return QueryParam(name, str if base is _MISSING else base, default)


__all__ = [
    "Body",
    "ClientIp",
    "Cookies",
    "Extractor",
    "Header",
    "Json",
    "JsonBody",
    "Marker",
    "OptionalParam",
    "Path",
    "Query",
    "QueryModel",
    "QueryParam",
    "RawBody",
    "State",
    "StateParam",
    "Valid",
    "ValidatedBody",
    "field_path",
    "fields_from_pydantic",
    "is_json_content_type",
    "resolve_extractor",
]
