"""Compile endpoint callables into uniform request handlers."""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import typing
from typing import Any, Callable, Mapping

from .config import Settings
from .errors import ApiError, ConfigurationError
from .extract import Extractor, OptionalParam, PathParam, StateParam, resolve_extractor
from .requests import Request
from .responses import Response, into_response

logger = logging.getLogger("rivet")

MAX_EXTRACTORS = 16

ExceptionHandler = Callable[[Request, Exception], Any]


def lookup_exception_handler(
    handlers: Mapping[type, ExceptionHandler], exc: BaseException
) -> ExceptionHandler | None:
    """Return the handler registered for the closest class in ``type(exc).__mro__``.

    For an :class:`ApiError` the walk stops at ``ApiError`` itself, so a
    catch-all ``Exception`` handler never replaces the structured error body.
    """

    for cls in type(exc).__mro__:
        if cls in handlers:
            return handlers[cls]
        if cls is ApiError:
            break
    return None


class Handler:
    """A route endpoint with its extractors resolved once at registration."""

    def __init__(
        self,
        func: Callable[..., Any],
        extractors: list[Extractor],
        settings: Settings | None = None,
    ) -> None:
        self.func = func
        self.extractors = extractors
        self.settings = settings or Settings()
        self.name = getattr(func, "__qualname__", repr(func))
        self._is_coroutine = inspect.iscoroutinefunction(func)
        self._head = [e for e in extractors if not e.consumes_body]
        self._body = next((e for e in extractors if e.consumes_body), None)

    @classmethod
    def from_callable(
        cls,
        func: Callable[..., Any],
        path_params: tuple[str, ...] = (),
        settings: Settings | None = None,
    ) -> "Handler":
        """Inspect *func* and build its extractor list.

        Raises :class:`ConfigurationError` for signatures the pipeline cannot
        serve: variadic parameters, more than :data:`MAX_EXTRACTORS`
        parameters, two body consumers or path parameters the route does not
        capture.
        """

        signature = inspect.signature(func)
        try:
            hints = typing.get_type_hints(func, include_extras=True)
        except NameError as exc:
            raise ConfigurationError(
                f"cannot resolve annotations of {func.__qualname__}: {exc}"
            ) from exc

        params = list(signature.parameters.values())
        if len(params) > MAX_EXTRACTORS:
            raise ConfigurationError(
                f"{func.__qualname__} declares {len(params)} parameters; "
                f"at most {MAX_EXTRACTORS} extractors are supported"
            )
        extractors: list[Extractor] = []
        for param in params:
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                raise ConfigurationError(
                    f"{func.__qualname__}: variadic parameter `{param.name}` is not supported"
                )
            annotation = hints.get(param.name, inspect.Parameter.empty)
            extractor = resolve_extractor(param, annotation, path_params)
            target = extractor.inner if isinstance(extractor, OptionalParam) else extractor
            if isinstance(target, PathParam) and target.key not in path_params:
                raise ConfigurationError(
                    f"{func.__qualname__}: path parameter `{target.key}` "
                    "is not captured by the route"
                )
            extractors.append(extractor)

        body = [e.name for e in extractors if e.consumes_body]
        if len(body) > 1:
            raise ConfigurationError(
                f"{func.__qualname__}: only one parameter may consume the request "
                f"body, found {', '.join(body)}"
            )
        return cls(func, extractors, settings)

    @property
    def required_state(self) -> tuple[type, ...]:
        return tuple(e.state_type for e in self.extractors if isinstance(e, StateParam))

    async def _resolve(self, request: Request) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        for extractor in self._head:
            kwargs[extractor.name] = await extractor.extract(request, self.settings)
        if self._body is not None:
            kwargs[self._body.name] = await self._body.extract(request, self.settings)
        return kwargs

    async def _call(self, kwargs: dict[str, Any]) -> Any:
        if self._is_coroutine:
            return await self.func(**kwargs)
        result = await asyncio.to_thread(functools.partial(self.func, **kwargs))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def __call__(
        self,
        request: Request,
        exception_handlers: Mapping[type, ExceptionHandler] | None = None,
    ) -> Response:
        """Run extractors, call the endpoint and convert its result.

        ``ApiError`` propagates to the caller. Any other exception is passed
        to a matching entry of *exception_handlers* or becomes a 500.
        """

        kwargs = await self._resolve(request)
        try:
            result = await self._call(kwargs)
            return into_response(result, production=self.settings.is_production)
        except ApiError:
            raise
        except Exception as exc:
            custom = lookup_exception_handler(exception_handlers or {}, exc)
            if custom is not None:
                outcome = custom(request, exc)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                return into_response(outcome, production=self.settings.is_production)
            error = ApiError.internal().with_internal(f"{type(exc).__name__}: {exc}")
            logger.error(
                "Unhandled exception in %s [error_id=%s]",
                self.name,
                error.error_id,
                exc_info=exc,
            )
            raise error from exc

    def __repr__(self) -> str:
        return f"Handler({self.name}, extractors={self.extractors!r})"


__all__ = ["Handler", "MAX_EXTRACTORS", "lookup_exception_handler"]
