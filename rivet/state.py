"""Type-keyed registry of shared application state."""

from __future__ import annotations

from typing import Any, Iterator, TypeVar

from .errors import ConfigurationError

T = TypeVar("T")


class StateRegistry:
    """Map a type to exactly one instance.

    The registry is writable while the application is configured and frozen
    by :meth:`freeze`; lookups after that point never mutate it, so the same
    instance is shared by every concurrent request.
    """

    def __init__(self) -> None:
        self._values: dict[type, Any] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, value: Any, as_type: type | None = None) -> None:
        if self._frozen:
            raise ConfigurationError("cannot register state after the app is built")
        key = as_type if as_type is not None else type(value)
        if key in self._values:
            raise ConfigurationError(f"state of type {key.__name__} already registered")
        self._values[key] = value

    def freeze(self) -> None:
        self._frozen = True

    def get(self, key: type[T]) -> T | None:
        return self._values.get(key)

    def require(self, key: type[T]) -> T:
        try:
            return self._values[key]
        except KeyError:
            raise ConfigurationError(
                f"state of type {getattr(key, '__name__', key)} is not registered"
            ) from None

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[type]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)


__all__ = ["StateRegistry"]
