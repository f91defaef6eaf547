"""Declarative field rules evaluated after a body has been deserialized.

Rules live in ``typing.Annotated`` metadata::

    class SignUp(BaseModel):
        email: Annotated[str, Email()]
        name: Annotated[str, Length(min=2, max=40)]
        tags: Annotated[list[str], Each(Length(max=10))] = []

:func:`validate` walks fields in declaration order and collects every
failure; it never stops at the first one.
"""

from __future__ import annotations

import dataclasses
import re
import types
import typing
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Iterable, Mapping, Union

from pydantic import BaseModel

from .errors import FieldError, ValidationError

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
URL_PATTERN = re.compile(r"^(https?|ftp)://[^\s/$.?#].[^\s]*$")


@dataclass(frozen=True)
class Failure:
    code: str
    message: str
    params: dict[str, Any] | None = None


class Rule:
    """Base class for field rules; subclasses implement :meth:`check`."""

    message: str | None = None
    applies_to_none = False

    def check(self, value: Any) -> Failure | None:
        raise NotImplementedError

    def _fail(self, code: str, default: str, **params: Any) -> Failure:
        params = {k: v for k, v in params.items() if v is not None}
        return Failure(code, self.message or default, params or None)


@dataclass(frozen=True)
class Email(Rule):
    message: str | None = None

    def check(self, value: Any) -> Failure | None:
        if isinstance(value, str) and EMAIL_PATTERN.match(value):
            return None
        return self._fail("email", "Invalid email format")


@dataclass(frozen=True)
class Length(Rule):
    """Character count for strings, item count for collections."""

    min: int | None = None
    max: int | None = None
    message: str | None = None

    def check(self, value: Any) -> Failure | None:
        size = len(value)
        if self.min is not None and size < self.min:
            return self._fail(
                "length",
                f"Length must be at least {self.min} characters",
                min=self.min,
                max=self.max,
                actual=size,
            )
        if self.max is not None and size > self.max:
            return self._fail(
                "length",
                f"Length must be at most {self.max} characters",
                min=self.min,
                max=self.max,
                actual=size,
            )
        return None


@dataclass(frozen=True)
class Range(Rule):
    min: float | None = None
    max: float | None = None
    message: str | None = None

    def check(self, value: Any) -> Failure | None:
        if self.min is not None and value < self.min:
            return self._fail(
                "range",
                f"Value must be at least {self.min}",
                min=self.min,
                max=self.max,
                actual=value,
            )
        if self.max is not None and value > self.max:
            return self._fail(
                "range",
                f"Value must be at most {self.max}",
                min=self.min,
                max=self.max,
                actual=value,
            )
        return None


@dataclass(frozen=True)
class Regex(Rule):
    pattern: str
    message: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def check(self, value: Any) -> Failure | None:
        if isinstance(value, str) and self._compiled.search(value):  # type: ignore[attr-defined]
            return None
        return self._fail("regex", "Value does not match pattern", pattern=self.pattern)


@dataclass(frozen=True)
class Url(Rule):
    message: str | None = None

    def check(self, value: Any) -> Failure | None:
        if isinstance(value, str) and URL_PATTERN.match(value):
            return None
        return self._fail("url", "Invalid URL format")


@dataclass(frozen=True)
class Required(Rule):
    """Reject ``None``, blank strings and empty collections."""

    message: str | None = None
    applies_to_none = True

    def check(self, value: Any) -> Failure | None:
        if value is None:
            empty = True
        elif isinstance(value, str):
            empty = not value.strip()
        elif isinstance(value, (list, tuple, set, frozenset, dict)):
            empty = not value
        else:
            empty = False
        if empty:
            return self._fail("required", "This field is required")
        return None


@dataclass(frozen=True)
class OneOf(Rule):
    choices: tuple[Any, ...]
    message: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "choices", tuple(self.choices))

    def check(self, value: Any) -> Failure | None:
        if value in self.choices:
            return None
        listed = ", ".join(str(c) for c in self.choices)
        return self._fail("one_of", f"Value must be one of: {listed}")


@dataclass(frozen=True)
class Check(Rule):
    """Custom predicate; *func* returns ``True`` when the value is acceptable."""

    func: Callable[[Any], bool]
    code: str = "custom"
    message: str | None = None

    def check(self, value: Any) -> Failure | None:
        if self.func(value):
            return None
        return self._fail(self.code, "Invalid value")


class Each(Rule):
    """Apply *rules* to every item of a list-valued field."""

    def __init__(self, *rules: Rule) -> None:
        self.rules = rules

    def __repr__(self) -> str:
        return f"Each{self.rules!r}"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Each) and other.rules == self.rules

    def __hash__(self) -> int:
        return hash(self.rules)

    def check(self, value: Any) -> Failure | None:  # pragma: no cover - see _run_rules
        return None


class ValidationResult(list):
    """Ordered list of :class:`FieldError`; empty means valid."""

    @property
    def ok(self) -> bool:
        return not self

    def raise_for_errors(self) -> None:
        if self:
            raise ValidationError(list(self))


def unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    """Split ``Optional[T]`` (or ``T | None``) into ``(T, True)``."""

    if typing.get_origin(annotation) in (Union, types.UnionType):
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(annotation)) == 2:
            return args[0], True
    return annotation, False


def _field_rules(annotation: Any, metadata: Iterable[Any] = ()) -> list[Any]:
    rules = list(metadata)
    if typing.get_origin(annotation) is Annotated:
        annotation, *extra = typing.get_args(annotation)
        rules.extend(extra)
    inner, optional = unwrap_optional(annotation)
    if optional and typing.get_origin(inner) is Annotated:
        rules.extend(typing.get_args(inner)[1:])
    return rules


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def _model_fields(value: Any) -> list[tuple[str, list[Any]]] | None:
    if isinstance(value, BaseModel):
        return [
            (name, _field_rules(info.annotation, info.metadata))
            for name, info in type(value).model_fields.items()
        ]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        hints = typing.get_type_hints(type(value), include_extras=True)
        return [(f.name, _field_rules(hints.get(f.name))) for f in dataclasses.fields(value)]
    return None


def _run_rules(rules: Iterable[Any], value: Any, path: str, errors: list[FieldError]) -> None:
    for rule in rules:
        if isinstance(rule, Each):
            if value is None:
                continue
            for i, item in enumerate(value):
                _run_rules(rule.rules, item, f"{path}[{i}]", errors)
            continue
        if not isinstance(rule, Rule):
            continue
        if value is None and not rule.applies_to_none:
            continue
        failure = rule.check(value)
        if failure is not None:
            errors.append(FieldError(path, failure.code, failure.message, failure.params))


def _walk(value: Any, path: str, errors: list[FieldError]) -> None:
    fields = _model_fields(value)
    if fields is not None:
        for name, metadata in fields:
            field_value = getattr(value, name, None)
            field_path = _join(path, name)
            _run_rules(metadata, field_value, field_path, errors)
            _walk(field_value, field_path, errors)
        hook = getattr(value, "validate_model", None)
        if callable(hook):
            for error in hook() or ():
                if path:
                    error = FieldError(
                        _join(path, error.field), error.code, error.message, error.params
                    )
                errors.append(error)
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _walk(item, f"{path}[{i}]", errors)
    elif isinstance(value, Mapping):
        for key, item in value.items():
            _walk(item, _join(path, str(key)), errors)


def validate(value: Any) -> ValidationResult:
    """Run every declared rule on *value* and return all failures."""

    errors = ValidationResult()
    _walk(value, "", errors)
    return errors


__all__ = [
    "Check",
    "Each",
    "Email",
    "Length",
    "OneOf",
    "Range",
    "Regex",
    "Required",
    "Rule",
    "Url",
    "ValidationResult",
    "unwrap_optional",
    "validate",
]
