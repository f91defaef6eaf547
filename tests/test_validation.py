from dataclasses import dataclass, field
from typing import Annotated, Optional

import pytest
from pydantic import BaseModel

from rivet.errors import FieldError, ValidationError
from rivet.validation import (
    Check,
    Each,
    Email,
    Length,
    OneOf,
    Range,
    Regex,
    Required,
    Url,
    validate,
)


class Address(BaseModel):
    street: Annotated[str, Required()]
    city: Annotated[str, Length(min=2)]


class LineItem(BaseModel):
    name: Annotated[str, Length(min=1, max=5)]
    quantity: Annotated[int, Range(min=1)]


class Order(BaseModel):
    email: Annotated[str, Email()]
    age: Annotated[int, Range(min=18, max=150)]
    address: Address
    items: list[LineItem] = []
    labels: dict[str, Address] = {}


def _codes(errors: list[FieldError]) -> list[tuple[str, str]]:
    return [(e.field, e.code) for e in errors]


def test_collects_every_failure_in_declaration_order() -> None:
    order = Order(
        email="not-an-email",
        age=200,
        address=Address(street="Main", city="Springfield"),
    )
    errors = validate(order)
    assert _codes(errors) == [("email", "email"), ("age", "range")]
    assert errors[0].message == "Invalid email format"
    assert errors[1].message == "Value must be at most 150"
    assert errors[1].params == {"min": 18, "max": 150, "actual": 200}


def test_nested_list_and_dict_paths() -> None:
    order = Order(
        email="a@example.com",
        age=30,
        address=Address(street=" ", city="X"),
        items=[LineItem(name="ok", quantity=1), LineItem(name="toolong", quantity=0)],
        labels={"home": Address(street="A", city="B")},
    )
    errors = validate(order)
    assert _codes(errors) == [
        ("address.street", "required"),
        ("address.city", "length"),
        ("items[1].name", "length"),
        ("items[1].quantity", "range"),
        ("labels.home.city", "length"),
    ]


def test_valid_value_has_no_errors() -> None:
    order = Order(email="a@example.com", age=30, address=Address(street="A", city="Berlin"))
    result = validate(order)
    assert result == []
    assert result.ok
    result.raise_for_errors()


def test_raise_for_errors_raises_422() -> None:
    order = Order(email="bad", age=30, address=Address(street="A", city="Berlin"))
    with pytest.raises(ValidationError) as info:
        validate(order).raise_for_errors()
    assert info.value.status == 422
    assert info.value.error_type == "validation_error"
    assert [f.field for f in info.value.fields] == ["email"]


def test_length_messages() -> None:
    assert Length(min=3).check("ab").message == "Length must be at least 3 characters"
    assert Length(max=2).check("abc").message == "Length must be at most 2 characters"
    assert Length(min=1, max=3).check("abc") is None
    assert Length(max=1).check([1, 2]).code == "length"


def test_range_messages() -> None:
    assert Range(min=1).check(0).message == "Value must be at least 1"
    assert Range(max=1.5).check(2).message == "Value must be at most 1.5"
    assert Range(min=0, max=10).check(10) is None


def test_email_and_url() -> None:
    assert Email().check("user@example.com") is None
    assert Email().check("user@") is not None
    assert Url().check("https://example.com/path") is None
    assert Url().check("ftp://files.example.com") is None
    failure = Url().check("example.com")
    assert (failure.code, failure.message) == ("url", "Invalid URL format")


def test_regex_reports_pattern() -> None:
    rule = Regex(r"^[a-z]+$")
    assert rule.check("abc") is None
    failure = rule.check("ABC")
    assert failure.code == "regex"
    assert failure.message == "Value does not match pattern"
    assert failure.params == {"pattern": r"^[a-z]+$"}


def test_required_rejects_blank_and_empty() -> None:
    rule = Required()
    assert rule.check("  ").code == "required"
    assert rule.check([]).message == "This field is required"
    assert rule.check(None) is not None
    assert rule.check("x") is None
    assert rule.check(0) is None


def test_one_of() -> None:
    rule = OneOf(("red", "green"))
    assert rule.check("red") is None
    failure = rule.check("blue")
    assert failure.code == "one_of"
    assert failure.message == "Value must be one of: red, green"


def test_custom_messages_override_defaults() -> None:
    assert Email(message="Please enter a valid email").check("x").message == (
        "Please enter a valid email"
    )
    assert Length(min=5, message="too short").check("a").message == "too short"


def test_check_and_each_on_dataclass() -> None:
    @dataclass
    class Team:
        name: Annotated[str, Check(lambda v: v.istitle(), code="title_case", message="Use title case")]
        members: Annotated[list[str], Length(min=1), Each(Email())] = field(default_factory=list)

    errors = validate(Team(name="rivet", members=["a@example.com", "nope"]))
    assert _codes(errors) == [("name", "title_case"), ("members[1]", "email")]
    assert errors[0].message == "Use title case"


def test_none_skips_rules_except_required() -> None:
    class Profile(BaseModel):
        website: Annotated[Optional[str], Url()] = None
        nickname: Annotated[Optional[str], Required()] = None

    errors = validate(Profile())
    assert _codes(errors) == [("nickname", "required")]


def test_rules_inside_optional_run_when_value_present() -> None:
    class Profile(BaseModel):
        email: Optional[Annotated[str, Email()]] = None
        nick: Annotated[str, Length(min=3)] | None = None

    errors = validate(Profile(email="not-an-email", nick="x"))
    assert _codes(errors) == [("email", "email"), ("nick", "length")]
    assert validate(Profile()) == []


def test_rules_inside_optional_on_dataclass() -> None:
    @dataclass
    class Contact:
        site: Optional[Annotated[str, Url()]] = None
        code: Annotated[Optional[Annotated[str, Regex(r"^[A-Z]{2}$")]], Required()] = None

    assert _codes(validate(Contact(site="nope", code="abc"))) == [
        ("site", "url"),
        ("code", "regex"),
    ]
    assert _codes(validate(Contact())) == [("code", "required")]


def test_model_hook_runs_after_field_rules() -> None:
    class Booking(BaseModel):
        start: Annotated[int, Range(min=0)]
        end: int

        def validate_model(self):
            if self.end < self.start:
                yield FieldError("end", "order", "end must not precede start")

    errors = validate(Booking(start=-1, end=-5))
    assert _codes(errors) == [("start", "range"), ("end", "order")]


def test_nested_model_hook_is_prefixed() -> None:
    class Window(BaseModel):
        start: int
        end: int

        def validate_model(self):
            if self.end < self.start:
                return [FieldError("end", "order", "end must not precede start")]
            return []

    class Schedule(BaseModel):
        window: Window

    errors = validate(Schedule(window=Window(start=5, end=1)))
    assert _codes(errors) == [("window.end", "order")]
