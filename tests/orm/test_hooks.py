# tests/orm/test_hooks.py
from __future__ import annotations

from types import SimpleNamespace

import pytest

from railcar.exceptions import HookError, ParseError, ValidationError
from railcar.orm import LengthRange, ValidationRule, build_hooks, build_validators
from railcar.orm.hooks import run_validators


class Thing:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def touch(self) -> None:
        self.calls.append("touch")

    def explode(self) -> None:
        raise RuntimeError("boom")

    async def later(self) -> None:
        pass


# -----------------------------
# Validators
# -----------------------------


def _name_validator():
    rule = ValidationRule(presence_required=True, length_range=LengthRange(minimum=5, maximum=10))
    return build_validators(Thing, {"name": rule})["name"]


@pytest.mark.parametrize("name", ["abcde", "abcdefghij", "JoeSmith"])
def test_length_range_accepts_bounds(name):
    _name_validator()(SimpleNamespace(name=name))


@pytest.mark.parametrize("name", ["abcd", "abcdefghijk", "Joe"])
def test_length_range_rejects_outside(name):
    with pytest.raises(ValidationError) as ei:
        _name_validator()(SimpleNamespace(name=name))
    assert ei.value.errors == {"name": "name length must be between 5 and 10"}


@pytest.mark.parametrize("name", ["", None])
def test_presence_rejects_empty(name):
    with pytest.raises(ValidationError, match="name can't be empty"):
        _name_validator()(SimpleNamespace(name=name))


def test_length_is_skipped_for_none_without_presence():
    rule = ValidationRule(length_range=LengthRange(minimum=2, maximum=3))
    build_validators(Thing, {"nick": rule})["nick"](SimpleNamespace(nick=None))


@pytest.mark.parametrize(
    "length_range, value, message",
    [
        (LengthRange(minimum=3), "ab", "code length must be at least 3"),
        (LengthRange(maximum=2), "abc", "code length must be at most 2"),
        (LengthRange.exactly(4), "abc", "code length must be exactly 4"),
    ],
)
def test_one_sided_and_exact_messages(length_range, value, message):
    check = build_validators(Thing, {"code": ValidationRule(length_range=length_range)})["code"]
    with pytest.raises(ValidationError) as ei:
        check(SimpleNamespace(code=value))
    assert ei.value.errors["code"] == message


def test_run_validators_collects_every_field():
    validators = build_validators(
        Thing,
        {
            "name": ValidationRule(presence_required=True),
            "email": ValidationRule(length_range=LengthRange(minimum=5)),
            "title": ValidationRule(presence_required=True),
        },
    )
    with pytest.raises(ValidationError) as ei:
        run_validators("Thing", validators, SimpleNamespace(name="", email="a@b", title="ok"))

    assert ei.value.model == "Thing"
    assert ei.value.errors == {
        "name": "name can't be empty",
        "email": "email length must be at least 5",
    }
    assert str(ei.value) == "name can't be empty; email length must be at least 5"


def test_run_validators_passes_valid_instance():
    validators = build_validators(Thing, {"name": ValidationRule(presence_required=True)})
    run_validators("Thing", validators, SimpleNamespace(name="x"))


# -----------------------------
# Hooks
# -----------------------------


def test_build_hooks_invokes_bound_method():
    hooks = build_hooks(Thing, {"after_create_commit": "touch"})
    t = Thing()
    hooks["after_create_commit"](t)
    assert t.calls == ["touch"]


def test_unknown_hook_method_fails_at_registration():
    with pytest.raises(ParseError, match="defines no such method"):
        build_hooks(Thing, {"before_save": "missing"})


def test_coroutine_hook_method_is_rejected():
    with pytest.raises(ParseError, match="must be synchronous"):
        build_hooks(Thing, {"before_save": "later"})


def test_hook_exceptions_are_wrapped_in_hook_error():
    hooks = build_hooks(Thing, {"before_save": "explode"})
    with pytest.raises(HookError) as ei:
        hooks["before_save"](Thing())

    err = ei.value
    assert (err.model, err.event, err.method) == ("Thing", "before_save", "explode")
    assert isinstance(err.__cause__, RuntimeError)
