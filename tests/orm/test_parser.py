# tests/orm/test_parser.py
from __future__ import annotations

import pytest

from railcar.exceptions import ParseError
from railcar.orm import ActiveRecord, AssociationKind, BootstrapContext, LengthRange, parse_definitions
from railcar.orm.parser import build_definition, parse_length


# -----------------------------
# Associations
# -----------------------------


def test_associations_keep_declaration_order_has_many_first():
    class Author(ActiveRecord):
        belongs_to = ["account"]
        has_many = ["books", ("reviews", {"foreign_key": "writer_id"})]

    d = build_definition(Author)

    assert [(a.kind, a.target_name) for a in d.associations] == [
        (AssociationKind.HAS_MANY, "books"),
        (AssociationKind.HAS_MANY, "reviews"),
        (AssociationKind.BELONGS_TO, "account"),
    ]
    assert d.associations[1].options == {"foreign_key": "writer_id"}


def test_thunk_with_empty_options_equals_plain_string():
    class A(ActiveRecord):
        has_many = [lambda: ("posts", {})]

    class B(ActiveRecord):
        has_many = ["posts"]

    assert build_definition(A).associations == build_definition(B).associations


def test_whole_declaration_may_be_a_thunk():
    class A(ActiveRecord):
        has_many = lambda: ["posts", "comments"]  # noqa: E731

    d = build_definition(A)
    assert [a.target_name for a in d.associations] == ["posts", "comments"]


def test_accessor_name_uses_as_option():
    class A(ActiveRecord):
        belongs_to = [("user", {"as": "owner"})]

    (spec,) = build_definition(A).associations
    assert spec.accessor_name == "owner"
    assert spec.target_name == "user"


def test_malformed_association_entry_is_ignored_in_lenient_mode():
    class A(ActiveRecord):
        has_many = ["posts", 42, ("comments", "not-a-mapping")]

    d = build_definition(A)
    assert [a.target_name for a in d.associations] == ["posts"]


def test_malformed_association_entry_raises_in_strict_mode():
    class A(ActiveRecord):
        has_many = ["posts", 42]

    with pytest.raises(ParseError, match="A: has_many entry 42"):
        build_definition(A, strict=True)


def test_unknown_association_option_raises_only_in_strict_mode():
    class A(ActiveRecord):
        has_many = [("posts", {"dependent": "destroy"})]

    assert build_definition(A).associations[0].options == {"dependent": "destroy"}
    with pytest.raises(ParseError, match="unknown options"):
        build_definition(A, strict=True)


# -----------------------------
# Validations
# -----------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("5..10", LengthRange(minimum=5, maximum=10)),
        (" 2 .. 3 ", LengthRange(minimum=2, maximum=3)),
        ("7", LengthRange.exactly(7)),
        (7, LengthRange.exactly(7)),
        ((1, 4), LengthRange(minimum=1, maximum=4)),
        ({"in": "1..2"}, LengthRange(minimum=1, maximum=2)),
        ({"is": 3}, LengthRange.exactly(3)),
        ({"minimum": 2}, LengthRange(minimum=2)),
        ({"maximum": 9}, LengthRange(maximum=9)),
    ],
)
def test_parse_length_shapes(raw, expected):
    assert parse_length(raw) == expected


@pytest.mark.parametrize("raw", ["a..b", "10..5", True, {"between": "1..2"}, 1.5])
def test_parse_length_rejects_garbage(raw):
    with pytest.raises(Exception):
        parse_length(raw)


def test_validations_presence_and_length():
    class User(ActiveRecord):
        validates = {"name": {"presence": True, "length": {"in": "5..10"}}}

    rule = build_definition(User).validations["name"]
    assert rule.presence_required is True
    assert rule.length_range == LengthRange(minimum=5, maximum=10)


def test_top_level_in_is_length_shorthand():
    class User(ActiveRecord):
        validates = {"code": {"in": "2..4"}}

    rule = build_definition(User).validations["code"]
    assert rule.presence_required is False
    assert rule.length_range == LengthRange(minimum=2, maximum=4)


def test_validations_accept_pairs():
    class User(ActiveRecord):
        validates = [("name", {"presence": True}), ("email", {"length": "3..50"})]

    v = build_definition(User).validations
    assert set(v) == {"name", "email"}
    assert v["email"].length_range == LengthRange(minimum=3, maximum=50)


def test_bad_length_is_dropped_leniently_and_rejected_strictly():
    class User(ActiveRecord):
        validates = {"name": {"presence": True, "length": "x..y"}}

    rule = build_definition(User).validations["name"]
    assert rule.presence_required is True
    assert rule.length_range is None

    with pytest.raises(ParseError, match="length for 'name' is invalid"):
        build_definition(User, strict=True)


def test_unknown_validation_key_raises_in_strict_mode():
    class User(ActiveRecord):
        validates = {"name": {"uniqueness": True}}

    assert build_definition(User).validations["name"].presence_required is False
    with pytest.raises(ParseError, match="unknown keys"):
        build_definition(User, strict=True)


# -----------------------------
# Callbacks
# -----------------------------


def test_after_commit_on_create_resolves_to_after_create_commit():
    class User(ActiveRecord):
        callbacks = {"after_commit": [("notify_user", {"on": "create"})]}

    assert build_definition(User).callbacks == {"after_create_commit": "notify_user"}


def test_camel_case_after_commit_resolves_to_same_event():
    class User(ActiveRecord):
        callbacks = {"afterCommit": [("notify_user", {"on": "create"})]}

    assert build_definition(User).callbacks == {"after_create_commit": "notify_user"}


def test_after_commit_defaults_to_create():
    class User(ActiveRecord):
        callbacks = {"after_commit": ["audit"]}

    assert build_definition(User).callbacks == {"after_create_commit": "audit"}


def test_plain_hooks_and_last_binding_wins():
    class User(ActiveRecord):
        callbacks = {
            "beforeSave": ["normalize"],
            "after_commit": [("first", {"on": "update"}), ("second", {"on": "update"})],
            "after_destroy": "cleanup",
        }

    assert build_definition(User).callbacks == {
        "before_save": "normalize",
        "after_update_commit": "second",
        "after_destroy": "cleanup",
    }


def test_tuple_of_method_names_is_a_sequence_of_bindings():
    class User(ActiveRecord):
        callbacks = {
            "before_save": ("normalize", "stamp"),
            "after_commit": ("notify", {"on": "update"}),
        }

    assert build_definition(User, strict=True).callbacks == {
        "before_save": "stamp",
        "after_update_commit": "notify",
    }


def test_unknown_on_value_raises_in_strict_mode():
    class User(ActiveRecord):
        callbacks = {"after_commit": [("notify", {"on": "publish"})]}

    with pytest.raises(ParseError, match="'on' must be one of"):
        build_definition(User, strict=True)


def test_unknown_hook_event_raises_in_strict_mode():
    class User(ActiveRecord):
        callbacks = {"around_save": ["wrap"]}

    with pytest.raises(ParseError, match="unknown lifecycle hook 'around_save'"):
        build_definition(User, strict=True)


# -----------------------------
# Registry integration
# -----------------------------


def test_parse_definitions_is_idempotent():
    class User(ActiveRecord):
        has_many = ["posts"]
        validates = {"name": {"presence": True}}

    ctx = BootstrapContext()
    first = parse_definitions(ctx, User)
    snapshot = dict(ctx.registry)

    # mutating the declaration after parsing must not be re-derived
    User.has_many = ["comments"]
    second = parse_definitions(ctx, User)

    assert second is first
    assert dict(ctx.registry) == snapshot
    assert ctx.state(User).definition_parsed is True
    assert [a.target_name for a in ctx.registry["User"].associations] == ["posts"]


def test_parse_definitions_uses_context_strictness():
    class User(ActiveRecord):
        validates = {"name": {"uniqueness": True}}

    with pytest.raises(ParseError):
        parse_definitions(BootstrapContext(strict=True), User)

    ctx = BootstrapContext()
    parse_definitions(ctx, User)
    assert "User" in ctx.registry


def test_separate_contexts_do_not_share_registries():
    class User(ActiveRecord):
        pass

    a, b = BootstrapContext(), BootstrapContext()
    parse_definitions(a, User)
    assert "User" in a.registry
    assert "User" not in b.registry
    assert b.state(User).definition_parsed is False
