# tests/orm/test_active_record.py
from __future__ import annotations

from datetime import datetime
from typing import List

import pytest

from railcar.exceptions import HookError, RailcarRuntimeError, RecordNotFound, SchemaError, ValidationError
from railcar.orm import ActiveRecord, bootstrap_models


@pytest.fixture
def blog(blog_engine, blog_models):
    bootstrap_models(blog_engine, models=list(blog_models))
    return blog_models


# -----------------------------
# End-to-end scenario
# -----------------------------


def test_invalid_user_is_rejected_and_no_hook_runs(blog, notified):
    User, _, _ = blog

    with pytest.raises(ValidationError) as ei:
        User.create(name="Joe")

    assert ei.value.errors == {"name": "name length must be between 5 and 10"}
    assert notified == []
    assert User.count() == 0


def test_valid_user_persists_and_notifies_once(blog, notified):
    User, _, _ = blog

    u = User.create(name="JoeSmith")

    assert u.id is not None
    assert not u.is_new_record
    assert u.is_persisted
    assert notified == ["JoeSmith"]
    assert User.find(u.id).name == "JoeSmith"

    # updates do not fire the create-commit hook
    u.update(email="joe@example.com")
    assert notified == ["JoeSmith"]


def test_associations_load_related_records(blog):
    User, Post, Comment = blog

    joe = User.create(name="JoeSmith")
    ann = User.create(name="AnnSmith")
    p1 = Post.create(user_id=joe.id, title="first")
    p2 = Post.create(user_id=joe.id, title="second")
    Post.create(user_id=ann.id, title="other")
    c1 = Comment.create(post_id=p1.id, body="nice")
    c2 = Comment.create(post_id=p2.id, body="meh")

    assert [p.title for p in joe.posts] == ["first", "second"]
    assert p1.user == joe
    assert [c.id for c in p1.comments] == [c1.id]
    assert [c.id for c in joe.comments] == [c1.id, c2.id]
    assert ann.comments == []
    assert c2.post.title == "second"


# -----------------------------
# CRUD
# -----------------------------


def test_new_instance_defaults_and_unknown_columns(blog):
    User, _, _ = blog

    u = User(name="JaneDoe")
    assert u.is_new_record
    assert u.id is None
    assert u.email is None
    assert u.to_dict() == {"id": None, "name": "JaneDoe", "email": None, "created_at": None, "updated_at": None}

    with pytest.raises(AttributeError, match="no columns \\['nickname'\\]"):
        User(nickname="x")
    with pytest.raises(AttributeError):
        _ = u.nickname


def test_timestamps_are_set(blog):
    User, _, _ = blog

    u = User.create(name="JaneDoe")
    fresh = User.find(u.id)
    assert isinstance(fresh.created_at, datetime)
    assert isinstance(fresh.updated_at, datetime)


def test_finders(blog):
    User, _, _ = blog

    a = User.create(name="Alice1", email="a@x")
    b = User.create(name="Bobby2", email="b@x")
    User.create(name="Carol3")

    assert User.find_by(email="b@x") == b
    assert User.find_by(email="zzz") is None
    assert [u.name for u in User.where(email=None)] == ["Carol3"]
    assert [u.id for u in User.where(id=[a.id, b.id])] == [a.id, b.id]
    assert [u.name for u in User.all(order_by="-name", limit=2)] == ["Carol3", "Bobby2"]
    assert User.count() == 3
    assert User.count(email="a@x") == 1
    # path parameters arrive as strings
    assert User.find(str(a.id)) == a


def test_find_missing_raises_record_not_found(blog):
    User, _, _ = blog
    with pytest.raises(RecordNotFound, match="Couldn't find User with id=99"):
        User.find(99)


def test_where_unknown_column_raises(blog):
    User, _, _ = blog
    with pytest.raises(SchemaError, match="no column 'nickname'"):
        User.where(nickname="x")


def test_save_update_reload_destroy(blog):
    User, _, _ = blog

    u = User.create(name="JaneDoe")
    u.name = "JaneRoe"
    u.save()
    assert User.find(u.id).name == "JaneRoe"

    other = User.find(u.id)
    other.update(email="jane@x")
    assert u.email is None
    u.reload()
    assert u.email == "jane@x"

    u.destroy()
    assert u.is_destroyed
    assert not u.is_new_record
    assert User.count() == 0
    with pytest.raises(RailcarRuntimeError, match="destroyed"):
        u.save()


def test_destroy_unsaved_record_raises(blog):
    User, _, _ = blog
    with pytest.raises(RailcarRuntimeError, match="never saved"):
        User(name="JaneDoe").destroy()


def test_is_valid_and_errors(blog):
    User, _, _ = blog

    u = User(name="")
    assert u.is_valid() is False
    assert u.errors == {"name": "name can't be empty"}
    u.name = "JaneDoe"
    assert u.is_valid() is True
    assert u.errors == {}


def test_uninitialized_model_cannot_be_used():
    class Orphan(ActiveRecord):
        pass

    with pytest.raises(RailcarRuntimeError, match="not initialized"):
        Orphan.all()


# -----------------------------
# Lifecycle hooks
# -----------------------------


def test_hook_order_on_create_update_destroy(blog_engine):
    calls: List[str] = []

    class User(ActiveRecord):
        callbacks = {
            "before_save": ["b_save"],
            "before_create": ["b_create"],
            "after_create": ["a_create"],
            "after_save": ["a_save"],
            "before_update": ["b_update"],
            "after_update": ["a_update"],
            "before_destroy": ["b_destroy"],
            "after_destroy": ["a_destroy"],
            "after_commit": [
                ("c_create", {"on": "create"}),
                ("c_update", {"on": "update"}),
                ("c_destroy", {"on": "destroy"}),
            ],
        }

    for name in (
        "b_save",
        "b_create",
        "a_create",
        "a_save",
        "b_update",
        "a_update",
        "b_destroy",
        "a_destroy",
        "c_create",
        "c_update",
        "c_destroy",
    ):
        setattr(User, name, lambda self, _n=name: calls.append(_n))

    bootstrap_models(blog_engine, models=[User])

    u = User.create(name="x")
    assert calls == ["b_save", "b_create", "a_create", "a_save", "c_create"]

    calls.clear()
    u.update(name="y")
    assert calls == ["b_save", "b_update", "a_update", "a_save", "c_update"]

    calls.clear()
    u.destroy()
    assert calls == ["b_destroy", "a_destroy", "c_destroy"]


def test_failing_before_hook_aborts_save(blog_engine):
    class User(ActiveRecord):
        callbacks = {"before_create": ["refuse"]}

        def refuse(self):
            raise ValueError("not today")

    bootstrap_models(blog_engine, models=[User])

    u = User(name="JaneDoe")
    with pytest.raises(HookError, match="not today"):
        u.save()
    assert u.is_new_record
    assert User.count() == 0


def test_failing_after_hook_rolls_back_insert(blog_engine):
    class User(ActiveRecord):
        callbacks = {"after_create": ["explode"]}

        def explode(self):
            raise RuntimeError("boom")

    bootstrap_models(blog_engine, models=[User])

    u = User(name="JaneDoe")
    with pytest.raises(HookError):
        u.save()
    assert u.is_new_record
    assert u.id is None
    assert User.count() == 0


def test_failing_after_commit_hook_keeps_row(blog_engine):
    class User(ActiveRecord):
        callbacks = {"after_commit": ["explode"]}

        def explode(self):
            raise RuntimeError("boom")

    bootstrap_models(blog_engine, models=[User])

    with pytest.raises(HookError):
        User.create(name="JaneDoe")
    assert User.count() == 1


def test_before_save_hook_can_normalize_values(blog_engine):
    class User(ActiveRecord):
        callbacks = {"before_save": ["normalize_email"]}

        def normalize_email(self):
            if self.email:
                self.email = self.email.strip().lower()

    bootstrap_models(blog_engine, models=[User])

    u = User.create(name="JaneDoe", email="  Jane@Example.COM ")
    assert User.find(u.id).email == "jane@example.com"
