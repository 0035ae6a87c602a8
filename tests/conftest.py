"""
Shared fixtures: an in-memory SQLite engine and the blog schema
(users / posts / comments) most ORM and web tests run against.

Model classes are defined per test (see make_blog_models) because
bootstrapping binds state onto the class object.
"""
from __future__ import annotations

from typing import Any, Callable, List, Tuple, Type

import pytest
import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from railcar.config import clear_settings_cache
from railcar.orm import ActiveRecord


def _timestamps() -> List[Column]:
    return [Column("created_at", DateTime), Column("updated_at", DateTime)]


def create_blog_tables(engine: Engine) -> MetaData:
    md = MetaData()
    Table(
        "users",
        md,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255)),
        Column("email", String(255)),
        *_timestamps(),
    )
    Table(
        "posts",
        md,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_id", Integer),
        Column("title", String(255)),
        *_timestamps(),
    )
    Table(
        "comments",
        md,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("post_id", Integer),
        Column("body", String(255)),
        *_timestamps(),
    )
    md.create_all(engine)
    return md


def make_blog_models(notified: List[Any]) -> Tuple[Type[ActiveRecord], Type[ActiveRecord], Type[ActiveRecord]]:
    class User(ActiveRecord):
        has_many = ["posts", lambda: ("comments", {"through": "posts"})]
        validates = {"name": {"presence": True, "length": {"in": "5..10"}}}
        callbacks = {"after_commit": [("notify_user", {"on": "create"})]}

        def notify_user(self) -> None:
            notified.append(self.name)

    class Post(ActiveRecord):
        belongs_to = ["user"]
        has_many = ["comments"]
        validates = {"title": {"presence": True}}

    class Comment(ActiveRecord):
        belongs_to = ["post"]

    return User, Post, Comment


@pytest.fixture
def engine() -> Engine:
    # StaticPool keeps one connection so the in-memory database survives
    # across checkouts and threads (controllers run sync actions in a threadpool).
    eng = sa.create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    eng.dispose()


@pytest.fixture
def blog_engine(engine: Engine) -> Engine:
    create_blog_tables(engine)
    return engine


@pytest.fixture
def notified() -> List[Any]:
    return []


@pytest.fixture
def blog_models(notified: List[Any]) -> Tuple[Type[ActiveRecord], Type[ActiveRecord], Type[ActiveRecord]]:
    return make_blog_models(notified)


@pytest.fixture
def write_py() -> Callable[..., None]:
    import textwrap
    from pathlib import Path

    def _write(path: Path, content: str) -> None:
        path.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")

    return _write


@pytest.fixture(autouse=True)
def _fresh_settings() -> None:
    clear_settings_cache()
    yield
    clear_settings_cache()
