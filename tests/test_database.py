from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.pool import StaticPool

from railcar.config import DatabaseSettings
from railcar.database import Database
from railcar.exceptions import HookError
from railcar.orm import ActiveRecord, bootstrap_models


def test_in_memory_sqlite_shares_one_connection() -> None:
    db = Database.from_settings(DatabaseSettings(dialect="sqlite"))
    try:
        assert isinstance(db.engine.pool, StaticPool)
    finally:
        db.dispose()


def test_file_sqlite_uses_a_connection_per_checkout(tmp_path) -> None:
    db = Database.from_settings(DatabaseSettings(dialect="sqlite", sqlite_path=tmp_path / "app.db"))
    try:
        assert not isinstance(db.engine.pool, StaticPool)
    finally:
        db.dispose()


def test_failed_create_is_not_committed_by_a_concurrent_request(tmp_path) -> None:
    db = Database.from_settings(DatabaseSettings(dialect="sqlite", sqlite_path=tmp_path / "app.db"))
    md = MetaData()
    Table(
        "widgets",
        md,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(50)),
    )
    md.create_all(db.engine)

    inserted = threading.Event()

    class Widget(ActiveRecord):
        callbacks = {"after_create": ["check"]}

        def check(self):
            if self.name == "bad":
                inserted.set()
                # give the other thread time to attempt its write
                time.sleep(0.3)
                raise ValueError("rejected")

    def good() -> None:
        assert inserted.wait(5)
        Widget.create(name="good")

    try:
        bootstrap_models(db, models=[Widget])
        with ThreadPoolExecutor(max_workers=2) as pool:
            bad_future = pool.submit(Widget.create, name="bad")
            good_future = pool.submit(good)
            good_future.result()
            with pytest.raises(HookError, match="rejected"):
                bad_future.result()

        assert [w.name for w in Widget.all()] == ["good"]
    finally:
        db.dispose()
