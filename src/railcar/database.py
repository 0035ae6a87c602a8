from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Union, cast, Self

from sqlalchemy import create_engine, Connection
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.pool import StaticPool

from railcar.config import DatabaseSettings


@dataclass(slots=True)
class Database:
    engine: Engine

    @classmethod
    def from_settings(cls, s: DatabaseSettings, *, echo: bool = False) -> Self:
        url = s.sqlalchemy_url()
        if _is_sqlite_memory(url):
            # a single shared connection keeps the in-memory database alive across checkouts
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
                future=True,
            )
        elif make_url(url).get_backend_name() == "sqlite":
            # file databases keep one connection per checkout so transactions stay isolated
            engine = create_engine(url, echo=echo, future=True)
        else:
            engine = create_engine(
                url,
                pool_size=s.pool_size,
                max_overflow=s.max_overflow,
                pool_pre_ping=s.pool_pre_ping,
                echo=echo,
                future=True,
            )
        return cls(engine=engine)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        conn = self.engine.connect()
        trans = conn.begin()
        try:
            yield conn
            # If we reach here without exception -> commit
            trans.commit()
        except Exception:
            # On error -> rollback
            trans.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Read-only connection; nothing is committed."""
        conn = self.engine.connect()
        try:
            yield conn
        finally:
            conn.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _is_sqlite_memory(url: URL | str) -> bool:
    u = make_url(url)
    return u.get_backend_name() == "sqlite" and u.database in (None, "", ":memory:")


DbHandle = Union[Engine, Connection, Database]


def normalize_db_handle(db: DbHandle) -> Engine | Connection:
    if isinstance(db, Database):
        return db.engine
    return cast(Union[Engine, Connection], db)


def as_database(db: DbHandle) -> Database:
    if isinstance(db, Database):
        return db
    if isinstance(db, Engine):
        return Database(engine=db)
    return Database(engine=db.engine)
