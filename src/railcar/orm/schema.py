# src/railcar/orm/schema.py

from __future__ import annotations

"""
Schema introspection and attribute synthesis.

Attribute types are inferred from column NAMES, not from the database:

- id                     -> Integer primary key, autoincrement, NOT NULL
- created_at, updated_at -> DateTime
- everything else        -> String

refine_attributes() can afterwards swap String for the reflected type of
non-string columns; it is opt-in (orm.refine_column_types).
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Type, Union

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.types import TypeEngine

from railcar.database import DbHandle, normalize_db_handle
from railcar.exceptions import SchemaError
from railcar.logs import getLogger

logger = getLogger(__name__)

PRIMARY_KEY = "id"
TIMESTAMP_COLUMNS = ("created_at", "updated_at")


@dataclass(frozen=True, slots=True)
class AttributeSpec:
    name: str
    type_: Union[Type[TypeEngine], TypeEngine]
    primary_key: bool = False
    autoincrement: bool = False
    nullable: bool = True

    @property
    def type_name(self) -> str:
        t = self.type_ if isinstance(self.type_, type) else type(self.type_)
        return t.__name__

    def to_column(self) -> sa.Column:
        type_ = self.type_() if isinstance(self.type_, type) else self.type_
        return sa.Column(
            self.name,
            type_,
            primary_key=self.primary_key,
            autoincrement=self.autoincrement if self.primary_key else "auto",
            nullable=self.nullable,
        )


# -----------------------------
# Introspection
# -----------------------------


def _inspector(conn_or_engine: Engine | Connection) -> sa.Inspector:
    return sa.inspect(conn_or_engine)


def introspect_columns(db: DbHandle, table_name: str, *, schema: Optional[str] = None) -> List[str]:
    """
    Return the column names of `table_name` in database order.

    Raises SchemaError when the table is missing or has no columns.
    """
    insp = _inspector(normalize_db_handle(db))
    try:
        columns = insp.get_columns(table_name, schema=schema)
    except NoSuchTableError:
        columns = []

    names = [str(c["name"]) for c in columns]
    if not names:
        raise SchemaError(
            f"Table '{table_name}' does not exist or has no columns. Did you run migrations?"
        )
    logger.debug("Introspected %d columns for %s: %s", len(names), table_name, names)
    return names


def introspect_column_types(db: DbHandle, table_name: str, *, schema: Optional[str] = None) -> Dict[str, TypeEngine]:
    """Reflected SQL types by column name; empty when the table is missing."""
    insp = _inspector(normalize_db_handle(db))
    try:
        columns = insp.get_columns(table_name, schema=schema)
    except NoSuchTableError:
        return {}
    return {str(c["name"]): c["type"] for c in columns}


# -----------------------------
# Attribute synthesis
# -----------------------------


def infer_type(column_name: str) -> Type[TypeEngine]:
    if column_name in TIMESTAMP_COLUMNS:
        return sa.DateTime
    return sa.String


def synthesize_attributes(columns: Sequence[str]) -> Dict[str, AttributeSpec]:
    """
    Build the runtime attribute schema for a table.

    `id` is always present as the integer primary key, whether or not it
    was introspected.
    """
    attributes: Dict[str, AttributeSpec] = {
        PRIMARY_KEY: AttributeSpec(
            PRIMARY_KEY,
            sa.Integer,
            primary_key=True,
            autoincrement=True,
            nullable=False,
        )
    }
    for name in columns:
        if name == PRIMARY_KEY:
            continue
        attributes[name] = AttributeSpec(name, infer_type(name))
    return attributes


def refine_attributes(
    attributes: Mapping[str, AttributeSpec],
    reflected: Mapping[str, TypeEngine],
) -> Dict[str, AttributeSpec]:
    """
    Replace name-inferred String types with the reflected type where the
    database column is not string-like (e.g. integer foreign keys).
    """
    out: Dict[str, AttributeSpec] = {}
    for name, spec in attributes.items():
        db_type = reflected.get(name)
        if spec.type_ is sa.String and db_type is not None and not isinstance(db_type, sa.String):
            spec = AttributeSpec(name, db_type, nullable=spec.nullable)
        out[name] = spec
    return out
