# src/railcar/orm/persistence.py

from __future__ import annotations

"""
Persistence layer: SQLAlchemy Core tables behind ActiveRecord models.

Responsibilities:
- hold one Table per registered model (built from synthesized attributes)
- establish associations between registered models
- run CRUD statements
- dispatch validators and lifecycle hooks around save/destroy

Lifecycle of save():
    validators
    before_save, before_create | before_update
    -- transaction --
    INSERT | UPDATE
    after_create | after_update, after_save
    -- commit --
    after_create_commit | after_update_commit

A failing validator aborts before any hook runs. A failing hook inside the
transaction rolls it back. A failing after-commit hook cannot undo the
committed row.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Type

import sqlalchemy as sa
from sqlalchemy import MetaData, Table
from sqlalchemy.types import TypeEngine

from railcar.database import Database, DbHandle, as_database
from railcar.exceptions import AssociationError, RailcarRuntimeError, SchemaError
from railcar.inflection import foreign_key_for_class
from railcar.logs import getLogger

from .definition import ASSOCIATION_OPTIONS, AssociationKind
from .hooks import Hook, Validator, run_validators
from .relations import Association, AssociationAccessor
from .schema import PRIMARY_KEY, TIMESTAMP_COLUMNS, AttributeSpec, introspect_column_types, introspect_columns

if TYPE_CHECKING:
    from .base import ActiveRecord

logger = getLogger(__name__)


@dataclass(slots=True)
class ModelBinding:
    """Everything the persistence layer knows about one registered model."""

    model: Type["ActiveRecord"]
    table: Table
    attributes: Dict[str, AttributeSpec]
    hooks: Dict[str, Hook]
    validators: Dict[str, Validator]
    persistence: "Persistence"
    associations: Dict[str, Association] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.model.__name__

    @property
    def table_name(self) -> str:
        return self.table.name

    def has_column(self, name: str) -> bool:
        return name in self.table.c


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Persistence:
    """
    Model registration, association wiring and CRUD against one database.

    One instance belongs to one BootstrapContext. Model classes registered
    here carry a reference back to their ModelBinding.
    """

    def __init__(self, db: DbHandle, *, schema: Optional[str] = None) -> None:
        self.database: Database = as_database(db)
        self.schema = schema
        self.metadata = MetaData(schema=schema)
        self._bindings: Dict[str, ModelBinding] = {}

    # ------------------------------------------------------------------ #
    # Introspection / registration
    # ------------------------------------------------------------------ #

    def introspect_columns(self, table_name: str) -> List[str]:
        return introspect_columns(self.database.engine, table_name, schema=self.schema)

    def reflected_types(self, table_name: str) -> Dict[str, TypeEngine]:
        return introspect_column_types(self.database.engine, table_name, schema=self.schema)

    def register_model(
        self,
        model: Type["ActiveRecord"],
        attributes: Mapping[str, AttributeSpec],
        *,
        table_name: str,
        hooks: Mapping[str, Hook],
        validators: Mapping[str, Validator],
    ) -> ModelBinding:
        name = model.__name__
        existing = self._bindings.get(name)
        if existing is not None and existing.model is not model:
            raise SchemaError(
                f"A different model named '{name}' is already registered "
                f"({existing.model.__module__}.{existing.model.__qualname__})"
            )

        table = Table(
            table_name,
            self.metadata,
            *[spec.to_column() for spec in attributes.values()],
            extend_existing=True,
        )
        binding = ModelBinding(
            model=model,
            table=table,
            attributes=dict(attributes),
            hooks=dict(hooks),
            validators=dict(validators),
            persistence=self,
        )
        self._bindings[name] = binding
        model._railcar_binding = binding
        logger.info(
            "Registered model %s -> %s (%d attributes, %d validators, %d hooks)",
            name,
            table_name,
            len(attributes),
            len(validators),
            len(hooks),
        )
        return binding

    @property
    def models(self) -> Dict[str, Type["ActiveRecord"]]:
        return {name: b.model for name, b in self._bindings.items()}

    def is_registered(self, model: type) -> bool:
        binding = self._bindings.get(model.__name__)
        return binding is not None and binding.model is model

    def binding_for(self, model: type) -> ModelBinding:
        binding = self._bindings.get(model.__name__)
        if binding is None or binding.model is not model:
            raise RailcarRuntimeError(f"Model {model.__name__} is not registered with this persistence layer")
        return binding

    def find_model(self, name: str) -> Optional[Type["ActiveRecord"]]:
        """
        Resolve a declared association target to a registered model.

        Tried in order: exact model name, case-insensitive model name, table
        name ("posts" -> Post).
        """
        binding = self._bindings.get(name)
        if binding is not None:
            return binding.model
        lowered = name.lower()
        for b in self._bindings.values():
            if b.name.lower() == lowered:
                return b.model
        for b in self._bindings.values():
            if b.table_name.lower() == lowered:
                return b.model
        return None

    # ------------------------------------------------------------------ #
    # Associations
    # ------------------------------------------------------------------ #

    def _require_column(self, binding: ModelBinding, column: str, *, what: str) -> None:
        if not binding.has_column(column):
            raise AssociationError(
                f"{what}: table '{binding.table_name}' has no foreign key column '{column}'. "
                f"Columns: {list(binding.table.c.keys())}"
            )

    def establish_association(
        self,
        kind: AssociationKind,
        source: Type["ActiveRecord"],
        target: Type["ActiveRecord"],
        options: Optional[Mapping[str, Any]] = None,
        *,
        name: Optional[str] = None,
    ) -> Association:
        opts = dict(options or {})
        what = f"{source.__name__} {kind.value} {target.__name__}"

        unknown = sorted(str(k) for k in opts if k not in ASSOCIATION_OPTIONS)
        if unknown:
            raise AssociationError(f"{what}: invalid options {unknown} (allowed: {sorted(ASSOCIATION_OPTIONS)})")

        if not self.is_registered(source):
            raise AssociationError(f"{what}: source model {source.__name__} is not initialized")
        if not self.is_registered(target):
            raise AssociationError(f"{what}: target model {target.__name__} is not initialized")

        src = self.binding_for(source)
        tgt = self.binding_for(target)
        accessor = str(opts.get("as") or name or target.__name__.lower())
        through: Optional[Association] = None

        if kind is AssociationKind.BELONGS_TO:
            if opts.get("through"):
                raise AssociationError(f"{what}: belongs_to does not support 'through'")
            foreign_key = str(opts.get("foreign_key") or foreign_key_for_class(target.__name__))
            self._require_column(src, foreign_key, what=what)

        elif opts.get("through"):
            through_name = str(opts["through"])
            through = src.associations.get(through_name)
            if through is None or through.kind is not AssociationKind.HAS_MANY or through.is_through:
                raise AssociationError(
                    f"{what}: 'through' must name a direct has_many association of {source.__name__}, "
                    f"got '{through_name}' (known: {sorted(src.associations)})"
                )
            foreign_key = str(opts.get("foreign_key") or foreign_key_for_class(through.target.__name__))
            self._require_column(tgt, foreign_key, what=what)

        else:
            foreign_key = str(opts.get("foreign_key") or foreign_key_for_class(source.__name__))
            self._require_column(tgt, foreign_key, what=what)

        if accessor in src.attributes:
            raise AssociationError(f"{what}: accessor '{accessor}' clashes with a column of {source.__name__}")
        if accessor in src.associations:
            raise AssociationError(f"{what}: {source.__name__} already has an association named '{accessor}'")
        current = getattr(source, accessor, None)
        if current is not None and not isinstance(current, AssociationAccessor):
            raise AssociationError(f"{what}: accessor '{accessor}' clashes with {source.__name__}.{accessor}")

        association = Association(
            kind=kind,
            name=accessor,
            source=source,
            target=target,
            foreign_key=foreign_key,
            through=through,
            options=opts,
        )
        src.associations[accessor] = association
        setattr(source, accessor, AssociationAccessor(association, self))
        logger.debug("Created association %s (foreign key %s)", association.describe(), foreign_key)
        return association

    def load_association(self, association: Association, instance: "ActiveRecord") -> Any:
        if association.kind is AssociationKind.BELONGS_TO:
            fk_value = getattr(instance, association.foreign_key, None)
            if fk_value is None:
                return None
            return self.select_one(association.target, {PRIMARY_KEY: fk_value})

        if instance.id is None:
            return []

        if association.through is None:
            return self.select_many(association.target, {association.foreign_key: instance.id})

        through = association.through
        tgt = self.binding_for(association.target).table
        mid = self.binding_for(through.target).table
        stmt = (
            sa.select(tgt)
            .select_from(tgt.join(mid, tgt.c[association.foreign_key] == mid.c[PRIMARY_KEY]))
            .where(mid.c[through.foreign_key] == sa.literal(instance.id))
            .order_by(tgt.c[PRIMARY_KEY])
        )
        with self.database.connection() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [association.target._instantiate(dict(r)) for r in rows]

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def _where(self, binding: ModelBinding, conditions: Optional[Mapping[str, Any]]) -> List[Any]:
        clauses: List[Any] = []
        for key, value in (conditions or {}).items():
            if not binding.has_column(key):
                raise SchemaError(f"{binding.name} has no column '{key}'")
            col = binding.table.c[key]
            if key == PRIMARY_KEY and isinstance(value, str) and value.strip().isdigit():
                # path parameters arrive as strings
                value = int(value)
            if value is None:
                clauses.append(col.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(col.in_(list(value)))
            else:
                clauses.append(col == sa.literal(value))
        return clauses

    def _order_by(self, binding: ModelBinding, order_by: Optional[str | Sequence[str]]) -> List[Any]:
        if order_by is None:
            return [binding.table.c[PRIMARY_KEY]]
        names = [order_by] if isinstance(order_by, str) else list(order_by)
        out: List[Any] = []
        for n in names:
            desc = n.startswith("-")
            key = n[1:] if desc else n
            if not binding.has_column(key):
                raise SchemaError(f"{binding.name} has no column '{key}'")
            col = binding.table.c[key]
            out.append(col.desc() if desc else col.asc())
        return out

    def select_many(
        self,
        model: Type["ActiveRecord"],
        conditions: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str | Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List["ActiveRecord"]:
        binding = self.binding_for(model)
        stmt = sa.select(binding.table).where(*self._where(binding, conditions))
        stmt = stmt.order_by(*self._order_by(binding, order_by))
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.database.connection() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [model._instantiate(dict(r)) for r in rows]

    def select_one(
        self,
        model: Type["ActiveRecord"],
        conditions: Optional[Mapping[str, Any]] = None,
    ) -> Optional["ActiveRecord"]:
        found = self.select_many(model, conditions, limit=1)
        return found[0] if found else None

    def count(self, model: Type["ActiveRecord"], conditions: Optional[Mapping[str, Any]] = None) -> int:
        binding = self.binding_for(model)
        stmt = sa.select(sa.func.count()).select_from(binding.table).where(*self._where(binding, conditions))
        with self.database.connection() as conn:
            return int(conn.execute(stmt).scalar_one())

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @staticmethod
    def _fire(binding: ModelBinding, event: str, instance: "ActiveRecord") -> None:
        hook = binding.hooks.get(event)
        if hook is not None:
            hook(instance)

    def validate(self, instance: "ActiveRecord") -> None:
        binding = self.binding_for(type(instance))
        run_validators(binding.name, binding.validators, instance)

    def save(self, instance: "ActiveRecord") -> None:
        binding = self.binding_for(type(instance))
        if instance.is_destroyed:
            raise RailcarRuntimeError(f"Cannot save a destroyed {binding.name}")

        creating = instance.is_new_record
        action = "create" if creating else "update"

        run_validators(binding.name, binding.validators, instance)
        self._fire(binding, "before_save", instance)
        self._fire(binding, f"before_{action}", instance)

        snapshot = dict(instance._attributes)
        table = binding.table
        values = {k: v for k, v in instance._attributes.items() if k != PRIMARY_KEY}
        if creating:
            # unset columns are left to their database defaults
            values = {k: v for k, v in values.items() if v is not None}
        now = _now()
        if "updated_at" in table.c:
            values["updated_at"] = now

        try:
            with self.database.transaction() as conn:
                if creating:
                    if "created_at" in table.c and values.get("created_at") is None:
                        values["created_at"] = now
                    if instance._attributes.get(PRIMARY_KEY) is not None:
                        values[PRIMARY_KEY] = instance._attributes[PRIMARY_KEY]
                    result = conn.execute(sa.insert(table).values(**values))
                    pk = values.get(PRIMARY_KEY)
                    if pk is None:
                        pk = result.inserted_primary_key[0]
                    instance._attributes.update(values)
                    instance._attributes[PRIMARY_KEY] = pk
                    instance._persisted = True
                else:
                    conn.execute(
                        sa.update(table)
                        .where(table.c[PRIMARY_KEY] == sa.literal(instance.id))
                        .values(**values)
                    )
                    instance._attributes.update(values)

                self._fire(binding, f"after_{action}", instance)
                self._fire(binding, "after_save", instance)
        except Exception:
            instance._attributes.clear()
            instance._attributes.update(snapshot)
            instance._persisted = not creating
            raise

        logger.info("%s %s id=%s", "Created" if creating else "Updated", binding.name, instance.id)
        self._fire(binding, f"after_{action}_commit", instance)

    def destroy(self, instance: "ActiveRecord") -> None:
        binding = self.binding_for(type(instance))
        if instance.is_new_record:
            raise RailcarRuntimeError(f"Cannot destroy a {binding.name} that was never saved")

        self._fire(binding, "before_destroy", instance)
        table = binding.table
        with self.database.transaction() as conn:
            conn.execute(sa.delete(table).where(table.c[PRIMARY_KEY] == sa.literal(instance.id)))
            self._fire(binding, "after_destroy", instance)

        instance._persisted = False
        instance._destroyed = True
        logger.info("Destroyed %s id=%s", binding.name, instance.id)
        self._fire(binding, "after_destroy_commit", instance)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def table_for(self, model: type) -> Table:
        return self.binding_for(model).table

    def dispose(self) -> None:
        self.database.dispose()
