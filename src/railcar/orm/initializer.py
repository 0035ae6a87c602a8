# src/railcar/orm/initializer.py

from __future__ import annotations

"""
Model initializer: bind one model class to its table.

Steps, in order:
    table name -> column introspection -> attribute synthesis
    -> validators + hooks -> registration with the persistence layer

Nothing is marked loaded until every step succeeded.
"""

from typing import Any, Type

from railcar.exceptions import SchemaError
from railcar.inflection import table_name_for_class
from railcar.logs import getLogger

from .context import BootstrapContext
from .hooks import build_hooks, build_validators
from .parser import parse_definitions
from .persistence import ModelBinding
from .schema import refine_attributes, synthesize_attributes

logger = getLogger(__name__)


def table_name_for(model: Type[Any]) -> str:
    """Explicit `table_name` class attribute, else lower-cased class name + "s"."""
    explicit = vars(model).get("table_name")
    if isinstance(explicit, str) and explicit:
        return explicit
    return table_name_for_class(model.__name__)


def init_model(ctx: BootstrapContext, model: Type[Any], *, refine_types: bool = False) -> ModelBinding:
    state = ctx.state(model)
    persistence = ctx.require_persistence()
    name = model.__name__

    if state.schema_loaded:
        return persistence.binding_for(model)

    if not state.definition_parsed:
        logger.warning("Definitions for %s were not parsed before init; parsing now", name)
        parse_definitions(ctx, model)

    definition = ctx.registry.get_definition(name)
    if definition is None:
        raise SchemaError(f"No model definition registered for {name}")

    table_name = table_name_for(model)
    try:
        columns = persistence.introspect_columns(table_name)
        attributes = synthesize_attributes(columns)
        if refine_types:
            attributes = refine_attributes(attributes, persistence.reflected_types(table_name))

        validators = build_validators(model, definition.validations)
        hooks = build_hooks(model, definition.callbacks)

        unknown_fields = sorted(f for f in definition.validations if f not in attributes)
        if unknown_fields:
            logger.warning("%s validates fields with no column in %s: %s", name, table_name, unknown_fields)

        binding = persistence.register_model(
            model,
            attributes,
            table_name=table_name,
            hooks=hooks,
            validators=validators,
        )
    except Exception:
        logger.exception("Failed to initialize model %s", name)
        raise

    state.schema_loaded = True
    logger.debug("Model %s initialized with attributes %s", name, list(attributes))
    return binding
