"""
Convention-driven ORM.

Models subclass ActiveRecord and declare associations, validations and
callbacks as class attributes. bootstrap_models() binds them to live tables:

    ctx = bootstrap_models(engine, package="app.models")
    User.create(name="JoeSmith")
"""

from .associations import setup_associations
from .base import ActiveRecord
from .bootstrap import (
    associate_phase,
    bootstrap_models,
    discover_models,
    import_phase,
    init_phase,
    parse_phase,
    run_phases,
)
from .context import BootstrapContext, ModelState
from .definition import AssociationKind, AssociationSpec, LengthRange, ModelDefinition, ValidationRule
from .hooks import build_hooks, build_validators
from .initializer import init_model, table_name_for
from .parser import parse_definitions
from .persistence import ModelBinding, Persistence
from .registry import MetadataRegistry
from .relations import Association
from .schema import AttributeSpec, introspect_columns, synthesize_attributes

__all__ = [
    "ActiveRecord",
    "Association",
    "AssociationKind",
    "AssociationSpec",
    "AttributeSpec",
    "BootstrapContext",
    "LengthRange",
    "MetadataRegistry",
    "ModelBinding",
    "ModelDefinition",
    "ModelState",
    "Persistence",
    "ValidationRule",
    "associate_phase",
    "bootstrap_models",
    "build_hooks",
    "build_validators",
    "discover_models",
    "import_phase",
    "init_model",
    "init_phase",
    "introspect_columns",
    "parse_definitions",
    "parse_phase",
    "run_phases",
    "setup_associations",
    "synthesize_attributes",
    "table_name_for",
]
