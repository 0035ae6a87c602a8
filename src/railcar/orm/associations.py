from __future__ import annotations

from typing import Any, List, Type

from railcar.exceptions import AssociationError
from railcar.inflection import camelize, singularize
from railcar.logs import getLogger

from .context import BootstrapContext
from .definition import AssociationSpec
from .relations import Association

logger = getLogger(__name__)


def resolve_target(ctx: BootstrapContext, source: Type[Any], spec: AssociationSpec) -> Type[Any]:
    """
    Find the initialized model class an association points at.

    The declared name is matched against registered models by exact name,
    case-insensitive name, then table name; "posts" also matches "Post".
    """
    persistence = ctx.require_persistence()
    name = spec.target_name
    target = persistence.find_model(name) or persistence.find_model(camelize(singularize(name)))
    if target is not None:
        return target

    known = ctx.model_named(name) or ctx.model_named(camelize(singularize(name)))
    if known is not None:
        raise AssociationError(
            f"{source.__name__} {spec.kind.value} '{name}': target model {known.__name__} is not initialized"
        )
    raise AssociationError(
        f"{source.__name__} {spec.kind.value} '{name}': no registered model matches "
        f"(known: {sorted(persistence.models)})"
    )


def setup_associations(ctx: BootstrapContext, model: Type[Any]) -> List[Association]:
    """
    Establish every declared association of `model`, at most once.

    Direct associations are established before `through` ones, so a
    has-many-through may name a has_many declared after it.
    """
    state = ctx.state(model)
    name = model.__name__
    persistence = ctx.require_persistence()

    if state.associations_wired:
        return list(persistence.binding_for(model).associations.values())

    if not state.schema_loaded:
        raise AssociationError(f"Cannot set up associations for {name}: model is not initialized")

    definition = ctx.registry.get_definition(name)
    if definition is None:
        raise AssociationError(f"Cannot set up associations for {name}: no definition registered")

    ordered = sorted(definition.associations, key=lambda s: bool(s.options.get("through")))
    established: List[Association] = []
    for spec in ordered:
        target = resolve_target(ctx, model, spec)
        established.append(
            persistence.establish_association(
                spec.kind,
                model,
                target,
                spec.options,
                name=spec.accessor_name,
            )
        )

    state.associations_wired = True
    if established:
        logger.info("Associations set up for %s: %s", name, ", ".join(a.name for a in established))
    else:
        logger.debug("No associations declared for %s", name)
    return established
