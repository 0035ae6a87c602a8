# src/railcar/orm/parser.py

from __future__ import annotations

"""
Definition parser: class-level declarations -> ModelDefinition.

A model class may declare any of:

    class User(ActiveRecord):
        has_many = ["posts", lambda: ("comments", {"through": "posts"})]
        belongs_to = ["account"]
        validates = {"name": {"presence": True, "length": {"in": "5..10"}}}
        callbacks = {"after_commit": [("notify_user", {"on": "create"})]}

Each declaration may also be a zero-argument callable returning the value.

Lenient mode (default) skips shapes it does not understand and logs them at
DEBUG. Strict mode raises ParseError instead.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from pydantic import ValidationError as PydanticValidationError

from railcar.exceptions import ParseError
from railcar.inflection import underscore
from railcar.logs import getLogger

from .context import BootstrapContext
from .definition import (
    ASSOCIATION_OPTIONS,
    COMMIT_TIMINGS,
    LIFECYCLE_EVENTS,
    AssociationKind,
    AssociationSpec,
    LengthRange,
    ModelDefinition,
    ValidationRule,
)

logger = getLogger(__name__)

_ASSOCIATION_ATTRS: Tuple[Tuple[AssociationKind, str], ...] = (
    (AssociationKind.HAS_MANY, "has_many"),
    (AssociationKind.BELONGS_TO, "belongs_to"),
)

_VALIDATION_KEYS = frozenset({"presence", "length", "in"})
_LENGTH_KEYS = frozenset({"in", "is", "minimum", "maximum"})
_CALLBACK_OPTIONS = frozenset({"on"})


class _Reporter:
    """Raises in strict mode, logs and swallows in lenient mode."""

    def __init__(self, model_name: str, strict: bool) -> None:
        self.model_name = model_name
        self.strict = strict

    def __call__(self, message: str) -> None:
        full = f"{self.model_name}: {message}"
        if self.strict:
            raise ParseError(full)
        logger.debug("Ignoring malformed declaration in %s", full)


# -----------------------------
# Helpers
# -----------------------------


def _is_thunk(value: Any) -> bool:
    return callable(value) and not isinstance(value, (str, bytes, type))


def _declared(model: type, attr: str) -> Any:
    value = getattr(model, attr, None)
    if _is_thunk(value):
        value = value()
    return value


def _as_entries(value: Any, what: str, report: _Reporter) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        report(f"{what} must be a list, got {type(value).__name__}")
        return []
    return list(value)


def _unknown_keys(options: Mapping[str, Any], allowed: Iterable[str]) -> List[str]:
    allowed_set = set(allowed)
    return sorted(str(k) for k in options if k not in allowed_set)


# -----------------------------
# Associations
# -----------------------------


def _parse_association(entry: Any, kind: AssociationKind, report: _Reporter) -> Optional[AssociationSpec]:
    if _is_thunk(entry):
        entry = entry()

    if isinstance(entry, str):
        target, options = entry, {}
    elif isinstance(entry, (tuple, list)) and len(entry) in (1, 2):
        target = entry[0]
        options = entry[1] if len(entry) == 2 else {}
        if options is None:
            options = {}
    else:
        report(f"{kind.value} entry {entry!r} must be a name or (name, options)")
        return None

    if not isinstance(target, str) or not isinstance(options, Mapping):
        report(f"{kind.value} entry {entry!r} must be a name or (name, options)")
        return None

    unknown = _unknown_keys(options, ASSOCIATION_OPTIONS)
    if unknown and report.strict:
        report(f"{kind.value} '{target}' has unknown options {unknown}")

    try:
        return AssociationSpec(kind=kind, target_name=target, options=dict(options))
    except PydanticValidationError as e:
        report(f"{kind.value} entry {entry!r} is invalid: {e}")
        return None


def parse_associations(model: type, report: _Reporter) -> List[AssociationSpec]:
    out: List[AssociationSpec] = []
    for kind, attr in _ASSOCIATION_ATTRS:
        entries = _as_entries(_declared(model, attr), attr, report)
        for entry in entries:
            spec = _parse_association(entry, kind, report)
            if spec is not None:
                out.append(spec)
        if entries:
            logger.debug("Parsed %s for %s", attr, report.model_name)
    return out


# -----------------------------
# Validations
# -----------------------------


def parse_length(value: Any) -> LengthRange:
    """
    Parse a length declaration.

    Accepted shapes:
      - "min..max" range string (inclusive)
      - "n" or n: exact length
      - (min, max)
      - {"in": "min..max"}, {"is": n}, {"minimum": a, "maximum": b}

    Raises ValueError for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid length {value!r}")

    if isinstance(value, int):
        return LengthRange.exactly(value)

    if isinstance(value, str):
        s = value.strip()
        if ".." in s:
            lo, hi = s.split("..", 1)
            return LengthRange(minimum=int(lo.strip()), maximum=int(hi.strip()))
        return LengthRange.exactly(int(s))

    if isinstance(value, (tuple, list)) and len(value) == 2:
        return LengthRange(minimum=int(value[0]), maximum=int(value[1]))

    if isinstance(value, Mapping):
        unknown = _unknown_keys(value, _LENGTH_KEYS)
        if unknown:
            raise ValueError(f"unknown length keys {unknown}")
        if "in" in value:
            return parse_length(value["in"])
        if "is" in value:
            return LengthRange.exactly(int(value["is"]))
        minimum = value.get("minimum")
        maximum = value.get("maximum")
        return LengthRange(
            minimum=int(minimum) if minimum is not None else None,
            maximum=int(maximum) if maximum is not None else None,
        )

    raise ValueError(f"invalid length {value!r}")


def _parse_rule(field: str, options: Any, report: _Reporter) -> Optional[ValidationRule]:
    if not isinstance(options, Mapping):
        report(f"validation options for '{field}' must be a mapping, got {type(options).__name__}")
        return None

    unknown = _unknown_keys(options, _VALIDATION_KEYS)
    if unknown and report.strict:
        report(f"validation for '{field}' has unknown keys {unknown}")

    presence = options.get("presence", False)
    if not isinstance(presence, bool):
        report(f"presence for '{field}' must be a bool, got {presence!r}")
        presence = False

    raw_length = options["in"] if "in" in options else options.get("length")
    length_range: Optional[LengthRange] = None
    if raw_length is not None:
        try:
            length_range = parse_length(raw_length)
        except (ValueError, TypeError, PydanticValidationError) as e:
            report(f"length for '{field}' is invalid: {e}")

    return ValidationRule(presence_required=presence, length_range=length_range)


def parse_validations(model: type, report: _Reporter) -> Dict[str, ValidationRule]:
    declared = _declared(model, "validates")
    if declared is None:
        return {}

    if isinstance(declared, Mapping):
        pairs = list(declared.items())
    else:
        pairs = []
        for entry in _as_entries(declared, "validates", report):
            if isinstance(entry, (tuple, list)) and len(entry) == 2 and isinstance(entry[0], str):
                pairs.append((entry[0], entry[1]))
            else:
                report(f"validates entry {entry!r} must be (field, options)")

    out: Dict[str, ValidationRule] = {}
    for field, options in pairs:
        rule = _parse_rule(str(field), options, report)
        if rule is not None:
            out[str(field)] = rule
    logger.debug("Parsed validations for %s: %s", report.model_name, sorted(out))
    return out


# -----------------------------
# Callbacks
# -----------------------------


def resolve_event_name(hook_name: str, options: Mapping[str, Any], report: _Reporter) -> Optional[str]:
    """
    Map a declared hook name (+ options) to the lifecycle event it fires on.

    "after_commit" (or "afterCommit") with on=create|update|destroy becomes
    "after_<on>_commit"; on defaults to "create". Other names pass through,
    normalised to snake_case.
    """
    hook = underscore(hook_name)
    if hook == "after_commit":
        on = options.get("on", "create")
        if not isinstance(on, str) or on.lower() not in COMMIT_TIMINGS:
            report(f"after_commit 'on' must be one of {list(COMMIT_TIMINGS)}, got {on!r}")
            if not isinstance(on, str):
                return None
        return f"after_{underscore(on)}_commit"

    if hook not in LIFECYCLE_EVENTS:
        report(f"unknown lifecycle hook '{hook_name}'")
    return hook


def _parse_binding(binding: Any, report: _Reporter) -> Optional[Tuple[str, Mapping[str, Any]]]:
    if isinstance(binding, str):
        return binding, {}
    if isinstance(binding, (tuple, list)) and len(binding) in (1, 2) and isinstance(binding[0], str):
        options = binding[1] if len(binding) == 2 else {}
        if isinstance(options, Mapping):
            return binding[0], options
    report(f"callback binding {binding!r} must be a method name or (method, options)")
    return None


def parse_callbacks(model: type, report: _Reporter) -> Dict[str, str]:
    declared = _declared(model, "callbacks")
    if declared is None:
        return {}
    if not isinstance(declared, Mapping):
        report(f"callbacks must be a mapping of hook name -> bindings, got {type(declared).__name__}")
        return {}

    out: Dict[str, str] = {}
    for hook_name, bindings in declared.items():
        if _is_thunk(bindings):
            bindings = bindings()
        if isinstance(bindings, str) or (
            isinstance(bindings, tuple) and len(bindings) == 2 and isinstance(bindings[1], Mapping)
        ):
            # one binding: a method name or (method, options)
            bindings = [bindings]
        for binding in _as_entries(bindings, f"callbacks[{hook_name!r}]", report):
            parsed = _parse_binding(binding, report)
            if parsed is None:
                continue
            method, options = parsed
            unknown = _unknown_keys(options, _CALLBACK_OPTIONS)
            if unknown and report.strict:
                report(f"callback '{method}' has unknown options {unknown}")
            event = resolve_event_name(str(hook_name), options, report)
            if event is None:
                continue
            # last binding for an event wins
            out[event] = method
    logger.debug("Parsed callbacks for %s: %s", report.model_name, out)
    return out


# -----------------------------
# Entry point
# -----------------------------


def build_definition(model: type, *, strict: bool = False) -> ModelDefinition:
    """Parse a model's declarations without touching any registry."""
    report = _Reporter(model.__name__, strict)
    return ModelDefinition(
        associations=parse_associations(model, report),
        validations=parse_validations(model, report),
        callbacks=parse_callbacks(model, report),
    )


def parse_definitions(ctx: BootstrapContext, model: Type[Any]) -> ModelDefinition:
    """
    Parse `model`'s declarations into ctx.registry, at most once.

    Skips (and returns the stored definition) when the model is already
    flagged as parsed or its name is already registered.
    """
    state = ctx.state(model)
    name = model.__name__

    existing = ctx.registry.get_definition(name)
    if state.definition_parsed or existing is not None:
        state.definition_parsed = True
        if existing is None:
            raise ParseError(f"{name} is flagged as parsed but missing from the registry")
        return existing

    logger.debug("Parsing definitions for %s...", name)
    definition = build_definition(model, strict=ctx.strict)
    ctx.registry.register(name, definition)
    state.definition_parsed = True
    logger.info("Definitions parsed and stored for %s", name)
    return definition
