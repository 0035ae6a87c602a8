from __future__ import annotations

import inspect
import time
from typing import Any, Callable, Dict, Mapping

from railcar.exceptions import HookError, ParseError, ValidationError
from railcar.logs import getLogger

from .definition import ValidationRule

logger = getLogger(__name__)

Hook = Callable[[Any], None]
Validator = Callable[[Any], None]


# -----------------------------
# Hooks
# -----------------------------


def _resolve_method(model: type, event: str, method_name: str) -> Callable[..., Any]:
    method = getattr(model, method_name, None)
    if method is None or not callable(method):
        raise ParseError(
            f"{model.__name__} declares a {event} callback '{method_name}' but defines no such method"
        )
    if inspect.iscoroutinefunction(method):
        raise ParseError(
            f"{model.__name__}.{method_name} is a coroutine function; lifecycle callbacks must be synchronous"
        )
    return method


def _make_hook(model_name: str, event: str, method_name: str, method: Callable[..., Any]) -> Hook:
    def _hook(instance: Any) -> None:
        started = time.perf_counter()
        try:
            method(instance)
        except Exception as e:
            logger.error("Error in %s hook for %s.%s: %s", event, model_name, method_name, e)
            raise HookError(
                f"{event} callback {model_name}.{method_name} failed: {e}",
                model=model_name,
                event=event,
                method=method_name,
            ) from e
        logger.debug(
            "Executed %s hook for %s.%s in %.1fms",
            event,
            model_name,
            method_name,
            (time.perf_counter() - started) * 1000.0,
        )

    _hook.__name__ = f"{event}__{method_name}"
    return _hook


def build_hooks(model: type, callbacks: Mapping[str, str]) -> Dict[str, Hook]:
    """
    Turn event -> method-name bindings into event -> invoker.

    Method names are resolved against the model class now, so a typo fails
    the bootstrap instead of the first save.
    """
    hooks: Dict[str, Hook] = {}
    for event, method_name in callbacks.items():
        method = _resolve_method(model, event, method_name)
        logger.debug("Registering %s hook for %s.%s", event, model.__name__, method_name)
        hooks[event] = _make_hook(model.__name__, event, method_name, method)
    return hooks


# -----------------------------
# Validators
# -----------------------------


def _length_of(value: Any) -> int:
    try:
        return len(value)
    except TypeError:
        return len(str(value))


def _make_validator(model_name: str, field: str, rule: ValidationRule) -> Validator:
    def _validate(instance: Any) -> None:
        value = getattr(instance, field, None)

        if rule.presence_required and not value:
            raise ValidationError({field: f"{field} can't be empty"}, model=model_name)

        if rule.length_range is not None and value is not None:
            if not rule.length_range.contains(_length_of(value)):
                raise ValidationError({field: rule.length_range.describe(field)}, model=model_name)

    _validate.__name__ = f"validate_{field}"
    return _validate


def build_validators(model: type, validations: Mapping[str, ValidationRule]) -> Dict[str, Validator]:
    """One checker per field; each raises ValidationError on its first failing rule."""
    validators: Dict[str, Validator] = {}
    for field, rule in validations.items():
        logger.debug("Building validator for %s.%s", model.__name__, field)
        validators[field] = _make_validator(model.__name__, field, rule)
    return validators


def run_validators(model_name: str, validators: Mapping[str, Validator], instance: Any) -> None:
    """
    Run every field validator and raise one ValidationError carrying all
    field failures. Fields are independent: one failing field does not stop
    the others from being checked.
    """
    errors: Dict[str, str] = {}
    for field, validator in validators.items():
        try:
            validator(instance)
        except ValidationError as e:
            errors.update(e.errors)
    if errors:
        logger.warning("Validation failed for %s: %s", model_name, "; ".join(errors.values()))
        raise ValidationError(errors, model=model_name)
