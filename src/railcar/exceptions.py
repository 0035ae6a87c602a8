from __future__ import annotations

from typing import Dict, Mapping, Optional


class RailcarError(Exception):
    pass


class RailcarRuntimeError(RailcarError, RuntimeError):
    pass


# -----------------------------
# Bootstrap-phase errors (fatal)
# -----------------------------


class ModelLoadError(RailcarRuntimeError):
    """Raised when model modules cannot be discovered or imported."""


class ParseError(RailcarRuntimeError):
    """Raised for malformed declarative model metadata (strict mode) or unknown hook methods."""


class RegistryError(RailcarRuntimeError):
    """Raised when the metadata registry is used inconsistently."""


class SchemaError(RailcarRuntimeError):
    """Raised when a model's backing table is missing or has no columns."""


class AssociationError(RailcarRuntimeError):
    """Raised when an association target cannot be resolved or its options are invalid."""


# -----------------------------
# Request-time errors (recoverable)
# -----------------------------


class ValidationError(RailcarError):
    """
    Raised when a record fails its validators at save time.

    `errors` maps field name -> the first failing message for that field.
    """

    def __init__(self, errors: Mapping[str, str] | str, *, model: Optional[str] = None) -> None:
        if isinstance(errors, str):
            errors = {"base": errors}
        self.errors: Dict[str, str] = dict(errors)
        self.model = model
        super().__init__("; ".join(self.errors.values()))


class HookError(RailcarError):
    """Raised when a lifecycle callback fails; the triggering operation is aborted."""

    def __init__(self, message: str, *, model: str, event: str, method: str) -> None:
        super().__init__(message)
        self.model = model
        self.event = event
        self.method = method


class RecordNotFound(RailcarError):
    """Raised by `find()` when no row matches the primary key."""


class RoutingError(RailcarRuntimeError):
    """Raised for malformed route declarations."""


class ControllerError(RailcarRuntimeError):
    """Raised when a controller or action cannot be resolved."""
