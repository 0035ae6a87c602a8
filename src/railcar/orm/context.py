from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Type

from railcar.exceptions import RailcarRuntimeError
from .registry import MetadataRegistry

if TYPE_CHECKING:
    from .base import ActiveRecord
    from .persistence import Persistence


@dataclass(slots=True)
class ModelState:
    """Per-model progress flags; each gates one idempotent bootstrap step."""

    definition_parsed: bool = False
    schema_loaded: bool = False
    associations_wired: bool = False


class BootstrapContext:
    """
    Everything one bootstrap run owns: the metadata registry, per-model
    state, the persistence layer and the ordered list of model classes.

    A fresh context per application (or per test) keeps runs independent.
    """

    def __init__(self, persistence: Optional["Persistence"] = None, *, strict: bool = False) -> None:
        self.registry = MetadataRegistry()
        self.persistence = persistence
        self.strict = strict
        self.models: List[Type["ActiveRecord"]] = []
        self._states: Dict[Type["ActiveRecord"], ModelState] = {}

    def add_model(self, model: Type["ActiveRecord"]) -> None:
        if model not in self._states:
            self.models.append(model)
            self._states[model] = ModelState()

    def state(self, model: Type["ActiveRecord"]) -> ModelState:
        try:
            return self._states[model]
        except KeyError:
            self.add_model(model)
            return self._states[model]

    def require_persistence(self) -> "Persistence":
        if self.persistence is None:
            raise RailcarRuntimeError("BootstrapContext has no persistence layer attached")
        return self.persistence

    def model_named(self, name: str) -> Optional[Type["ActiveRecord"]]:
        for m in self.models:
            if m.__name__ == name:
                return m
        return None
