from __future__ import annotations

from typing import Dict, Iterator, Mapping, Optional

from railcar.exceptions import RegistryError
from railcar.logs import getLogger
from .definition import ModelDefinition

logger = getLogger(__name__)


class MetadataRegistry(Mapping[str, ModelDefinition]):
    """
    Model name -> ModelDefinition.

    Entries are inserted once by the definition parser and never removed.
    The registry is owned by a BootstrapContext; there is no process-wide
    instance.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, ModelDefinition] = {}

    def register(self, model_name: str, definition: ModelDefinition) -> None:
        if model_name in self._definitions:
            raise RegistryError(f"Model definition for '{model_name}' is already registered")
        self._definitions[model_name] = definition
        logger.debug("Registered definition for %s", model_name)

    def get_definition(self, model_name: str) -> Optional[ModelDefinition]:
        return self._definitions.get(model_name)

    def __getitem__(self, model_name: str) -> ModelDefinition:
        return self._definitions[model_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"MetadataRegistry({sorted(self._definitions)})"
