# src/railcar/orm/definition.py

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AssociationKind(str, Enum):
    HAS_MANY = "has_many"
    BELONGS_TO = "belongs_to"


# Options understood by the association wirer.
ASSOCIATION_OPTIONS = frozenset({"through", "foreign_key", "as", "on"})

# Lifecycle events the persistence layer dispatches.
LIFECYCLE_EVENTS = frozenset(
    {
        "before_save",
        "after_save",
        "before_create",
        "after_create",
        "before_update",
        "after_update",
        "before_destroy",
        "after_destroy",
        "after_create_commit",
        "after_update_commit",
        "after_destroy_commit",
    }
)

COMMIT_TIMINGS = ("create", "update", "destroy")


class AssociationSpec(BaseModel):
    """
    One normalized association declaration.

    kind:
        has_many or belongs_to.
    target_name:
        Name as declared on the model ("posts", "user", "Comment"). Resolved to
        a model class by the association wirer, not here.
    options:
        Declared options (through, foreign_key, as, on). Validated by the wirer.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: AssociationKind
    target_name: str = Field(..., min_length=1)
    options: Dict[str, Any] = Field(default_factory=dict)

    # noinspection PyNestedDecorators
    @field_validator("target_name")
    @classmethod
    def _validate_target_name(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("association target may not be empty/whitespace")
        return s

    @property
    def accessor_name(self) -> str:
        return str(self.options.get("as") or self.target_name)


class LengthRange(BaseModel):
    """Inclusive length bounds; either side may be open."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    minimum: Optional[int] = Field(default=None, ge=0)
    maximum: Optional[int] = Field(default=None, ge=0)
    exact: bool = False

    @model_validator(mode="after")
    def _validate_bounds(self) -> "LengthRange":
        if self.minimum is None and self.maximum is None:
            raise ValueError("length range needs at least one bound")
        if self.minimum is not None and self.maximum is not None and self.minimum > self.maximum:
            raise ValueError(f"length range minimum {self.minimum} exceeds maximum {self.maximum}")
        if self.exact and self.minimum != self.maximum:
            raise ValueError("exact length requires minimum == maximum")
        return self

    @classmethod
    def exactly(cls, n: int) -> "LengthRange":
        return cls(minimum=n, maximum=n, exact=True)

    def contains(self, n: int) -> bool:
        if self.minimum is not None and n < self.minimum:
            return False
        if self.maximum is not None and n > self.maximum:
            return False
        return True

    def describe(self, field: str) -> str:
        if self.exact:
            return f"{field} length must be exactly {self.minimum}"
        if self.minimum is not None and self.maximum is not None:
            return f"{field} length must be between {self.minimum} and {self.maximum}"
        if self.minimum is not None:
            return f"{field} length must be at least {self.minimum}"
        return f"{field} length must be at most {self.maximum}"


class ValidationRule(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    presence_required: bool = False
    length_range: Optional[LengthRange] = None


class ModelDefinition(BaseModel):
    """
    Parsed declarative metadata of one model class.

    callbacks maps a resolved lifecycle event name (e.g. "after_create_commit")
    to the name of the instance method to invoke.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    associations: List[AssociationSpec] = Field(default_factory=list)
    validations: Dict[str, ValidationRule] = Field(default_factory=dict)
    callbacks: Dict[str, str] = Field(default_factory=dict)

    def associations_of(self, kind: AssociationKind) -> List[AssociationSpec]:
        return [a for a in self.associations if a.kind is kind]

    def find_association(self, accessor: str) -> Optional[AssociationSpec]:
        for a in self.associations:
            if a.accessor_name == accessor:
                return a
        return None
