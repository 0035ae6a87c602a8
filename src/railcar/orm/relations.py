from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Type

from .definition import AssociationKind

if TYPE_CHECKING:
    from .base import ActiveRecord
    from .persistence import Persistence


@dataclass(frozen=True, slots=True)
class Association:
    """
    An established association between two registered models.

    has_many:
        `foreign_key` lives on the target table and points at source.id.
    belongs_to:
        `foreign_key` lives on the source table and points at target.id.
    has_many through:
        `through` is the source's has_many association to the join model;
        `foreign_key` lives on the target table and points at join.id.
    """

    kind: AssociationKind
    name: str
    source: Type["ActiveRecord"]
    target: Type["ActiveRecord"]
    foreign_key: str
    through: Optional["Association"] = None
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_through(self) -> bool:
        return self.through is not None

    def describe(self) -> str:
        via = f" through {self.through.name}" if self.through is not None else ""
        return f"{self.source.__name__} {self.kind.value} {self.target.__name__} as {self.name}{via}"


class AssociationAccessor:
    """
    Class attribute installed under the association name.

    Reading it from an instance runs the association query:
    has_many -> list of target records, belongs_to -> record or None.
    """

    def __init__(self, association: Association, persistence: "Persistence") -> None:
        self.association = association
        self._persistence = persistence

    def __get__(self, instance: Optional["ActiveRecord"], owner: type) -> Any:
        if instance is None:
            return self
        return self._persistence.load_association(self.association, instance)

    def __repr__(self) -> str:
        return f"<AssociationAccessor {self.association.describe()}>"
