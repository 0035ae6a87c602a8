from __future__ import annotations

from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Sequence, Type, TypeVar, Union

from railcar.exceptions import RailcarRuntimeError, RecordNotFound, ValidationError

from .persistence import ModelBinding, Persistence
from .schema import PRIMARY_KEY

R = TypeVar("R", bound="ActiveRecord")

Declaration = Union[Sequence[Any], Mapping[str, Any], Callable[[], Any], None]


class ActiveRecord:
    """
    Base class for models backed by one database table.

    Declarations are plain class attributes; the bootstrap pipeline reads
    them and binds the class to its table::

        class User(ActiveRecord):
            has_many = ["posts"]
            validates = {"name": {"presence": True, "length": {"in": "5..10"}}}
            callbacks = {"after_commit": [("notify_user", {"on": "create"})]}

            def notify_user(self):
                ...

    Column values live in `_attributes` and are read and written as plain
    attributes (`user.name`). Instances of a class that has not been
    bootstrapped cannot be created.

    A class that sets `abstract = True` in its own body is a shared base for
    other models and is never bound to a table.
    """

    abstract: ClassVar[bool] = True
    table_name: ClassVar[Optional[str]] = None
    has_many: ClassVar[Declaration] = ()
    belongs_to: ClassVar[Declaration] = ()
    validates: ClassVar[Declaration] = None
    callbacks: ClassVar[Declaration] = None

    _railcar_binding: ClassVar[Optional[ModelBinding]] = None

    def __init__(self, **attrs: Any) -> None:
        binding = type(self)._binding()
        self._attributes: Dict[str, Any] = {name: None for name in binding.attributes}
        self._persisted = False
        self._destroyed = False
        self._errors: Dict[str, str] = {}
        self.assign_attributes(attrs)

    # ------------------------------------------------------------------ #
    # Binding
    # ------------------------------------------------------------------ #

    @classmethod
    def _binding(cls) -> ModelBinding:
        binding = vars(cls).get("_railcar_binding")
        if binding is None:
            raise RailcarRuntimeError(f"Model {cls.__name__} is not initialized; run bootstrap_models() first")
        return binding

    @classmethod
    def persistence(cls) -> Persistence:
        return cls._binding().persistence

    @classmethod
    def is_abstract(cls) -> bool:
        return bool(vars(cls).get("abstract", False))

    @classmethod
    def is_initialized(cls) -> bool:
        return vars(cls).get("_railcar_binding") is not None

    @classmethod
    def column_names(cls) -> List[str]:
        return list(cls._binding().attributes)

    @classmethod
    def _instantiate(cls: Type[R], row: Mapping[str, Any]) -> R:
        obj = cls.__new__(cls)
        obj._attributes = {name: None for name in cls._binding().attributes}
        obj._attributes.update(row)
        obj._persisted = True
        obj._destroyed = False
        obj._errors = {}
        return obj

    # ------------------------------------------------------------------ #
    # Attribute access
    # ------------------------------------------------------------------ #

    def __getattr__(self, name: str) -> Any:
        # only reached when normal lookup fails
        if name.startswith("_"):
            raise AttributeError(name)
        attributes = self.__dict__.get("_attributes")
        if attributes is not None and name in attributes:
            return attributes[name]
        raise AttributeError(f"{type(self).__name__} has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_"):
            attributes = self.__dict__.get("_attributes")
            if attributes is not None and name in attributes:
                attributes[name] = value
                return
        object.__setattr__(self, name, value)

    def assign_attributes(self, attrs: Mapping[str, Any]) -> None:
        unknown = sorted(k for k in attrs if k not in self._attributes)
        if unknown:
            raise AttributeError(f"{type(self).__name__} has no columns {unknown}")
        self._attributes.update(attrs)

    @property
    def id(self) -> Any:
        return self._attributes.get(PRIMARY_KEY)

    @property
    def is_new_record(self) -> bool:
        return not self._persisted and not self._destroyed

    @property
    def is_persisted(self) -> bool:
        return self._persisted and not self._destroyed

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def errors(self) -> Dict[str, str]:
        """Field errors from the last failed save() or is_valid() call."""
        return dict(self._errors)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._attributes)

    # ------------------------------------------------------------------ #
    # Finders
    # ------------------------------------------------------------------ #

    @classmethod
    def find(cls: Type[R], id: Any) -> R:
        record = cls.persistence().select_one(cls, {PRIMARY_KEY: id})
        if record is None:
            raise RecordNotFound(f"Couldn't find {cls.__name__} with id={id}")
        return record

    @classmethod
    def find_by(cls: Type[R], **conditions: Any) -> Optional[R]:
        return cls.persistence().select_one(cls, conditions)

    @classmethod
    def where(cls: Type[R], **conditions: Any) -> List[R]:
        return cls.persistence().select_many(cls, conditions)

    @classmethod
    def all(
        cls: Type[R],
        *,
        order_by: Optional[Union[str, Sequence[str]]] = None,
        limit: Optional[int] = None,
    ) -> List[R]:
        return cls.persistence().select_many(cls, None, order_by=order_by, limit=limit)

    @classmethod
    def count(cls, **conditions: Any) -> int:
        return cls.persistence().count(cls, conditions)

    @classmethod
    def create(cls: Type[R], **attrs: Any) -> R:
        record = cls(**attrs)
        record.save()
        return record

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def is_valid(self) -> bool:
        try:
            self.persistence().validate(self)
        except ValidationError as e:
            self._errors = dict(e.errors)
            return False
        self._errors = {}
        return True

    def save(self: R) -> R:
        try:
            self.persistence().save(self)
        except ValidationError as e:
            self._errors = dict(e.errors)
            raise
        self._errors = {}
        return self

    def update(self: R, **attrs: Any) -> R:
        self.assign_attributes(attrs)
        return self.save()

    def destroy(self: R) -> R:
        self.persistence().destroy(self)
        return self

    def reload(self: R) -> R:
        if self.id is None:
            raise RecordNotFound(f"Cannot reload a {type(self).__name__} without an id")
        fresh = type(self).find(self.id)
        self._attributes.clear()
        self._attributes.update(fresh._attributes)
        self._persisted = True
        return self

    # ------------------------------------------------------------------ #

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        if self.id is None:
            return self is other
        return self.id == other.id  # type: ignore[union-attr]

    def __hash__(self) -> int:
        if self.id is None:
            return object.__hash__(self)
        return hash((type(self), self.id))

    def __repr__(self) -> str:
        attributes = self.__dict__.get("_attributes") or {}
        shown = " ".join(f"{k}={v!r}" for k, v in attributes.items())
        return f"<{type(self).__name__} {shown}>"
