"""
Naming conventions shared by the ORM and the web layer.

Pluralization is naive: a trailing "s" is added or removed,
nothing else. "Person" maps to table "persons".
"""

from __future__ import annotations

import re

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def underscore(name: str) -> str:
    """CamelCase / camelCase -> snake_case. Already-snake names pass through."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def camelize(name: str) -> str:
    """snake_case -> CamelCase."""
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def pluralize(word: str) -> str:
    return word + "s"


def singularize(word: str) -> str:
    if len(word) > 1 and word.endswith("s"):
        return word[:-1]
    return word


def table_name_for_class(class_name: str) -> str:
    return pluralize(class_name.lower())


def foreign_key_for_class(class_name: str) -> str:
    return f"{underscore(class_name)}_id"
