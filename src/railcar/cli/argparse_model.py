"""
Build argparse options from pydantic command models.

Every field of a command model becomes a `--flag` (underscores turned into
dashes); argparse parses, pydantic validates:

    add_model_to_parser(parser, ServerCommand)
    cmd = command_from_namespace(ServerCommand, parser.parse_args(argv))
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Literal, Tuple, Type, TypeVar, Union, cast, get_args, get_origin

from pydantic import BaseModel

C = TypeVar("C", bound=BaseModel)


def _unwrap_optional(tp: Any) -> Any:
    if get_origin(tp) is Union:
        args = [a for a in get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return tp


def _literal_choices(tp: Any) -> Tuple[Any, ...]:
    if get_origin(tp) is Literal:
        return get_args(tp)
    return ()


def _argparse_type(tp: Any) -> type:
    # pydantic validates anything richer (addresses, enums) from the string
    if tp in (str, int, float, Path):
        return cast(type, tp)
    return str


def add_model_to_parser(parser: argparse.ArgumentParser, model: Type[BaseModel]) -> None:
    """Add one option per field of `model` to `parser`."""
    for name, field in model.model_fields.items():
        ann = _unwrap_optional(field.annotation if field.annotation is not None else Any)
        required = field.is_required()
        default = None if required else field.default
        flag = f"--{name.replace('_', '-')}"
        help_text = field.description or ""

        if ann is bool:
            parser.add_argument(
                flag,
                dest=name,
                action=argparse.BooleanOptionalAction,
                default=bool(default),
                help=help_text,
            )
            continue

        choices = _literal_choices(ann)
        if choices:
            parser.add_argument(
                flag,
                dest=name,
                choices=list(choices),
                default=default,
                required=required,
                help=help_text,
            )
            continue

        if get_origin(ann) is list:
            args = get_args(ann)
            parser.add_argument(
                flag,
                dest=name,
                nargs="*",
                type=_argparse_type(args[0] if args else str),
                default=default,
                required=required,
                help=help_text,
            )
            continue

        parser.add_argument(
            flag,
            dest=name,
            type=_argparse_type(ann),
            default=default,
            required=required,
            help=help_text,
        )


def command_from_namespace(model: Type[C], ns: argparse.Namespace) -> C:
    """Validate the parsed options that belong to `model`; subcommand bookkeeping is dropped."""
    data = {k: v for k, v in vars(ns).items() if k in model.model_fields}
    return model.model_validate(data)
