from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from railcar.cli.argparse_model import add_model_to_parser, command_from_namespace

LogLevel = Literal[
    "CRITICAL",
    "ERROR",
    "WARNING",
    "INFO",
    "DEBUG",
    "critical",
    "error",
    "warning",
    "info",
    "debug",
]


class ServerCommand(BaseModel):
    host: Optional[str] = Field(None, description="Address to bind the HTTP server to.")
    port: Optional[int] = Field(None, description="Port to listen on.", gt=0, lt=65536)
    config_file: Optional[str] = Field(None, description="Optional railcar config file (toml/yaml).")
    environment: Optional[Literal["development", "test", "production"]] = Field(
        None, description="Environment override."
    )
    loglevel: Optional[LogLevel] = Field(None, description="Logging level override.")


class RoutesCommand(BaseModel):
    config_file: Optional[str] = Field(None, description="Optional railcar config file (toml/yaml).")


def _ensure_cwd_importable() -> None:
    # app packages (config.routes, app.controllers, ...) live in the project directory
    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)


def handle_server(command: ServerCommand) -> None:
    from railcar.config import get_settings

    overrides: dict[str, Any] = {}
    if command.loglevel is not None:
        overrides["logging"] = {"level": command.loglevel.upper()}
    if command.environment is not None:
        overrides["environment"] = command.environment
    http: dict[str, Any] = {}
    if command.host is not None:
        http["host"] = command.host
    if command.port is not None:
        http["port"] = command.port
    if http:
        overrides["http"] = http

    settings = get_settings(config_file=command.config_file, **overrides)

    _ensure_cwd_importable()
    from railcar.application import Application

    Application(settings).start()


def handle_routes(command: RoutesCommand) -> None:
    from railcar.config import get_settings

    settings = get_settings(config_file=command.config_file)

    _ensure_cwd_importable()
    from railcar.application import load_router

    load_router(settings.app.routes).print_routes()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="railcar-server")
    add_model_to_parser(parser, ServerCommand)
    ns = parser.parse_args(argv)
    handle_server(command_from_namespace(ServerCommand, ns))
