# src/railcar/__main__.py
from __future__ import annotations

import argparse

from railcar.cli.argparse_model import add_model_to_parser, command_from_namespace
from railcar.cli.server import RoutesCommand, ServerCommand, handle_routes, handle_server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="railcar")
    sub = parser.add_subparsers(dest="command", required=True)

    server_p = sub.add_parser("server", help="Bootstrap the models and start the HTTP server.")
    add_model_to_parser(server_p, ServerCommand)

    routes_p = sub.add_parser("routes", help="Print the route table.")
    add_model_to_parser(routes_p, RoutesCommand)

    return parser


def main(argv: list[str] | None = None) -> None:
    ns = build_parser().parse_args(argv)

    if ns.command == "server":
        handle_server(command_from_namespace(ServerCommand, ns))
        return

    if ns.command == "routes":
        handle_routes(command_from_namespace(RoutesCommand, ns))
        return

    raise RuntimeError(f"Unknown command: {ns.command}")


if __name__ == "__main__":
    main()
