from .argparse_model import add_model_to_parser, command_from_namespace
from .server import RoutesCommand, ServerCommand, handle_routes, handle_server

__all__ = [
    "RoutesCommand",
    "ServerCommand",
    "add_model_to_parser",
    "command_from_namespace",
    "handle_routes",
    "handle_server",
]
