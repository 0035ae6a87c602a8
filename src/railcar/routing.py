# src/railcar/routing.py

from __future__ import annotations

"""
Rails-style router on top of Starlette.

    router = Router()
    router.get("/", "HomeController#index")
    router.resources("users", only=["index", "show"])

Routes are plain data until build() turns them into Starlette routes; each
endpoint resolves its controller class, runs the action and maps framework
errors to HTTP responses.
"""

import json
import re
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from importlib import import_module
from typing import Any, Dict, List, Mapping, Optional, Sequence, TextIO, Type

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route as StarletteRoute

from railcar.controller import ApplicationController
from railcar.exceptions import ControllerError, RecordNotFound, RoutingError, ValidationError
from railcar.inflection import camelize, underscore
from railcar.logs import getLogger
from railcar.views import ViewRenderer

logger = getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
RESOURCE_ACTIONS = ("index", "new", "create", "show", "edit", "update", "destroy")

_PARAM = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


@dataclass(frozen=True, slots=True)
class Route:
    method: str
    path: str
    controller: str
    action: str

    @property
    def starlette_path(self) -> str:
        """Path with ":id" segments written as Starlette "{id}" placeholders."""
        return _PARAM.sub(r"{\1}", self.path)

    @property
    def target(self) -> str:
        return f"{self.controller}#{self.action}"

    @property
    def name(self) -> str:
        return f"{underscore(self.controller)}#{self.action}:{self.method}"


def parse_target(target: str) -> tuple[str, str]:
    """'UsersController#show' -> ('UsersController', 'show')."""
    controller, sep, action = target.strip().partition("#")
    controller, action = controller.strip(), action.strip()
    if not sep or not controller or not action:
        raise RoutingError(f"Invalid route target '{target}'. Expected 'Controller#action'.")
    if not action.isidentifier():
        raise RoutingError(f"Invalid action name '{action}' in route target '{target}'")
    return controller, action


# -----------------------------
# Controller resolution
# -----------------------------


class ControllerResolver:
    """
    Controller name -> class.

    Explicitly registered controllers win; otherwise "UsersController" is
    imported from `<package>.users_controller`.
    """

    def __init__(
        self,
        package: Optional[str] = None,
        controllers: Optional[Mapping[str, Type[ApplicationController]]] = None,
    ) -> None:
        self.package = package
        self._cache: Dict[str, Type[ApplicationController]] = dict(controllers or {})

    def register(self, controller: Type[ApplicationController], name: Optional[str] = None) -> None:
        self._cache[name or controller.__name__] = controller

    def resolve(self, name: str) -> Type[ApplicationController]:
        cached = self._cache.get(name)
        if cached is not None:
            return cached
        if self.package is None:
            raise ControllerError(f"Unknown controller '{name}' and no controllers package configured")

        module_path = f"{self.package}.{underscore(name)}"
        try:
            module = import_module(module_path)
        except Exception as e:
            raise ControllerError(f"Failed to import module '{module_path}' for controller '{name}': {e}") from e

        try:
            cls = getattr(module, name)
        except AttributeError as e:
            raise ControllerError(f"Module '{module_path}' has no attribute '{name}'") from e

        if not (isinstance(cls, type) and issubclass(cls, ApplicationController)):
            raise ControllerError(
                f"Controller '{module_path}.{name}' must subclass railcar.controller.ApplicationController"
            )
        self._cache[name] = cls
        return cls


# -----------------------------
# Request handling
# -----------------------------


async def request_params(request: Request) -> Dict[str, Any]:
    """Query string, then body, then path parameters (path wins)."""
    params: Dict[str, Any] = dict(request.query_params)

    content_type = request.headers.get("content-type", "")
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        if "application/json" in content_type:
            raw = await request.body()
            if raw:
                try:
                    body = json.loads(raw)
                except ValueError as e:
                    raise RoutingError(f"Malformed JSON body: {e}") from e
                if isinstance(body, Mapping):
                    params.update(body)
        elif "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
            form = await request.form()
            params.update(dict(form))

    params.update(request.path_params)
    return params


def _error_response(status: int, error: str, message: Optional[str], **extra: Any) -> JSONResponse:
    payload: Dict[str, Any] = {"error": error}
    if message is not None:
        payload["message"] = message
    payload.update(extra)
    return JSONResponse(payload, status_code=status)


def make_endpoint(
    route: Route,
    resolver: ControllerResolver,
    *,
    views: Optional[ViewRenderer] = None,
    show_error_details: bool = False,
) -> Any:
    async def endpoint(request: Request) -> Response:
        started = time.perf_counter()
        client = request.client.host if request.client else "-"
        url = request.url.path + (f"?{request.url.query}" if request.url.query else "")
        logger.info(
            'Started %s "%s" for %s at %s',
            request.method,
            url,
            client,
            datetime.now(timezone.utc).isoformat(),
        )

        response: Response
        try:
            params = await request_params(request)
            if params:
                logger.info("  Parameters: %s", json.dumps(params, default=str))
            controller_cls = resolver.resolve(route.controller)
            fmt = "JSON" if "application/json" in request.headers.get("accept", "") else "HTML"
            logger.info("Processing by %s#%s as %s", route.controller, route.action, fmt)
            controller = controller_cls(request, params, views=views)
            response = await controller.process_action(route.action)
        except ValidationError as e:
            logger.warning("Validation failed in %s: %s", route.target, e)
            response = _error_response(422, "Unprocessable Entity", str(e), errors=e.errors)
        except RecordNotFound as e:
            logger.warning("Record not found in %s: %s", route.target, e)
            response = _error_response(404, "Not Found", str(e))
        except RoutingError as e:
            logger.warning("Bad request for %s: %s", route.target, e)
            response = _error_response(400, "Bad Request", str(e))
        except Exception as e:
            logger.exception("Error processing %s %s: %s", request.method, url, e)
            response = _error_response(
                500,
                "Internal Server Error",
                str(e) if show_error_details else None,
            )

        status = response.status_code
        try:
            phrase = HTTPStatus(status).phrase
        except ValueError:
            phrase = "Unknown Status"
        duration_ms = (time.perf_counter() - started) * 1000.0
        log = logger.error if status >= 400 else logger.info
        log("Completed %d %s in %.0fms", status, phrase, duration_ms)
        return response

    endpoint.__name__ = f"{route.controller}#{route.action}"
    return endpoint


# -----------------------------
# Router
# -----------------------------


class Router:
    def __init__(self) -> None:
        self.routes: List[Route] = []

    def _add_route(self, method: str, path: str, target: str) -> "Router":
        method = method.upper()
        if method not in HTTP_METHODS:
            raise RoutingError(f"Unsupported HTTP method '{method}'")
        if not path.startswith("/"):
            raise RoutingError(f"Route path must start with '/': {path!r}")
        controller, action = parse_target(target)
        logger.debug("Registering route: %s %s => %s#%s", method, path, controller, action)
        self.routes.append(Route(method, path, controller, action))
        return self

    def get(self, path: str, target: str) -> "Router":
        return self._add_route("GET", path, target)

    def post(self, path: str, target: str) -> "Router":
        return self._add_route("POST", path, target)

    def put(self, path: str, target: str) -> "Router":
        return self._add_route("PUT", path, target)

    def patch(self, path: str, target: str) -> "Router":
        return self._add_route("PATCH", path, target)

    def delete(self, path: str, target: str) -> "Router":
        return self._add_route("DELETE", path, target)

    def resources(
        self,
        name: str,
        *,
        only: Optional[Sequence[str]] = None,
        except_: Optional[Sequence[str]] = None,
        controller: Optional[str] = None,
    ) -> "Router":
        """
        RESTful routes for a resource:

            GET    /users           index
            GET    /users/new       new
            POST   /users           create
            GET    /users/:id       show
            GET    /users/:id/edit  edit
            PUT    /users/:id       update
            PATCH  /users/:id       update
            DELETE /users/:id       destroy
        """
        name = name.strip("/")
        wanted = set(only) if only is not None else set(RESOURCE_ACTIONS)
        unknown = sorted(wanted - set(RESOURCE_ACTIONS))
        if unknown:
            raise RoutingError(f"Unknown resource actions {unknown} for '{name}'")
        if except_ is not None:
            wanted -= set(except_)
        ctrl = controller or f"{camelize(name)}Controller"
        base = f"/{name}"
        member = f"{base}/:id"

        logger.info("Setting up resource routes for '%s'", name)
        if "index" in wanted:
            self.get(base, f"{ctrl}#index")
        if "new" in wanted:
            self.get(f"{base}/new", f"{ctrl}#new")
        if "create" in wanted:
            self.post(base, f"{ctrl}#create")
        if "show" in wanted:
            self.get(member, f"{ctrl}#show")
        if "edit" in wanted:
            self.get(f"{member}/edit", f"{ctrl}#edit")
        if "update" in wanted:
            self.put(member, f"{ctrl}#update")
            self.patch(member, f"{ctrl}#update")
        if "destroy" in wanted:
            self.delete(member, f"{ctrl}#destroy")
        return self

    def route_table(self) -> List[Dict[str, str]]:
        return [
            {"Method": r.method, "Path": r.path, "Controller": r.controller, "Action": r.action}
            for r in self.routes
        ]

    def print_routes(self, file: Optional[TextIO] = None) -> None:
        out = file if file is not None else sys.stdout
        rows = self.route_table()
        headers = ["Method", "Path", "Controller", "Action"]
        widths = {h: max([len(h)] + [len(row[h]) for row in rows]) for h in headers}
        logger.info("Routes:")
        print("  ".join(h.ljust(widths[h]) for h in headers).rstrip(), file=out)
        for row in rows:
            print("  ".join(row[h].ljust(widths[h]) for h in headers).rstrip(), file=out)

    def build(
        self,
        resolver: ControllerResolver,
        *,
        views: Optional[ViewRenderer] = None,
        show_error_details: bool = False,
    ) -> List[StarletteRoute]:
        return [
            StarletteRoute(
                r.starlette_path,
                make_endpoint(r, resolver, views=views, show_error_details=show_error_details),
                methods=[r.method],
                name=r.name,
            )
            for r in self.routes
        ]
