# src/railcar/application.py

from __future__ import annotations

"""
Application: settings + database + models + router -> ASGI app.

    app = Application(get_settings(), router)
    app.bootstrap()      # models are bound before any request is served
    app.start()          # uvicorn

The ASGI app bootstraps on startup as well, so `uvicorn module:asgi` works.
"""

from contextlib import asynccontextmanager
from importlib import import_module
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Sequence, Type

from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from railcar.config import AppSettings, ConfigError, get_settings
from railcar.database import Database
from railcar.logs import configure_logging, getLogger
from railcar.orm import ActiveRecord, BootstrapContext, bootstrap_models
from railcar.routing import ControllerResolver, Router
from railcar.views import ViewRenderer

logger = getLogger(__name__)

DEFAULT_MODELS_PATH = Path("app/models")


def _parse_python_ref(ref: str) -> tuple[str, str]:
    """
    Accepts either:
      - "pkg.module:attr"
      - "pkg.module.attr"

    Returns (module_path, attr_name).
    """
    r = ref.strip()
    if ":" in r:
        mod, attr = r.split(":", 1)
    else:
        if "." not in r:
            raise ConfigError(f"Invalid reference '{ref}'. Expected 'pkg.module:attr' or 'pkg.module.attr'.")
        mod, attr = r.rsplit(".", 1)
    mod, attr = mod.strip(), attr.strip()
    if not mod or not attr:
        raise ConfigError(f"Invalid reference '{ref}'. Expected 'pkg.module:attr' or 'pkg.module.attr'.")
    return mod, attr


def load_router(ref: str) -> Router:
    """Import the Router named by `ref`; a zero-argument callable returning one is also accepted."""
    mod_path, attr = _parse_python_ref(ref)
    try:
        mod = import_module(mod_path)
    except Exception as e:
        raise ConfigError(f"Failed to import module '{mod_path}' for routes '{ref}': {e}") from e

    try:
        obj = getattr(mod, attr)
    except AttributeError as e:
        raise ConfigError(f"Module '{mod_path}' has no attribute '{attr}' (from '{ref}')") from e

    if not isinstance(obj, Router) and callable(obj):
        obj = obj()
    if not isinstance(obj, Router):
        raise ConfigError(f"'{ref}' did not resolve to a railcar Router (got {type(obj)!r})")
    return obj


class Application:
    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        router: Optional[Router] = None,
        *,
        database: Optional[Database] = None,
        resolver: Optional[ControllerResolver] = None,
        models: Optional[Sequence[Type[ActiveRecord]]] = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        self._router = router
        self.database = (
            database
            if database is not None
            else Database.from_settings(self.settings.database, echo=self.settings.logging.sql_echo)
        )
        self.resolver = resolver if resolver is not None else ControllerResolver(self.settings.app.controllers_package)
        self.views = ViewRenderer(self.settings.app.views_dir, default_layout=self.settings.app.default_layout)
        self.models = list(models) if models is not None else None
        self.context: Optional[BootstrapContext] = None
        self._asgi: Optional[Starlette] = None

    @property
    def router(self) -> Router:
        if self._router is None:
            self._router = load_router(self.settings.app.routes)
        return self._router

    # ------------------------------------------------------------------ #
    # Bootstrap
    # ------------------------------------------------------------------ #

    def bootstrap(self) -> BootstrapContext:
        """Load and bind every model; runs once per application."""
        if self.context is not None:
            return self.context

        app_cfg = self.settings.app
        orm_cfg = self.settings.orm
        source: dict[str, Any]
        if self.models is not None:
            source = {"models": self.models}
        elif app_cfg.models_package is not None:
            source = {"package": app_cfg.models_package}
        else:
            source = {"path": app_cfg.models_path or DEFAULT_MODELS_PATH}

        self.context = bootstrap_models(
            self.database,
            strict=orm_cfg.strict_definitions,
            refine_types=orm_cfg.refine_column_types,
            **source,
        )
        return self.context

    # ------------------------------------------------------------------ #
    # ASGI
    # ------------------------------------------------------------------ #

    async def _not_found(self, request: Request, exc: Exception) -> Response:
        message = f'No route matches [{request.method}] "{request.url.path}"'
        logger.warning(message)
        return JSONResponse({"error": "Not Found", "message": message}, status_code=404)

    async def _server_error(self, request: Request, exc: Exception) -> Response:
        logger.error("Unhandled error for %s %s: %s", request.method, request.url.path, exc)
        payload = {"error": "Internal Server Error"}
        if self.settings.show_error_details:
            payload["message"] = str(exc)
        return JSONResponse(payload, status_code=500)

    def _lifespan(self) -> Callable[[Starlette], Any]:
        @asynccontextmanager
        async def lifespan(_: Starlette) -> AsyncIterator[None]:
            self.bootstrap()
            try:
                yield
            finally:
                self.database.dispose()

        return lifespan

    def build_asgi(self) -> Starlette:
        routes = self.router.build(
            self.resolver,
            views=self.views,
            show_error_details=self.settings.show_error_details,
        )
        return Starlette(
            debug=self.settings.debug,
            routes=routes,
            exception_handlers={
                404: self._not_found,
                HTTPException: self._http_error,
                Exception: self._server_error,
            },
            lifespan=self._lifespan(),
        )

    async def _http_error(self, request: Request, exc: Exception) -> Response:
        status = getattr(exc, "status_code", 500)
        if status == 404:
            return await self._not_found(request, exc)
        return JSONResponse({"error": str(getattr(exc, "detail", exc))}, status_code=status)

    @property
    def asgi(self) -> Starlette:
        if self._asgi is None:
            self._asgi = self.build_asgi()
        return self._asgi

    # ------------------------------------------------------------------ #
    # Server
    # ------------------------------------------------------------------ #

    def start(self, *, host: Optional[str] = None, port: Optional[int] = None) -> None:
        import uvicorn

        configure_logging(self.settings.logging)
        try:
            self.bootstrap()
        except Exception:
            logger.exception("Failed to bootstrap application")
            raise

        host = host or self.settings.http.host
        port = port or self.settings.http.port
        if self.settings.show_error_details:
            self.router.print_routes()
        logger.info("Starting %s (%s) on http://%s:%d", self.settings.app_name, self.settings.environment, host, port)
        uvicorn.run(self.asgi, host=host, port=port, log_level=self.settings.logging.level.lower())
