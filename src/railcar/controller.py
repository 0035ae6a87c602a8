from __future__ import annotations

import inspect
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Sequence

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from railcar.exceptions import ControllerError
from railcar.inflection import underscore
from railcar.logs import getLogger
from railcar.views import ViewRenderer

logger = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActionFilter:
    method: str
    only: Optional[FrozenSet[str]] = None
    except_: Optional[FrozenSet[str]] = None

    def applies_to(self, action: str) -> bool:
        if self.only is not None and action not in self.only:
            return False
        if self.except_ is not None and action in self.except_:
            return False
        return True


def _names(value: Optional[str | Sequence[str]]) -> Optional[FrozenSet[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return frozenset({value})
    return frozenset(value)


def jsonable(value: Any) -> Any:
    """Convert records, datetimes and decimals into JSON-serialisable values."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict) and not isinstance(value, type):
        return jsonable(to_dict())
    if isinstance(value, Mapping):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [jsonable(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    # blocking ORM calls stay off the event loop
    return await run_in_threadpool(fn, *args)


class ApplicationController:
    """
    Base class for controllers.

    One instance handles one request. Public attributes assigned during an
    action (or a before filter) become view locals:

        class UsersController(ApplicationController):
            def index(self):
                self.title = "Users"
                self.users = User.all()

    An action that returns None renders `<controller>/<action>.html`; one that
    returns a mapping is sent as JSON (a "status" key sets the HTTP status);
    one that returns a Response is sent as-is.
    """

    before_actions: ClassVar[List[ActionFilter]] = []
    after_actions: ClassVar[List[ActionFilter]] = []
    layout: ClassVar[Optional[str]] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        # filters are inherited but never shared with the parent
        cls.before_actions = list(cls.before_actions)
        cls.after_actions = list(cls.after_actions)

    @classmethod
    def before_action(
        cls,
        method: str,
        *,
        only: Optional[str | Sequence[str]] = None,
        except_: Optional[str | Sequence[str]] = None,
    ) -> None:
        cls.before_actions.append(ActionFilter(method, _names(only), _names(except_)))

    @classmethod
    def after_action(
        cls,
        method: str,
        *,
        only: Optional[str | Sequence[str]] = None,
        except_: Optional[str | Sequence[str]] = None,
    ) -> None:
        cls.after_actions.append(ActionFilter(method, _names(only), _names(except_)))

    @classmethod
    def controller_path(cls) -> str:
        """UsersController -> "users"; the views subdirectory."""
        name = cls.__name__
        if name.endswith("Controller"):
            name = name[: -len("Controller")]
        return underscore(name)

    @classmethod
    def action_methods(cls) -> FrozenSet[str]:
        """Public methods defined below ApplicationController."""
        base = set(dir(ApplicationController))
        return frozenset(
            name
            for name in dir(cls)
            if not name.startswith("_") and name not in base and inspect.isfunction(getattr(cls, name))
        )

    def __init__(
        self,
        request: Request,
        params: Mapping[str, Any],
        *,
        views: Optional[ViewRenderer] = None,
    ) -> None:
        self._request = request
        self._params: Dict[str, Any] = dict(params)
        self._views = views
        self._action_name: Optional[str] = None
        self._view_locals: Dict[str, Any] = {}
        self._response: Optional[Response] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_"):
            self._view_locals[name] = value
        object.__setattr__(self, name, value)

    @property
    def request(self) -> Request:
        return self._request

    @property
    def params(self) -> Dict[str, Any]:
        return self._params

    @property
    def action_name(self) -> Optional[str]:
        return self._action_name

    @property
    def view_locals(self) -> Dict[str, Any]:
        return dict(self._view_locals)

    @property
    def performed(self) -> bool:
        """True once render/redirect/json produced a response."""
        return self._response is not None

    # ------------------------------------------------------------------ #
    # Responses
    # ------------------------------------------------------------------ #

    def _respond(self, response: Response) -> Response:
        if self._response is not None:
            raise ControllerError(
                f"{type(self).__name__}#{self._action_name} rendered or redirected more than once"
            )
        self._response = response
        return response

    def render(
        self,
        view: Optional[str] = None,
        locals: Optional[Mapping[str, Any]] = None,
        layout: Optional[str] = None,
        *,
        status: int = 200,
    ) -> Response:
        if self._views is None:
            raise ControllerError(f"{type(self).__name__} has no view renderer configured")
        view = view or self._action_name
        if view is None:
            raise ControllerError("render() needs a view name outside of an action")
        html = self._views.render(
            self.controller_path(),
            view,
            {**self._view_locals, **(locals or {})},
            layout=layout if layout is not None else type(self).layout,
        )
        return self._respond(HTMLResponse(html, status_code=status))

    def redirect(self, path: str, *, status: int = 302) -> Response:
        logger.debug("Redirecting to: %s", path)
        return self._respond(RedirectResponse(path, status_code=status))

    def json(self, data: Any, status: int = 200) -> Response:
        return self._respond(JSONResponse(jsonable(data), status_code=status))

    def head(self, status: int) -> Response:
        return self._respond(Response(status_code=status))

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    async def _run_filters(self, filters: List[ActionFilter], kind: str) -> None:
        action = self._action_name or ""
        for f in filters:
            if not f.applies_to(action):
                continue
            method = getattr(self, f.method, None)
            if method is None or not callable(method):
                raise ControllerError(f"{type(self).__name__} declares {kind} filter '{f.method}' but defines no such method")
            logger.debug("Running %s filter '%s' for %s#%s", kind, f.method, type(self).__name__, action)
            started = time.perf_counter()
            try:
                await _call(method)
            except Exception as e:
                logger.error("Error in %s filter '%s': %s", kind, f.method, e)
                raise
            logger.debug("%s filter '%s' took %.1fms", kind, f.method, (time.perf_counter() - started) * 1000.0)
            if kind == "before" and self.performed:
                logger.info("Filter chain halted as '%s' rendered or redirected", f.method)
                return

    async def _invoke(self, action: str) -> Any:
        method = getattr(self, action)
        try:
            takes_params = len(inspect.signature(method).parameters) > 0
        except (TypeError, ValueError):
            takes_params = False
        if takes_params:
            return await _call(method, self._params)
        return await _call(method)

    def _finish(self, result: Any) -> Response:
        if self._response is not None:
            return self._response
        if isinstance(result, Response):
            return result
        if result is None:
            logger.debug(
                "No explicit response from %s#%s, rendering implicitly", type(self).__name__, self._action_name
            )
            return self.render()
        if isinstance(result, Mapping):
            status = result.get("status", 200)
            if not isinstance(status, int):
                status = 200
            return self.json(result, status=status)
        if isinstance(result, (list, tuple)):
            return self.json(list(result))
        if isinstance(result, str):
            return self._respond(HTMLResponse(result))
        raise ControllerError(
            f"{type(self).__name__}#{self._action_name} returned an unsupported value of type {type(result).__name__}"
        )

    async def process_action(self, action: str) -> Response:
        if action not in self.action_methods():
            raise ControllerError(f"Action '{action}' not found in {type(self).__name__}")
        self._action_name = action

        await self._run_filters(type(self).before_actions, "before")
        if self.performed:
            return self._finish(None)

        result = await self._invoke(action)
        await self._run_filters(type(self).after_actions, "after")
        return self._finish(result)
