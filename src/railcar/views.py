"""
Jinja2 view renderer.

Views live under the configured views directory:

    <views_dir>/<controller>/<action>.html
    <views_dir>/layouts/<layout>.html

The rendered view is handed to the layout as `body` (already marked safe).
"""

from __future__ import annotations

import time
from datetime import date, datetime
from pathlib import Path
from typing import Any, Mapping, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape
from markupsafe import Markup

from railcar.exceptions import ControllerError
from railcar.logs import getLogger

logger = getLogger(__name__)

TEMPLATE_SUFFIX = ".html"


def _date_filter(value: Any, fmt: str = "%d %b %Y") -> str:
    """Format a date or datetime."""
    if value is None:
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return str(value)
    if isinstance(value, (date, datetime)):
        return value.strftime(fmt)
    return str(value)


def create_environment(views_dir: Path) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(views_dir)),
        autoescape=select_autoescape(["html", "htm", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["date"] = _date_filter
    return env


class ViewRenderer:
    def __init__(self, views_dir: str | Path, *, default_layout: Optional[str] = "application") -> None:
        self.views_dir = Path(views_dir)
        self.default_layout = default_layout
        self.env = create_environment(self.views_dir)

    def _template(self, name: str, kind: str) -> Any:
        try:
            return self.env.get_template(name)
        except TemplateNotFound as e:
            logger.error("%s not found: %s", kind, self.views_dir / name)
            raise ControllerError(f"{kind} not found: {name}") from e

    def render(
        self,
        controller_path: str,
        view: str,
        locals: Optional[Mapping[str, Any]] = None,
        *,
        layout: Optional[str] = None,
        use_layout: bool = True,
    ) -> str:
        """
        Render `<controller_path>/<view>.html`, wrapped in the layout unless
        `use_layout` is False. `layout=None` means the default layout.
        """
        view_name = f"{controller_path}/{view}{TEMPLATE_SUFFIX}"
        layout = layout if layout is not None else self.default_layout
        layout_name = f"layouts/{layout}{TEMPLATE_SUFFIX}" if (use_layout and layout) else None

        view_template = self._template(view_name, "View")
        layout_template = self._template(layout_name, "Layout") if layout_name else None

        context = dict(locals or {})
        started = time.perf_counter()
        body = view_template.render(context)
        if layout_template is not None:
            body = layout_template.render({**context, "body": Markup(body)})
        logger.debug(
            "Rendered %s%s (%.1fms)",
            view_name,
            f" within {layout_name}" if layout_name else "",
            (time.perf_counter() - started) * 1000.0,
        )
        return body
