from __future__ import annotations

import logging
from typing import Optional

from railcar.config import LoggingSettings

_ROOT_NAME = "railcar"


def getLogger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a logger below the `railcar` namespace.

    Module names outside the package (e.g. application models) are nested
    under `railcar.app` so a single configure_logging() call covers them.
    """
    if not name:
        return logging.getLogger(_ROOT_NAME)
    if name == _ROOT_NAME or name.startswith(_ROOT_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_NAME}.app.{name}")


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Attach a stream handler to the `railcar` logger using the configured level and format."""
    root = logging.getLogger(_ROOT_NAME)
    sql_logger = logging.getLogger("sqlalchemy.engine")

    for lg in (root, sql_logger):
        for old in list(lg.handlers):
            if getattr(old, "_railcar_handler", False):
                lg.removeHandler(old)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(settings.format))
    handler._railcar_handler = True  # type: ignore[attr-defined]

    root.setLevel(settings.level)
    root.addHandler(handler)

    sql_logger.setLevel(logging.INFO if settings.sql_echo else logging.WARNING)
    if settings.sql_echo:
        sql_logger.addHandler(handler)

    return root
