try:
    from ._version import version as __version__  # populated by setuptools-scm
except ModuleNotFoundError:
    __version__ = "0.0.0"

from .application import Application
from .config import AppSettings, get_settings
from .controller import ApplicationController
from .orm import ActiveRecord, bootstrap_models
from .routing import Router

__all__ = [
    "__version__",
    "ActiveRecord",
    "AppSettings",
    "Application",
    "ApplicationController",
    "Router",
    "bootstrap_models",
    "get_settings",
]
