# src/railcar/orm/bootstrap.py

from __future__ import annotations

"""
Bootstrap orchestrator.

Four phases, each finishing for every model before the next starts:

    0. import     discover model classes (explicit list, package, or folder)
    1. parse      declarations -> ModelDefinition in the context registry
    2. init       introspect tables, build validators/hooks, register
    3. associate  wire has_many / belongs_to / through

Every failure is fatal: it is logged and re-raised, and the server must not
start with a partially bootstrapped model set.
"""

import importlib
import inspect
import pkgutil
import sys
from contextlib import contextmanager
from importlib import import_module
from pathlib import Path
from types import ModuleType
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, Type

from railcar.database import DbHandle
from railcar.exceptions import ModelLoadError
from railcar.logs import getLogger

from .associations import setup_associations
from .base import ActiveRecord
from .context import BootstrapContext
from .initializer import init_model
from .parser import parse_definitions
from .persistence import Persistence

logger = getLogger(__name__)

ModelList = Sequence[Type[ActiveRecord]]


# -----------------------------
# Discovery
# -----------------------------


@contextmanager
def _temporary_sys_path(path: Path) -> Iterator[None]:
    """
    Temporarily prepend `path` to sys.path. Used only for raw folder mode.
    """
    p = str(path)
    old = list(sys.path)
    sys.path.insert(0, p)
    try:
        yield
    finally:
        sys.path[:] = old


def models_in_module(module: ModuleType) -> List[Type[ActiveRecord]]:
    """Concrete ActiveRecord subclasses defined (not merely imported) in `module`."""
    found: List[Type[ActiveRecord]] = []
    for _, obj in inspect.getmembers(module, inspect.isclass):
        if obj.__module__ != module.__name__:
            continue
        if issubclass(obj, ActiveRecord) and not obj.is_abstract():
            found.append(obj)
    return found


def _collect(
    module_names: Iterable[str],
    importer: Callable[[str], ModuleType],
) -> List[Type[ActiveRecord]]:
    models: List[Type[ActiveRecord]] = []
    errors: List[Tuple[str, str]] = []

    for module_name in module_names:
        try:
            module = importer(module_name)
        except Exception as e:
            logger.error("Failed to import model module %s: %s", module_name, e)
            errors.append((module_name, f"{type(e).__name__}: {e}"))
            continue

        found = models_in_module(module)
        if not found:
            logger.warning("Module %s does not define an ActiveRecord model", module_name)
            errors.append((module_name, "no ActiveRecord subclass defined"))
            continue

        for model in found:
            if model not in models:
                logger.debug("Imported %s from %s", model.__name__, module_name)
                models.append(model)

    if errors:
        logger.error("Encountered errors during model import. Aborting bootstrap.")
        for module_name, message in errors:
            logger.error("  - %s: %s", module_name, message)
        details = "; ".join(f"{m}: {msg}" for m, msg in errors)
        raise ModelLoadError(f"Model import failed for {len(errors)} module(s): {details}")

    return models


def discover_models_in_package(package: str) -> List[Type[ActiveRecord]]:
    """
    Import every module below an importable package and collect its models.

    The package's own __init__ is imported but not required to define models.
    """
    try:
        pkg = import_module(package)
    except Exception as e:
        raise ModelLoadError(f"Failed to import model package '{package}': {e}") from e

    pkg_path = getattr(pkg, "__path__", None)
    if pkg_path is None:
        # a plain module holding all models
        return _collect([package], lambda _: pkg)

    names = sorted(
        info.name
        for info in pkgutil.walk_packages(pkg_path, prefix=f"{pkg.__name__}.")
        if not info.ispkg and not info.name.rsplit(".", 1)[-1].startswith("_")
    )
    return _collect(names, import_module)


# Stems imported by folder mode; only these may be evicted and re-imported.
# Process-wide because sys.modules, which it guards, is process-wide.
_FOLDER_MODULES: set[str] = set()


def _import_file_module(module_name: str, folder: Path) -> ModuleType:
    cached = sys.modules.get(module_name)
    if cached is not None and module_name in _FOLDER_MODULES:
        cached_file = getattr(cached, "__file__", None)
        if cached_file is None or Path(cached_file).resolve().parent != folder:
            # same stem from another folder; import this folder's file instead
            del sys.modules[module_name]
    module = import_module(module_name)
    _FOLDER_MODULES.add(module_name)
    return module


def discover_models_in_path(path: str | Path) -> List[Type[ActiveRecord]]:
    """
    Import every `*.py` file of a folder (dev fallback) and collect its models.

    Files whose name starts with "_" are skipped. The folder is put on
    sys.path for the duration of the import so model files can import each
    other by module name.
    """
    folder = Path(path).resolve()
    if not folder.is_dir():
        raise ModelLoadError(f"Models directory not found: {folder}")

    names = sorted(p.stem for p in folder.glob("*.py") if not p.name.startswith("_"))
    importlib.invalidate_caches()
    with _temporary_sys_path(folder):
        return _collect(names, lambda name: _import_file_module(name, folder))


def discover_models(
    *,
    models: Optional[ModelList] = None,
    package: Optional[str] = None,
    path: Optional[str | Path] = None,
) -> List[Type[ActiveRecord]]:
    """Exactly one of models/package/path must be provided."""
    provided = [models is not None, package is not None, path is not None]
    if sum(provided) != 1:
        raise ModelLoadError("Exactly one of models, package, or path must be specified")

    if models is not None:
        bad = [m for m in models if not (isinstance(m, type) and issubclass(m, ActiveRecord))]
        if bad:
            raise ModelLoadError(f"Not ActiveRecord subclasses: {bad!r}")
        return list(dict.fromkeys(models))

    if package is not None:
        return discover_models_in_package(package)

    assert path is not None
    return discover_models_in_path(path)


# -----------------------------
# Phases
# -----------------------------


def import_phase(ctx: BootstrapContext, models: ModelList) -> None:
    logger.info("--- Importing Model Classes (Pass 0) ---")
    for model in models:
        ctx.add_model(model)
    logger.info("--- Finished Importing Model Classes (%d models) ---", len(ctx.models))


def parse_phase(ctx: BootstrapContext) -> None:
    logger.info("--- Parsing Definitions (Pass 1) ---")
    for model in ctx.models:
        parse_definitions(ctx, model)
    logger.info("--- Finished Parsing Definitions ---")


def init_phase(ctx: BootstrapContext, *, refine_types: bool = False) -> None:
    logger.info("--- Initializing Models (Pass 2) ---")
    for model in ctx.models:
        init_model(ctx, model, refine_types=refine_types)
    logger.info("--- Finished Initializing Models ---")


def associate_phase(ctx: BootstrapContext) -> None:
    logger.info("--- Setting up Associations (Pass 3) ---")
    for model in ctx.models:
        setup_associations(ctx, model)
    logger.info("--- Finished Setting up Associations ---")


def run_phases(ctx: BootstrapContext, *, refine_types: bool = False) -> BootstrapContext:
    """Run parse, init and associate over the models already in `ctx`."""
    for phase_name, phase in (
        ("parse", parse_phase),
        ("init", lambda c: init_phase(c, refine_types=refine_types)),
        ("associate", associate_phase),
    ):
        try:
            phase(ctx)
        except Exception:
            logger.exception("Bootstrap failed during %s phase", phase_name)
            raise
    return ctx


def bootstrap_models(
    db: DbHandle,
    *,
    models: Optional[ModelList] = None,
    package: Optional[str] = None,
    path: Optional[str | Path] = None,
    strict: bool = False,
    refine_types: bool = False,
    schema: Optional[str] = None,
) -> BootstrapContext:
    """
    Discover, parse, initialize and associate every model against `db`.

    Returns the BootstrapContext owning the registry, the per-model state and
    the persistence layer the models are now bound to.
    """
    logger.info("Loading all models...")
    try:
        discovered = discover_models(models=models, package=package, path=path)
    except ModelLoadError:
        logger.exception("Bootstrap failed during import phase")
        raise

    ctx = BootstrapContext(Persistence(db, schema=schema), strict=strict)
    import_phase(ctx, discovered)
    run_phases(ctx, refine_types=refine_types)
    logger.info("All models loaded and initialized: %s", ", ".join(m.__name__ for m in ctx.models))
    return ctx
