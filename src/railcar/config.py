# src/railcar/config.py
from __future__ import annotations

import pickle
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional, cast
import contextvars

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource
from sqlalchemy.engine import URL

from railcar.exceptions import RailcarRuntimeError


class ConfigError(RailcarRuntimeError):
    """Configuration-related error."""
    pass


# ---------------------------------------------------------------------------
# Config file support (context + loader)
# ---------------------------------------------------------------------------

_CONFIG_FILE_CTX: contextvars.ContextVar[Path | None] = contextvars.ContextVar(
    "RAILCAR_CONFIG_FILE_CTX",
    default=None,
)


def _find_default_config_file() -> Path | None:
    """Look for config file in current working directory."""
    cwd = Path.cwd()
    for name in ("config.toml", "config.yaml", "config.yml"):
        p = cwd / name
        if p.is_file():
            return p
    return None


def _load_toml(path: Path) -> dict[str, Any]:
    import tomllib

    data = tomllib.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} did not parse into a dict")
    return cast(dict[str, Any], data)


def _load_yaml(path: Path) -> dict[str, Any]:
    import yaml

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} did not parse into a dict")
    return cast(dict[str, Any], data)


def _load_config_file(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    if suffix == ".toml":
        return _load_toml(path)
    if suffix in {".yaml", ".yml"}:
        return _load_yaml(path)
    raise ConfigError(f"Unsupported config file type: {path} (expected .toml/.yaml/.yml)")


class _ConfigFileSettingsSource(PydanticBaseSettingsSource):
    """Settings source that loads from an optional config file.

    This source is inserted BELOW secrets and ABOVE defaults.
    """

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        # Not used; we provide a full dict in __call__.
        raise NotImplementedError

    def __call__(self) -> dict[str, Any]:
        path = _CONFIG_FILE_CTX.get()
        if path is None:
            return {}

        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")

        return _load_config_file(path)


@contextmanager
def _config_file_context(path: Path | None) -> Any:
    token = _CONFIG_FILE_CTX.set(path)
    try:
        yield
    finally:
        _CONFIG_FILE_CTX.reset(token)


# ─────────────────────────────────────────────────────────────
# Section configs
# ─────────────────────────────────────────────────────────────


class LoggingSettings(BaseModel):
    level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    format: str = "[%(asctime)s] %(levelname)-8s %(name)-32s: %(message)s"
    sql_echo: bool = Field(False, description="Log every SQL statement issued by the engine.")


class HttpSettings(BaseModel):
    host: str = Field("127.0.0.1", description="Address the HTTP server binds to.")
    port: int = Field(3000, description="Port the HTTP server listens on.", gt=0, lt=65536)


Dialect = Literal["postgresql", "sqlite"]


class DatabaseSettings(BaseModel):
    """
    SQLAlchemy database configuration.

    Preference order:
    1) If `url` is set, use it as-is.
    2) Otherwise build a SQLAlchemy URL from the components.
    """

    url: str | None = Field(default=None, description="Full SQLAlchemy URL; overrides all components.")

    dialect: Dialect = Field("postgresql", description="Database dialect.")
    driver: str | None = Field(
        "psycopg",
        description="Driver name, e.g. psycopg/psycopg2 for Postgres, pysqlite for SQLite.",
    )

    host: str = Field("localhost", description="Database host.")
    port: int = Field(5432, description="Database port.")
    database: str = Field("railcar_development", description="Database name.")
    username: str | None = Field("postgres", description="Database username.")
    password: SecretStr | None = Field(default=None, description="Database password (prefer secrets_dir).")

    sqlite_path: Path | None = Field(
        default=None,
        description="Path to SQLite file. If None, uses an in-memory DB.",
    )

    pool_size: int = 5
    max_overflow: int = 10
    pool_pre_ping: bool = True

    def sqlalchemy_url(self) -> URL | str:
        if self.url:
            return self.url

        if self.dialect == "sqlite":
            if self.sqlite_path is None:
                return URL.create("sqlite+pysqlite", database=":memory:")
            return URL.create("sqlite+pysqlite", database=str(self.sqlite_path))

        driver_suffix = f"+{self.driver}" if self.driver else ""
        return URL.create(
            drivername=f"{self.dialect}{driver_suffix}",
            username=self.username,
            password=self.password.get_secret_value() if self.password else None,
            host=self.host,
            port=self.port,
            database=self.database,
        )


class ApplicationSettings(BaseModel):
    models_package: str | None = Field(None, description="Importable package holding the model modules.")
    models_path: Path | None = Field(
        None,
        description="Directory of model modules (dev fallback). app/models is used when no source is set.",
    )
    controllers_package: str = Field("app.controllers", description="Package holding controller modules.")
    views_dir: Path = Field(Path("app/views"), description="Root directory of view templates.")
    default_layout: str = Field("application", description="Layout wrapped around rendered views.")
    routes: str = Field(
        "config.routes:router",
        description="Python reference to the Router (or a callable returning one), e.g. 'config.routes:router'.",
    )

    @model_validator(mode="after")
    def _validate_single_model_source(self) -> "ApplicationSettings":
        if self.models_package is not None and self.models_path is not None:
            raise ValueError("At most one of `models_package` or `models_path` may be provided.")
        return self


class OrmSettings(BaseModel):
    strict_definitions: bool = Field(
        False,
        description="Raise ParseError on unrecognised declarative metadata instead of ignoring it.",
    )
    refine_column_types: bool = Field(
        False,
        description=(
            "Use reflected SQL types for non-string columns instead of the name-based String default. "
            "Recommended on PostgreSQL, where integer foreign keys must not bind as VARCHAR."
        ),
    )


# ─────────────────────────────────────────────────────────────
# Top-level settings
# ─────────────────────────────────────────────────────────────


class AppSettings(BaseSettings):
    """
    Canonical application configuration for a railcar application.

    Precedence (highest → lowest):

    1. Init kwargs (tests/overrides)
    2. Environment variables
    3. .env and .env.local
    4. Secret files in /run/secrets/railcar
    5. Config file
    6. Defaults in this class
    """

    model_config = SettingsConfigDict(
        env_prefix="RAILCAR_",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        secrets_dir="/run/secrets/railcar",
        extra="ignore",
        validate_default=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Earlier sources override later sources.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
            _ConfigFileSettingsSource(settings_cls),
        )

    app_name: str = "railcar"
    environment: Literal["development", "test", "production"] = "development"
    debug: bool = False

    logging: LoggingSettings = LoggingSettings()
    http: HttpSettings = HttpSettings()
    database: DatabaseSettings = DatabaseSettings()
    app: ApplicationSettings = ApplicationSettings()
    orm: OrmSettings = OrmSettings()

    @property
    def show_error_details(self) -> bool:
        return self.debug or self.environment == "development"


@lru_cache(maxsize=16)
def _get_settings_cached(config_file_str: str | None, overrides_blob: bytes) -> AppSettings:
    overrides = pickle.loads(overrides_blob)
    config_path = Path(config_file_str) if config_file_str is not None else None
    with _config_file_context(config_path):
        return AppSettings(**overrides)


def get_settings(*, config_file: str | Path | None = None, **overrides: Any) -> AppSettings:
    """
    Cached accessor for process-wide settings.

    `overrides` are init kwargs → highest precedence (handy in tests).

    If `config_file` is None, we look in CWD for: config.toml, config.yaml, config.yml.
    If none found, config-file source is disabled and defaults apply.
    """
    resolved: Optional[Path]
    if config_file is None:
        resolved = _find_default_config_file()
    else:
        resolved = Path(config_file)

    overrides_blob = pickle.dumps(overrides, protocol=pickle.HIGHEST_PROTOCOL)
    return _get_settings_cached(str(resolved) if resolved is not None else None, overrides_blob)


def clear_settings_cache() -> None:
    _get_settings_cached.cache_clear()
