from __future__ import annotations

import json
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Final, Mapping, Optional, Type
from urllib.parse import quote

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource

_CATALOG_PREFIX: Final[str] = "CATALOG_"

ENVIRONMENTS: Final[tuple[str, ...]] = ("dev", "staging", "prod")

_ENV_ALIASES: Final[dict[str, str]] = {
    "dev": "dev",
    "development": "dev",
    "local": "dev",
    "staging": "staging",
    "stage": "staging",
    "prod": "prod",
    "production": "prod",
}

# CATALOG_<CATEGORY>_<FIELD> environment variables override these sections.
_ENV_SECTIONS: Final[dict[str, str]] = {
    "API": "api",
    "DB": "database",
    "DATABASE": "database",
    "REDIS": "redis",
}

# Credentials come from the environment only.
_SECRET_JSON_KEYS: Final[tuple[tuple[str, str], ...]] = (
    ("database", "user"),
    ("database", "password"),
    ("redis", "password"),
)


def _canonical_env(value: Optional[str]) -> str:
    normalized = (value or "").strip().lower()
    if not normalized:
        return "dev"
    try:
        return _ENV_ALIASES[normalized]
    except KeyError:
        raise ValueError(
            f"Invalid CATALOG_ENV={value!r}; expected one of: "
            + ", ".join(ENVIRONMENTS)
        ) from None


def _deep_update(base: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _deep_update(current, value)
        else:
            base[key] = value
    return base


def _is_config_dir(path: Path) -> bool:
    return all((path / f"{env}.json").is_file() for env in ENVIRONMENTS)


def _resolve_config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Locate the directory holding ``dev.json``, ``staging.json``, ``prod.json``.

    ``CATALOG_CONFIG_DIR`` wins when set (relative paths resolve against the
    working directory); otherwise the working directory and its parents are
    searched for a ``config/`` folder with all three files.
    """

    environ = environ if environ is not None else os.environ
    explicit = environ.get(f"{_CATALOG_PREFIX}CONFIG_DIR")
    if explicit:
        path = Path(explicit).expanduser()
        return path if path.is_absolute() else (Path.cwd() / path).resolve()

    cwd = Path.cwd()
    candidates = (root / "config" for root in (cwd, *cwd.parents))
    return next((path for path in candidates if _is_config_dir(path)), cwd / "config")


def _validate_no_secrets_in_json(data: Any, *, source: Optional[Path] = None) -> None:
    where = f" ({source})" if source else ""
    if not isinstance(data, dict):
        raise ValueError(f"Config JSON must be an object at top-level{where}")

    present = sorted(
        f"{section}.{key}"
        for section, key in _SECRET_JSON_KEYS
        if isinstance(data.get(section), dict) and data[section].get(key) is not None
    )
    if present:
        raise ValueError(
            f"Secrets must not be stored in config JSON{where}: {', '.join(present)}"
        )


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(_CATALOG_PREFIX):
            continue
        category, _, field_name = key[len(_CATALOG_PREFIX) :].partition("_")
        section = _ENV_SECTIONS.get(category)
        if section is None or not field_name:
            continue
        overrides.setdefault(section, {})[field_name.lower()] = value
    return overrides


def _secret_value(secret: Optional[SecretStr]) -> str:
    return secret.get_secret_value() if secret is not None else ""


class DatabaseSettings(BaseModel):
    host: str
    port: int = 5432
    name: str
    user: Optional[str] = Field(default=None, repr=False)
    password: Optional[SecretStr] = Field(default=None, repr=False)
    echo: bool = False

    @model_validator(mode="after")
    def _require_credentials(self) -> "DatabaseSettings":
        if not (self.user or "").strip():
            raise ValueError("CATALOG_DB_USER is required")
        if not _secret_value(self.password).strip():
            raise ValueError("CATALOG_DB_PASSWORD is required")
        return self

    @property
    def dsn(self) -> str:
        user = quote(self.user or "", safe="")
        password = quote(_secret_value(self.password), safe="")
        return f"postgresql://{user}:{password}@{self.host}:{self.port}/{self.name}"


class RedisSettings(BaseModel):
    host: str
    port: int = 6379
    db: int = Field(default=0, ge=0)
    password: Optional[SecretStr] = Field(default=None, repr=False)

    @model_validator(mode="after")
    def _reject_empty_password(self) -> "RedisSettings":
        if self.password is not None and not _secret_value(self.password).strip():
            raise ValueError("CATALOG_REDIS_PASSWORD must not be empty")
        return self

    @property
    def url(self) -> str:
        auth = ""
        if self.password is not None:
            auth = f":{quote(_secret_value(self.password), safe='')}@"
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


PRIVATE_PROXY_NETWORKS: Final[tuple[str, ...]] = (
    "127.0.0.0/8",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
)


class ApiRateLimitRule(BaseModel):
    path_prefix: str
    requests_per_minute: int = Field(gt=0)
    window_seconds: int = Field(default=60, gt=0)

    @field_validator("path_prefix")
    @classmethod
    def _normalize_path_prefix(cls, value: str) -> str:
        stripped = (value or "").strip().strip("/")
        return f"/{stripped}" if stripped else "/"


class ApiRateLimitSettings(BaseModel):
    enabled: bool = True
    trust_proxy_headers: bool = True
    trusted_proxies: list[str] = Field(
        default_factory=lambda: list(PRIVATE_PROXY_NETWORKS)
    )
    rules: list[ApiRateLimitRule] = Field(
        default_factory=lambda: [
            ApiRateLimitRule(path_prefix="/api/v1/products", requests_per_minute=120)
        ]
    )


class ApiSettings(BaseModel):
    host: str
    port: int
    debug: bool = False
    log_level: Optional[str] = None
    cors_origins: list[str] = Field(default_factory=list)
    cache_max_age_seconds: int = Field(
        default=60,
        ge=0,
        description="max-age advertised in Cache-Control for product reads.",
    )
    rate_limit: ApiRateLimitSettings = Field(default_factory=ApiRateLimitSettings)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: Any) -> Any:
        # Env overrides arrive as "a,b" or as a JSON list.
        if not isinstance(value, str):
            return value
        stripped = value.strip()
        if stripped.startswith("["):
            return json.loads(stripped)
        return [item.strip() for item in stripped.split(",") if item.strip()]


def load_config_file(environ: Mapping[str, str]) -> dict[str, Any]:
    """Read ``<config dir>/<env>.json`` and merge ``CATALOG_*`` overrides on top."""

    env = _canonical_env(environ.get(f"{_CATALOG_PREFIX}ENV"))
    config_dir = _resolve_config_dir(environ)
    config_path = config_dir / f"{env}.json"
    if not config_path.is_file():
        raise FileNotFoundError(
            f"Config file not found: {config_path} (CATALOG_ENV={env!r}, "
            f"CATALOG_CONFIG_DIR={str(config_dir)!r})"
        )

    raw = json.loads(config_path.read_text(encoding="utf-8"))
    _validate_no_secrets_in_json(raw, source=config_path)
    return _deep_update(deepcopy(raw), _env_overrides(environ))


class _CatalogSettingsSource:
    def __call__(self) -> dict[str, Any]:
        return load_config_file(os.environ)


class Settings(BaseSettings):
    api: ApiSettings
    database: DatabaseSettings
    redis: RedisSettings

    model_config = SettingsConfigDict(extra="forbid")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # JSON plus CATALOG_* overrides replace the default env/dotenv sources.
        return (init_settings, _CatalogSettingsSource())
