# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary.settings",
#   "purpose": "Define configuration models, environment overrides, and managed directory resolution",
#   "sections": [
#     {"id": "models", "name": "Configuration Models", "anchor": "MOD", "kind": "api"},
#     {"id": "env", "name": "Environment Overrides", "anchor": "ENV", "kind": "api"},
#     {"id": "loading", "name": "Loading & Caching", "anchor": "LOD", "kind": "api"},
#     {"id": "paths", "name": "Managed Directory", "anchor": "PTH", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models for the translation model library.

Settings are plain pydantic models with sensible defaults so the library works
without any configuration file.  A YAML file can override any field, and a
handful of ``MTLIB_*`` environment variables take precedence over both.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import platformdirs
import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError, UserConfigError

__all__ = [
    "APP_NAME",
    "DEFAULT_CATALOG_URL",
    "DEFAULT_MANIFEST_FILENAME",
    "LoggingConfiguration",
    "CatalogConfiguration",
    "LibrarySettings",
    "EnvironmentOverrides",
    "get_default_settings",
    "invalidate_default_settings_cache",
    "build_settings",
    "load_settings",
    "ensure_managed_dir",
]

APP_NAME = "localmt"
DEFAULT_CATALOG_URL = "http://data.statmt.org/bergamot/models/models.json"
DEFAULT_MANIFEST_FILENAME = "model_info.json"

LOGGER = logging.getLogger("LocalMT.ModelLibrary")


class LoggingConfiguration(BaseModel):
    """Logging-related configuration for the model library."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    max_log_size_mb: int = Field(default=20, gt=0, description="Maximum size of rotated log files")
    retention_days: int = Field(default=30, ge=1, description="Retention period for log files")
    log_dir: Optional[Path] = Field(
        default=None, description="Directory for JSON log files; defaults to the user log dir"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Normalise logging levels and ensure they match the supported set."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return upper

    model_config = {"validate_assignment": True}


class CatalogConfiguration(BaseModel):
    """Remote catalog endpoint and HTTP client settings."""

    url: str = Field(default=DEFAULT_CATALOG_URL, description="Remote catalog document URL")
    timeout_sec: float = Field(default=30.0, gt=0.0, le=300.0)
    connect_timeout_sec: float = Field(default=5.0, gt=0.0, le=60.0)
    user_agent: str = Field(default="localmt-model-library/1.0")
    strict: bool = Field(
        default=False,
        description="Reject the whole catalog when any entry lacks its download URL",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        """Only plain HTTP(S) endpoints are supported."""

        stripped = value.strip()
        if not stripped.lower().startswith(("http://", "https://")):
            raise ValueError("catalog url must use http or https")
        return stripped

    model_config = {"validate_assignment": True}


def _default_managed_dir() -> Path:
    return platformdirs.user_data_path(APP_NAME, appauthor=False)


class LibrarySettings(BaseModel):
    """Top-level settings for a model library instance."""

    managed_dir: Path = Field(default_factory=_default_managed_dir)
    search_dir: Optional[Path] = Field(
        default=None, description="Secondary scan directory; defaults to the working directory"
    )
    scratch_dir: Optional[Path] = Field(
        default=None, description="Parent of extraction scratch space; defaults to managed_dir"
    )
    manifest_filename: str = Field(default=DEFAULT_MANIFEST_FILENAME, min_length=1)
    archive_suffixes: List[str] = Field(default_factory=lambda: [".tar.gz"])
    catalog: CatalogConfiguration = Field(default_factory=CatalogConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    @field_validator("managed_dir", "search_dir", "scratch_dir")
    @classmethod
    def expand_path(cls, value: Optional[Path]) -> Optional[Path]:
        """Expand ``~`` and make paths absolute."""

        if value is None:
            return None
        return Path(value).expanduser().absolute()

    @field_validator("archive_suffixes")
    @classmethod
    def validate_suffixes(cls, value: List[str]) -> List[str]:
        """Archive suffixes are matched case-insensitively with a leading dot."""

        normalized = []
        for suffix in value:
            cleaned = suffix.strip().lower()
            if not cleaned:
                continue
            if not cleaned.startswith("."):
                cleaned = f".{cleaned}"
            normalized.append(cleaned)
        if not normalized:
            raise ValueError("at least one archive suffix is required")
        return normalized

    def effective_search_dir(self) -> Path:
        """Return the secondary scan directory, resolved at call time."""

        return self.search_dir or Path.cwd()

    def effective_scratch_dir(self) -> Path:
        """Return the directory under which extraction scratch space is created."""

        return self.scratch_dir or self.managed_dir

    model_config = {"validate_assignment": True, "extra": "forbid"}


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    managed_dir: Optional[Path] = Field(default=None, alias="MTLIB_MANAGED_DIR")
    catalog_url: Optional[str] = Field(default=None, alias="MTLIB_CATALOG_URL")
    log_level: Optional[str] = Field(default=None, alias="MTLIB_LOG_LEVEL")
    log_dir: Optional[Path] = Field(default=None, alias="MTLIB_LOG_DIR")

    model_config = SettingsConfigDict(env_prefix="MTLIB_", case_sensitive=False, extra="ignore")


def get_env_overrides() -> Dict[str, str]:
    """Return environment-derived overrides as stringified key/value pairs."""

    env = EnvironmentOverrides()
    return {
        key: str(value) for key, value in env.model_dump(by_alias=False, exclude_none=True).items()
    }


def _apply_env_overrides(settings: LibrarySettings) -> None:
    """Mutate ``settings`` in-place using values from :class:`EnvironmentOverrides`."""

    env = EnvironmentOverrides()
    if env.managed_dir is not None:
        settings.managed_dir = env.managed_dir
        LOGGER.info(
            "Config overridden: managed_dir=%s", env.managed_dir, extra={"stage": "config"}
        )
    if env.catalog_url is not None:
        settings.catalog.url = env.catalog_url
        LOGGER.info(
            "Config overridden: catalog_url=%s", env.catalog_url, extra={"stage": "config"}
        )
    if env.log_level is not None:
        settings.logging.level = env.log_level
    if env.log_dir is not None:
        settings.logging.log_dir = env.log_dir


def build_settings(raw_config: Optional[Mapping[str, object]] = None) -> LibrarySettings:
    """Materialise :class:`LibrarySettings` from a raw mapping plus environment overrides."""

    try:
        settings = LibrarySettings.model_validate(dict(raw_config or {}))
        _apply_env_overrides(settings)
    except PydanticValidationError as exc:
        messages = []
        for error in exc.errors():
            location = " -> ".join(str(part) for part in error["loc"])
            messages.append(f"{location}: {error['msg']}")
        raise UserConfigError(
            "Configuration validation failed:\n  " + "\n  ".join(messages)
        ) from exc
    return settings


def load_settings(config_path: Path) -> LibrarySettings:
    """Read a YAML settings file and return validated settings."""

    normalized_path = Path(config_path).expanduser()
    if not normalized_path.exists():
        raise UserConfigError(f"Configuration file not found: {normalized_path}")

    try:
        with normalized_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise UserConfigError(
            f"Configuration file '{normalized_path}' contains invalid YAML"
        ) from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise UserConfigError("Configuration file must contain a mapping at the root")
    return build_settings(data)


_DEFAULT_SETTINGS_LOCK = threading.RLock()
_DEFAULT_SETTINGS_CACHE: Optional[LibrarySettings] = None


def get_default_settings(*, copy: bool = False) -> LibrarySettings:
    """Return memoised settings constructed from defaults and the environment."""

    global _DEFAULT_SETTINGS_CACHE  # noqa: PLW0603

    with _DEFAULT_SETTINGS_LOCK:
        if _DEFAULT_SETTINGS_CACHE is None:
            _DEFAULT_SETTINGS_CACHE = build_settings()
        cached = _DEFAULT_SETTINGS_CACHE
    if copy:
        return cached.model_copy(deep=True)
    return cached


def invalidate_default_settings_cache() -> None:
    """Invalidate the cached default settings."""

    global _DEFAULT_SETTINGS_CACHE  # noqa: PLW0603

    with _DEFAULT_SETTINGS_LOCK:
        _DEFAULT_SETTINGS_CACHE = None


def ensure_managed_dir(settings: LibrarySettings) -> Path:
    """Create the managed directory when missing and return it."""

    managed = settings.managed_dir
    if managed.exists() and not managed.is_dir():
        raise ConfigurationError(
            f"We want to store data at a directory at: {managed} "
            "but a file with the same name exists."
        )
    try:
        managed.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(f"Could not create managed directory {managed}: {exc}") from exc
    return managed
