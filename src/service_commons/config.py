"""
Shared YAML configuration loading.

Services describe their settings as pydantic models with extra="forbid";
this module only locates, parses and caches the file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import yaml
from pydantic import BaseModel

if TYPE_CHECKING:
    from collections.abc import Callable

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEY_PARTS: tuple[str, ...] = ("secret", "password", "token", "private_key", "api_key")

SettingsT = TypeVar("SettingsT", bound=BaseModel)


class ConfigurationError(Exception):
    """Raised when the configuration file cannot be located or parsed."""


def get_config_path(env_var_name: str, default_filename: str) -> Path:
    """Resolve the configuration path from an environment variable or the working directory."""
    configured = os.environ.get(env_var_name)
    if configured:
        return Path(configured)
    return Path.cwd() / default_filename


def load_yaml_config(path: Path) -> dict[str, Any]:
    """
    Read a YAML mapping from disk.

    Raises:
        ConfigurationError: if the file is missing, unparsable, or not a mapping
    """
    if not path.is_file():
        msg = f"Configuration file not found: {path}"
        raise ConfigurationError(msg)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        msg = f"Configuration file is not valid YAML: {path}"
        raise ConfigurationError(msg) from exc

    if not isinstance(data, dict):
        msg = f"Configuration file must contain a mapping at the top level: {path}"
        raise ConfigurationError(msg)

    return data


def create_settings_loader(
    settings_cls: type[SettingsT],
    config_path_resolver: Callable[[], Path],
) -> tuple[Callable[[], SettingsT], Callable[[], None]]:
    """
    Build a cached settings getter and its cache-clearing companion.

    The path resolver runs on every cache miss, so tests can point
    CONFIG_PATH somewhere else and clear the cache.
    """
    cache: dict[str, SettingsT] = {}

    def get_settings() -> SettingsT:
        cached = cache.get("settings")
        if cached is not None:
            return cached
        settings = settings_cls.model_validate(load_yaml_config(config_path_resolver()))
        cache["settings"] = settings
        return settings

    def clear_settings_cache() -> None:
        cache.clear()

    return get_settings, clear_settings_cache


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def _redact(value: Any, marker: str) -> Any:
    if isinstance(value, dict):
        return {
            key: marker if _is_sensitive(str(key)) and item is not None else _redact(item, marker)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item, marker) for item in value]
    return value


def get_safe_model_config(settings: BaseModel, marker: str) -> dict[str, Any]:
    """Dump settings with secret-looking values replaced by the marker."""
    redacted: dict[str, Any] = _redact(settings.model_dump(), marker)
    return redacted
