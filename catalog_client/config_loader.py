"""Config Loader - Loads client configuration.

Handles loading YAML config files with environment variable substitution
and locating the default config file.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from catalog_client.cache import FileCache
from catalog_client.errors import CatalogError
from catalog_client.models import ClientConfig

CONFIG_ENV_VAR = "CATALOG_CLIENT_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.catalog_client.yaml")


class ConfigError(CatalogError):
    """Raised when configuration loading fails."""


def load_client_config(config_path: Path) -> ClientConfig:
    """Load client configuration from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    # An empty file means "all defaults"
    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return ClientConfig.model_validate(raw_config)
    except Exception as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def find_config_path() -> Path | None:
    """Return $CATALOG_CLIENT_CONFIG, else ~/.catalog_client.yaml if it exists."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    default = DEFAULT_CONFIG_PATH.expanduser()
    if default.exists():
        return default
    return None


def load_default_config() -> ClientConfig:
    """Load the config found by find_config_path(), or defaults if there is none."""
    path = find_config_path()
    if path is None:
        return ClientConfig()
    return load_client_config(path)


def build_cache(config: ClientConfig) -> FileCache | None:
    """Create the FileCache described by *config*, if any."""
    if config.cache is None:
        return None
    try:
        return FileCache(config.cache.directory, config.cache.max_age_seconds)
    except OSError as e:
        raise ConfigError(f"Cannot use cache directory {config.cache.directory}: {e}") from e


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return pattern.sub(replacer, s)
