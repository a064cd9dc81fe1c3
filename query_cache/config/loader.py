"""
Load plugin options from config.yaml and the environment.

The `query_cache:` section of the YAML file provides defaults; `QUERY_CACHE_*`
environment variables (including values from a project `.env`) override it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv

from ..exceptions import ConfigurationError
from .models import QueryCachePluginOptions

logger = logging.getLogger(__name__)

CONFIG_SECTION = "query_cache"

_ENV_OVERRIDES = {
    "QUERY_CACHE_PORT": "port",
    "QUERY_CACHE_HOST": "host",
    "QUERY_CACHE_DISABLED": "disabled",
    "QUERY_CACHE_TTL_SECONDS": "cache_ttl_seconds",
    "QUERY_CACHE_STARTUP_TIMEOUT": "startup_timeout",
    "QUERY_CACHE_DEFINITION_KEY": "definition_key",
}

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def load_plugin_options(
    config_path: Union[str, Path] = "config.yaml",
    *,
    use_dotenv: bool = True,
    **overrides: Any,
) -> QueryCachePluginOptions:
    """
    Build `QueryCachePluginOptions` from YAML, environment, and keyword overrides.

    Precedence (lowest first): YAML section, environment, keyword overrides.
    A missing config file is not an error; defaults are used instead.
    """
    if use_dotenv:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)

    raw: Dict[str, Any] = {}
    section = _read_section(Path(config_path))
    raw.update(section)

    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is not None:
            raw[field_name] = value

    raw.update(overrides)
    return QueryCachePluginOptions(**_coerce(raw))


def _read_section(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        logger.debug("[QUERY-CACHE] No config file at %s, using defaults", config_path)
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    section = config.get(CONFIG_SECTION) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{CONFIG_SECTION}' in {config_path} must be a mapping")

    unknown = set(section) - set(_ENV_OVERRIDES.values())
    if unknown:
        raise ConfigurationError(
            f"Unknown {CONFIG_SECTION} option(s): {', '.join(sorted(unknown))}"
        )
    return _expand_env_vars(section)


def _expand_env_vars(config: Any) -> Any:
    """Replace `${VAR}` string values with the environment value, when set."""
    if isinstance(config, dict):
        return {k: _expand_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [_expand_env_vars(item) for item in config]
    if isinstance(config, str) and config.startswith("${") and config.endswith("}"):
        return os.getenv(config[2:-1], config)
    return config


def _coerce(raw: Dict[str, Any]) -> Dict[str, Any]:
    coerced = dict(raw)
    if "port" in coerced:
        coerced["port"] = _to_int("port", coerced["port"])
    if "disabled" in coerced:
        coerced["disabled"] = _to_bool("disabled", coerced["disabled"])
    if coerced.get("cache_ttl_seconds") not in (None, ""):
        coerced["cache_ttl_seconds"] = _to_int("cache_ttl_seconds", coerced["cache_ttl_seconds"])
    elif "cache_ttl_seconds" in coerced:
        coerced["cache_ttl_seconds"] = None
    if coerced.get("startup_timeout") not in (None, ""):
        try:
            coerced["startup_timeout"] = float(coerced["startup_timeout"])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"startup_timeout must be a number, got {coerced['startup_timeout']!r}"
            ) from exc
    elif "startup_timeout" in coerced:
        coerced["startup_timeout"] = None
    return coerced


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _to_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")
