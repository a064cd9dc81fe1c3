"""
Typed options for the query cache plugin.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from ..exceptions import ConfigurationError

DEFAULT_HOST = "127.0.0.1"
DEFAULT_DEFINITION_KEY = "process.env.NEXT_QUERY_CACHE_PORT"

FetchFn = Callable[[str, Optional[Mapping[str, Any]]], Any]
CacheKeyFn = Callable[[str, Optional[Mapping[str, Any]]], Union[str, Awaitable[str]]]
PluginPredicate = Callable[[Any], bool]


@dataclass(frozen=True)
class QueryCachePluginOptions:
    """
    Options accepted by `create_query_cache_plugin`.

    `fetch`, `calculate_cache_key` and `plugin_predicate` fall back to the
    built-in implementations when left as None.
    """

    port: int = 0
    host: str = DEFAULT_HOST
    disabled: bool = False
    fetch: Optional[FetchFn] = None
    calculate_cache_key: Optional[CacheKeyFn] = None
    definition_key: str = DEFAULT_DEFINITION_KEY
    plugin_predicate: Optional[PluginPredicate] = None
    cache_ttl_seconds: Optional[int] = None
    startup_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigurationError(f"port must be an integer, got {self.port!r}")
        if not 0 <= self.port <= 65535:
            raise ConfigurationError(f"port must be between 0 and 65535, got {self.port}")
        if not self.definition_key:
            raise ConfigurationError("definition_key must not be empty")
        if self.cache_ttl_seconds is not None and self.cache_ttl_seconds <= 0:
            raise ConfigurationError("cache_ttl_seconds must be positive when set")
        if self.startup_timeout is not None and self.startup_timeout <= 0:
            raise ConfigurationError("startup_timeout must be positive when set")
