"""
query_cache: a build-time caching proxy whose port is injected into the build.

`create_query_cache_plugin(options)` returns a decorator for a build
configuration (a mapping or a factory producing one). The decorated `rewrites`
hook starts the proxy once; the decorated `webpack` hook writes the resolved
port into the define-values plugin.
"""

from .build import DefinitionsProvider, find_define_plugin, is_define_plugin
from .client import PORT_ENV_VAR, QueryCacheClient
from .config import QueryCachePluginOptions, load_plugin_options
from .exceptions import (
    ConfigurationError,
    MissingCollaboratorPlugin,
    PortNotReadyError,
    QueryCacheError,
    StartupFailure,
)
from .plugin import QueryCachePlugin, create_query_cache_plugin
from .server import PortCoordinator, PortState

__all__ = [
    "ConfigurationError",
    "DefinitionsProvider",
    "MissingCollaboratorPlugin",
    "PORT_ENV_VAR",
    "PortCoordinator",
    "PortNotReadyError",
    "PortState",
    "QueryCacheClient",
    "QueryCacheError",
    "QueryCachePlugin",
    "QueryCachePluginOptions",
    "StartupFailure",
    "create_query_cache_plugin",
    "find_define_plugin",
    "is_define_plugin",
    "load_plugin_options",
]
