"""
Build configuration decorator that wires the query cache proxy into a build.

The build tool awaits the `rewrites` hook before it calls the synchronous
`webpack` hook. The decorator uses that ordering: `rewrites` starts the proxy
server and resolves the port, `webpack` injects the resolved port into the
define-values plugin as `process.env.NEXT_QUERY_CACHE_PORT`.

Typical usage:

>>> with_query_cache = create_query_cache_plugin({"port": 0})
>>> build_config = with_query_cache({"reactStrictMode": True})
"""

from __future__ import annotations

import inspect
import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .build import find_define_plugin, get_plugins
from .config.models import QueryCachePluginOptions
from .exceptions import ConfigurationError, MissingCollaboratorPlugin
from .server.port_coordinator import PortCoordinator

logger = logging.getLogger(__name__)

REWRITES_HOOK = "rewrites"
BUILD_HOOK = "webpack"

BuildConfig = Mapping[str, Any]
BuildConfigInput = Union[BuildConfig, Callable[..., BuildConfig], None]


class QueryCachePlugin:
    """
    Callable that decorates a build configuration (value or factory).

    One instance owns one `PortCoordinator`; every configuration it decorates
    shares that coordinator's server and port state.
    """

    def __init__(
        self,
        options: Optional[QueryCachePluginOptions] = None,
        *,
        coordinator: Optional[PortCoordinator] = None,
    ) -> None:
        self.options = options or QueryCachePluginOptions()
        if coordinator is None and not self.options.disabled:
            coordinator = PortCoordinator.from_options(self.options)
        self.coordinator = coordinator

    def __call__(self, config: BuildConfigInput = None) -> Any:
        if self.options.disabled:
            logger.debug("[QUERY-CACHE] Plugin disabled, returning config unchanged")
            return config

        if callable(config):
            base_factory = config
        else:
            def base_factory(*_args: Any, **_kwargs: Any) -> BuildConfig:
                return config if config is not None else {}

        def decorated_config(*args: Any, **kwargs: Any) -> Dict[str, Any]:
            base = base_factory(*args, **kwargs)
            if base is None:
                base = {}
            if not isinstance(base, Mapping):
                raise ConfigurationError(
                    f"Build configuration must be a mapping, got {type(base).__name__}"
                )
            return {
                **base,
                REWRITES_HOOK: self._wrap_rewrites(base.get(REWRITES_HOOK)),
                BUILD_HOOK: self._wrap_build(base.get(BUILD_HOOK)),
            }

        return decorated_config

    def _wrap_rewrites(self, original: Optional[Callable[..., Any]]) -> Callable[..., Any]:
        coordinator = self.coordinator

        # Called more often than needed by the build tool; startup is single-flight.
        async def rewrites(*args: Any, **kwargs: Any) -> Any:
            await coordinator.ensure_started()

            if original is None:
                return []
            result = original(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result or []

        return rewrites

    def _wrap_build(self, original: Optional[Callable[..., Any]]) -> Callable[..., Any]:
        coordinator = self.coordinator
        options = self.options

        def webpack(config: Any, *rest: Any, **kwargs: Any) -> Any:
            build_config = original(config, *rest, **kwargs) if original is not None else None
            if build_config is None:
                build_config = config

            plugins = get_plugins(build_config)
            define_plugin = find_define_plugin(plugins, options.plugin_predicate)
            if define_plugin is None:
                raise MissingCollaboratorPlugin(
                    "Could not find a define-values plugin (an object with a mutable "
                    "`definitions` mapping) in the build configuration's plugins. "
                    "This is a bug in query-cache."
                )

            port = coordinator.state.require()
            define_plugin.definitions[options.definition_key] = json.dumps(port)
            return build_config

        return webpack


def create_query_cache_plugin(
    options: Union[QueryCachePluginOptions, Mapping[str, Any], None] = None,
    *,
    coordinator: Optional[PortCoordinator] = None,
) -> QueryCachePlugin:
    """
    Create the configuration decorator.

    `options` may be a `QueryCachePluginOptions` or a plain mapping of its
    fields (`port`, `disabled`, `fetch`, `calculate_cache_key`, ...).
    """
    if isinstance(options, Mapping):
        options = QueryCachePluginOptions(**options)
    return QueryCachePlugin(options, coordinator=coordinator)
