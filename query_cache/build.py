"""
Locate the define-values plugin inside a build configuration.

A plugin qualifies by capability, not by class name: it must expose a mutable
`definitions` mapping that the build consults for compile-time constants.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any, Callable, Iterable, Optional, Protocol, runtime_checkable


@runtime_checkable
class DefinitionsProvider(Protocol):
    definitions: MutableMapping


def is_define_plugin(plugin: Any) -> bool:
    """Default predicate: the plugin carries a mutable `definitions` table."""
    return isinstance(plugin, DefinitionsProvider) and isinstance(
        plugin.definitions, MutableMapping
    )


def find_define_plugin(
    plugins: Iterable[Any],
    predicate: Optional[Callable[[Any], bool]] = None,
) -> Optional[DefinitionsProvider]:
    predicate = predicate or is_define_plugin
    for plugin in plugins:
        if predicate(plugin):
            return plugin
    return None


def get_plugins(build_config: Any) -> list:
    """Return the build config's plugin list, creating an empty one if absent."""
    if isinstance(build_config, MutableMapping):
        plugins = build_config.get("plugins")
        if plugins is None:
            plugins = build_config["plugins"] = []
        return plugins

    plugins = getattr(build_config, "plugins", None)
    if plugins is None:
        plugins = []
        setattr(build_config, "plugins", plugins)
    return plugins
