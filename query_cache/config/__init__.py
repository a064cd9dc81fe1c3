"""
Plugin options and the YAML/env loader that builds them.
"""

from .loader import load_plugin_options
from .models import DEFAULT_DEFINITION_KEY, DEFAULT_HOST, QueryCachePluginOptions

__all__ = [
    "DEFAULT_DEFINITION_KEY",
    "DEFAULT_HOST",
    "QueryCachePluginOptions",
    "load_plugin_options",
]
