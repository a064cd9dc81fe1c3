"""
Error taxonomy for the query cache plugin.

Every error here is fatal for the build invocation that raised it; nothing is
retried or recovered locally.
"""

from __future__ import annotations


class QueryCacheError(RuntimeError):
    """Base class for query cache failures."""


class StartupFailure(QueryCacheError):
    """Raised when the proxy server cannot report a usable bound port."""


class MissingCollaboratorPlugin(QueryCacheError):
    """Raised when the build configuration has no define-values plugin."""


class PortNotReadyError(QueryCacheError):
    """Raised when the port is read before the startup handshake resolved it."""


class ConfigurationError(QueryCacheError, ValueError):
    """Raised when plugin options fail validation."""
