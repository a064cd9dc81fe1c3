"""
Request handling collaborators for the query cache server.
"""

from .request_handler import (
    RequestHandler,
    create_request_handler,
    default_cache_key,
    default_fetch,
)
from .response_cache import CachedResponse, ResponseCache

__all__ = [
    "CachedResponse",
    "RequestHandler",
    "ResponseCache",
    "create_request_handler",
    "default_cache_key",
    "default_fetch",
]
