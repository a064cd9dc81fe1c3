"""
Replayable upstream responses held by the proxy for the rest of the build.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class CachedResponse:
    """Upstream response reduced to what the proxy replays."""

    status_code: int
    content_type: Optional[str]
    body: bytes


@dataclass(frozen=True)
class _Entry:
    response: CachedResponse
    expires_at: Optional[float]


class ResponseCache:
    """
    Map cache keys to `CachedResponse` entries.

    Entries never expire unless `ttl_seconds` is set. The store is only touched
    from the server's event loop, so no locking is needed.
    """

    def __init__(self, ttl_seconds: Optional[int] = None) -> None:
        self.ttl_seconds = None if ttl_seconds is None else max(1, int(ttl_seconds))
        self._entries: Dict[str, _Entry] = {}
        self.hits = 0
        self.misses = 0

    def lookup(self, key: str) -> Optional[CachedResponse]:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at is not None and entry.expires_at <= time.monotonic():
            del self._entries[key]
            entry = None
        if entry is None:
            self.misses += 1
            return None
        self.hits += 1
        return entry.response

    def store(self, key: str, response: CachedResponse) -> None:
        expires_at = None if self.ttl_seconds is None else time.monotonic() + self.ttl_seconds
        self._entries[key] = _Entry(response, expires_at)

    def stats(self) -> Dict[str, Optional[int]]:
        """Counters served by the stats endpoint."""
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "ttl_seconds": self.ttl_seconds,
        }
