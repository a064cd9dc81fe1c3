"""
Runtime side of the query cache: route fetches through the proxy.

The build injects the proxy port as `process.env.NEXT_QUERY_CACHE_PORT`; code
running inside the build reads it back from the environment. Outside a build
(no port) requests go straight upstream.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Mapping, Optional

import httpx

from .config.models import DEFAULT_HOST

logger = logging.getLogger(__name__)

PORT_ENV_VAR = "NEXT_QUERY_CACHE_PORT"
DEFAULT_TIMEOUT_SECONDS = 30.0


def port_from_env(environ: Optional[Mapping[str, str]] = None) -> Optional[int]:
    raw = (environ if environ is not None else os.environ).get(PORT_ENV_VAR)
    if not raw:
        return None
    try:
        port = int(json.loads(raw))
    except (TypeError, ValueError):
        logger.warning("[QUERY-CACHE] Ignoring invalid %s=%r", PORT_ENV_VAR, raw)
        return None
    return port if port > 0 else None


class QueryCacheClient:
    """Fetch through the local caching proxy when its port is known."""

    def __init__(
        self,
        port: Optional[int] = None,
        *,
        host: str = DEFAULT_HOST,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.port = port if port is not None else port_from_env()
        self.host = host
        self.timeout = timeout
        self._transport = transport

    @property
    def proxy_url(self) -> Optional[str]:
        if self.port is None:
            return None
        return f"http://{self.host}:{self.port}/"

    async def fetch(self, url: str, options: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        options = dict(options or {})
        # The proxy is always on loopback; environment proxies must not apply.
        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            trust_env=self.proxy_url is None,
        ) as client:
            if self.proxy_url is None:
                return await client.request(
                    str(options.get("method") or "GET").upper(),
                    url,
                    headers=options.get("headers"),
                    content=options.get("body"),
                )
            return await client.post(self.proxy_url, json={"url": url, "options": options})
