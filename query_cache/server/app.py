"""
FastAPI application served by the query cache proxy.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.responses import Response

from ..services.request_handler import RequestHandler

STATS_PATH = "/__query_cache/stats"


def create_app(handler: RequestHandler) -> FastAPI:
    app = FastAPI(title="query-cache", docs_url=None, redoc_url=None, openapi_url=None)

    @app.post("/")
    async def proxy(request: Request) -> Response:
        return await handler(request)

    @app.get(STATS_PATH)
    async def cache_stats() -> Dict[str, Any]:
        return handler.cache.stats()

    return app
