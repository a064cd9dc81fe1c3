"""
Caching proxy endpoint mounted on the query cache server.

Build workers POST `{"url": ..., "options": {...}}` and get back the upstream
response. GET/HEAD responses are stored under a cache key so every worker in a
build sees one upstream fetch per distinct request.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
import logging
from typing import Any, Dict, Mapping, Optional

import httpx
from fastapi import HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field, ValidationError

from ..config.models import CacheKeyFn, FetchFn
from .response_cache import CachedResponse, ResponseCache

logger = logging.getLogger(__name__)

CACHEABLE_METHODS = frozenset({"GET", "HEAD"})
CACHE_STATUS_HEADER = "x-query-cache"
UPSTREAM_TIMEOUT_SECONDS = 30.0


class ProxyRequest(BaseModel):
    url: str
    options: Dict[str, Any] = Field(default_factory=dict)


def default_cache_key(url: str, options: Optional[Mapping[str, Any]] = None) -> str:
    """Hash the URL together with its request options."""
    canonical = json.dumps(
        {"url": url, "options": dict(options or {})},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


async def default_fetch(url: str, options: Optional[Mapping[str, Any]] = None) -> httpx.Response:
    options = dict(options or {})
    method = str(options.get("method") or "GET").upper()
    async with httpx.AsyncClient(timeout=UPSTREAM_TIMEOUT_SECONDS, follow_redirects=True) as client:
        return await client.request(
            method,
            url,
            headers=options.get("headers"),
            content=options.get("body"),
        )


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _request_method(options: Mapping[str, Any]) -> str:
    return str(options.get("method") or "GET").upper()


async def _read_response(response: Any) -> CachedResponse:
    """Normalize an httpx-style or custom response-like object."""
    status_code = getattr(response, "status_code", None)
    if status_code is None:
        status_code = getattr(response, "status", 200)

    headers = getattr(response, "headers", None) or {}
    content_type = headers.get("content-type") if hasattr(headers, "get") else None

    body = getattr(response, "content", None)
    if body is None:
        body = getattr(response, "text", b"")
    body = await _maybe_await(body() if callable(body) else body)
    if isinstance(body, str):
        body = body.encode("utf-8")

    return CachedResponse(status_code=int(status_code), content_type=content_type, body=bytes(body))


class RequestHandler:
    """
    Async request handler with response caching and in-flight deduplication.
    """

    def __init__(
        self,
        fetch: Optional[FetchFn] = None,
        calculate_cache_key: Optional[CacheKeyFn] = None,
        cache: Optional[ResponseCache] = None,
    ) -> None:
        self.fetch = fetch or default_fetch
        self.calculate_cache_key = calculate_cache_key or default_cache_key
        self.cache = cache if cache is not None else ResponseCache()
        self._inflight: Dict[str, "asyncio.Future[CachedResponse]"] = {}

    async def __call__(self, request: Request) -> Response:
        try:
            payload = ProxyRequest.model_validate(await request.json())
        except (ValidationError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"Invalid proxy request: {exc}") from exc

        url, options = payload.url, payload.options

        if _request_method(options) not in CACHEABLE_METHODS:
            result = await self._fetch_upstream(url, options)
            return self._to_response(result, "BYPASS")

        key = await _maybe_await(self.calculate_cache_key(url, options))
        cached = self.cache.lookup(key)
        if cached is not None:
            return self._to_response(cached, "HIT")

        pending = self._inflight.get(key)
        if pending is not None:
            result = await asyncio.shield(pending)
            return self._to_response(result, "HIT")

        pending = asyncio.ensure_future(self._fetch_and_store(key, url, options))
        self._inflight[key] = pending
        pending.add_done_callback(lambda _: self._inflight.pop(key, None))
        result = await asyncio.shield(pending)
        return self._to_response(result, "MISS")

    async def _fetch_and_store(self, key: str, url: str, options: Mapping[str, Any]) -> CachedResponse:
        result = await self._fetch_upstream(url, options)
        if result.status_code < 500:
            self.cache.store(key, result)
        return result

    async def _fetch_upstream(self, url: str, options: Mapping[str, Any]) -> CachedResponse:
        try:
            response = await _maybe_await(self.fetch(url, options))
            return await _read_response(response)
        except Exception as exc:
            logger.warning("[QUERY-CACHE] Upstream fetch failed for %s: %s", url, exc)
            raise HTTPException(status_code=502, detail=f"Upstream fetch failed: {exc}") from exc

    @staticmethod
    def _to_response(result: CachedResponse, cache_status: str) -> Response:
        return Response(
            content=result.body,
            status_code=result.status_code,
            media_type=result.content_type,
            headers={CACHE_STATUS_HEADER: cache_status},
        )


def create_request_handler(
    fetch: Optional[FetchFn] = None,
    calculate_cache_key: Optional[CacheKeyFn] = None,
    cache_ttl_seconds: Optional[int] = None,
) -> RequestHandler:
    return RequestHandler(
        fetch=fetch,
        calculate_cache_key=calculate_cache_key,
        cache=ResponseCache(ttl_seconds=cache_ttl_seconds),
    )
