"""Shared httpx client for HTTP-backed providers.

Layers, outermost first: an optional client-side rate limit (aiolimiter), an
optional response cache for ``GET`` reads (hishel) and transport retries of
idempotent requests (httpx-retries). Non-idempotent failures surface to the
executor, which decides whether to retry the whole provider call.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, TypedDict, Unpack

import httpx
from aiolimiter import AsyncLimiter
from hishel import AsyncSqliteStorage
from hishel.httpx import AsyncCacheClient
from httpx_retries import RetryTransport

if TYPE_CHECKING:
    from types import TracebackType

    from httpx._client import UseClientDefault
    from httpx._types import HeaderTypes, QueryParamTypes, TimeoutTypes, URLTypes

    from converge.config.http_resilience import CacheConfig, ResilienceConfig

log = logging.getLogger(__name__)


class RequestOptions(TypedDict, total=False):
    json: object
    params: QueryParamTypes | None
    headers: HeaderTypes | None
    timeout: TimeoutTypes | UseClientDefault


class ResilientClient:
    """Rate-limited, optionally caching ``httpx.AsyncClient`` for one provider.

    ``transport`` replaces the network layer underneath the retry transport;
    tests pass an ``httpx.MockTransport`` here.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        limit = config.ratelimit
        self._limiter = AsyncLimiter(limit.max_calls, limit.per_seconds) if limit else None
        options: dict[str, object] = {
            "base_url": config.base_url,
            "headers": dict(config.default_headers),
            "timeout": config.timeout_seconds,
            "transport": RetryTransport(transport=transport, retry=config.retry.build()),
        }
        if config.cache is None:
            self._client = httpx.AsyncClient(**options)  # pyright: ignore[reportArgumentType]
        else:
            self._client = AsyncCacheClient(storage=_cache_storage(config.cache), **options)  # pyright: ignore[reportArgumentType]
        log.debug(
            "HTTP client %s for %s (retries=%d, cache=%s)",
            config.name,
            config.base_url,
            config.retry.total,
            "on" if config.cache else "off",
        )

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        async with AsyncExitStack() as stack:
            if self._limiter is not None:
                await stack.enter_async_context(self._limiter)
            return await self._client.request(method, url, **kwargs)  # pyright: ignore[reportArgumentType]


def _cache_storage(config: CacheConfig) -> AsyncSqliteStorage:
    return AsyncSqliteStorage(
        database_path=config.sqlite_path or ":memory:",
        default_ttl=config.ttl_seconds,
    )
