"""Client settings for HTTP-backed providers.

A ``providers.<name>`` block is translated into one ``ResilienceConfig``:

    base_url             required
    token                sent as ``Authorization: Bearer <token>``
    headers              extra static headers
    timeout_seconds      per request, default 30
    max_retries          transport retries of idempotent requests, default 4
    requests_per_second  optional client-side rate limit
    cache                cache ``GET`` responses in the data directory when true
    cache_ttl_seconds    optional lifetime of cached responses
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
from httpx_retries import Retry

from .errors import ConfigurationError, MissingConfigurationError
from .storage import get_http_cache_path

if TYPE_CHECKING:
    from collections.abc import Mapping

# POST is left to the executor; the transport only repeats idempotent requests
IDEMPOTENT_METHODS = frozenset({"DELETE", "GET", "HEAD", "OPTIONS", "PUT"})
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    total: int = 4
    backoff_factor: float = 0.5
    max_backoff_wait: float = 30.0

    def build(self) -> Retry:
        return Retry(
            total=self.total,
            backoff_factor=self.backoff_factor,
            max_backoff_wait=self.max_backoff_wait,
            respect_retry_after_header=True,
            allowed_methods=tuple(sorted(IDEMPOTENT_METHODS)),
            status_forcelist=tuple(sorted(RETRYABLE_STATUSES)),
            retry_on_exceptions=(
                httpx.TimeoutException,
                httpx.NetworkError,
                httpx.RemoteProtocolError,
            ),
        )


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float = 1.0


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Response cache; ``sqlite_path`` of None keeps entries in memory for the run."""

    sqlite_path: str | None = None
    ttl_seconds: float | None = None


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    cache: CacheConfig | None = None
    default_headers: Mapping[str, str] = field(default_factory=dict[str, str])

    @classmethod
    def from_block(cls, name: str, block: Mapping[str, object]) -> ResilienceConfig:
        base_url = block.get("base_url")
        if not isinstance(base_url, str) or not base_url.strip():
            raise MissingConfigurationError(f"providers.{name}.base_url is required")

        headers_block = block.get("headers") or {}
        if not isinstance(headers_block, dict):
            raise ConfigurationError(f"providers.{name}.headers must be a mapping")
        headers = {str(key): str(value) for key, value in headers_block.items()}  # pyright: ignore[reportUnknownVariableType]
        token = block.get("token")
        if token:
            headers["Authorization"] = f"Bearer {token}"

        rate = _number(name, block, "requests_per_second")
        timeout = _number(name, block, "timeout_seconds")
        retries = _number(name, block, "max_retries")
        cache = None
        if block.get("cache"):
            cache = CacheConfig(
                sqlite_path=str(get_http_cache_path()),
                ttl_seconds=_number(name, block, "cache_ttl_seconds"),
            )

        return cls(
            name=name,
            base_url=base_url.strip(),
            timeout_seconds=30.0 if timeout is None else timeout,
            retry=RetryPolicy() if retries is None else RetryPolicy(total=int(retries)),
            ratelimit=RateLimit(max_calls=int(rate)) if rate else None,
            cache=cache,
            default_headers=headers,
        )


def _number(name: str, block: Mapping[str, object], key: str) -> float | None:
    raw = block.get(key)
    if raw is None:
        return None
    try:
        value = float(str(raw))
    except ValueError as exc:
        raise ConfigurationError(f"providers.{name}.{key} must be a number") from exc
    if value < 0:
        raise ConfigurationError(f"providers.{name}.{key} must be >= 0")
    return value
