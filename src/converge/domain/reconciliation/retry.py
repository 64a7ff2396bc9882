"""Bounded retries for provider calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from converge.domain.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetrySettings:
    max_attempts: int = 4
    initial_seconds: float = 0.5
    max_seconds: float = 30.0


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


async def call_with_retry[T](
    func: Callable[[], Awaitable[T]],
    *,
    settings: RetrySettings,
    describe: str,
) -> T:
    """Await ``func`` retrying retryable ``ProviderError``s with exponential backoff.

    Once the attempts are exhausted the last error is re-raised as fatal.
    """

    retrying = AsyncRetrying(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(settings.max_attempts),
        wait=wait_exponential(multiplier=settings.initial_seconds, max=settings.max_seconds)
        + wait_random(0, settings.initial_seconds),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,
    )

    # tenacity only awaits what it recognises as a coroutine function
    async def attempt() -> T:
        return await func()

    try:
        return await retrying(attempt)
    except ProviderError as exc:
        if exc.retryable:
            log.error("%s: giving up after %s attempts", describe, settings.max_attempts)
            raise exc.as_fatal() from exc
        raise
