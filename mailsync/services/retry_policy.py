"""
Retry policy for outbound Google calls.

Network errors and retryable HTTP statuses are retried with capped exponential
backoff; exhaustion surfaces as ProviderUnavailableError. Any other response is
returned to the caller for interpretation.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from mailsync.config import settings
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.services.errors import ProviderUnavailableError

logger = get_logger(__name__)

RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Explicit retry configuration for a provider call."""

    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 8.0
    jitter: float = 0.1
    retry_statuses: frozenset[int] = field(default_factory=lambda: RETRY_STATUS_CODES)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
            base_delay=settings.PROVIDER_BACKOFF_BASE_SECONDS,
            max_delay=settings.PROVIDER_BACKOFF_MAX_SECONDS,
        )

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait after a failed attempt (1-based)."""
        if retry_after is not None:
            return min(retry_after, self.max_delay)
        delay = min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)
        if self.jitter and delay:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retry_statuses


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    operation: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """
    Perform a request with retry/backoff handling.

    Args:
        send: Zero-argument coroutine factory issuing the request
        policy: Retry configuration
        operation: Operation name for logging context
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        httpx.Response: First response whose status is not retryable

    Raises:
        ProviderUnavailableError: Retry budget exhausted on network errors or retryable statuses
    """
    attempts = max(policy.max_attempts, 1)

    for attempt in range(1, attempts + 1):
        try:
            response = await send()
        except httpx.RequestError as exc:
            if attempt == attempts:
                logger.error(
                    "Provider request failed after retries",
                    operation=operation,
                    attempts=attempt,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise ProviderUnavailableError(
                    f"{operation} failed after {attempt} attempts: {exc}"
                ) from exc

            wait_time = policy.delay_for(attempt)
            logger.warning(
                "Provider request error, retrying",
                operation=operation,
                attempt=attempt,
                wait_time=wait_time,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await sleep(wait_time)
            continue

        if not policy.is_retryable_status(response.status_code):
            return response

        if attempt == attempts:
            logger.error(
                "Provider returned transient status after retries",
                operation=operation,
                attempts=attempt,
                status_code=response.status_code,
            )
            raise ProviderUnavailableError(
                f"{operation} failed with HTTP {response.status_code} after {attempt} attempts"
            )

        wait_time = policy.delay_for(attempt, _retry_after_seconds(response))
        logger.warning(
            "Provider transient status",
            operation=operation,
            status_code=response.status_code,
            attempt=attempt,
            wait_time=wait_time,
        )
        await sleep(wait_time)

    # range() above always returns or raises
    raise ProviderUnavailableError(f"{operation} failed: retry budget exhausted")
