"""Retry policy for outbound HTTP calls to the delivery service.

A delivery attempt (one queue-item attempt) may issue several HTTP requests:
transport errors and retryable statuses are retried here with backoff before
the attempt is reported back to the processor as a failure.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from mailflow.core.config import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 4.0
    retry_statuses: frozenset[int] = RETRYABLE_STATUSES

    @classmethod
    def for_delivery(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.DELIVERY_HTTP_ATTEMPTS,
            base_delay=settings.DELIVERY_RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.DELIVERY_RETRY_MAX_DELAY_SECONDS,
        )

    def delay_for(self, attempt: int, response: httpx.Response | None = None) -> float:
        """Seconds to wait before the next request.

        A numeric Retry-After header (429/503 from the provider) wins over the
        exponential backoff; both are capped at ``max_delay``.
        """
        if response is not None:
            retry_after = response.headers.get("Retry-After", "").strip()
            if retry_after.isdigit():
                return min(self.max_delay, float(retry_after))
        delay = min(self.max_delay, self.base_delay * (2**attempt))
        if not delay:
            return 0.0
        return delay + random.uniform(0, delay / 2)


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy | None = None,
    *,
    log_context: dict[str, Any] | None = None,
) -> httpx.Response:
    """
    Run ``request_fn`` until it returns a non-retryable response.

    Raises the last ``httpx.RequestError`` when every attempt failed at the
    transport level. A retryable status on the final attempt is returned as-is.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, policy.max_attempts)
    extra = log_context or {}

    for attempt in range(attempts):
        final = attempt == attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if final:
                raise
            logger.warning(
                "Delivery request error %s (attempt %d/%d), retrying",
                exc.__class__.__name__,
                attempt + 1,
                attempts,
                extra=extra,
            )
            delay = policy.delay_for(attempt)
        else:
            if final or response.status_code not in policy.retry_statuses:
                return response
            logger.warning(
                "Delivery service returned %s (attempt %d/%d), retrying",
                response.status_code,
                attempt + 1,
                attempts,
                extra=extra,
            )
            delay = policy.delay_for(attempt, response)

        if delay:
            await asyncio.sleep(delay)
