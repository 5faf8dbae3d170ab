"""Bounded retry with exponential backoff for notification delivery."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from src.errors import DeliveryError
from src.notifications.config import RetryPolicy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def is_retryable_status(status_code: int) -> bool:
    """408, 429 and every 5xx are transient."""
    return status_code in (408, 429) or 500 <= status_code <= 599


def compute_delay_ms(
    attempt: int,
    policy: RetryPolicy,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay before the retry that follows ``attempt`` (1-based).

    ``min(base * 2**(attempt-1), cap)`` scaled by a jitter factor in
    ``[1 - jitter, 1 + jitter]``.
    """
    exp = policy.base_delay_ms * 2 ** max(0, attempt - 1)
    capped = min(exp, policy.max_delay_ms)
    return round(capped * rng(1 - policy.jitter, 1 + policy.jitter))


async def deliver_with_retry(
    send: Callable[[], Awaitable[None]],
    policy: RetryPolicy,
    channel: str,
    fingerprint: str,
    sleep: Optional[Sleep] = None,
) -> int:
    """Call ``send`` until it succeeds, fails permanently or attempts run out.

    ``send`` raises ``DeliveryError``; only retryable ones are retried.
    Delays never shrink between consecutive retries. Returns the number of
    attempts made. Re-raises the last error on failure, annotated with the
    attempt count.
    """
    sleep = sleep or asyncio.sleep
    previous_delay = 0.0
    attempt = 0
    while True:
        attempt += 1
        try:
            await send()
            return attempt
        except DeliveryError as exc:
            exc.details["attempts"] = attempt
            if not exc.retryable or attempt >= policy.attempts:
                raise
            delay_ms = max(previous_delay, compute_delay_ms(attempt, policy))
            previous_delay = delay_ms
            logger.warning(
                "%s notification retrying: %s", channel, exc.message,
                extra={
                    "channel": channel,
                    "fingerprint": fingerprint,
                    "attempt": attempt,
                    "status_code": exc.status_code,
                    "extra_data": {"next_delay_ms": delay_ms},
                },
            )
            await sleep(delay_ms / 1000)
