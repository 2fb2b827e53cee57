"""Retrying HTTP calls for the Google Calendar and Resend integrations."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


def is_retryable_status(status_code: int, retry_statuses: set[int] | None = None) -> bool:
    """Rate limiting and server errors are transient; other 4xx are not."""
    return status_code in (retry_statuses or DEFAULT_RETRY_STATUSES)


def backoff_delay(
    attempt: int, *, base_delay: float, max_delay: float, jitter: bool = True
) -> float:
    """Seconds to wait after zero-based `attempt` failed, plus up to 50% jitter."""
    delay = min(max_delay, base_delay * 2**attempt)
    if jitter and delay > 0:
        delay += random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
    jitter: bool = True,
) -> httpx.Response:
    """
    Call request_fn until it returns a final answer or attempts run out.

    The last response is handed back even when its status is an error, so the
    caller decides how to report it. A transport error on the last attempt
    propagates.
    """
    last_attempt = max_attempts - 1
    attempt = 0
    while True:
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= last_attempt:
                raise
            logger.warning(
                "HTTP %s failed on attempt %d/%d, retrying",
                type(exc).__name__,
                attempt + 1,
                max_attempts,
            )
        else:
            if attempt >= last_attempt or not is_retryable_status(
                response.status_code, retry_statuses
            ):
                return response
            logger.warning(
                "HTTP %s on attempt %d/%d, retrying",
                response.status_code,
                attempt + 1,
                max_attempts,
            )

        delay = backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay, jitter=jitter)
        if delay > 0:
            await asyncio.sleep(delay)
        attempt += 1
