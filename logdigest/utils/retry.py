"""
LogDigest - Request Retries
===========================

Exponential-backoff retries for completion requests. A request is tried
again after a transport failure or a 5xx response; any other response is
returned to the caller on the first attempt. The analysis pipeline itself
never retries.

Usage:
    from logdigest.utils.retry import RetryPolicy, send_with_retry

    response = await send_with_retry(
        lambda: client.post(url, json=payload),
        RetryPolicy(max_attempts=3, base_delay=1.0),
        model="gpt-4o-mini",
    )
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from logdigest.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    """
    How often and how patiently to retry a completion request.

    Attributes:
        max_attempts: Attempts including the first one
        base_delay: Delay before the first retry, in seconds
        max_delay: Cap on any single delay
        backoff_multiplier: Growth factor between consecutive delays
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        return min(self.base_delay * (self.backoff_multiplier ** (attempt - 1)), self.max_delay)


def is_server_error(response: httpx.Response) -> bool:
    return response.status_code >= 500


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    **log_fields: Any
) -> httpx.Response:
    """
    Call ``send`` until it yields a response that is not a 5xx.

    When every attempt ends in a 5xx the last response is returned, so the
    caller can still read the provider's error payload. When every attempt
    ends in a transport error the last one is re-raised.

    ``log_fields`` (model, endpoint, ...) are attached to the retry log lines.
    """
    attempts = max(1, policy.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            response = await send()
        except httpx.TransportError as e:
            if attempt >= attempts:
                logger.error(
                    f"Completion request failed after {attempts} attempts: {e}",
                    extra={**log_fields, "attempts": attempts, "error": str(e)}
                )
                raise
            reason = {"error": f"{type(e).__name__}: {e}"}
        else:
            if not is_server_error(response) or attempt >= attempts:
                return response
            reason = {"status_code": response.status_code}

        delay = policy.delay(attempt)
        logger.warning(
            f"Retrying completion request ({attempt}/{attempts}) in {delay:.2f}s",
            extra={**log_fields, **reason, "attempt": attempt, "delay": delay}
        )
        await asyncio.sleep(delay)

    raise RuntimeError("retry loop exited without a result")
