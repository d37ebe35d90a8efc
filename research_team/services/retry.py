# =============================================================================
# Resilient Remote Call — Exponential Backoff for Transient Failures
# =============================================================================
#
# The only place in the package where transient remote failures are
# absorbed. Callers wrap a zero-argument coroutine factory:
#
#   text = await call_with_retry(
#       lambda: llm.generate(prompt),
#       token=run, max_attempts=3, base_delay_ms=2000,
#   )
#
# Rules:
#   - The run token is checked before and after every attempt. Cancellation
#     always wins over retry.
#   - Rate-limit / overload errors (429, 503, 529 or matching messages) are
#     retried after base_delay_ms * 2**attempt + jitter(0..1000ms).
#   - Any other foreign error is wrapped in PermanentRemoteFailure and
#     raised at once. Errors from our own taxonomy pass through untouched.
#   - Running out of attempts raises TransientRemoteFailure.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from research_team.errors import (
    Cancelled,
    PermanentRemoteFailure,
    ResearchTeamError,
    TransientRemoteFailure,
)
from research_team.services.cancellation import CancellableRun

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_STATUS_CODES = {429, 503, 529}
_TRANSIENT_MARKERS = (
    "429",
    "503",
    "quota",
    "overloaded",
    "rate limit",
    "rate_limit",
    "resource_exhausted",
)

# Patched in tests to observe delays without waiting.
_sleep = asyncio.sleep


def _status_code(exc: BaseException) -> int | None:
    """Pull an HTTP status code out of SDK exceptions of either provider."""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_transient_error(exc: BaseException) -> bool:
    """Classify rate-limit and overload errors as retryable."""
    if isinstance(exc, ResearchTeamError):
        return isinstance(exc, TransientRemoteFailure)
    if _status_code(exc) in _TRANSIENT_STATUS_CODES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> float:
    """Delay before retrying after 0-based `attempt`, jitter included."""
    return base_delay_ms * (2 ** attempt) + random.uniform(0, 1000)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    token: CancellableRun,
    max_attempts: int = 3,
    base_delay_ms: int = 2000,
) -> T:
    """
    Invoke `operation` up to `max_attempts` times.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per
            attempt.
        token: Run token polled before and after every attempt.
        max_attempts: Total tries, including the first.
        base_delay_ms: Base of the exponential backoff.

    Raises:
        Cancelled: The run was cancelled before or after an attempt.
        TransientRemoteFailure: Every attempt hit a transient error.
        PermanentRemoteFailure: A non-transient foreign error occurred.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: BaseException | None = None

    for attempt in range(max_attempts):
        token.raise_if_cancelled()
        try:
            result = await operation()
        except Cancelled:
            raise
        except Exception as e:
            token.raise_if_cancelled()

            if not is_transient_error(e):
                if isinstance(e, ResearchTeamError):
                    raise
                raise PermanentRemoteFailure(str(e) or type(e).__name__) from e

            last_error = e
            if attempt == max_attempts - 1:
                break

            delay_ms = backoff_delay_ms(attempt, base_delay_ms)
            logger.warning(
                "Model API busy/limited (attempt %d/%d): %s. "
                "Waiting %dms...",
                attempt + 1, max_attempts, e, round(delay_ms),
            )
            await _sleep(delay_ms / 1000)
            continue

        token.raise_if_cancelled()
        return result

    raise TransientRemoteFailure(
        f"Remote call failed after {max_attempts} attempts: {last_error}"
    ) from last_error
