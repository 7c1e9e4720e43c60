"""
Retry with exponential backoff + jitter.

Two combinators share one ``RetryPolicy``:

    retry_call   retries while the callable raises a retryable exception
                 (store and ledger transport errors)
    retry_until  retries while the returned value asks for it
                 (ledger submissions: FAILED is retried, CONFIRMED and
                 CONFLICT are returned as-is)

Neither uses exceptions to signal "try again" to the caller: the final
value (or the final exception, once attempts run out) is what escapes.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from gitanchor.core.errors import TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Args:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for a single delay.
        jitter: Fraction of the delay added at random (0 disables).
    """

    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.3

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter > 0 and delay > 0:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> RetryPolicy:
        """A policy that retries without sleeping (tests, dry runs)."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (TransientIOError,),
    label: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it returns, retrying on ``retry_on`` exceptions.

    The last exception is re-raised once ``policy.max_attempts`` is used up.
    Any other exception propagates immediately.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                logger.warning("%s failed after %d attempts: %s", label, attempt, e)
                raise
            delay = policy.delay_for(attempt)
            logger.debug(
                "%s failed (attempt %d/%d): %s — retrying in %.2fs",
                label, attempt, policy.max_attempts, e, delay,
            )
            sleep(delay)
            attempt += 1


def retry_until(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    should_retry: Callable[[T], bool],
    label: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[T, int]:
    """Call ``fn`` until ``should_retry(result)`` is false or attempts run out.

    Returns:
        (last_result, attempts_used)
    """
    attempt = 1
    while True:
        result = fn()
        if not should_retry(result) or attempt >= policy.max_attempts:
            return result, attempt
        delay = policy.delay_for(attempt)
        logger.debug(
            "%s not settled (attempt %d/%d) — retrying in %.2fs",
            label, attempt, policy.max_attempts, delay,
        )
        sleep(delay)
        attempt += 1
