"""Bounded retries and timeouts for external calls.

Every call out of the engine (provider operations, rotation targets) goes
through :func:`call_with_retry`: each attempt is bounded by a timeout, and
transient failures are retried with exponential backoff plus jitter up to a
fixed attempt count.  An exception is transient when it is a
``TimeoutError`` or carries a truthy ``transient`` attribute.
"""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    jitter_ratio: float = 0.2
    timeout_seconds: float | None = 600.0

    def delay(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (1-based)."""
        backoff = min(self.backoff_base_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)
        return backoff + random.uniform(0, backoff * self.jitter_ratio)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TimeoutError) or bool(getattr(exc, "transient", False))


def call_with_timeout(fn: Callable[[], T], timeout: float | None) -> T:
    """Run *fn*, raising ``TimeoutError`` if it does not finish in *timeout* seconds.

    A call that times out keeps running in its worker thread; its result is
    discarded.
    """
    if timeout is None or timeout <= 0:
        return fn()

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="call-timeout")
    try:
        future = pool.submit(fn)
        try:
            return future.result(timeout=timeout)
        except TimeoutError as e:
            raise TimeoutError(f"Call did not complete within {timeout}s") from e
    finally:
        pool.shutdown(wait=False)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    label: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn* under *policy*; permanent errors propagate immediately."""
    last_error: BaseException | None = None

    for attempt in range(1, max(policy.max_attempts, 1) + 1):
        try:
            return call_with_timeout(fn, policy.timeout_seconds)
        except Exception as e:
            if not is_transient(e):
                raise
            last_error = e

            if attempt < policy.max_attempts:
                wait_time = policy.delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    label,
                    attempt,
                    policy.max_attempts,
                    wait_time,
                    e,
                )
                sleep(wait_time)

    # Loop runs at least once, so last_error is set before reaching here.
    assert last_error is not None
    raise last_error
