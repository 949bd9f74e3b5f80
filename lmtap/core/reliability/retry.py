"""
Caller-side retry for transient fetch failures.

Only ``FetchError`` is retried, with exponential backoff and jitter.
Integrity and correctness failures (``DigestMismatch``,
``VerificationFailed``) and everything else propagate immediately.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from lmtap.core.errors import FetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Delay before retry number ``attempt`` (1-based), with up to 30% jitter."""
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    return delay + random.uniform(0, delay * 0.3)


def retry_fetch(
    fn: Callable[[], T],
    *,
    retries: int = 0,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn``, retrying up to ``retries`` more times on ``FetchError``.

    Args:
        fn: Zero-argument callable performing the fetch.
        retries: Extra attempts after the first (0 = no retry).
        base_delay: First backoff delay in seconds.
        max_delay: Cap on any single delay.
        sleep: Injected for tests.

    Raises:
        FetchError: The last failure once retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except FetchError as e:
            if not e.retryable or attempt >= retries:
                raise
            attempt += 1
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Fetch failed (%s); retry %d/%d in %.1fs", e.message, attempt, retries, delay,
            )
            sleep(delay)
