"""Bounded polling shared by the eviction and rebind engines."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from vfioswap.core.model import RetryPolicy

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], None]


def wait_until(
    predicate: Callable[[], bool],
    policy: RetryPolicy,
    description: str,
    *,
    sleep: Sleep = time.sleep,
) -> bool:
    """Check ``predicate`` up to ``policy.attempts`` times, sleeping in between.

    Returns False after the budget is spent; a timeout is logged, never raised.
    """
    LOGGER.debug("Waiting for: %s (max %d attempts)", description, policy.attempts)
    for attempt in range(policy.attempts):
        if predicate():
            LOGGER.debug("Condition met after %d attempts", attempt)
            return True
        sleep(policy.interval)
    LOGGER.warning("Timeout waiting for: %s", description)
    return False
