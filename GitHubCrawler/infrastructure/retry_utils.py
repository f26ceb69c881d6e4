"""
Rate governor and backoff helpers.
Pure timing logic: nothing in here sleeps or performs I/O.
"""

import logging
from typing import Optional

from core.entities import QuotaSnapshot

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int,
    base_delay: float = 2.0,
    max_delay: float = 120.0,
    exponential_base: float = 2.0,
    retry_after: Optional[float] = None,
) -> float:
    """
    Delay before retry number `attempt` (0-based), capped at max_delay.

    A server supplied Retry-After wins when it asks for longer.

    Args:
        attempt: Number of attempts already made
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries
        exponential_base: Multiplier for exponential growth
        retry_after: Seconds requested by the server, if any
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)
    if retry_after is not None and retry_after > delay:
        return float(retry_after)
    return delay


class RateGovernor:
    """
    Decides how long to wait before the next call on a credential.

    If the credential's remaining quota is at or below the reserve threshold
    the caller waits for the reset. Otherwise it waits until min_interval has
    elapsed since the credential was last used.
    """

    def __init__(self, min_interval: float = 0.0, reserve_threshold: int = 0):
        """
        Args:
            min_interval: Minimum seconds between two calls on one credential
            reserve_threshold: Remaining quota at which to wait for the reset
        """
        if min_interval < 0:
            raise ValueError("min_interval cannot be negative")
        if reserve_threshold < 0:
            raise ValueError("reserve_threshold cannot be negative")
        self.min_interval = min_interval
        self.reserve_threshold = reserve_threshold

    def wait_for(
        self,
        snapshot: QuotaSnapshot,
        last_used: Optional[float],
        now: float,
    ) -> float:
        """
        Seconds to wait before issuing the next request.

        Args:
            snapshot: Last known quota of the credential
            last_used: Epoch seconds of the credential's previous call, if any
            now: Current epoch seconds
        """
        if snapshot.remaining <= self.reserve_threshold and snapshot.reset_at > now:
            wait_time = snapshot.reset_at - now
            logger.debug(
                f"Quota at {snapshot.remaining}/{snapshot.limit}, "
                f"waiting {wait_time:.1f}s for reset"
            )
            return wait_time

        if last_used is None:
            return 0.0
        return max(0.0, self.min_interval - (now - last_used))
