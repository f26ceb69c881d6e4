"""
Credential pool: round-robin token rotation with per-token quota tracking.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from core.entities import Credential, QuotaSnapshot
from core.errors import ConfigError
from infrastructure.retry_utils import RateGovernor

logger = logging.getLogger(__name__)


class CredentialPool:
    """
    Holds the API tokens and the quota state reported for each of them.

    All state is guarded by a single lock that is only held for short
    reads and writes, never across a sleep or a network call.
    """

    def __init__(
        self,
        tokens: List[str],
        clock: Callable[[], float] = time.time,
        sleep: Optional[Callable[[float], None]] = None,
        stopping: Optional[threading.Event] = None,
    ):
        """
        Args:
            tokens: GitHub API tokens
            clock: Returns current epoch seconds
            sleep: Blocks for the given seconds; defaults to waiting on `stopping`
            stopping: Set to make waits return early
        """
        if not tokens:
            raise ConfigError("At least one API token is required")

        self._credentials = [
            Credential(index=i, token=token) for i, token in enumerate(tokens)
        ]
        self._lock = threading.Lock()
        self._index = 0
        self.clock = clock
        self.stopping = stopping or threading.Event()
        self._sleep = sleep or self.stopping.wait

    def __len__(self) -> int:
        return len(self._credentials)

    def sleep(self, seconds: float):
        """Block for the given seconds unless stopping."""
        if seconds > 0 and not self.stopping.is_set():
            self._sleep(seconds)

    def next(self) -> Credential:
        """Return the credential at the round-robin index and advance it."""
        with self._lock:
            credential = self._credentials[self._index]
            self._index = (self._index + 1) % len(self._credentials)
            return credential

    def snapshot(self, index: int) -> QuotaSnapshot:
        with self._lock:
            return self._credentials[index].snapshot()

    def last_used(self, index: int) -> Optional[float]:
        with self._lock:
            return self._credentials[index].last_used

    def record_quota(self, index: int, remaining: int, limit: int, reset_at: float):
        """
        Store the quota reported by the latest response on a credential.

        Args:
            index: Credential index
            remaining: Remaining requests
            limit: Request limit of the window
            reset_at: Epoch seconds at which the window resets
        """
        with self._lock:
            credential = self._credentials[index]
            credential.remaining = max(0, remaining)
            credential.limit = limit
            credential.reset_at = reset_at

        if remaining <= 0:
            logger.warning(
                f"Token {credential.label} exhausted, resets at {reset_at:.0f}"
            )

    def reserve(self, index: int, governor: RateGovernor, not_before: float = 0.0) -> float:
        """
        Book the next request slot on a credential.

        Spends one unit of quota and stamps the governor's slot time under the
        lock, so concurrent workers sharing a credential are spaced by the
        governor. A retry cooldown (not_before) delays only the task carrying
        it and is not stamped on the credential.

        Args:
            index: Credential index
            governor: Computes the wait from the quota snapshot
            not_before: Epoch seconds before which the request must not start

        Returns:
            Seconds the caller has to wait before sending the request
        """
        with self._lock:
            credential = self._credentials[index]
            now = self.clock()
            slot_wait = governor.wait_for(credential.snapshot(), credential.last_used, now)
            credential.remaining = max(0, credential.remaining - 1)
            credential.last_used = now + slot_wait
        return max(slot_wait, not_before - now, 0.0)

    def _is_available(self, credential: Credential, now: float) -> bool:
        if credential.remaining > 0:
            return True
        if now >= credential.reset_at:
            # The window rolled over; trust the limit until told otherwise.
            credential.remaining = credential.limit
            return True
        return False

    def await_available(self, index: int) -> Optional[Credential]:
        """
        Block until a credential with quota can be used.

        Returns the requested credential when it has quota (or its window
        reset), another credential when it is exhausted but others are not,
        and otherwise sleeps until the earliest reset among all credentials.

        Returns:
            The credential to use, or None if stopping was requested
        """
        while not self.stopping.is_set():
            with self._lock:
                now = self.clock()
                requested = self._credentials[index]
                if self._is_available(requested, now):
                    return requested

                for credential in self._credentials:
                    if self._is_available(credential, now):
                        return credential

                earliest = min(self._credentials, key=lambda c: c.reset_at)
                wait_time = earliest.reset_at - now

            logger.warning(
                f"All {len(self._credentials)} tokens exhausted. "
                f"Waiting {wait_time:.1f}s for token {earliest.label} to reset"
            )
            self.sleep(wait_time)

        return None

    def status(self) -> List[dict]:
        """Quota of every credential, for logging."""
        with self._lock:
            return [
                {
                    "token": c.label,
                    "remaining": c.remaining,
                    "limit": c.limit,
                    "reset_at": c.reset_at,
                }
                for c in self._credentials
            ]
