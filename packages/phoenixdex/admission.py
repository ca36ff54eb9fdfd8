"""Per-user admission control: a windowed rate limiter and a prepaid credit gate."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from .errors import InsufficientCredits, RateLimited

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 10
DEFAULT_WINDOW_SECONDS = 60.0


@dataclass
class RateLimitWindow:
    remaining: int
    window_start: float


class RateLimiter:
    """Fixed quota per window, anchored at the first request of each window."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, RateLimitWindow] = {}

    def acquire(self, user_id: str) -> int:
        """Consume one request from the user's quota; returns what is left.

        Raises:
            RateLimited: If the quota for the current window is used up.
        """
        now = self.clock()
        with self._lock:
            window = self._windows.get(user_id)
            if window is None:
                window = RateLimitWindow(remaining=self.max_requests, window_start=now)
                self._windows[user_id] = window
            elif now - window.window_start >= self.window_seconds:
                window.remaining = self.max_requests
                window.window_start = now

            if window.remaining == 0:
                retry_after = self.window_seconds - (now - window.window_start)
                raise RateLimited(user_id, retry_after=max(retry_after, 0.0))

            window.remaining -= 1
            return window.remaining

    def window_for(self, user_id: str) -> Optional[RateLimitWindow]:
        with self._lock:
            window = self._windows.get(user_id)
            if window is None:
                return None
            return RateLimitWindow(window.remaining, window.window_start)


class CreditStore(Protocol):
    def consume_credit(self, user_id: str) -> bool: ...


class CreditGate:
    """Charges one credit per admitted query.

    Requests from the same user are serialized around the store's
    check-and-decrement so two concurrent requests cannot both spend the
    last credit.
    """

    def __init__(self, store: CreditStore):
        self.store = store
        self._locks_guard = threading.Lock()
        self._user_locks: dict[str, threading.Lock] = {}

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._user_locks[user_id] = lock
            return lock

    def charge(self, user_id: str) -> None:
        """
        Raises:
            InsufficientCredits: If the user has no credits left.
        """
        with self._user_lock(user_id):
            if not self.store.consume_credit(user_id):
                raise InsufficientCredits(user_id)


class AdmissionControl:
    """Runs the rate limiter, then the credit gate."""

    def __init__(self, rate_limiter: RateLimiter, credit_gate: CreditGate):
        self.rate_limiter = rate_limiter
        self.credit_gate = credit_gate

    def admit(self, user_id: str) -> None:
        """
        Raises:
            RateLimited: Quota exhausted; credits are not touched.
            InsufficientCredits: No credits left.
        """
        remaining = self.rate_limiter.acquire(user_id)
        self.credit_gate.charge(user_id)
        logger.debug(f"Admitted {user_id}, {remaining} requests left in window")
