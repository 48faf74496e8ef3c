"""Spawn rate limiter.

Allows at most one new process per configured interval, for the whole
server. The check and the record are separate calls: a request asks
:meth:`RateLimiter.try_acquire` first and calls
:meth:`RateLimiter.record_start` only once its process really started.
Two requests racing between those calls may both get through; the limiter
throttles coarsely and does not promise single admission.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Global start-interval limiter.

    Args:
        interval: Minimum seconds between two process starts. 0 disables.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval < 0:
            raise ValueError(f"interval must not be negative, got {interval}")
        self._interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._last_start: float | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def enabled(self) -> bool:
        return self._interval > 0

    def try_acquire(self) -> bool:
        """Return whether a new process may start now. Does not mutate state."""
        if not self.enabled:
            return True
        with self._lock:
            last = self._last_start
        if last is None:
            return True
        allowed = self._clock() >= last + self._interval
        if not allowed:
            logger.debug("Rate limited: last start %.3fs ago", self._clock() - last)
        return allowed

    def record_start(self) -> None:
        """Remember that a process has just started."""
        with self._lock:
            self._last_start = self._clock()
