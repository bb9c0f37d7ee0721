"""Permit-based rate limiting over fixed time windows."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

_log = logging.getLogger(__name__)


def _steady_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class RateLimiter(ABC):
    """Interface of a limiter handing out permits."""

    @abstractmethod
    def acquire(self, required_permits: int) -> bool:
        """Block until ``required_permits`` are granted; False if they never can be."""

    @abstractmethod
    def try_acquire(self, required_permits: int) -> bool:
        """Take ``required_permits`` if available right now."""

    @abstractmethod
    def rollback(self, required_permits: int) -> None:
        """Return previously taken permits."""


class TimeWindowRateLimiter(RateLimiter):
    """Grants at most ``max_permits_size`` permits per time window."""

    def __init__(
        self,
        max_permits_size: int,
        time_window_ms: int = 1000,
        allow_exceed_max_permit_size: bool = False,
        *,
        clock: Callable[[], int] = _steady_ms,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._lock = threading.Lock()
        self._max_permits_size = max_permits_size
        self._allow_exceed_max_permit_size = allow_exceed_max_permit_size
        self._current_permits_size = max_permits_size
        self._time_window_ms = time_window_ms
        self._clock = clock
        self._sleep = sleep
        self._last_permits_update_time = clock()
        _log.info(
            "[NEWOBJ][TimeWindowRateLimiter] maxPermitsSize=%s allowExceedMaxPermitSize=%s "
            "timeWindowMS=%s",
            max_permits_size,
            allow_exceed_max_permit_size,
            time_window_ms,
        )

    @property
    def max_permits_size(self) -> int:
        return self._max_permits_size

    @property
    def current_permits_size(self) -> int:
        return self._current_permits_size

    @property
    def time_window_ms(self) -> int:
        return self._time_window_ms

    @property
    def allow_exceed_max_permit_size(self) -> bool:
        return self._allow_exceed_max_permit_size

    def _exceeds_max(self, required_permits: int, what: str) -> bool | None:
        """Return the verdict for requests above the maximum, or None if within it."""
        if required_permits <= self._max_permits_size:
            return None
        if self._allow_exceed_max_permit_size:
            return True
        _log.warning(
            "%s exceeded the maximum requiredPermits=%s maxPermitsSize=%s",
            what,
            required_permits,
            self._max_permits_size,
        )
        return False

    def try_acquire(self, required_permits: int) -> bool:
        verdict = self._exceeds_max(required_permits, "try acquire")
        if verdict is not None:
            return verdict

        with self._lock:
            now = self._clock()
            if now - self._last_permits_update_time >= self._time_window_ms:
                self._last_permits_update_time = now
                self._current_permits_size = self._max_permits_size
            if self._current_permits_size >= required_permits:
                self._current_permits_size -= required_permits
                return True
            return False

    def acquire(self, required_permits: int) -> bool:
        verdict = self._exceeds_max(required_permits, "acquire")
        if verdict is not None:
            return verdict

        while not self.try_acquire(required_permits):
            elapsed = self._clock() - self._last_permits_update_time
            if 0 < elapsed < self._time_window_ms:
                self._sleep((self._time_window_ms - elapsed) / 1000)
                continue
            self._sleep(0.001)
        return True

    def rollback(self, required_permits: int) -> None:
        with self._lock:
            self._current_permits_size = min(
                self._current_permits_size + required_permits, self._max_permits_size
            )