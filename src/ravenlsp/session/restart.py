"""Exponential-backoff restart policy with a crash cool-down window."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable

from ravenlsp.config import RestartConfig


class RestartPolicy:
    """Decides whether and when to restart after a crash.

    Crashes older than ``cooldown`` seconds are forgotten. The n-th crash
    inside the window waits ``initial_delay * backoff_factor**(n-1)``
    seconds (capped at ``max_delay``); more than ``max_restarts`` crashes
    inside the window are fatal.
    """

    def __init__(
        self,
        config: RestartConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RestartConfig()
        self._clock = clock
        self._crashes: deque[float] = deque()

    @property
    def recent_crashes(self) -> int:
        self._forget_old(self._clock())
        return len(self._crashes)

    def _forget_old(self, now: float) -> None:
        while self._crashes and now - self._crashes[0] > self.config.cooldown:
            self._crashes.popleft()

    def record_crash(self) -> float | None:
        """Record a crash and return the restart delay, or None if fatal."""
        now = self._clock()
        self._forget_old(now)
        self._crashes.append(now)

        if not self.config.enabled:
            return None
        attempt = len(self._crashes)
        if attempt > self.config.max_restarts:
            return None

        delay = self.config.initial_delay * self.config.backoff_factor ** (attempt - 1)
        return min(delay, self.config.max_delay)

    def reset(self) -> None:
        self._crashes.clear()
