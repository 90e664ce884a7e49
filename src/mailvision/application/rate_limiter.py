"""Sliding-window gate that bounds how often harvest cycles hit the vision service."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque

from loguru import logger

WINDOW_SECONDS = 10 * 60
WINDOW_MINUTES = WINDOW_SECONDS / 60


@dataclass(frozen=True)
class ActivityWindowEntry:
    timestamp: float
    discarded: bool


class RateLimiter:
    """Admit or discard cycles against a calls-per-minute ceiling.

    The rate is the number of admitted entries in the last ten minutes
    divided by ten. Discarded cycles are recorded but never count towards
    the rate. Without a ceiling every call is admitted and nothing is
    recorded.
    """

    def __init__(
        self,
        max_calls_per_minute: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_calls_per_minute = max_calls_per_minute
        self._clock = clock
        self._entries: Deque[ActivityWindowEntry] = deque()

    @property
    def entries(self) -> list[ActivityWindowEntry]:
        return list(self._entries)

    @property
    def rate(self) -> float:
        """Admitted calls per minute averaged over the window."""
        admitted = sum(1 for e in self._entries if not e.discarded)
        return admitted / WINDOW_MINUTES

    def _prune(self, now: float) -> None:
        while self._entries and now - self._entries[0].timestamp >= WINDOW_SECONDS:
            self._entries.popleft()

    def admit(self) -> bool:
        if self.max_calls_per_minute is None:
            return True

        now = self._clock()
        self._prune(now)
        rate = self.rate

        if rate < self.max_calls_per_minute:
            self._entries.append(ActivityWindowEntry(timestamp=now, discarded=False))
            return True

        self._entries.append(ActivityWindowEntry(timestamp=now, discarded=True))
        logger.warning(
            f"Rate ceiling reached ({rate:.2f}/min >= {self.max_calls_per_minute}/min), discarding cycle"
        )
        return False
