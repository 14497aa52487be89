"""Ledger clocks. Each ledger reads time only from its own clock."""

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int:
        """Current ledger time as a Unix timestamp in seconds."""
        ...


class SystemClock:
    """Wall-clock time at one-second resolution."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Deterministic clock for tests and simulations."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Cannot move clock backwards by {seconds}s")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = timestamp
