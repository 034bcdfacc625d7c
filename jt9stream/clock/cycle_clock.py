"""
UTC cycle clock.

Provides the wall-clock arithmetic the decode loop needs: how far into the
current T/R cycle we are, how long until the next boundary, and the HHMM
stamp written into each decode request.

Boundaries are computed from epoch milliseconds (not a monotonic clock) so
they land on the same UTC second marks as every other station.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def elapsed_in_cycle(now_ms: int, cycle_ms: int) -> int:
    """
    Milliseconds elapsed since the most recent cycle boundary.

    Returns:
        Value in [0, cycle_ms)
    """
    return now_ms % cycle_ms


def time_to_next_boundary(now_ms: int, cycle_ms: int) -> int:
    """
    Milliseconds until the next cycle boundary.

    Exactly on a boundary this returns a full cycle, never zero.

    Returns:
        Value in (0, cycle_ms]
    """
    return cycle_ms - elapsed_in_cycle(now_ms, cycle_ms)


def _system_utc_ms() -> int:
    return time.time_ns() // 1_000_000


class CycleClock:
    """
    Wall-clock source for cycle alignment.

    The time source and sleep function are injectable so the decode loop can
    be driven by a simulated clock in tests.
    """

    def __init__(
        self,
        time_source: Optional[Callable[[], int]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        """
        Args:
            time_source: Callable returning UTC epoch milliseconds (default: system clock)
            sleep: Callable sleeping for a number of seconds (default: time.sleep)
        """
        self._time_source = time_source or _system_utc_ms
        self._sleep = sleep or time.sleep

    def now_ms(self) -> int:
        return int(self._time_source())

    def elapsed_in_cycle(self, cycle_ms: int) -> int:
        return elapsed_in_cycle(self.now_ms(), cycle_ms)

    def ms_to_next_boundary(self, cycle_ms: int) -> int:
        return time_to_next_boundary(self.now_ms(), cycle_ms)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def sleep_ms(self, ms: int) -> None:
        self.sleep(ms / 1000.0)

    def utc_hhmm(self) -> int:
        """UTC hour and minute as the HHMM integer the decoder expects in params.nutc."""
        now = datetime.fromtimestamp(self.now_ms() / 1000.0, tz=timezone.utc)
        return now.hour * 100 + now.minute

    def seconds_in_minute(self) -> float:
        """Seconds (with ms precision) past the current UTC minute, for logging."""
        return (self.now_ms() % 60000) / 1000.0
