"""
Cycle timing for jt9stream.

Decode boundaries align to absolute UTC time so every station on the band
transmits and decodes in the same slots.
"""

from jt9stream.clock.cycle_clock import (
    CycleClock,
    elapsed_in_cycle,
    time_to_next_boundary,
)

__all__ = [
    "CycleClock",
    "elapsed_in_cycle",
    "time_to_next_boundary",
]
