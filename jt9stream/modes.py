"""
Decoder mode table.

Each mode fixes the T/R cycle length the decoder expects and the symbol count
written into ipc[0] when a decode is requested. The values are constants of
the decoder, not derived from each other.
"""

import enum
from dataclasses import dataclass

# Decoder input sample rate (Hz). All audio handed to jt9 is at this rate.
RX_SAMPLE_RATE = 12000


@dataclass(frozen=True)
class ModeConfig:
    """Immutable per-mode decoder constants."""
    mode_code: int  # value for params.nmode
    cycle_ms: int
    symbols: int  # ipc[0] for a decode request
    name: str

    @property
    def samples_per_cycle(self) -> int:
        return (RX_SAMPLE_RATE * self.cycle_ms) // 1000

    @property
    def cycle_seconds(self) -> float:
        return self.cycle_ms / 1000.0

    @property
    def tr_period_seconds(self) -> int:
        """Whole-second T/R period written to params.ntrperiod."""
        return self.cycle_ms // 1000


class Mode(enum.Enum):
    FT2 = ModeConfig(mode_code=52, cycle_ms=3750, symbols=105, name="FT2")
    FT4 = ModeConfig(mode_code=5, cycle_ms=7500, symbols=105, name="FT4")
    FT8 = ModeConfig(mode_code=8, cycle_ms=15000, symbols=50, name="FT8")

    @property
    def config(self) -> ModeConfig:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> "Mode":
        """
        Look up a mode by name, case-insensitively.

        Raises:
            ValueError: If the name is not one of FT2, FT4, FT8
        """
        key = (name or "").strip().upper()
        try:
            return cls[key]
        except KeyError:
            valid = ", ".join(m.name for m in cls)
            raise ValueError(f"Unknown mode '{name}'. Valid modes: {valid}")


# Longest cycle of any mode; sizes the streaming ring buffer.
MAX_CYCLE_MS = max(m.config.cycle_ms for m in Mode)
MAX_SAMPLES_PER_CYCLE = (RX_SAMPLE_RATE * MAX_CYCLE_MS) // 1000
