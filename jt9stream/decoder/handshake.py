"""
Decode request/response handshake.

This module provides DecodeHandshake, which performs exactly one decode
exchange with the external decoder per call:

1. Snapshot the most recent cycle of audio from the ring buffer.
2. Write it and the request fields into the shared decode block.
3. Poll the busy flag on a fixed tick while draining decoder output.
4. Once busy has cleared and output has settled (or the bounded wait runs
   out), drain once more and acknowledge.

Only one request is ever outstanding: execute() does not return until the
request it issued has been acknowledged. The ring buffer lock and the block
lock are never held together.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import numpy as np

from jt9stream.audio.ring_buffer import SampleRingBuffer
from jt9stream.clock import CycleClock
from jt9stream.decoder.lines import LineKind, LineRouter
from jt9stream.modes import ModeConfig

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 0.1
DEFAULT_MAX_WAIT_SEC = 10.0
DEFAULT_SETTLE_SEC = 0.5
DEFAULT_FINAL_DRAIN_SEC = 0.1


class DecoderOutput(Protocol):
    def read_lines(self, timeout: float = 0.0) -> List[str]:
        ...


class DecodeBlock(Protocol):
    def submit_request(self, samples: np.ndarray, nutc: int, symbols: int) -> None:
        ...

    def is_busy(self) -> bool:
        ...

    def acknowledge(self) -> None:
        ...


@dataclass
class HandshakeResult:
    """
    Outcome of one decode exchange.

    Attributes:
        nutc: UTC HHMM written into the request
        samples: Number of samples submitted
        results: Decode result lines, in arrival order
        diagnostics: Non-result decoder lines (without prefix)
        busy_cleared: Whether the decoder was seen clearing the busy flag
        timed_out: True when the bounded wait ran out before completion
        elapsed: Seconds from request to acknowledgement
    """
    nutc: int
    samples: int
    results: List[str] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)
    busy_cleared: bool = False
    timed_out: bool = False
    elapsed: float = 0.0

    @property
    def completed(self) -> bool:
        return not self.timed_out


class DecodeHandshake:
    """One-request-at-a-time decode exchange over the shared decode block."""

    def __init__(
        self,
        ring: Optional[SampleRingBuffer],
        block: DecodeBlock,
        output: DecoderOutput,
        router: LineRouter,
        mode: ModeConfig,
        clock: Optional[CycleClock] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SEC,
        max_wait: float = DEFAULT_MAX_WAIT_SEC,
        settle: float = DEFAULT_SETTLE_SEC,
        final_drain: float = DEFAULT_FINAL_DRAIN_SEC,
    ) -> None:
        """
        Args:
            ring: Source of snapshots for execute() (None when only submit() is used)
            block: Shared decode block
            output: Decoder output line source
            router: Line classifier/emitter
            mode: Active mode
            clock: UTC clock for request stamping
            poll_interval: Seconds between busy-flag checks
            max_wait: Upper bound in seconds on waiting for one decode
            settle: Quiet period after busy clears before finishing
            final_drain: How long the last output read may wait
        """
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {poll_interval}")
        if max_wait < poll_interval:
            raise ValueError("max_wait must be at least one poll interval")

        self.ring = ring
        self.block = block
        self.output = output
        self.router = router
        self.mode = mode
        self.clock = clock or CycleClock()
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.settle = settle
        self.final_drain = final_drain
        self.exchanges = 0

    def execute(self) -> HandshakeResult:
        """
        Run one exchange on the latest cycle of audio.

        The caller guarantees the ring holds at least one full cycle.
        """
        if self.ring is None:
            raise RuntimeError("execute() requires a ring buffer")
        snapshot = self.ring.snapshot(self.mode.samples_per_cycle)
        return self.submit(snapshot)

    def submit(self, samples: np.ndarray) -> HandshakeResult:
        """
        Run one exchange on an explicit sample array.

        Args:
            samples: int16 audio, at most the block's audio capacity

        Returns:
            HandshakeResult for this exchange
        """
        nutc = self.clock.utc_hhmm()
        logger.info(
            f"Triggering decode at {nutc:04d} +{self.clock.seconds_in_minute():.3f}s "
            f"({len(samples)} samples)"
        )

        result = HandshakeResult(nutc=nutc, samples=len(samples))
        started = time.monotonic()
        deadline = started + self.max_wait

        self.block.submit_request(samples, nutc, self.mode.symbols)

        last_activity = started
        while True:
            now = time.monotonic()
            if now >= deadline:
                result.timed_out = True
                break

            if not result.busy_cleared and not self.block.is_busy():
                result.busy_cleared = True
                last_activity = now

            if result.busy_cleared and now - last_activity >= self.settle:
                break

            wait = min(self.poll_interval, max(deadline - now, 0.0))
            if self._drain(result, wait):
                last_activity = time.monotonic()

        if result.timed_out and result.busy_cleared:
            logger.warning(
                f"Decoder finished but output was still arriving after {self.max_wait:.1f}s; "
                f"acknowledging with {len(result.results)} results"
            )
        elif result.timed_out:
            logger.warning(f"Decoder did not clear the busy flag within {self.max_wait:.1f}s; continuing")

        self._drain(result, self.final_drain)
        self.block.acknowledge()

        result.elapsed = time.monotonic() - started
        self.exchanges += 1
        logger.debug(
            f"Decode {nutc:04d} acknowledged after {result.elapsed:.3f}s: "
            f"{len(result.results)} results"
        )
        return result

    def _drain(self, result: HandshakeResult, timeout: float) -> bool:
        """Route every available output line. Returns True if any line arrived."""
        lines = self.output.read_lines(timeout)
        for line in lines:
            kind = self.router.route(line)
            if kind is LineKind.RESULT:
                result.results.append(line.strip())
            elif kind is LineKind.DIAGNOSTIC:
                result.diagnostics.append(line.strip())
        return bool(lines)
