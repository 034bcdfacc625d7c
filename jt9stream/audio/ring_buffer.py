"""
Thread-safe circular sample buffer.

This module provides SampleRingBuffer, the store between the stdin stream
producer and the decode loop. It holds the most recent `capacity` mono int16
samples and never blocks the writer: when the decode loop falls behind, the
oldest audio is overwritten. Stale audio is useless once its cycle boundary
has passed, so freshness wins over completeness.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

SAMPLE_DTYPE = np.int16


@dataclass
class SampleRingBufferStats:
    """
    Statistics for SampleRingBuffer.

    Attributes:
        capacity: Number of sample slots
        count: Samples currently recoverable (min(total_written, capacity))
        total_written: Samples appended since creation (never wraps)
        overwritten: Samples lost to wrap-around before being read
    """
    capacity: int
    count: int
    total_written: int
    overwritten: int


class SampleRingBuffer:
    """
    Fixed-capacity circular store of int16 audio samples.

    Single producer (append), single snapshot reader (snapshot). Both run under
    one lock. total_written() and write_pos() are plain attribute reads and need
    no lock: a stale value only delays readiness detection.

    Invariant: the most recent min(total_written, capacity) samples are
    recoverable by walking backward from the write cursor.
    """

    def __init__(self, capacity: int) -> None:
        """
        Initialize ring buffer.

        Args:
            capacity: Number of sample slots (must be > 0). Size it to the longest
                      cycle the decoder will be asked to snapshot.

        Raises:
            ValueError: If capacity <= 0
        """
        if capacity <= 0:
            raise ValueError(f"SampleRingBuffer capacity must be > 0, got {capacity}")

        self._capacity = capacity
        self._samples: Optional[np.ndarray] = np.zeros(capacity, dtype=SAMPLE_DTYPE)
        self._lock = threading.Lock()
        # Condition shares the buffer lock so warm-up waiters wake on every append
        self._condition = threading.Condition(self._lock)

        self._write_pos = 0
        self._total_written = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def total_written(self) -> int:
        return self._total_written

    def write_pos(self) -> int:
        return self._write_pos

    def is_released(self) -> bool:
        return self._samples is None

    def append(self, samples: np.ndarray) -> None:
        """
        Append samples at the write cursor, wrapping at capacity.

        Never blocks on the reader. If `samples` is longer than the buffer, only
        its last `capacity` samples are kept, but total_written still counts all
        of them.

        Args:
            samples: 1-D array of samples (converted to int16)

        Raises:
            RuntimeError: If the buffer has been released
        """
        block = np.asarray(samples, dtype=SAMPLE_DTYPE).reshape(-1)
        count = len(block)
        if count == 0:
            return

        with self._lock:
            if self._samples is None:
                raise RuntimeError("SampleRingBuffer has been released")

            if count >= self._capacity:
                # Only the tail survives; lay it out so the cursor lands at 0
                self._samples[:] = block[-self._capacity:]
                self._write_pos = 0
            else:
                end = self._write_pos + count
                if end <= self._capacity:
                    self._samples[self._write_pos:end] = block
                else:
                    first = self._capacity - self._write_pos
                    self._samples[self._write_pos:] = block[:first]
                    self._samples[:count - first] = block[first:]
                self._write_pos = end % self._capacity

            self._total_written += count
            self._condition.notify_all()

    def snapshot(self, n: int) -> np.ndarray:
        """
        Copy out the most recent `n` samples, oldest first.

        A read that straddles the wrap point is assembled from two copies
        (tail segment, then head segment). The returned array owns its memory
        and is unaffected by later appends.

        Args:
            n: Number of samples (0 < n <= capacity, n <= total_written)

        Returns:
            New int16 array of length n

        Raises:
            ValueError: If n is out of range
            RuntimeError: If the buffer has been released
        """
        if n <= 0 or n > self._capacity:
            raise ValueError(f"Snapshot size must be in 1..{self._capacity}, got {n}")

        with self._lock:
            if self._samples is None:
                raise RuntimeError("SampleRingBuffer has been released")
            if n > self._total_written:
                raise ValueError(
                    f"Snapshot of {n} samples requested but only {self._total_written} written"
                )

            start = (self._write_pos - n) % self._capacity
            if start + n <= self._capacity:
                return self._samples[start:start + n].copy()

            first = self._capacity - start
            out = np.empty(n, dtype=SAMPLE_DTYPE)
            out[:first] = self._samples[start:]
            out[first:] = self._samples[:n - first]
            return out

    def wait_for_samples(self, n: int, timeout: Optional[float] = None) -> bool:
        """
        Block until at least `n` samples have ever been written.

        Args:
            n: Required total_written
            timeout: Maximum wait in seconds (None waits indefinitely)

        Returns:
            True if total_written >= n when the wait ends
        """
        with self._condition:
            self._condition.wait_for(
                lambda: self._total_written >= n or self._samples is None,
                timeout=timeout,
            )
            return self._total_written >= n

    def release(self) -> None:
        """
        Free the sample storage.

        Must only be called after the producer thread has been joined. Wakes any
        warm-up waiters. Safe to call more than once.
        """
        with self._lock:
            if self._samples is None:
                return
            self._samples = None
            self._condition.notify_all()
        logger.debug("Sample ring buffer released")

    def stats(self) -> SampleRingBufferStats:
        total = self._total_written
        return SampleRingBufferStats(
            capacity=self._capacity,
            count=min(total, self._capacity),
            total_written=total,
            overwritten=max(0, total - self._capacity),
        )

    def __len__(self) -> int:
        return min(self._total_written, self._capacity)
