"""
Stream producer thread.

This module provides StreamProducer, a dedicated thread that reads PCM bytes
from an input stream as fast as they arrive and appends the samples to the
ring buffer. It runs independently of the decode loop's cadence and never
raises into it: the loop only asks whether the producer is still running.
"""

from __future__ import annotations

import enum
import io
import logging
import os
import select
import stat
import threading
from typing import BinaryIO, Optional

import numpy as np

from jt9stream.audio.ring_buffer import SampleRingBuffer

logger = logging.getLogger(__name__)

# Samples per read (4096 samples = 8192 bytes of s16le mono)
DEFAULT_BLOCK_SAMPLES = 4096
BYTES_PER_SAMPLE = 2

# Bounded backoff when a read returns nothing but the stream is not at EOF
EMPTY_READ_BACKOFF_SEC = 0.010

# select() timeout; bounds how long stop() can go unnoticed on an idle pipe
SELECT_TIMEOUT_SEC = 0.1


class EndReason(enum.Enum):
    """Why the producer stopped reading."""
    EOF = "eof"
    ERROR = "error"
    STOPPED = "stopped"


class StreamProducer(threading.Thread):
    """
    Dedicated thread feeding a SampleRingBuffer from a byte stream.

    For sources with a real file descriptor (pipes, stdin) the thread waits on
    select() and reads with os.read(), so a stop() request is seen within one
    select timeout even when no audio is arriving. Other file-like sources are
    read directly.

    Read outcomes:
    - data: appended immediately (an odd trailing byte is carried to the next read)
    - None / not ready: bounded backoff, then retry
    - b"": end of stream, thread exits
    - OSError / ValueError: I/O failure, thread exits

    Attributes:
        source: Input byte stream
        ring: Ring buffer to append samples to
        finished: Event set when the thread has exited its read loop
        end_reason: Why the read loop ended (None while running)
    """

    def __init__(
        self,
        source: BinaryIO,
        ring: SampleRingBuffer,
        block_samples: int = DEFAULT_BLOCK_SAMPLES,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Initialize stream producer.

        Args:
            source: Readable binary stream of s16le mono PCM
            ring: Ring buffer to append samples to
            block_samples: Samples requested per read
            stop_event: Optional shared cooperative-stop event
        """
        super().__init__(name="StreamProducer", daemon=True)
        if block_samples <= 0:
            raise ValueError(f"block_samples must be > 0, got {block_samples}")

        self.source = source
        self.ring = ring
        self.block_bytes = block_samples * BYTES_PER_SAMPLE
        self.stop_event = stop_event or threading.Event()
        self.finished = threading.Event()
        self.end_reason: Optional[EndReason] = None

        self._fd = self._selectable_fd(source)
        self._carry = b""
        self._bytes_read = 0

    @staticmethod
    def _selectable_fd(source: BinaryIO) -> Optional[int]:
        try:
            fd = source.fileno()
        except (AttributeError, OSError, ValueError, io.UnsupportedOperation):
            return None
        # Regular files always poll readable; read them through the file object
        try:
            if stat.S_ISREG(os.fstat(fd).st_mode):
                return None
        except OSError:
            return None
        return fd

    def is_running(self) -> bool:
        """True until the read loop has ended (EOF, error, or stop)."""
        return self.is_alive() and not self.finished.is_set()

    @property
    def bytes_read(self) -> int:
        return self._bytes_read

    def stop(self) -> None:
        """Request a cooperative stop; the loop exits at its next iteration."""
        self.stop_event.set()

    def run(self) -> None:
        logger.info("Stream producer started")
        reason = EndReason.STOPPED
        try:
            while not self.stop_event.is_set():
                try:
                    data = self._read_block()
                except (OSError, ValueError) as e:
                    logger.error(f"Error reading audio input: {e}")
                    reason = EndReason.ERROR
                    break

                if data is None:
                    # Nothing available yet; not end of stream
                    self.stop_event.wait(EMPTY_READ_BACKOFF_SEC)
                    continue

                if not data:
                    logger.info("Audio input reached end of stream")
                    reason = EndReason.EOF
                    break

                self._deliver(data)
        except Exception as e:
            logger.error(f"Unexpected error in stream producer: {e}", exc_info=True)
            reason = EndReason.ERROR
        finally:
            if self._carry:
                logger.debug(f"Discarding {len(self._carry)} trailing byte(s) of a partial sample")
                self._carry = b""
            self.end_reason = reason
            self.finished.set()
            logger.info(
                f"Stream producer stopped ({reason.value}, "
                f"{self.ring.total_written()} samples written)"
            )

    def _read_block(self) -> Optional[bytes]:
        if self._fd is not None:
            ready, _, _ = select.select([self._fd], [], [], SELECT_TIMEOUT_SEC)
            if not ready:
                return None
            return os.read(self._fd, self.block_bytes)

        read = getattr(self.source, "read1", None) or self.source.read
        return read(self.block_bytes)

    def _deliver(self, data: bytes) -> None:
        self._bytes_read += len(data)
        if self._carry:
            data = self._carry + data
            self._carry = b""
        usable = len(data) - (len(data) % BYTES_PER_SAMPLE)
        if usable < len(data):
            self._carry = data[usable:]
        if usable == 0:
            return
        samples = np.frombuffer(data[:usable], dtype="<i2")
        self.ring.append(samples)
