"""
Decode pipelines.

DecodePipeline is the streaming decoder: it starts the stream producer, waits
for one full cycle of audio, aligns to the next UTC cycle boundary and then
runs exactly one decode handshake per boundary until the input ends, jt9
exits or stop() is requested. Shutdown always happens in the same order: stop
and join the producer, release the ring buffer, send terminate to the decoder.

FileDecode is the single-shot variant for a WAV file.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Optional, Protocol

from jt9stream.audio.ring_buffer import SampleRingBuffer
from jt9stream.audio.wav_reader import read_wav_file
from jt9stream.clock import CycleClock
from jt9stream.decoder.handshake import DecodeHandshake, HandshakeResult
from jt9stream.ingest.stream_producer import StreamProducer
from jt9stream.modes import ModeConfig

logger = logging.getLogger(__name__)

# Warm-up waits on the ring buffer in slices this long so producer exit is noticed
WARMUP_WAIT_SEC = 0.1

# A boundary closer than this is taken as "now" instead of waiting a full cycle
ALIGN_SKIP_MS = 100

# Sleeps shorter than this before a boundary are skipped
MIN_BOUNDARY_SLEEP_MS = 10

# Backoff when a boundary arrives with less than a cycle of audio
UNDERFILL_BACKOFF_SEC = 0.1

PRODUCER_JOIN_TIMEOUT_SEC = 2.0


class PipelineState(enum.Enum):
    INIT = 1
    WARMING_UP = 2
    ALIGNING = 3
    RUNNING = 4
    SHUTTING_DOWN = 5
    TERMINATED = 6


class Terminator(Protocol):
    def terminate(self) -> bool:
        ...


class DecoderLiveness(Protocol):
    def is_running(self) -> bool:
        ...


class DecodePipeline:
    """
    Streaming decode loop aligned to UTC cycle boundaries.

    Threads:
    - StreamProducer: fills the ring buffer
    - caller of run(): boundary loop and handshakes

    Only one decode request is outstanding at a time: a handshake runs to
    acknowledgement before the loop waits for the next boundary.
    """

    def __init__(
        self,
        ring: SampleRingBuffer,
        producer: StreamProducer,
        handshake: DecodeHandshake,
        block: Terminator,
        mode: ModeConfig,
        clock: Optional[CycleClock] = None,
        decoder: Optional[DecoderLiveness] = None,
    ) -> None:
        """
        Args:
            ring: Ring buffer shared with the producer
            producer: Producer thread (started by run() if not already running)
            handshake: Decode exchange, one per boundary
            block: Shared decode block (receives terminate on shutdown)
            mode: Active mode
            clock: Cycle clock (default: system UTC clock)
            decoder: Decoder process; the loop stops if it exits
        """
        self.ring = ring
        self.producer = producer
        self.handshake = handshake
        self.block = block
        self.mode = mode
        self.clock = clock or CycleClock()
        self.decoder = decoder

        self._state = PipelineState.INIT
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._shutdown_done = False
        self.handshakes = 0
        self.skipped_cycles = 0
        self.decoder_exited = False

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: PipelineState) -> None:
        with self._state_lock:
            old = self._state
            self._state = state
        logger.debug(f"Pipeline state {old.name} -> {state.name}")

    def stop(self) -> None:
        """Ask the loop to finish after the current iteration."""
        self._stop_event.set()

    def _should_continue(self) -> bool:
        if self._stop_event.is_set() or not self.producer.is_running():
            return False
        if self.decoder is not None and not self.decoder.is_running():
            logger.error("jt9 exited unexpectedly; stopping")
            self.decoder_exited = True
            self._stop_event.set()
            return False
        return True

    def run(self) -> int:
        """
        Run until the producer ends, the decoder exits or stop() is called.

        Returns:
            Number of handshakes performed
        """
        if self.state is not PipelineState.INIT:
            raise RuntimeError(f"Pipeline already ran (state={self.state.name})")

        samples_needed = self.mode.samples_per_cycle
        logger.info(
            f"Streaming mode: {self.mode.name}, cycle {self.mode.cycle_seconds:g}s "
            f"({samples_needed} samples per decode)"
        )

        try:
            if self.producer.ident is None:
                self.producer.start()

            if self._warm_up(samples_needed):
                self._align()
                self._run_cycles(samples_needed)
        finally:
            self._shutdown()

        logger.info(f"Streaming stopped after {self.handshakes} decodes")
        return self.handshakes

    def _warm_up(self, samples_needed: int) -> bool:
        self._set_state(PipelineState.WARMING_UP)
        logger.info(f"Waiting for {samples_needed} samples before first decode...")
        while self._should_continue():
            if self.ring.wait_for_samples(samples_needed, timeout=WARMUP_WAIT_SEC):
                logger.info("Buffer filled, waiting for cycle boundary")
                return True
        logger.info("Input ended before the first full cycle")
        return False

    def _align(self) -> None:
        self._set_state(PipelineState.ALIGNING)
        wait_ms = self.clock.ms_to_next_boundary(self.mode.cycle_ms)
        if wait_ms > ALIGN_SKIP_MS:
            logger.info(f"Aligning to cycle boundary in {wait_ms} ms")
            self.clock.sleep_ms(wait_ms)

    def _run_cycles(self, samples_needed: int) -> None:
        self._set_state(PipelineState.RUNNING)
        while self._should_continue():
            wait_ms = self.clock.ms_to_next_boundary(self.mode.cycle_ms)
            if wait_ms > MIN_BOUNDARY_SLEEP_MS:
                self.clock.sleep_ms(wait_ms)

            total = self.ring.total_written()
            if total < samples_needed:
                logger.warning(f"Only {total} samples buffered, need {samples_needed}; skipping cycle")
                self.skipped_cycles += 1
                self.clock.sleep(UNDERFILL_BACKOFF_SEC)
                continue

            self.handshake.execute()
            self.handshakes += 1

    def _shutdown(self) -> None:
        if self._shutdown_done:
            return
        self._shutdown_done = True
        self._set_state(PipelineState.SHUTTING_DOWN)

        self.producer.stop()
        if self.producer.ident is not None:
            self.producer.join(timeout=PRODUCER_JOIN_TIMEOUT_SEC)

        # The ring may only be released once nothing can append to it
        if self.producer.is_alive():
            logger.warning("Stream producer did not exit within join timeout; ring buffer not released")
        else:
            self.ring.release()
        self.block.terminate()
        self._set_state(PipelineState.TERMINATED)


class FileDecode:
    """Single decode of a WAV file through the decode handshake."""

    def __init__(
        self,
        wav_path: str,
        handshake: DecodeHandshake,
        block: Terminator,
        max_samples: Optional[int] = None,
    ) -> None:
        """
        Args:
            wav_path: WAV file to decode
            handshake: Decode exchange used for the single submission
            block: Shared decode block (receives terminate afterwards)
            max_samples: Cap on samples read (the block's audio capacity)
        """
        self.wav_path = wav_path
        self.handshake = handshake
        self.block = block
        self.max_samples = max_samples

    def run(self) -> HandshakeResult:
        """
        Raises:
            WavFormatError: If the file cannot be read as a supported WAV
        """
        logger.info(f"Reading WAV file: {self.wav_path}")
        samples, info = read_wav_file(self.wav_path, max_samples=self.max_samples)
        logger.info(
            f"Samples: {info.samples_read} ({info.sample_rate} Hz, "
            f"{info.channels} channel(s))"
        )

        try:
            result = self.handshake.submit(samples)
        finally:
            self.block.terminate()

        logger.info(f"File decode finished: {len(result.results)} results")
        return result
