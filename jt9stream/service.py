# jt9stream/service.py

import logging
import sys
import threading
from typing import BinaryIO, Optional, TextIO

from jt9stream.audio.ring_buffer import SampleRingBuffer
from jt9stream.clock import CycleClock
from jt9stream.config import Jt9StreamConfig
from jt9stream.decoder.handshake import DecodeHandshake
from jt9stream.decoder.lines import LineRouter
from jt9stream.decoder.process import DecoderProcess, build_decoder_args, validate_decoder_binary
from jt9stream.decoder.shared_block import SharedDecodeBlock
from jt9stream.errors import DecoderStartupError, SharedBlockError, WavFormatError
from jt9stream.ingest.stream_producer import StreamProducer
from jt9stream.modes import MAX_SAMPLES_PER_CYCLE, Mode, ModeConfig
from jt9stream.outputs import LogSink, StreamSink
from jt9stream.pipeline import DecodePipeline, FileDecode

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


class Jt9StreamService:
    """
    Owns one decoder run: the shared decode block, the jt9 process and either
    the streaming pipeline or a single file decode.

    Whatever happens inside run(), on the way out the decoder is told to
    terminate, waited for (killed if it hangs), its remaining output is
    classified, and the shared block is closed and removed.
    """

    def __init__(
        self,
        config: Jt9StreamConfig,
        stdin: Optional[BinaryIO] = None,
        results_stream: Optional[TextIO] = None,
        clock: Optional[CycleClock] = None,
    ):
        """
        Args:
            config: Validated configuration
            stdin: Audio source for stream mode (default: sys.stdin.buffer)
            results_stream: Where decode results go (default: sys.stdout)
            clock: Cycle clock (default: system UTC clock)
        """
        self.config = config
        self.stdin = stdin
        self.clock = clock or CycleClock()
        self.router = LineRouter(
            results=StreamSink(results_stream),
            diagnostics=LogSink(),
        )
        self.pipeline: Optional[DecodePipeline] = None
        self._stop_requested = threading.Event()

    def stop(self) -> None:
        """Request an orderly stop of stream mode (safe from signal handlers)."""
        self._stop_requested.set()
        if self.pipeline is not None:
            self.pipeline.stop()

    def run(self) -> int:
        """
        Run one decoder session.

        Returns:
            Process exit status (0 success, 1 fatal error)
        """
        cfg = self.config
        mode = cfg.mode_config

        try:
            validate_decoder_binary(cfg.jt9_path)
        except DecoderStartupError as e:
            logger.error(str(e))
            return EXIT_FATAL

        block = SharedDecodeBlock(key=cfg.shm_key)
        try:
            block.create()
        except SharedBlockError as e:
            logger.error(str(e))
            return EXIT_FATAL

        decoder: Optional[DecoderProcess] = None
        try:
            block.configure(mode, cfg.decoder_settings())

            decoder = DecoderProcess(cfg.jt9_path, build_decoder_args(cfg.shm_key, cfg.temp_dir))
            try:
                decoder.start()
            except DecoderStartupError as e:
                logger.error(f"Failed to start jt9: {e}")
                return EXIT_FATAL

            self._log_parameters(mode)

            if cfg.stream:
                if not self._run_stream(block, decoder, mode):
                    return EXIT_FATAL
            else:
                self._run_file(block, decoder, mode)
            return EXIT_OK
        except (WavFormatError, FileNotFoundError) as e:
            logger.error(f"Failed to read WAV file: {e}")
            if decoder is not None:
                decoder.kill()
            return EXIT_FATAL
        finally:
            self._finish(block, decoder)

    def _make_handshake(
        self,
        ring: Optional[SampleRingBuffer],
        block: SharedDecodeBlock,
        decoder: DecoderProcess,
        mode: ModeConfig,
    ) -> DecodeHandshake:
        cfg = self.config
        return DecodeHandshake(
            ring=ring,
            block=block,
            output=decoder,
            router=self.router,
            mode=mode,
            clock=self.clock,
            poll_interval=cfg.poll_interval_ms / 1000.0,
            max_wait=cfg.max_wait_ms / 1000.0,
            settle=cfg.settle_ms / 1000.0,
        )

    def _run_stream(self, block: SharedDecodeBlock, decoder: DecoderProcess, mode: ModeConfig) -> bool:
        """Returns False if jt9 exited while streaming."""
        source = self.stdin if self.stdin is not None else sys.stdin.buffer
        ring = SampleRingBuffer(capacity=MAX_SAMPLES_PER_CYCLE)
        producer = StreamProducer(source, ring)
        self.pipeline = DecodePipeline(
            ring=ring,
            producer=producer,
            handshake=self._make_handshake(ring, block, decoder, mode),
            block=block,
            mode=mode,
            clock=self.clock,
            decoder=decoder,
        )
        if self._stop_requested.is_set():
            self.pipeline.stop()
        self.pipeline.run()
        return not self.pipeline.decoder_exited

    def _run_file(self, block: SharedDecodeBlock, decoder: DecoderProcess, mode: ModeConfig) -> None:
        FileDecode(
            wav_path=self.config.wav_file,
            handshake=self._make_handshake(None, block, decoder, mode),
            block=block,
            max_samples=block.audio_capacity,
        ).run()

    def _log_parameters(self, mode: ModeConfig) -> None:
        cfg = self.config
        logger.info("Decoder parameters:")
        logger.info(f"  Mode: {mode.name} ({mode.mode_code})")
        logger.info(f"  Cycle time: {mode.cycle_seconds:g} seconds")
        logger.info(f"  Depth: {cfg.depth}")
        logger.info(f"  Frequency range: {cfg.freq_low} - {cfg.freq_high} Hz")
        if cfg.multithread and mode == Mode.FT8.config:
            logger.info("  Multithreaded: enabled (FT8)")

    def _finish(self, block: SharedDecodeBlock, decoder: Optional[DecoderProcess]) -> None:
        try:
            block.terminate()
            if decoder is not None:
                code = decoder.stop(timeout=self.config.exit_timeout_sec)
                for line in decoder.read_lines():
                    self.router.route(line)
                logger.info(f"jt9 finished with exit code: {code}")
        finally:
            block.close()
            self.router.results.close()
            self.router.diagnostics.close()
