"""
Decoder process supervision.

This module provides DecoderProcess, which starts the external jt9 decoder,
captures its merged stdout/stderr on a drain thread and stops it with a
terminate / wait / kill fallback.

The drain thread only enqueues decoded lines. Classification and emission
happen on the caller's thread (the handshake), so a line is handled at the
moment the caller reads it.
"""

from __future__ import annotations

import locale
import logging
import os
import queue
import subprocess
import threading
from typing import List, Optional, Sequence

from jt9stream.errors import DecoderStartupError

logger = logging.getLogger(__name__)

DEFAULT_EXIT_TIMEOUT_SEC = 5.0


def build_decoder_args(key: str, temp_dir: str) -> List[str]:
    """
    Arguments for attaching jt9 to an existing shared decode block.

    -s <key>  shared memory key
    -w 1      FFT patience
    -m 1      single decoder thread
    -e .      executable directory
    -a .      data directory
    -t <dir>  temp directory
    """
    return ["-s", key, "-w", "1", "-m", "1", "-e", ".", "-a", ".", "-t", temp_dir]


def validate_decoder_binary(path: str) -> None:
    """
    Raises:
        DecoderStartupError: If the path is missing, not a file or not executable
    """
    if not os.path.exists(path):
        raise DecoderStartupError(f"jt9 binary not found at {path}")
    if not os.path.isfile(path):
        raise DecoderStartupError(f"jt9 path is not a file: {path}")
    if not os.access(path, os.X_OK):
        raise DecoderStartupError(f"jt9 binary is not executable: {path}")


class DecoderProcess:
    """
    Supervises one run of the external decoder.

    Lifecycle: start() once, read_lines() as often as needed, then
    wait_for_exit() and stop() on the way out. Lines still queued after the
    process exits remain readable until drained.
    """

    def __init__(self, jt9_path: str, args: Sequence[str]) -> None:
        """
        Args:
            jt9_path: Decoder executable
            args: Decoder arguments (see build_decoder_args)
        """
        self.jt9_path = jt9_path
        self.args = list(args)
        self._process: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[str]" = queue.Queue()
        self._drain_thread: Optional[threading.Thread] = None
        self._encoding = locale.getpreferredencoding(False)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        if self._process is None:
            return None
        return self._process.poll()

    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        """
        Validate the binary and launch the decoder with stdout and stderr merged.

        Raises:
            DecoderStartupError: If the binary is invalid or the launch fails
        """
        if self._process is not None:
            raise RuntimeError("Decoder process already started")

        validate_decoder_binary(self.jt9_path)
        cmd = [self.jt9_path] + self.args
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                bufsize=0,
            )
        except OSError as e:
            raise DecoderStartupError(f"Failed to start jt9 process: {e}") from e

        logger.info(f"jt9 process started (pid={self._process.pid})")
        logger.debug(f"jt9 command: {' '.join(cmd)}")

        self._drain_thread = threading.Thread(
            target=self._drain_output,
            name="DecoderOutputDrain",
            daemon=True,
        )
        self._drain_thread.start()

    def _drain_output(self) -> None:
        """Read decoder output line by line until the pipe closes."""
        proc = self._process
        if proc is None or proc.stdout is None:
            return
        try:
            for raw in iter(proc.stdout.readline, b""):
                line = raw.decode(self._encoding, errors="replace").rstrip("\r\n")
                self._lines.put(line)
        except (OSError, ValueError) as e:
            logger.debug(f"Decoder output drain ended: {e}")
        finally:
            logger.debug("Decoder output drain thread stopped")

    def read_lines(self, timeout: float = 0.0) -> List[str]:
        """
        Return every queued output line, waiting up to `timeout` for the first.

        Args:
            timeout: Seconds to wait when nothing is queued (0 = do not wait)

        Returns:
            Lines in arrival order (possibly empty)
        """
        lines: List[str] = []
        try:
            if timeout > 0:
                lines.append(self._lines.get(timeout=timeout))
            else:
                lines.append(self._lines.get_nowait())
        except queue.Empty:
            return lines
        while True:
            try:
                lines.append(self._lines.get_nowait())
            except queue.Empty:
                return lines

    def wait_for_exit(self, timeout: float = DEFAULT_EXIT_TIMEOUT_SEC) -> Optional[int]:
        """
        Wait for the decoder to exit on its own.

        Returns:
            The exit code, or None if it is still running after `timeout`
        """
        if self._process is None:
            return None
        try:
            code = self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        self._join_drain()
        return code

    def stop(self, timeout: float = DEFAULT_EXIT_TIMEOUT_SEC) -> Optional[int]:
        """
        Make sure the decoder is gone: wait, then terminate, then kill.

        Returns:
            The exit code (None if never started)
        """
        if self._process is None:
            return None
        if self._process.poll() is None:
            code = self.wait_for_exit(timeout)
            if code is not None:
                return code
            logger.warning("jt9 did not exit in time, terminating")
            self._process.terminate()
            try:
                self._process.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                self.kill()
        self._join_drain()
        return self._process.returncode

    def kill(self) -> None:
        """Kill the decoder and reap it."""
        if self._process is None or self._process.poll() is not None:
            return
        logger.warning("Killing jt9 process")
        self._process.kill()
        self._process.wait()

    def _join_drain(self) -> None:
        if self._drain_thread is not None and self._drain_thread is not threading.current_thread():
            self._drain_thread.join(timeout=1.0)
            if self._drain_thread.is_alive():
                logger.warning("Decoder output drain thread did not exit")

    def __enter__(self) -> "DecoderProcess":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
