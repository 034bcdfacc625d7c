import sys
import threading
from typing import Optional, TextIO

from .base_sink import BaseSink


class StreamSink(BaseSink):
    """Writes each line to a text stream and flushes immediately."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()
        self.lines_written = 0

    def write(self, line: str) -> None:
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()
            self.lines_written += 1

    def close(self) -> None:
        # The stream belongs to the caller (usually stdout); only flush it
        with self._lock:
            self._stream.flush()
