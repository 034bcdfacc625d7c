import logging
from typing import Optional

from .base_sink import BaseSink


class LogSink(BaseSink):
    """Routes lines into the logging hierarchy, which the CLI attaches to stderr."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        level: int = logging.INFO,
        prefix: str = "",
    ) -> None:
        self._logger = logger or logging.getLogger("jt9stream.decoder.output")
        self._level = level
        self._prefix = prefix

    def write(self, line: str) -> None:
        self._logger.log(self._level, f"{self._prefix}{line}")

    def close(self) -> None:
        return
