"""
Output sinks for jt9stream.

Decoder output is split into two line streams: decoded results (stdout) and
diagnostics (the logging hierarchy on stderr).
"""

from .base_sink import BaseSink
from .log_sink import LogSink
from .stream_sink import StreamSink

__all__ = [
    "BaseSink",
    "LogSink",
    "StreamSink",
]
