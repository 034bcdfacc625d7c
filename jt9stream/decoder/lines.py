"""
Decoder output line classification.

jt9 writes decoded messages and everything else (progress markers, warnings,
errors) to the same stream. A line is a decode result when, after trimming,
it is longer than MIN_RESULT_LENGTH, starts with a digit (the UTC stamp) and
is not an informational marker (lines starting with INFO_MARKER, such as
"<DecodeFinished>").
"""

import enum
import logging

from jt9stream.outputs import BaseSink

logger = logging.getLogger(__name__)

MIN_RESULT_LENGTH = 6
INFO_MARKER = "<"
DIAGNOSTIC_PREFIX = "jt9: "


class LineKind(enum.Enum):
    RESULT = "result"
    DIAGNOSTIC = "diagnostic"
    EMPTY = "empty"


def classify_line(line: str) -> LineKind:
    trimmed = line.strip()
    if not trimmed:
        return LineKind.EMPTY
    if (
        len(trimmed) > MIN_RESULT_LENGTH
        and trimmed[0].isdigit()
        and not trimmed.startswith(INFO_MARKER)
    ):
        return LineKind.RESULT
    return LineKind.DIAGNOSTIC


class LineRouter:
    """Sends result lines to one sink and prefixed diagnostics to another."""

    def __init__(self, results: BaseSink, diagnostics: BaseSink) -> None:
        self.results = results
        self.diagnostics = diagnostics

    def route(self, line: str) -> LineKind:
        """
        Classify and emit one decoder line. Empty lines are dropped.

        Returns:
            The classification applied
        """
        kind = classify_line(line)
        if kind is LineKind.RESULT:
            self.results.write(line.strip())
        elif kind is LineKind.DIAGNOSTIC:
            self.diagnostics.write(f"{DIAGNOSTIC_PREFIX}{line.strip()}")
        return kind
