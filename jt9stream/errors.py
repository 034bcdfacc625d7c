"""
Exception types for jt9stream.

Configuration problems raise ValueError / FileNotFoundError from the config
layer; everything below is raised by the runtime components.
"""


class Jt9StreamError(RuntimeError):
    """Base class for jt9stream runtime failures."""


class DecoderStartupError(Jt9StreamError):
    """The external decoder binary is missing, not executable, or failed to start."""


class SharedBlockError(Jt9StreamError):
    """The shared decode block could not be allocated or is no longer usable."""


class WavFormatError(Jt9StreamError, ValueError):
    """The input file is not a RIFF/WAVE file this reader understands."""
