"""
jt9 decoder integration: shared decode block, process supervision, output
classification and the decode handshake.
"""

from .handshake import DecodeHandshake, HandshakeResult
from .lines import LineKind, LineRouter, classify_line
from .process import DecoderProcess, build_decoder_args, validate_decoder_binary
from .shared_block import DecoderSettings, SharedDecodeBlock

__all__ = [
    "DecodeHandshake",
    "DecoderProcess",
    "DecoderSettings",
    "HandshakeResult",
    "LineKind",
    "LineRouter",
    "SharedDecodeBlock",
    "build_decoder_args",
    "classify_line",
    "validate_decoder_binary",
]
