"""
jt9stream: drive an external jt9 decoder from a WAV file or a live PCM stream.

The streaming pipeline feeds a circular sample buffer from stdin, triggers a
decode at every UTC-aligned cycle boundary through the shared decode block,
and relays the decoder's output lines to a results stream and a diagnostics
stream.
"""

__version__ = "0.3.0"
