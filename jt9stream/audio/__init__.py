"""
Audio handling for jt9stream.

- SampleRingBuffer: fixed-capacity circular store of int16 samples
- read_wav_file: RIFF/WAVE reader for single-shot file decodes
"""

from jt9stream.audio.ring_buffer import SampleRingBuffer, SampleRingBufferStats
from jt9stream.audio.wav_reader import WavInfo, read_wav_file

__all__ = [
    "SampleRingBuffer",
    "SampleRingBufferStats",
    "WavInfo",
    "read_wav_file",
]
