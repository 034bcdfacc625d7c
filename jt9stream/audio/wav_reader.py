"""
RIFF/WAVE reader for single-shot decodes.

Reads 16-bit PCM WAV files into the int16 array the decoder consumes. Mono is
read as-is; stereo is reduced to its left channel. Chunks other than "fmt " and
"data" are skipped.
"""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple

import numpy as np

from jt9stream.errors import WavFormatError
from jt9stream.modes import RX_SAMPLE_RATE

logger = logging.getLogger(__name__)

_RIFF_HEADER = struct.Struct("<4sI4s")
_CHUNK_HEADER = struct.Struct("<4sI")
_FMT_BODY = struct.Struct("<HHIIHH")  # format, channels, rate, byte rate, block align, bits


@dataclass(frozen=True)
class WavInfo:
    sample_rate: int
    channels: int
    bits_per_sample: int
    data_bytes: int
    samples_read: int


def _read_exact(f: BinaryIO, size: int) -> bytes:
    data = f.read(size)
    if len(data) != size:
        raise WavFormatError(f"Unexpected end of file (wanted {size} bytes, got {len(data)})")
    return data


def _skip(f: BinaryIO, size: int) -> None:
    # RIFF chunks are word aligned: odd-sized chunks carry a pad byte
    f.seek(size + (size & 1), os.SEEK_CUR)


def _locate_chunks(f: BinaryIO) -> Tuple[Tuple[int, int, int, int], int]:
    """
    Walk the chunk list after the RIFF header.

    Returns:
        ((audio_format, channels, sample_rate, bits_per_sample), data_size)
        with the file positioned at the start of the sample data.
    """
    fmt = None
    while True:
        header = f.read(_CHUNK_HEADER.size)
        if len(header) < _CHUNK_HEADER.size:
            if fmt is None:
                raise WavFormatError("Could not find fmt chunk in WAV file")
            raise WavFormatError("Could not find data chunk in WAV file")
        chunk_id, chunk_size = _CHUNK_HEADER.unpack(header)

        if chunk_id == b"fmt ":
            if chunk_size < _FMT_BODY.size:
                raise WavFormatError(f"fmt chunk too small: {chunk_size} bytes")
            audio_format, channels, sample_rate, _byte_rate, _block_align, bits = _FMT_BODY.unpack(
                _read_exact(f, _FMT_BODY.size)
            )
            fmt = (audio_format, channels, sample_rate, bits)
            _skip(f, chunk_size - _FMT_BODY.size)
        elif chunk_id == b"data":
            if fmt is None:
                raise WavFormatError("data chunk appears before fmt chunk")
            logger.info(f"Found data chunk, size: {chunk_size} bytes")
            return fmt, chunk_size
        else:
            logger.info(f"Skipping chunk \"{chunk_id.decode('latin-1')}\" ({chunk_size} bytes)")
            _skip(f, chunk_size)


def read_wav_file(path: str, max_samples: Optional[int] = None) -> Tuple[np.ndarray, WavInfo]:
    """
    Read a 16-bit PCM WAV file as mono int16 samples.

    Args:
        path: WAV file path
        max_samples: Optional cap on the number of samples returned

    Returns:
        (samples, info) where samples is a 1-D int16 array

    Raises:
        FileNotFoundError: If the file does not exist
        WavFormatError: If the file is not a usable RIFF/WAVE file
    """
    with open(path, "rb") as f:
        riff, _file_size, wave = _RIFF_HEADER.unpack(_read_exact(f, _RIFF_HEADER.size))
        if riff != b"RIFF" or wave != b"WAVE":
            raise WavFormatError("Not a valid WAV file")

        (audio_format, channels, sample_rate, bits), data_size = _locate_chunks(f)
        if bits != 16:
            raise WavFormatError(f"Unsupported bits per sample: {bits} (need 16)")
        if channels not in (1, 2):
            raise WavFormatError(f"Unsupported channel count: {channels} (need 1 or 2)")
        if audio_format not in (1, 0xFFFE):
            logger.warning(f"WAV format tag {audio_format:#06x} is not PCM, reading as 16-bit PCM anyway")

        logger.info("WAV file info:")
        logger.info(f"  Sample rate: {sample_rate} Hz")
        logger.info(f"  Channels: {channels}")
        logger.info(f"  Bits per sample: {bits}")
        logger.info(f"  Data size: {data_size} bytes")
        if sample_rate != RX_SAMPLE_RATE:
            logger.warning(f"WAV sample rate {sample_rate} Hz differs from decoder rate {RX_SAMPLE_RATE} Hz")

        frame_bytes = 2 * channels
        frames = data_size // frame_bytes
        if max_samples is not None:
            frames = min(frames, max_samples)

        raw = f.read(frames * frame_bytes)

    # A truncated data chunk yields what is actually there
    frames = len(raw) // frame_bytes
    pcm = np.frombuffer(raw[:frames * frame_bytes], dtype="<i2")
    if channels == 2:
        samples = pcm.reshape(-1, 2)[:, 0].astype(np.int16)
        logger.info(f"  Read {frames} samples (stereo -> mono)")
    else:
        samples = pcm.astype(np.int16)
        logger.info(f"  Read {frames} samples")

    info = WavInfo(
        sample_rate=sample_rate,
        channels=channels,
        bits_per_sample=bits,
        data_bytes=data_size,
        samples_read=frames,
    )
    return samples, info
