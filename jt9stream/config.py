"""
Configuration management for jt9stream.

Reads configuration from an optional .env file and environment variables with
sensible defaults. Command-line options are applied on top by the CLI.
"""

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from jt9stream.decoder.shared_block import DEFAULT_KEY, DecoderSettings
from jt9stream.modes import Mode, ModeConfig

# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/jt9stream/jt9stream.env")

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _load_env_file() -> None:
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("JT9STREAM_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name, str(default))
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


@dataclass
class Jt9StreamConfig:
    """jt9stream configuration loaded from .env file and environment variables."""

    # Decoder
    jt9_path: Optional[str] = None
    mode: str = "FT2"
    depth: int = 3
    freq_low: int = 200
    freq_high: int = 5000
    mycall: str = "K1ABC"
    mygrid: str = "FN20"
    multithread: bool = False

    # Input: exactly one of stream / wav_file
    stream: bool = False
    wav_file: Optional[str] = None

    # Shared decode block
    shm_key: str = DEFAULT_KEY
    temp_dir: str = "/tmp"

    # Handshake timing
    poll_interval_ms: int = 100
    max_wait_ms: int = 10000
    settle_ms: int = 500
    exit_timeout_sec: int = 5

    # Logging
    log_level: str = "INFO"

    @property
    def mode_config(self) -> ModeConfig:
        return Mode.from_name(self.mode).config

    def decoder_settings(self) -> DecoderSettings:
        """Decoder parameters for the shared block."""
        return DecoderSettings(
            depth=self.depth,
            freq_low=self.freq_low,
            freq_high=self.freq_high,
            mycall=self.mycall,
            mygrid=self.mygrid,
            multithread=self.multithread,
            disk_data=not self.stream,
        )

    def with_overrides(self, **overrides) -> "Jt9StreamConfig":
        """Copy with the given fields replaced; None values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def load_config(cls) -> "Jt9StreamConfig":
        """
        Load configuration from environment variables.

        Returns:
            Jt9StreamConfig instance with loaded values

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        # Load .env file first (if it exists)
        _load_env_file()

        multithread_str = os.getenv("JT9STREAM_MULTITHREAD", "")

        return cls(
            jt9_path=os.getenv("JT9STREAM_JT9_PATH") or None,
            mode=os.getenv("JT9STREAM_MODE", "FT2"),
            depth=_get_int("JT9STREAM_DEPTH", 3),
            freq_low=_get_int("JT9STREAM_FREQ_LOW", 200),
            freq_high=_get_int("JT9STREAM_FREQ_HIGH", 5000),
            mycall=os.getenv("JT9STREAM_MYCALL", "K1ABC"),
            mygrid=os.getenv("JT9STREAM_MYGRID", "FN20"),
            multithread=multithread_str.lower() in _TRUE_VALUES,
            shm_key=os.getenv("JT9STREAM_SHM_KEY", DEFAULT_KEY),
            temp_dir=os.getenv("JT9STREAM_TEMP_DIR", "/tmp"),
            poll_interval_ms=_get_int("JT9STREAM_POLL_INTERVAL_MS", 100),
            max_wait_ms=_get_int("JT9STREAM_MAX_WAIT_MS", 10000),
            settle_ms=_get_int("JT9STREAM_SETTLE_MS", 500),
            exit_timeout_sec=_get_int("JT9STREAM_EXIT_TIMEOUT_SEC", 5),
            log_level=os.getenv("JT9STREAM_LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
            FileNotFoundError: If the jt9 binary does not exist
        """
        if not self.jt9_path:
            raise ValueError("JT9STREAM_JT9_PATH is required (or pass -j)")
        if not os.path.exists(self.jt9_path):
            raise FileNotFoundError(f"jt9 binary not found at {self.jt9_path}")

        Mode.from_name(self.mode)

        if self.stream and self.wav_file:
            raise ValueError("Cannot use both stream mode and a WAV file")
        if not self.stream and not self.wav_file:
            raise ValueError("Either stream mode or a WAV file is required")

        if self.depth < 1 or self.depth > 3:
            raise ValueError(f"Invalid JT9STREAM_DEPTH: {self.depth} (must be 1-3)")
        if self.freq_low < 0:
            raise ValueError(f"Invalid JT9STREAM_FREQ_LOW: {self.freq_low} (must be >= 0)")
        if self.freq_high <= self.freq_low:
            raise ValueError(
                f"Invalid JT9STREAM_FREQ_HIGH: {self.freq_high} "
                f"(must be greater than JT9STREAM_FREQ_LOW {self.freq_low})"
            )
        if not self.shm_key:
            raise ValueError("JT9STREAM_SHM_KEY cannot be empty")
        if not os.path.isdir(self.temp_dir):
            raise ValueError(f"Invalid JT9STREAM_TEMP_DIR: {self.temp_dir} (not a directory)")
        if self.poll_interval_ms <= 0:
            raise ValueError(f"Invalid JT9STREAM_POLL_INTERVAL_MS: {self.poll_interval_ms} (must be > 0)")
        if self.max_wait_ms < self.poll_interval_ms:
            raise ValueError(
                f"Invalid JT9STREAM_MAX_WAIT_MS: {self.max_wait_ms} "
                f"(must be >= JT9STREAM_POLL_INTERVAL_MS)"
            )
        if self.settle_ms < 0:
            raise ValueError(f"Invalid JT9STREAM_SETTLE_MS: {self.settle_ms} (must be >= 0)")
        if self.exit_timeout_sec <= 0:
            raise ValueError(f"Invalid JT9STREAM_EXIT_TIMEOUT_SEC: {self.exit_timeout_sec} (must be > 0)")

        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if self.log_level.upper() not in valid_levels:
            raise ValueError(
                f"Invalid JT9STREAM_LOG_LEVEL: {self.log_level} (must be one of {', '.join(valid_levels)})"
            )
