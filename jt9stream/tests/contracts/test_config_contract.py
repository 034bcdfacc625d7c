"""
Contract tests for Jt9StreamConfig loading and validation.
"""

import pytest

from jt9stream.config import Jt9StreamConfig
from jt9stream.modes import Mode

ENV_VARS = [
    "JT9STREAM_ENV_FILE",
    "JT9STREAM_JT9_PATH",
    "JT9STREAM_MODE",
    "JT9STREAM_DEPTH",
    "JT9STREAM_FREQ_LOW",
    "JT9STREAM_FREQ_HIGH",
    "JT9STREAM_MYCALL",
    "JT9STREAM_MYGRID",
    "JT9STREAM_SHM_KEY",
    "JT9STREAM_TEMP_DIR",
    "JT9STREAM_POLL_INTERVAL_MS",
    "JT9STREAM_MAX_WAIT_MS",
    "JT9STREAM_SETTLE_MS",
    "JT9STREAM_EXIT_TIMEOUT_SEC",
    "JT9STREAM_MULTITHREAD",
    "JT9STREAM_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Point at a file that does not exist so the host's env file is never read
    monkeypatch.setenv("JT9STREAM_ENV_FILE", str(tmp_path / "absent.env"))
    return monkeypatch


@pytest.fixture
def jt9_binary(tmp_path):
    path = tmp_path / "jt9"
    path.write_text("#!/bin/sh\n")
    path.chmod(0o755)
    return str(path)


class TestConfigLoading:

    def test_defaults(self, clean_env):
        config = Jt9StreamConfig.load_config()

        assert config.jt9_path is None
        assert config.mode == "FT2"
        assert config.depth == 3
        assert (config.freq_low, config.freq_high) == (200, 5000)
        assert (config.mycall, config.mygrid) == ("K1ABC", "FN20")
        assert config.shm_key == "JT9DECODE"
        assert config.temp_dir == "/tmp"
        assert config.poll_interval_ms == 100
        assert config.max_wait_ms == 10000
        assert config.settle_ms == 500
        assert config.exit_timeout_sec == 5
        assert config.multithread is False
        assert config.log_level == "INFO"

    def test_environment_overrides(self, clean_env, jt9_binary):
        clean_env.setenv("JT9STREAM_JT9_PATH", jt9_binary)
        clean_env.setenv("JT9STREAM_MODE", "ft8")
        clean_env.setenv("JT9STREAM_DEPTH", "1")
        clean_env.setenv("JT9STREAM_MULTITHREAD", "yes")
        clean_env.setenv("JT9STREAM_LOG_LEVEL", "debug")

        config = Jt9StreamConfig.load_config()

        assert config.jt9_path == jt9_binary
        assert config.mode_config == Mode.FT8.config
        assert config.depth == 1
        assert config.multithread is True
        assert config.log_level == "DEBUG"

    def test_env_file_does_not_override_environment(self, clean_env, tmp_path):
        env_file = tmp_path / "jt9stream.env"
        env_file.write_text("JT9STREAM_MODE=FT4\nJT9STREAM_DEPTH=2\n")
        clean_env.setenv("JT9STREAM_ENV_FILE", str(env_file))
        clean_env.setenv("JT9STREAM_DEPTH", "1")

        config = Jt9StreamConfig.load_config()

        assert config.mode == "FT4"
        assert config.depth == 1

    def test_non_integer_rejected(self, clean_env):
        clean_env.setenv("JT9STREAM_FREQ_LOW", "low")
        with pytest.raises(ValueError) as exc_info:
            Jt9StreamConfig.load_config()
        assert "JT9STREAM_FREQ_LOW" in str(exc_info.value)

    def test_overrides_ignore_none(self):
        config = Jt9StreamConfig(mode="FT4").with_overrides(mode=None, depth=2, stream=True)
        assert config.mode == "FT4"
        assert config.depth == 2
        assert config.stream is True

    def test_decoder_settings_follow_input_mode(self):
        assert Jt9StreamConfig(stream=True).decoder_settings().disk_data is False
        assert Jt9StreamConfig(wav_file="x.wav").decoder_settings().disk_data is True


class TestConfigValidation:

    def valid(self, jt9_binary, tmp_path, **changes):
        config = Jt9StreamConfig(jt9_path=jt9_binary, stream=True, temp_dir=str(tmp_path))
        return config.with_overrides(**changes)

    def test_valid_config_passes(self, jt9_binary, tmp_path):
        self.valid(jt9_binary, tmp_path).validate()

    def test_missing_jt9_path(self, tmp_path):
        with pytest.raises(ValueError):
            Jt9StreamConfig(stream=True, temp_dir=str(tmp_path)).validate()

    def test_nonexistent_jt9_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Jt9StreamConfig(jt9_path=str(tmp_path / "none"), stream=True).validate()

    @pytest.mark.parametrize(
        "changes,fragment",
        [
            ({"mode": "JT65"}, "Valid modes"),
            ({"depth": 4}, "JT9STREAM_DEPTH"),
            ({"freq_high": 100}, "JT9STREAM_FREQ_HIGH"),
            ({"freq_low": -1}, "JT9STREAM_FREQ_LOW"),
            ({"poll_interval_ms": 0}, "JT9STREAM_POLL_INTERVAL_MS"),
            ({"max_wait_ms": 50}, "JT9STREAM_MAX_WAIT_MS"),
            ({"settle_ms": -1}, "JT9STREAM_SETTLE_MS"),
            ({"exit_timeout_sec": 0}, "JT9STREAM_EXIT_TIMEOUT_SEC"),
            ({"log_level": "LOUD"}, "JT9STREAM_LOG_LEVEL"),
            ({"temp_dir": "/definitely/not/here"}, "JT9STREAM_TEMP_DIR"),
        ],
    )
    def test_invalid_values_name_the_variable(self, jt9_binary, tmp_path, changes, fragment):
        with pytest.raises(ValueError) as exc_info:
            self.valid(jt9_binary, tmp_path, **changes).validate()
        assert fragment in str(exc_info.value)

    def test_exactly_one_input(self, jt9_binary, tmp_path):
        with pytest.raises(ValueError):
            self.valid(jt9_binary, tmp_path, wav_file="a.wav").validate()
        with pytest.raises(ValueError):
            Jt9StreamConfig(jt9_path=jt9_binary, temp_dir=str(tmp_path)).validate()
