"""
Contract tests for the mode table.
"""

from dataclasses import FrozenInstanceError

import pytest

from jt9stream.modes import MAX_SAMPLES_PER_CYCLE, RX_SAMPLE_RATE, Mode


class TestModeTable:

    @pytest.mark.parametrize(
        "mode,code,cycle_ms,symbols,samples",
        [
            (Mode.FT2, 52, 3750, 105, 45000),
            (Mode.FT4, 5, 7500, 105, 90000),
            (Mode.FT8, 8, 15000, 50, 180000),
        ],
    )
    def test_mode_values(self, mode, code, cycle_ms, symbols, samples):
        config = mode.config
        assert config.mode_code == code
        assert config.cycle_ms == cycle_ms
        assert config.symbols == symbols
        assert config.samples_per_cycle == samples
        assert config.samples_per_cycle == RX_SAMPLE_RATE * cycle_ms // 1000

    def test_tr_period_is_whole_seconds(self):
        assert Mode.FT2.config.tr_period_seconds == 3
        assert Mode.FT4.config.tr_period_seconds == 7
        assert Mode.FT8.config.tr_period_seconds == 15

    def test_configs_are_immutable(self):
        with pytest.raises(FrozenInstanceError):
            Mode.FT8.config.cycle_ms = 1

    def test_ring_capacity_covers_longest_cycle(self):
        assert MAX_SAMPLES_PER_CYCLE == 180000


class TestModeLookup:

    def test_lookup_is_case_insensitive(self):
        assert Mode.from_name("ft4") is Mode.FT4
        assert Mode.from_name("Ft8") is Mode.FT8

    def test_unknown_mode_lists_valid_modes(self):
        with pytest.raises(ValueError) as exc_info:
            Mode.from_name("JT65")
        assert "FT2, FT4, FT8" in str(exc_info.value)
