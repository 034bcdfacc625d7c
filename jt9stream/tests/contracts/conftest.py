"""
Shared pytest fixtures for contract tests.
"""
import threading

import numpy as np
import pytest

from jt9stream.audio.ring_buffer import SampleRingBuffer
from jt9stream.decoder.lines import LineRouter
from jt9stream.modes import Mode
from jt9stream.tests.contracts.test_doubles import CollectingSink, FakeClock, FakeDecodeBlock, FakeDecoderOutput


@pytest.fixture
def ft8():
    return Mode.FT8.config


@pytest.fixture
def fake_clock():
    # 2026-01-01 12:34:00 UTC, on a 15 s boundary
    return FakeClock(start_ms=1767270840000)


@pytest.fixture
def sinks():
    """(results, diagnostics) collecting sinks."""
    return CollectingSink(), CollectingSink()


@pytest.fixture
def router(sinks):
    results, diagnostics = sinks
    return LineRouter(results=results, diagnostics=diagnostics)


@pytest.fixture
def decoder_output():
    return FakeDecoderOutput()


@pytest.fixture
def fake_block():
    return FakeDecodeBlock()


@pytest.fixture
def filled_ring(ft8):
    """Ring buffer already holding one full FT8 cycle."""
    ring = SampleRingBuffer(capacity=ft8.samples_per_cycle * 2)
    ring.append(np.ones(ft8.samples_per_cycle, dtype=np.int16))
    return ring


@pytest.fixture(autouse=False)  # Request explicitly in tests that start threads
def thread_leak_guard():
    """
    Detect thread leaks between tests.

    Ensures producer and drain threads actually stop.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    after = set(t.ident for t in threading.enumerate())
    leaked = [t for t in threading.enumerate() if t.ident in after - before and t.is_alive()]
    if leaked:
        thread_info = "\n".join(f"  - {t.name} (daemon={t.daemon})" for t in leaked)
        assert False, f"Thread leak detected, shutdown incomplete.\nLeaked threads:\n{thread_info}"


@pytest.fixture
def qt_tmpdir(monkeypatch, tmp_path):
    """Point TMPDIR (where Qt native key files live) at a per-test directory."""
    key_dir = tmp_path / "qt"
    key_dir.mkdir()
    monkeypatch.setenv("TMPDIR", str(key_dir))
    return key_dir
