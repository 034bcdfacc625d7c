"""
Contract tests for Jt9StreamService.

End-to-end runs use a stand-in jt9 script attached to real shared memory;
failure paths use mocks.
"""

import io
import os
import struct
import sys
import threading
import uuid
from unittest.mock import patch

import numpy as np
import pytest
import sysv_ipc

from jt9stream.config import Jt9StreamConfig
from jt9stream.decoder.shared_block import FTOK_PROJECT_ID, QT_SEM_PREFIX, QT_SHM_PREFIX, qt_native_key
from jt9stream.errors import DecoderStartupError, SharedBlockError
from jt9stream.service import EXIT_FATAL, EXIT_OK, Jt9StreamService
from jt9stream.tests.contracts.test_doubles import FAKE_RESULT_LINE, FakeClock, write_fake_jt9, write_script


def make_config(tmp_path, jt9_path, **changes):
    config = Jt9StreamConfig(
        jt9_path=jt9_path,
        mode="FT2",
        shm_key=f"jt9stream_svc_{os.getpid()}_{uuid.uuid4().hex[:8]}",
        temp_dir=str(tmp_path),
        poll_interval_ms=10,
        max_wait_ms=3000,
        settle_ms=20,
        exit_timeout_sec=5,
    )
    return config.with_overrides(**changes)


def write_wav(path, samples):
    data = struct.pack(f"<{len(samples)}h", *samples)
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF", 36 + len(data), b"WAVE",
        b"fmt ", 16, 1, 1, 12000, 24000, 2, 16,
        b"data", len(data),
    )
    path.write_bytes(header + data)
    return str(path)


@pytest.fixture(autouse=True)
def key_dir(qt_tmpdir):
    # the service and the stand-in jt9 both derive Qt key files from TMPDIR
    return qt_tmpdir


def segment_exists(key):
    path = qt_native_key(key, QT_SHM_PREFIX)
    if not os.path.exists(path):
        return False
    try:
        shm = sysv_ipc.SharedMemory(sysv_ipc.ftok(path, FTOK_PROJECT_ID, silence_warning=True))
    except sysv_ipc.ExistentialError:
        return False
    shm.detach()
    return True


def key_files_exist(key):
    return any(os.path.exists(qt_native_key(key, prefix)) for prefix in (QT_SHM_PREFIX, QT_SEM_PREFIX))


class TestFileModeEndToEnd:

    def test_decodes_wav_and_cleans_up(self, tmp_path):
        jt9 = write_fake_jt9(tmp_path)
        wav = write_wav(tmp_path / "capture.wav", [0] * 1200)
        config = make_config(tmp_path, jt9, wav_file=wav)
        results = io.StringIO()

        code = Jt9StreamService(config, results_stream=results).run()

        assert code == EXIT_OK
        assert results.getvalue().splitlines() == [FAKE_RESULT_LINE]
        assert not segment_exists(config.shm_key)
        assert not key_files_exist(config.shm_key)

    def test_bad_wav_is_fatal_and_kills_decoder(self, tmp_path):
        jt9 = write_fake_jt9(tmp_path)
        bad = tmp_path / "bad.wav"
        bad.write_bytes(b"garbage" * 10)
        config = make_config(tmp_path, jt9, wav_file=str(bad))
        results = io.StringIO()

        code = Jt9StreamService(config, results_stream=results).run()

        assert code == EXIT_FATAL
        assert results.getvalue() == ""
        assert not segment_exists(config.shm_key)

    def test_missing_wav_is_fatal(self, tmp_path):
        jt9 = write_fake_jt9(tmp_path)
        config = make_config(tmp_path, jt9, wav_file=str(tmp_path / "absent.wav"))

        assert Jt9StreamService(config, results_stream=io.StringIO()).run() == EXIT_FATAL


class TestStreamModeEndToEnd:

    def test_streams_until_input_ends(self, tmp_path, thread_leak_guard):
        jt9 = write_fake_jt9(tmp_path)
        config = make_config(tmp_path, jt9, stream=True)
        results = io.StringIO()

        read_fd, write_fd = os.pipe()
        stdin = os.fdopen(read_fd, "rb", buffering=0)
        audio = np.zeros(config.mode_config.samples_per_cycle, dtype="<i2").tobytes()

        def feed():
            with os.fdopen(write_fd, "wb") as out:
                out.write(audio)
                out.flush()
                threading.Event().wait(0.5)

        feeder = threading.Thread(target=feed)
        feeder.start()
        clock = FakeClock(start_ms=1767270840000)
        try:
            service = Jt9StreamService(config, stdin=stdin, results_stream=results, clock=clock.cycle_clock())
            code = service.run()
        finally:
            feeder.join()
            stdin.close()

        assert code == EXIT_OK
        lines = results.getvalue().splitlines()
        assert len(lines) >= 1
        assert set(lines) == {FAKE_RESULT_LINE}
        assert service.pipeline.handshakes == len(lines)
        assert not segment_exists(config.shm_key)

    def test_decoder_exit_while_streaming_is_fatal(self, tmp_path, caplog, thread_leak_guard):
        # exits as soon as it starts, before any request
        jt9 = write_script(tmp_path / "jt9", f"#!{sys.executable}\nimport sys\nprint('jt9 crashed', flush=True)\nsys.exit(2)\n")
        config = make_config(tmp_path, jt9, stream=True)

        read_fd, write_fd = os.pipe()
        stdin = os.fdopen(read_fd, "rb", buffering=0)
        try:
            service = Jt9StreamService(config, stdin=stdin, results_stream=io.StringIO())
            with caplog.at_level("ERROR"):
                code = service.run()
        finally:
            os.close(write_fd)
            stdin.close()

        assert code == EXIT_FATAL
        assert service.pipeline.decoder_exited
        assert service.pipeline.handshakes == 0
        assert any("jt9 exited unexpectedly" in r.getMessage() for r in caplog.records)
        assert not segment_exists(config.shm_key)


class TestFatalStartup:

    def test_missing_decoder_binary(self, tmp_path):
        config = make_config(tmp_path, str(tmp_path / "nope"), stream=True)
        assert Jt9StreamService(config).run() == EXIT_FATAL

    def test_shared_block_failure(self, tmp_path):
        jt9 = write_fake_jt9(tmp_path)
        config = make_config(tmp_path, jt9, stream=True)

        with patch("jt9stream.service.SharedDecodeBlock") as block_cls, \
                patch("jt9stream.service.DecoderProcess") as process_cls:
            block_cls.return_value.create.side_effect = SharedBlockError("no shm")
            code = Jt9StreamService(config).run()

        assert code == EXIT_FATAL
        process_cls.assert_not_called()

    def test_decoder_start_failure_releases_block(self, tmp_path):
        jt9 = write_fake_jt9(tmp_path)
        config = make_config(tmp_path, jt9, stream=True)

        with patch("jt9stream.service.DecoderProcess") as process_cls:
            process = process_cls.return_value
            process.start.side_effect = DecoderStartupError("exec failed")
            process.stop.return_value = None
            process.read_lines.return_value = []
            code = Jt9StreamService(config).run()

        assert code == EXIT_FATAL
        assert not segment_exists(config.shm_key)


class TestShutdownGuarantees:

    def test_terminate_and_close_on_unexpected_error(self, tmp_path):
        jt9 = write_fake_jt9(tmp_path)
        config = make_config(tmp_path, jt9, stream=True)

        with patch("jt9stream.service.SharedDecodeBlock") as block_cls, \
                patch("jt9stream.service.DecoderProcess") as process_cls, \
                patch("jt9stream.service.DecodePipeline") as pipeline_cls:
            block = block_cls.return_value
            process = process_cls.return_value
            process.stop.return_value = 0
            process.read_lines.return_value = ["151200 -10 0.1  500 CQ LATE AB1CD FN42", "<DecodeFinished>"]
            pipeline_cls.return_value.run.side_effect = KeyboardInterrupt

            results = io.StringIO()
            with pytest.raises(KeyboardInterrupt):
                Jt9StreamService(config, stdin=io.BytesIO(b""), results_stream=results).run()

        block.terminate.assert_called_once()
        process.stop.assert_called_once_with(timeout=5)
        block.close.assert_called_once()
        # output left in the pipe after exit is still classified
        assert results.getvalue().splitlines() == ["151200 -10 0.1  500 CQ LATE AB1CD FN42"]

    def test_stop_before_pipeline_exists_is_remembered(self, tmp_path):
        jt9 = write_fake_jt9(tmp_path)
        config = make_config(tmp_path, jt9, stream=True)
        service = Jt9StreamService(config, stdin=io.BytesIO(b""))
        service.stop()

        with patch("jt9stream.service.DecodePipeline") as pipeline_cls:
            pipeline_cls.return_value.run.return_value = 0
            pipeline_cls.return_value.decoder_exited = False
            assert service.run() == EXIT_OK

        pipeline_cls.return_value.stop.assert_called()
