"""
Shared decode block for the jt9 handshake.

This module provides SharedDecodeBlock, the command/result record shared with
the external decoder. The record is laid out exactly like the decoder's own
structure (C alignment), allocated once in shared memory, reused for every
cycle and finalized with a one-shot terminate value.

Handshake fields:
    ipc[0]        symbol count for the request
    ipc[1]        1 = decode requested, 0 = decoder busy-cleared, 999 = terminate
    ipc[2]        -1 = not yet acknowledged, 1 = acknowledged by requester
    params.nutc   UTC HHMM of the request
    params.kin    number of valid samples in d2
    params.newdat always true per request (decoder must not reuse cached spectra)
    d2            audio, left-aligned

jt9 attaches with Qt's QSharedMemory, which never uses the key as a segment
name. The key is turned into a native key file in the temp directory
(qipc_sharedmemory_<letters of key><sha1 of key>) and the System V segment is
found through ftok(file, 'Q'). The lock is a System V semaphore named the same
way with the qipc_systemsem_ prefix. Both are reproduced here so that
`jt9 -s <key>` finds the block and serialises against BlockLock.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import numpy as np
import sysv_ipc

from jt9stream.errors import SharedBlockError
from jt9stream.modes import RX_SAMPLE_RATE, ModeConfig

logger = logging.getLogger(__name__)

# Decoder record dimensions
NSMAX = 6827
NTMAX = 30 * 60  # seconds of audio the record can hold

# ipc[1] values
IPC_REQUEST_DECODE = 1
IPC_BUSY_CLEARED = 0
IPC_TERMINATE = 999

# ipc[2] values
IPC_NOT_ACKNOWLEDGED = -1
IPC_ACKNOWLEDGED = 1

DEFAULT_KEY = "JT9DECODE"

# Qt native key prefixes and the ftok() project id Qt uses for both
QT_SHM_PREFIX = "qipc_sharedmemory_"
QT_SEM_PREFIX = "qipc_systemsem_"
FTOK_PROJECT_ID = ord("Q")


def qt_temp_path() -> str:
    """Directory Qt keeps native key files in ($TMPDIR, else /tmp)."""
    return os.path.normpath(os.environ.get("TMPDIR") or "/tmp")


def qt_native_key(key: str, prefix: str, temp_dir: Optional[str] = None) -> str:
    """
    Path of the key file Qt derives for an IPC key.

    Only ASCII letters of the key are kept, followed by the SHA-1 hex digest
    of the whole key, so "JT9DECODE" becomes qipc_sharedmemory_JTDECODE<sha1>.

    Args:
        key: Key passed to setKey() (the value of jt9 -s)
        prefix: QT_SHM_PREFIX or QT_SEM_PREFIX
        temp_dir: Directory of the key file (default: qt_temp_path())
    """
    letters = "".join(ch for ch in key if "a" <= ch <= "z" or "A" <= ch <= "Z")
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
    return os.path.join(temp_dir or qt_temp_path(), f"{prefix}{letters}{digest}")


def _create_key_file(path: str) -> bool:
    """Create a Qt key file. Returns True if this call created it."""
    try:
        fd = os.open(path, os.O_EXCL | os.O_CREAT | os.O_RDWR, 0o640)
    except FileExistsError:
        return False
    os.close(fd)
    return True


def _ftok(path: str) -> int:
    return sysv_ipc.ftok(path, FTOK_PROJECT_ID, silence_warning=True)


# Field order and types must match the decoder's params record exactly
_PARAMS_FIELDS = [
    ("nutc", np.int32),
    ("ndiskdat", np.bool_),
    ("ntrperiod", np.int32),
    ("nQSOProgress", np.int32),
    ("nfqso", np.int32),
    ("nftx", np.int32),
    ("newdat", np.bool_),
    ("npts8", np.int32),
    ("nfa", np.int32),
    ("nfSplit", np.int32),
    ("nfb", np.int32),
    ("ntol", np.int32),
    ("kin", np.int32),
    ("nzhsym", np.int32),
    ("nsubmode", np.int32),
    ("nagain", np.bool_),
    ("ndepth", np.int32),
    ("lft8apon", np.bool_),
    ("lapcqonly", np.bool_),
    ("ljt65apon", np.bool_),
    ("napwid", np.int32),
    ("ntxmode", np.int32),
    ("nmode", np.int32),
    ("minw", np.int32),
    ("nclearave", np.bool_),
    ("minSync", np.int32),
    ("emedelay", np.float32),
    ("dttol", np.float32),
    ("nlist", np.int32),
    ("listutc", np.int32, (10,)),
    ("n2pass", np.int32),
    ("nranera", np.int32),
    ("naggressive", np.int32),
    ("nrobust", np.bool_),
    ("nexp_decode", np.int32),
    ("max_drift", np.int32),
    ("datetime", "S20"),
    ("mycall", "S12"),
    ("mygrid", "S6"),
    ("hiscall", "S12"),
    ("hisgrid", "S6"),
    ("b_even_seq", np.bool_),
    ("b_superfox", np.bool_),
    ("yymmdd", np.int32),
    ("mybcall", "S12"),
    ("hisbcall", "S12"),
    ("ncandthin", np.int32),
    ("ndtcenter", np.int32),
    ("nft8cycles", np.int32),
    ("ntrials10", np.int32),
    ("ntrialsrxf10", np.int32),
    ("nharmonicsdepth", np.int32),
    ("ntopfreq65", np.int32),
    ("nprepass", np.int32),
    ("nsdecatt", np.int32),
    ("nlasttx", np.int32),
    ("ndelay", np.int32),
    ("nmt", np.int32),
    ("nft8rxfsens", np.int32),
    ("nft4depth", np.int32),
    ("nsecbandchanged", np.int32),
    ("nagainfil", np.bool_),
    ("nstophint", np.bool_),
    ("nhint", np.bool_),
    ("fmaskact", np.bool_),
    ("lmultift8", np.bool_),
    ("lft8lowth", np.bool_),
    ("lft8subpass", np.bool_),
    ("ltxing", np.bool_),
    ("lhideft8dupes", np.bool_),
    ("lhound", np.bool_),
    ("lcommonft8b", np.bool_),
    ("lmycallstd", np.bool_),
    ("lhiscallstd", np.bool_),
    ("lapmyc", np.bool_),
    ("lmodechanged", np.bool_),
    ("lbandchanged", np.bool_),
    ("lenabledxcsearch", np.bool_),
    ("lwidedxcsearch", np.bool_),
    ("lmultinst", np.bool_),
    ("lskiptx1", np.bool_),
    ("ndecoderstart", np.int32),
]

PARAMS_DTYPE = np.dtype(_PARAMS_FIELDS, align=True)


def dec_data_dtype(ntmax: int = NTMAX) -> np.dtype:
    """
    Structured dtype of the shared decode record.

    Args:
        ntmax: Seconds of audio the d2 region holds (the decoder uses NTMAX;
               smaller values are only useful for tests)
    """
    return np.dtype(
        [
            ("ipc", np.int32, (3,)),
            ("ss", np.float32, (184 * NSMAX,)),
            ("savg", np.float32, (NSMAX,)),
            ("sred", np.float32, (5760,)),
            ("d2", np.int16, (ntmax * RX_SAMPLE_RATE,)),
            ("params", PARAMS_DTYPE),
        ],
        align=True,
    )


@dataclass(frozen=True)
class DecoderSettings:
    """Decoder parameters written once when the block is configured."""
    depth: int = 3
    freq_low: int = 200
    freq_high: int = 5000
    nfqso: int = 1500
    ntol: int = 100
    mycall: str = "K1ABC"
    mygrid: str = "FN20"
    multithread: bool = False
    disk_data: bool = False  # True for WAV file decodes


class BlockLock:
    """
    Lock guarding the shared decode block.

    Pairs an in-process mutex with the System V semaphore QSharedMemory::lock()
    takes in jt9. The semaphore is operated with SEM_UNDO so a crashed holder
    does not leave it taken.
    """

    def __init__(self, key: str) -> None:
        self.key_path = qt_native_key(key, QT_SEM_PREFIX)
        self._mutex = threading.Lock()
        self._sem: Optional[sysv_ipc.Semaphore] = None
        self._created = False

    def open(self) -> None:
        """
        Create (or join) the semaphore with an initial value of 1.

        Raises:
            OSError: If the key file cannot be created
            sysv_ipc.Error: If the semaphore cannot be created or opened
        """
        if self._sem is not None:
            return
        file_created = _create_key_file(self.key_path)
        ipc_key = _ftok(self.key_path)
        try:
            self._sem = sysv_ipc.Semaphore(ipc_key, sysv_ipc.IPC_CREX, mode=0o600, initial_value=1)
            self._created = True
        except sysv_ipc.ExistentialError:
            self._sem = sysv_ipc.Semaphore(ipc_key)
            self._created = file_created
        self._sem.undo = True

    def close(self) -> None:
        with self._mutex:
            sem = self._sem
            self._sem = None
            if sem is None:
                return
            if self._created:
                try:
                    sem.remove()
                except sysv_ipc.ExistentialError:
                    pass
                try:
                    os.unlink(self.key_path)
                except OSError:
                    pass
            self._created = False

    def acquire(self) -> None:
        self._mutex.acquire()
        if self._sem is not None:
            try:
                self._sem.acquire()
            except sysv_ipc.Error:
                self._mutex.release()
                raise

    def release(self) -> None:
        try:
            if self._sem is not None:
                self._sem.release()
        finally:
            self._mutex.release()

    def __enter__(self) -> "BlockLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class SharedDecodeBlock:
    """
    Owner side of the shared decode block.

    Lifecycle: create() once, configure() once, then submit_request() /
    is_busy() / acknowledge() per cycle, terminate() once, close() once.
    Each public method is a single critical section under the block lock.
    Fields are read and written at their offsets in the structured dtype.
    """

    def __init__(self, key: str = DEFAULT_KEY, ntmax: int = NTMAX) -> None:
        """
        Args:
            key: Qt shared memory key handed to the decoder (-s <key>)
            ntmax: Seconds of audio the d2 region holds
        """
        if not key:
            raise ValueError("Shared block key cannot be empty")
        if ntmax <= 0:
            raise ValueError(f"ntmax must be > 0, got {ntmax}")

        self.key = key
        self.dtype = dec_data_dtype(ntmax)
        self.native_key = qt_native_key(key, QT_SHM_PREFIX)
        self._lock = BlockLock(key)
        self._shm: Optional[sysv_ipc.SharedMemory] = None
        self._created_key_file = False
        self._terminated = False
        self._kin = 0

        self._ipc_offset = self.dtype.fields["ipc"][1]
        self._d2_offset = self.dtype.fields["d2"][1]
        self._params_offset = self.dtype.fields["params"][1]

    @property
    def size(self) -> int:
        return self.dtype.itemsize

    @property
    def audio_capacity(self) -> int:
        """Maximum samples the d2 region accepts."""
        return self.dtype["d2"].shape[0]

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def ipc_key(self) -> Optional[int]:
        """System V key of the segment, None until created."""
        return self._shm.key if self._shm is not None else None

    def lock(self) -> BlockLock:
        return self._lock

    def create(self) -> "SharedDecodeBlock":
        """
        Allocate and zero the shared segment, replacing a stale one under the same key.

        Raises:
            SharedBlockError: If the segment, its key file or its semaphore cannot be created
        """
        if self._shm is not None:
            return self

        try:
            self._lock.open()
            with self._lock:
                self._remove_stale()
                self._created_key_file = _create_key_file(self.native_key)
                self._shm = sysv_ipc.SharedMemory(
                    _ftok(self.native_key),
                    sysv_ipc.IPC_CREX,
                    mode=0o600,
                    size=self.size,
                    init_character=b"\0",
                )
        except (OSError, sysv_ipc.Error) as e:
            self._discard_key_file()
            self._lock.close()
            raise SharedBlockError(f"Failed to create shared memory '{self.key}': {e}") from e

        logger.info(f"Shared memory created with key: {self.key}")
        logger.info(f"Structure size: {self.size} bytes")
        return self

    def _remove_stale(self) -> None:
        if not os.path.exists(self.native_key):
            return
        try:
            stale = sysv_ipc.SharedMemory(_ftok(self.native_key))
        except sysv_ipc.ExistentialError:
            return
        logger.info("Detaching from existing shared memory")
        stale.remove()
        stale.detach()

    def _discard_key_file(self) -> None:
        if self._created_key_file:
            try:
                os.unlink(self.native_key)
            except OSError:
                pass
            self._created_key_file = False

    def _segment(self) -> sysv_ipc.SharedMemory:
        if self._shm is None:
            raise SharedBlockError("Shared decode block is not allocated")
        return self._shm

    def _param_field(self, name: str) -> Tuple[int, np.dtype]:
        field_dtype, offset = PARAMS_DTYPE.fields[name][:2]
        return self._params_offset + offset, field_dtype

    def _write_param(self, name: str, value: Any) -> None:
        offset, field_dtype = self._param_field(name)
        self._segment().write(np.array(value, dtype=field_dtype).tobytes(), offset)

    def _write_ipc(self, values: Tuple[int, ...], start: int = 0) -> None:
        data = np.array(values, dtype=np.int32).tobytes()
        self._segment().write(data, self._ipc_offset + start * 4)

    def _read_ipc(self) -> Tuple[int, int, int]:
        raw = self._segment().read(12, self._ipc_offset)
        ipc = np.frombuffer(raw, dtype=np.int32)
        return int(ipc[0]), int(ipc[1]), int(ipc[2])

    def configure(self, mode: ModeConfig, settings: DecoderSettings) -> None:
        """Write the per-run decoder parameters."""
        values = {
            "nmode": mode.mode_code,
            "ntrperiod": mode.tr_period_seconds,
            "ndepth": settings.depth,
            "nfa": settings.freq_low,
            "nfb": settings.freq_high,
            "nfqso": settings.nfqso,
            "ntol": settings.ntol,
            "nagain": False,
            "nQSOProgress": 0,
            "lapcqonly": False,
            "nsubmode": 0,
            "ndiskdat": settings.disk_data,
            "lmultift8": settings.multithread,
            "mycall": settings.mycall.encode("ascii")[:12],
            "mygrid": settings.mygrid.encode("ascii")[:6],
        }
        with self._lock:
            for name, value in values.items():
                self._write_param(name, value)

    def read_param(self, name: str) -> Any:
        """Current value of a scalar params field as a Python object."""
        offset, field_dtype = self._param_field(name)
        with self._lock:
            raw = self._segment().read(field_dtype.itemsize, offset)
        return np.frombuffer(raw, dtype=field_dtype)[0].item()

    def read_audio(self, count: int) -> np.ndarray:
        """Copy of the first `count` samples of d2."""
        with self._lock:
            raw = self._segment().read(count * 2, self._d2_offset)
        return np.frombuffer(raw, dtype=np.int16).copy()

    def submit_request(self, samples: np.ndarray, nutc: int, symbols: int) -> None:
        """
        Hand a new audio snapshot to the decoder and request a decode.

        Resets the request to a neutral state first: audio left over from a
        longer previous request is zeroed so only `len(samples)` samples are live.

        Raises:
            SharedBlockError: If terminated or if the snapshot does not fit
        """
        count = len(samples)
        if count > self.audio_capacity:
            raise SharedBlockError(
                f"Snapshot of {count} samples exceeds audio region of {self.audio_capacity}"
            )
        audio = np.ascontiguousarray(samples, dtype=np.int16)
        with self._lock:
            if self._terminated:
                raise SharedBlockError("Decode requested after terminate")
            shm = self._segment()
            shm.write(audio.tobytes(), self._d2_offset)
            if self._kin > count:
                shm.write(bytes((self._kin - count) * 2), self._d2_offset + count * 2)
            self._kin = count

            self._write_param("nutc", nutc)
            self._write_param("kin", count)
            self._write_param("newdat", True)

            self._write_ipc((symbols, IPC_REQUEST_DECODE, IPC_NOT_ACKNOWLEDGED))

    def is_busy(self) -> bool:
        """True while the decoder has not cleared ipc[1] from the request value."""
        with self._lock:
            return self._read_ipc()[1] != IPC_BUSY_CLEARED

    def read_ipc(self) -> Tuple[int, int, int]:
        with self._lock:
            return self._read_ipc()

    def acknowledge(self) -> None:
        """Tell the decoder the requester is done with this cycle's results."""
        with self._lock:
            self._write_ipc((IPC_ACKNOWLEDGED,), start=2)

    def terminate(self) -> bool:
        """
        Write the terminate value. One-shot: later calls do nothing.

        Returns:
            True if this call sent the signal
        """
        if self._shm is None:
            return False
        with self._lock:
            if self._terminated:
                logger.debug("Terminate already sent to decoder")
                return False
            self._write_ipc((IPC_TERMINATE,), start=1)
            self._terminated = True
        logger.info("Terminate signal written to shared decode block")
        return True

    def close(self) -> None:
        """Detach and remove the segment, its semaphore and key files. Idempotent."""
        if self._shm is None:
            return
        shm = self._shm
        self._shm = None
        try:
            shm.remove()
            shm.detach()
        except sysv_ipc.ExistentialError:
            pass
        finally:
            self._discard_key_file()
            self._lock.close()
        logger.debug(f"Shared memory '{self.key}' released")

    def __enter__(self) -> "SharedDecodeBlock":
        return self.create()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
