"""Shared pieces of the binary history snapshot format (big-endian)."""

import math
import struct
import time

STORAGE_VERSION = 1

_MAIN_HEADER = struct.Struct(">Iq")
_TIMESTAMP = struct.Struct(">qI")


class SnapshotError(ValueError):
    """Raised when a stored history cannot be used with the live config."""


def truncate(timestamp: float, length: float) -> float:
    """Round a unix timestamp down to a multiple of length."""
    if length <= 0:
        return timestamp
    return math.floor(timestamp / length) * length


def to_nanoseconds(seconds: float) -> int:
    return int(round(seconds * 1_000_000_000))


class SnapshotReader:
    """Sequential reader over a snapshot byte string."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def unpack(self, fmt):
        if isinstance(fmt, str):
            fmt = struct.Struct(fmt)
        end = self._pos + fmt.size
        if end > len(self._data):
            raise SnapshotError("unexpected end of data")
        values = fmt.unpack_from(self._data, self._pos)
        self._pos = end
        return values

    def read_main_header(self, now=None):
        """Read and verify version and creation time; returns creation time."""
        version, creation_time = self.unpack(_MAIN_HEADER)
        if version != STORAGE_VERSION:
            raise SnapshotError(f"unsupported data version {version}")
        if creation_time > (time.time() if now is None else now):
            raise SnapshotError("creation time in future")
        return creation_time

    def read_period_start(self, creation_time, period_length):
        sec, nsec = self.unpack(_TIMESTAMP)
        period_start = sec + nsec / 1_000_000_000
        if sec > creation_time:
            raise SnapshotError(f"period start time after creation time: {period_start}")
        if period_length and truncate(period_start, period_length) != period_start:
            raise SnapshotError(f"implausible period start time: {period_start}")
        return period_start

    def check_end(self):
        if self._pos != len(self._data):
            raise SnapshotError("unexpected trailing data")


def pack_main_header(now=None) -> bytes:
    creation_time = int(time.time() if now is None else now)
    return _MAIN_HEADER.pack(STORAGE_VERSION, creation_time)


def pack_period_start(period_start: float) -> bytes:
    sec = math.floor(period_start)
    nsec = int(round((period_start - sec) * 1_000_000_000))
    return _TIMESTAMP.pack(sec, nsec)
