"""Per-period increments of the line error counters."""

import logging
import math
import struct
from dataclasses import dataclass, field

from ..models import ERROR_COUNTERS, BoolValue, ErrorsHistory, IntValue, State
from .storage import (
    SnapshotError,
    SnapshotReader,
    pack_main_header,
    pack_period_start,
    to_nanoseconds,
    truncate,
)

log = logging.getLogger("dslsight.history.errors")

MIN_UPTIME_SECONDS = 60
WRAP_THRESHOLD = 2 ** 31
WRAP_MODULUS = 2 ** 32

_CONFIG = struct.Struct(">qq")
_SLOT = struct.Struct(">BB" + "Bq" * len(ERROR_COUNTERS))


@dataclass(frozen=True)
class ErrorsConfig:
    """Period length in seconds and number of periods kept."""

    period_length: float = 300
    period_count: int = 288


@dataclass
class _Slot:
    showtime: BoolValue = field(default_factory=BoolValue)
    counters: list = field(default_factory=lambda: [IntValue() for _ in ERROR_COUNTERS])


def counter_diff(prev: IntValue, cur: IntValue):
    """Increment between two counter readings, or None if it is not plausible.

    Counters that went from the upper to the lower half of the 32-bit range
    are taken as wrapped u32 values. Jumps of 2**31 or more are spurious.
    """
    if not prev.valid or not cur.valid:
        return None
    if prev.value >= WRAP_THRESHOLD and cur.value < WRAP_THRESHOLD:
        diff = (cur.value - prev.value) % WRAP_MODULUS
    else:
        diff = cur.value - prev.value
    if diff < 0 or diff >= WRAP_THRESHOLD:
        return None
    return diff


class ErrorsHistoryEngine:
    """Ring of fixed-length periods holding counter increments."""

    def __init__(self, config: ErrorsConfig = ErrorsConfig()):
        if config.period_length == 0 or config.period_count == 0:
            raise ValueError("period length and count must not be zero")
        self.config = config
        self.last_time = None
        self.last_status = None
        self.period_start = 0.0
        self.period_index = 0
        self.slots = []

    def _update_period(self, now):
        cfg = self.config
        period_time = now
        if self.last_time is not None and 0 < now - self.last_time <= cfg.period_length:
            # attribute the increment to the period both samples straddle
            period_time = (self.last_time + now) / 2
        current_period_start = truncate(period_time, cfg.period_length)

        if not self.slots or self.period_start > current_period_start:
            self.slots = [_Slot() for _ in range(cfg.period_count)]
            self.period_start = current_period_start
            self.period_index = 0

        elapsed = int(round((current_period_start - self.period_start) / cfg.period_length))
        for i in range(min(elapsed, cfg.period_count)):
            self.slots[(self.period_index + 1 + i) % cfg.period_count] = _Slot()
        self.period_index = (self.period_index + elapsed) % cfg.period_count
        self.period_start = current_period_start

    def _update_showtime(self, state):
        flag = self.slots[self.period_index].showtime
        if state == State.UNKNOWN:
            return
        if state == State.SHOWTIME:
            if not flag.valid:
                flag.valid = True
                flag.value = True
        else:
            flag.valid = True
            flag.value = False

    def _should_reject(self, status, now) -> bool:
        last = self.last_status
        if last is None:
            return True
        # increments spanning more than one period cannot be placed
        if now - self.last_time > self.config.period_length:
            return True
        if last.state != State.SHOWTIME or status.state != State.SHOWTIME:
            return True
        if last.uptime.valid and status.uptime.valid and last.uptime.seconds > status.uptime.seconds:
            return True
        if status.uptime.valid and status.uptime.seconds < MIN_UPTIME_SECONDS:
            return True
        return False

    def update(self, status, now: float):
        now = float(math.floor(now))
        try:
            self._update_period(now)
            self._update_showtime(status.state)
            if self._should_reject(status, now):
                return

            slot = self.slots[self.period_index]
            for i, name in enumerate(ERROR_COUNTERS):
                diff = counter_diff(getattr(self.last_status, name), getattr(status, name))
                if diff is None:
                    continue
                slot.counters[i].valid = True
                slot.counters[i].value += diff
        finally:
            self.last_status = status
            self.last_time = now

    def _ordered_slots(self):
        count = self.config.period_count
        if len(self.slots) != count:
            return [_Slot() for _ in range(count)]
        return [self.slots[(self.period_index + 1 + i) % count] for i in range(count)]

    def data(self) -> ErrorsHistory:
        cfg = self.config
        ordered = self._ordered_slots()
        return ErrorsHistory(
            end_time=self.period_start + cfg.period_length,
            period_length=cfg.period_length,
            period_count=cfg.period_count,
            showtime=[BoolValue(s.showtime.valid, s.showtime.value) for s in ordered],
            counters={
                name: [IntValue(s.counters[i].valid, s.counters[i].value) for s in ordered]
                for i, name in enumerate(ERROR_COUNTERS)
            },
        )

    # ── Snapshots ──

    def save(self, fileobj, now=None):
        """Write a snapshot of the ring, oldest period first."""
        cfg = self.config
        parts = [
            pack_main_header(now),
            _CONFIG.pack(to_nanoseconds(cfg.period_length), cfg.period_count),
            pack_period_start(self.period_start),
        ]
        for slot in self._ordered_slots():
            values = [int(slot.showtime.valid), int(slot.showtime.value)]
            for counter in slot.counters:
                values.extend((int(counter.valid), counter.value))
            parts.append(_SLOT.pack(*values))
        fileobj.write(b"".join(parts))

    def load(self, fileobj, now=None):
        """Replace the ring with a snapshot; raises SnapshotError and keeps
        the current data if the snapshot does not match the config."""
        cfg = self.config
        reader = SnapshotReader(fileobj.read())
        creation_time = reader.read_main_header(now)

        if reader.unpack(_CONFIG) != (to_nanoseconds(cfg.period_length), cfg.period_count):
            raise SnapshotError("config does not match")

        period_start = reader.read_period_start(creation_time, cfg.period_length)

        slots = []
        for _ in range(cfg.period_count):
            values = reader.unpack(_SLOT)
            slot = _Slot(showtime=BoolValue(bool(values[0]), bool(values[1])))
            for i in range(len(ERROR_COUNTERS)):
                valid, value = values[2 + 2 * i], values[3 + 2 * i]
                if value < 0:
                    raise SnapshotError("negative counter value")
                slot.counters[i] = IntValue(bool(valid), value)
            slots.append(slot)
        reader.check_end()

        self.slots = slots
        self.period_start = period_start
        self.period_index = cfg.period_count - 1
        self.last_time = None
        self.last_status = None
