"""Rolling min/max envelope of the per-subcarrier SNR."""

import copy
import logging
import struct
from dataclasses import dataclass

from ..models import (
    BinsFloatMinMax,
    BinsFloatMinMaxDownUp,
    BinsHistory,
    Mode,
    ModeType,
    State,
    parse_mode,
)
from .storage import (
    SnapshotError,
    SnapshotReader,
    pack_main_header,
    pack_period_start,
    to_nanoseconds,
    truncate,
)

log = logging.getLogger("dslsight.history.bins")

MIN_VALID_SNR = -32.0
MAX_VALID_SNR = 95.0
MIN_UPTIME_SECONDS = 60

_CONFIG = struct.Struct(">qqq")
_MODE = struct.Struct(">64s")
_SNR_HEADER = struct.Struct(">II")


@dataclass(frozen=True)
class BinsConfig:
    """Period length in seconds; both period fields zero keeps a single total."""

    period_length: float = 3600
    period_count: int = 24
    max_bin_count: int = 1024


def _empty_minmax(group_size, count):
    # 0.0 marks "no sample yet"
    return BinsFloatMinMax(group_size, [0.0] * count, [0.0] * count)


def _fold_value(minmax, num, val):
    cur_min = minmax.min[num]
    if cur_min == 0.0 or val < cur_min:
        minmax.min[num] = val
    cur_max = minmax.max[num]
    if cur_max == 0.0 or val > cur_max:
        minmax.max[num] = val


def _fold(minmax, snr):
    if snr.group_size == 0 or minmax.group_size == 0:
        return
    factor = max(minmax.group_size // snr.group_size, 1)
    for i, val in enumerate(snr.data):
        if val == 0.0 or val < MIN_VALID_SNR or val > MAX_VALID_SNR:
            continue
        num = i // factor
        if num < len(minmax.min):
            _fold_value(minmax, num, val)


class _SNRMinMax:
    """Envelope for one direction: a ring of periods plus their running total."""

    def __init__(self):
        self.original_group_size = 0
        self.original_count = 0
        self.periods = []
        self.total = BinsFloatMinMax()

    def reset(self, group_size, count, max_bin_count, period_count):
        self.original_group_size = group_size
        self.original_count = count

        factor = 1
        minmax_count = count
        while minmax_count > max_bin_count:
            factor *= 2
            minmax_count = (count + factor - 1) // factor

        minmax_group_size = group_size * factor
        self.total = _empty_minmax(minmax_group_size, minmax_count)
        self.periods = [_empty_minmax(minmax_group_size, minmax_count) for _ in range(period_count)]

    def needs_reset(self, snr) -> bool:
        if self.original_group_size == snr.group_size and self.original_count == len(snr.data):
            return False
        # lost sync: the device stops reporting SNR but the envelope stays valid
        if self.original_group_size != 0 and snr.group_size == 0:
            return False
        return True

    def clear_periods(self, start_index, count):
        period_count = len(self.periods)
        for i in range(min(count, period_count)):
            slot = self.periods[(start_index + i) % period_count]
            slot.min = [0.0] * len(slot.min)
            slot.max = [0.0] * len(slot.max)

    def recalculate_total(self):
        total = _empty_minmax(self.total.group_size, len(self.total.min))
        for period in self.periods:
            for num in range(len(total.min)):
                if period.min[num] != 0.0:
                    _fold_value(total, num, period.min[num])
                if period.max[num] != 0.0:
                    _fold_value(total, num, period.max[num])
        self.total = total


class BinsHistoryEngine:
    """Tracks the SNR min/max of each subcarrier group over a sliding window."""

    def __init__(self, config: BinsConfig = BinsConfig()):
        if (config.period_length != 0) != (config.period_count != 0):
            raise ValueError("either both or neither of period length and count must be zero")
        self.config = config
        self.mode = Mode()
        self.period_start = 0.0
        self.period_index = 0
        self.downstream = _SNRMinMax()
        self.upstream = _SNRMinMax()

    def update(self, status, bins, now: float):
        if status.state != State.SHOWTIME:
            return
        if status.uptime.valid and status.uptime.seconds < MIN_UPTIME_SECONDS:
            return
        if bins.mode.type == ModeType.UNKNOWN:
            return

        cfg = self.config
        current_period_start = truncate(now, cfg.period_length)
        snr = bins.snr

        if (self.mode != bins.mode
                or self.downstream.needs_reset(snr.downstream)
                or self.upstream.needs_reset(snr.upstream)
                or (cfg.period_count and self.period_start > current_period_start)):
            log.debug("Resetting bins history for %s", bins.mode)
            self.mode = bins.mode
            if cfg.period_count:
                self.period_start = current_period_start
            self.period_index = 0
            self.downstream.reset(snr.downstream.group_size, len(snr.downstream.data),
                                  cfg.max_bin_count, cfg.period_count)
            self.upstream.reset(snr.upstream.group_size, len(snr.upstream.data),
                                cfg.max_bin_count, cfg.period_count)

        if cfg.period_count:
            elapsed = int(round((current_period_start - self.period_start) / cfg.period_length))
            if elapsed > 0:
                for direction in (self.downstream, self.upstream):
                    direction.clear_periods(self.period_index + 1, elapsed)
                    direction.recalculate_total()
                self.period_start = current_period_start
                self.period_index = (self.period_index + elapsed) % cfg.period_count

            _fold(self.downstream.periods[self.period_index], snr.downstream)
            _fold(self.upstream.periods[self.period_index], snr.upstream)

        _fold(self.downstream.total, snr.downstream)
        _fold(self.upstream.total, snr.upstream)

    def data(self) -> BinsHistory:
        return BinsHistory(snr=BinsFloatMinMaxDownUp(
            downstream=copy.deepcopy(self.downstream.total),
            upstream=copy.deepcopy(self.upstream.total),
        ))

    # ── Snapshots ──

    def _pack_direction(self, direction) -> bytes:
        out = [_SNR_HEADER.pack(direction.original_group_size, direction.original_count)]
        if direction.original_group_size == 0 or direction.original_count == 0:
            return b"".join(out)

        count = self.config.period_count
        if count:
            slots = [direction.periods[(self.period_index + 1 + i) % count] for i in range(count)]
        else:
            slots = [direction.total]
        for slot in slots:
            n = len(slot.min)
            out.append(struct.pack(f">{n}d", *slot.min))
            out.append(struct.pack(f">{n}d", *slot.max))
        return b"".join(out)

    def _read_direction(self, reader) -> _SNRMinMax:
        group_size, count = reader.unpack(_SNR_HEADER)
        direction = _SNRMinMax()
        direction.reset(group_size, count, self.config.max_bin_count, self.config.period_count)
        if group_size == 0 or count == 0:
            return direction

        slots = direction.periods if self.config.period_count else [direction.total]
        for slot in slots:
            n = len(slot.min)
            slot.min = list(reader.unpack(f">{n}d"))
            slot.max = list(reader.unpack(f">{n}d"))
        if self.config.period_count:
            direction.recalculate_total()
        return direction

    def save(self, fileobj, now=None):
        """Write a snapshot of the full history to a binary file object."""
        cfg = self.config
        mode = str(self.mode).encode("utf-8")[:64]
        fileobj.write(b"".join([
            pack_main_header(now),
            _CONFIG.pack(to_nanoseconds(cfg.period_length), cfg.period_count, cfg.max_bin_count),
            _MODE.pack(mode),
            pack_period_start(self.period_start),
            self._pack_direction(self.downstream),
            self._pack_direction(self.upstream),
        ]))

    def load(self, fileobj, now=None):
        """Replace the history with a snapshot; raises SnapshotError and
        leaves the current data untouched if the snapshot does not fit."""
        cfg = self.config
        reader = SnapshotReader(fileobj.read())
        creation_time = reader.read_main_header(now)

        stored = reader.unpack(_CONFIG)
        expected = (to_nanoseconds(cfg.period_length), cfg.period_count, cfg.max_bin_count)
        if stored != expected:
            raise SnapshotError("config does not match")

        (raw_mode,) = reader.unpack(_MODE)
        mode = parse_mode(raw_mode.split(b"\x00", 1)[0].decode("utf-8", "replace"))
        period_start = reader.read_period_start(creation_time, cfg.period_length)

        downstream = self._read_direction(reader)
        upstream = self._read_direction(reader)
        reader.check_end()

        self.mode = mode
        self.period_start = period_start
        self.period_index = cfg.period_count - 1 if cfg.period_count else 0
        self.downstream = downstream
        self.upstream = upstream
