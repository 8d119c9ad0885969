"""Tests for the error counter history: diffs, ring advancement, snapshots."""

import io
import struct

import pytest

from dslsight.history import ErrorsConfig, ErrorsHistoryEngine, SnapshotError, counter_diff
from dslsight.models import ERROR_COUNTERS, IntValue, State

from conftest import make_status

T0 = 1_700_000_100.0  # aligned to 5 minutes


@pytest.fixture
def engine():
    return ErrorsHistoryEngine(ErrorsConfig(period_length=300, period_count=288))


def _counter(history, name="downstream_fec_count"):
    return history.counters[name]


class TestCounterDiff:
    def test_increment(self):
        assert counter_diff(IntValue(True, 10), IntValue(True, 25)) == 15

    def test_wrap(self):
        assert counter_diff(IntValue(True, 4_000_000_000), IntValue(True, 100_000)) == 394_967_296

    def test_decrease_rejected(self):
        assert counter_diff(IntValue(True, 100), IntValue(True, 50)) is None

    def test_large_jump_rejected(self):
        assert counter_diff(IntValue(True, 0), IntValue(True, 2 ** 31)) is None

    def test_invalid_rejected(self):
        assert counter_diff(IntValue(), IntValue(True, 5)) is None
        assert counter_diff(IntValue(True, 5), IntValue()) is None


class TestErrorsUpdate:
    def test_first_sample_only_marks_showtime(self, engine):
        engine.update(make_status(downstream_fec_count=10), T0)
        data = engine.data()
        assert data.showtime[-1].valid and data.showtime[-1].value
        assert not _counter(data)[-1].valid

    def test_diff_added(self, engine):
        engine.update(make_status(uptime=3600, downstream_fec_count=10), T0)
        engine.update(make_status(uptime=3630, downstream_fec_count=25), T0 + 30)
        engine.update(make_status(uptime=3660, downstream_fec_count=27), T0 + 60)
        assert _counter(engine.data())[-1] == IntValue(True, 17)

    def test_overflow(self, engine):
        engine.update(make_status(uptime=3600, downstream_fec_count=4_000_000_000), T0)
        engine.update(make_status(uptime=3630, downstream_fec_count=100_000), T0 + 30)
        assert _counter(engine.data())[-1] == IntValue(True, 394_967_296)

    def test_uptime_regression_skipped(self, engine):
        engine.update(make_status(uptime=3600, downstream_fec_count=10), T0)
        engine.update(make_status(uptime=100, downstream_fec_count=12), T0 + 30)
        assert not _counter(engine.data())[-1].valid

    def test_short_uptime_skipped(self, engine):
        engine.update(make_status(uptime=20, downstream_fec_count=10), T0)
        engine.update(make_status(uptime=50, downstream_fec_count=12), T0 + 30)
        assert not _counter(engine.data())[-1].valid

    def test_not_showtime_skipped(self, engine):
        engine.update(make_status(downstream_fec_count=10), T0)
        engine.update(make_status(state=State.INIT, uptime=None, downstream_fec_count=12), T0 + 30)
        engine.update(make_status(uptime=3700, downstream_fec_count=15), T0 + 60)
        data = engine.data()
        assert not _counter(data)[-1].valid
        assert data.showtime[-1].valid and not data.showtime[-1].value

    def test_unknown_state_keeps_showtime_flag(self, engine):
        engine.update(make_status(state=State.UNKNOWN), T0)
        assert not engine.data().showtime[-1].valid

    def test_counters_independent(self, engine):
        engine.update(make_status(uptime=3600, downstream_crc_count=5, upstream_es_count=1), T0)
        engine.update(make_status(uptime=3630, downstream_crc_count=9), T0 + 30)
        data = engine.data()
        assert _counter(data, "downstream_crc_count")[-1] == IntValue(True, 4)
        assert not _counter(data, "upstream_es_count")[-1].valid

    def test_ring_advancement(self, engine):
        engine.update(make_status(uptime=3600, downstream_fec_count=0), 0)
        engine.update(make_status(uptime=3901, downstream_fec_count=7), 301)

        data = engine.data()
        non_null = [i for i, flag in enumerate(data.showtime) if flag.valid]
        assert non_null == [286, 287]
        assert data.end_time == 600
        # the increment spans more than one period
        assert not _counter(data)[287].valid

    def test_increment_assigned_to_midpoint_period(self, engine):
        engine.update(make_status(uptime=3600, downstream_fec_count=0), T0 + 290)
        engine.update(make_status(uptime=3620, downstream_fec_count=3), T0 + 305)
        data = engine.data()
        # midpoint T0+297.5 still belongs to the first period
        assert data.end_time == T0 + 300
        assert _counter(data)[287] == IntValue(True, 3)

        engine.update(make_status(uptime=3650, downstream_fec_count=4), T0 + 335)
        data = engine.data()
        assert data.end_time == T0 + 600
        assert _counter(data)[286] == IntValue(True, 3)
        assert _counter(data)[287] == IntValue(True, 1)

    def test_long_gap_clears_ring(self, engine):
        engine.update(make_status(uptime=3600, downstream_fec_count=0), T0)
        engine.update(make_status(uptime=3630, downstream_fec_count=3), T0 + 30)
        engine.update(make_status(uptime=90000, downstream_fec_count=3), T0 + 300 * 400)
        data = engine.data()
        assert not any(v.valid for v in _counter(data))
        assert data.showtime[-1].valid

    def test_outage_increment_dropped(self, engine):
        engine.update(make_status(uptime=3600, downstream_fec_count=0), T0)
        engine.update(make_status(uptime=3600 + 7200, downstream_fec_count=50000), T0 + 7200)
        assert not any(v.valid for v in _counter(engine.data()))

        engine.update(make_status(uptime=3600 + 7230, downstream_fec_count=50004), T0 + 7230)
        assert _counter(engine.data())[-1] == IntValue(True, 4)

    def test_data_shape(self, engine):
        data = engine.data()
        assert data.period_count == 288
        assert len(data.showtime) == 288
        assert set(data.counters) == set(ERROR_COUNTERS)


# ── Snapshots ──


class TestErrorsSnapshot:
    def _filled(self, engine):
        engine.update(make_status(uptime=3600, downstream_fec_count=10, upstream_crc_count=1), T0)
        engine.update(make_status(uptime=3900, downstream_fec_count=40, upstream_crc_count=3), T0 + 300)
        engine.update(make_status(uptime=4200, downstream_fec_count=45, upstream_crc_count=3), T0 + 600)
        return engine

    def test_round_trip(self, engine):
        self._filled(engine)
        buf = io.BytesIO()
        engine.save(buf)

        loaded = ErrorsHistoryEngine(engine.config)
        loaded.load(io.BytesIO(buf.getvalue()))
        assert loaded.data() == engine.data()

    def test_period_count_mismatch_rejected(self, engine):
        self._filled(engine)
        buf = io.BytesIO()
        engine.save(buf)

        data = bytearray(buf.getvalue())
        # main header (12 bytes), period length (8 bytes), period count (8 bytes)
        data[20:28] = struct.pack(">q", 144)

        live = ErrorsHistoryEngine(ErrorsConfig(period_length=300, period_count=288))
        live.update(make_status(downstream_fec_count=1), T0)
        before = live.data()
        with pytest.raises(SnapshotError):
            live.load(io.BytesIO(bytes(data)))
        assert live.data() == before

    def test_unaligned_period_start_rejected(self, engine):
        self._filled(engine)
        buf = io.BytesIO()
        engine.save(buf)
        data = bytearray(buf.getvalue())
        sec = struct.unpack(">q", data[28:36])[0]
        data[28:36] = struct.pack(">q", sec + 1)
        with pytest.raises(SnapshotError):
            ErrorsHistoryEngine(engine.config).load(io.BytesIO(bytes(data)))

    def test_negative_counter_rejected(self, engine):
        self._filled(engine)
        buf = io.BytesIO()
        engine.save(buf)
        data = bytearray(buf.getvalue())
        # first counter value of the first slot
        offset = 12 + 16 + 12 + 2 + 1
        data[offset:offset + 8] = struct.pack(">q", -1)
        with pytest.raises(SnapshotError):
            ErrorsHistoryEngine(engine.config).load(io.BytesIO(bytes(data)))
