"""Shared test fixtures and setup for DSLSight tests."""

import pytest

from dslsight import drivers
from dslsight.models import (
    Bins,
    BinsFloat,
    BinsFloatDownUp,
    Duration,
    IntValue,
    Mode,
    ModeSubtype,
    ModeType,
    State,
    Status,
)

drivers.register_all()


def make_status(state=State.SHOWTIME, uptime=3600, mode=None, **counters):
    """Status in the given state; counters are passed as name=int."""
    status = Status(
        state=state,
        mode=mode or Mode(ModeType.VDSL2, ModeSubtype.PROFILE_17A),
        uptime=Duration(uptime is not None, uptime or 0),
    )
    for name, value in counters.items():
        setattr(status, name, IntValue(True, value))
    return status


def make_bins(mode=None, snr_down=None, snr_up=None, group_size=8):
    mode = mode or Mode(ModeType.VDSL2, ModeSubtype.PROFILE_17A)
    count = mode.bin_count // group_size
    return Bins(
        mode=mode,
        snr=BinsFloatDownUp(
            BinsFloat(group_size, list(snr_down) if snr_down is not None else [15.0] * count),
            BinsFloat(group_size, list(snr_up) if snr_up is not None else [0.0] * count),
        ),
    )


@pytest.fixture
def status_factory():
    return make_status


@pytest.fixture
def bins_factory():
    return make_bins
