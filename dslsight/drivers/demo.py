"""Demo driver: generates a realistic VDSL2 17a line without a real device."""

import json
import logging
import math
import random
import time

from . import registry
from .base import AuthType, Driver, DriverConfig, DriverDesc, Tristate
from ..helpers import normalize_status
from ..models import (
    Band,
    Bins,
    BinsFloat,
    BinsFloatDownUp,
    BoolValue,
    Duration,
    FloatValue,
    IntValue,
    Inventory,
    Mode,
    ModeSubtype,
    ModeType,
    State,
    Status,
    VectoringState,
    VectoringValue,
)

log = logging.getLogger("dslsight.driver.demo")

# 998ADE17 band plan
DOWNSTREAM_BANDS = [Band(33, 859), Band(1216, 1959), Band(2792, 4083)]
UPSTREAM_BANDS = [Band(870, 1205), Band(1972, 2782)]
PILOT_TONES = [1446]
SNR_GROUP_SIZE = 8
SEED = 17

# attenuation in dB at the start and end of the spectrum
_LOSS_START = 8.0
_LOSS_SLOPE = 24.0


class DemoDriver(Driver):
    """Synthetic line with slight random variation per poll.

    Counters accumulate and the SNR curve follows a simple loop loss model
    so that the history views have something meaningful to show.
    """

    def __init__(self, config: DriverConfig):
        super().__init__(config)
        self._start = time.time()
        self._polls = 0
        self._rng = random.Random(SEED)
        self._counters = {
            "fec": [0, 0], "crc": [0, 0], "es": [0, 0], "ses": [0, 0],
        }
        log.info("Demo driver active, no device is contacted")

    def _snr(self, tone):
        mode = self._mode()
        loss = _LOSS_START + _LOSS_SLOPE * math.sqrt(tone / mode.bin_count)
        return max(0.0, 55.0 - loss + self._rng.uniform(-1.5, 1.5))

    @staticmethod
    def _mode():
        return Mode(ModeType.VDSL2, ModeSubtype.PROFILE_17A)

    def _generate_bins(self) -> Bins:
        mode = self._mode()
        count = mode.bin_count
        bins = Bins(mode=mode, pilot_tones=list(PILOT_TONES))
        bins.bands.downstream = list(DOWNSTREAM_BANDS)
        bins.bands.upstream = list(UPSTREAM_BANDS)

        down = [0] * count
        up = [0] * count
        snr_down = [0.0] * (count // SNR_GROUP_SIZE)
        snr_up = [0.0] * (count // SNR_GROUP_SIZE)

        for bands, bits, snr in ((DOWNSTREAM_BANDS, down, snr_down), (UPSTREAM_BANDS, up, snr_up)):
            for band in bands:
                for tone in range(band.start, band.end + 1):
                    value = self._snr(tone)
                    bits[tone] = max(0, min(15, int((value - 9.8) / 3)))
                    if tone % SNR_GROUP_SIZE == 0:
                        snr[tone // SNR_GROUP_SIZE] = round(value, 1)

        bins.bits.downstream.data = down
        bins.bits.upstream.data = up
        bins.snr = BinsFloatDownUp(
            BinsFloat(SNR_GROUP_SIZE, snr_down),
            BinsFloat(SNR_GROUP_SIZE, snr_up),
        )
        return bins

    def _advance_counters(self):
        c = self._counters
        c["fec"][0] += self._rng.randint(0, 400)
        c["fec"][1] += self._rng.randint(0, 20)
        if self._rng.random() < 0.1:
            c["crc"][0] += self._rng.randint(1, 4)
            c["es"][0] += 1
        if self._rng.random() < 0.02:
            c["crc"][1] += 1
            c["es"][1] += 1
        if self._rng.random() < 0.005:
            c["ses"][0] += 1

    def _generate_status(self) -> Status:
        c = self._counters
        status = Status(
            state=State.SHOWTIME,
            mode=self._mode(),
            uptime=Duration(True, 3600 + time.time() - self._start),
            far_end_inventory=Inventory("Broadcom", "194.140"),
            near_end_inventory=Inventory("Demo", "1.0"),
        )

        status.downstream_actual_rate = IntValue(True, 116798)
        status.upstream_actual_rate = IntValue(True, 46719)
        status.downstream_attainable_rate = IntValue(True, 128000 + self._rng.randint(-1500, 1500))
        status.upstream_attainable_rate = IntValue(True, 50000 + self._rng.randint(-500, 500))

        status.downstream_bitswap.enabled = BoolValue(True, True)
        status.upstream_bitswap.enabled = BoolValue(True, True)
        status.downstream_seamless_rate_adaptation.enabled = BoolValue(True, False)
        status.upstream_seamless_rate_adaptation.enabled = BoolValue(True, False)

        status.downstream_interleaving_delay = FloatValue(True, 0.0)
        status.upstream_interleaving_delay = FloatValue(True, 0.0)
        status.downstream_retransmission_enabled = BoolValue(True, True)
        status.upstream_retransmission_enabled = BoolValue(True, False)
        status.downstream_vectoring_state = VectoringValue(True, VectoringState.FULL)
        status.upstream_vectoring_state = VectoringValue(True, VectoringState.FULL)

        status.downstream_attenuation = FloatValue(True, 14.2)
        status.upstream_attenuation = FloatValue(True, 8.9)
        status.downstream_snr_margin = FloatValue(True, round(12.5 + self._rng.uniform(-0.4, 0.4), 1))
        status.upstream_snr_margin = FloatValue(True, round(9.8 + self._rng.uniform(-0.4, 0.4), 1))
        status.downstream_power = FloatValue(True, 14.3)
        status.upstream_power = FloatValue(True, 5.1)

        for name, (down, up) in c.items():
            setattr(status, f"downstream_{name}_count", IntValue(True, down))
            setattr(status, f"upstream_{name}_count", IntValue(True, up))

        normalize_status(status)
        return status

    def update_data(self):
        self._polls += 1
        self._advance_counters()
        self._status = self._generate_status()
        self._bins = self._generate_bins()
        self._raw_data = json.dumps(
            {"poll": self._polls, "status": self._status.to_dict()}, indent=2
        ).encode("utf-8")

    def close(self):
        pass


DESC = DriverDesc(
    title="Demo",
    requires_user=Tristate.NO,
    supported_auth_types=AuthType.NONE,
)

registry.register("demo", DemoDriver, DESC)
