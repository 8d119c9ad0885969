"""Normalized DSL line data shared by drivers, history and web layer."""

import enum
import re
from dataclasses import dataclass, field, fields


# ── Optional values ──


@dataclass
class IntValue:
    valid: bool = False
    value: int = 0

    def __str__(self):
        return str(self.value) if self.valid else "-"

    def to_dict(self):
        return self.value if self.valid else None


@dataclass
class FloatValue:
    valid: bool = False
    value: float = 0.0

    def __str__(self):
        return f"{self.value:.1f}" if self.valid else "-"

    def to_dict(self):
        return self.value if self.valid else None


@dataclass
class BoolValue:
    valid: bool = False
    value: bool = False

    def __str__(self):
        if not self.valid:
            return "-"
        return "on" if self.value else "off"

    def to_dict(self):
        return self.value if self.valid else None


class VectoringState(enum.Enum):
    OFF = "off"
    FRIENDLY = "friendly"
    FULL = "full"

    def __str__(self):
        return self.value


@dataclass
class VectoringValue:
    valid: bool = False
    state: VectoringState = VectoringState.OFF

    def __str__(self):
        return str(self.state) if self.valid else "-"

    def to_dict(self):
        return self.state.value if self.valid else None


@dataclass
class OLRValue:
    """Online reconfiguration feature (bitswap, SRA) and how often it ran."""

    enabled: BoolValue = field(default_factory=BoolValue)
    executed: IntValue = field(default_factory=IntValue)

    def __str__(self):
        if self.enabled.valid and self.executed.valid:
            return f"{self.enabled} ({self.executed.value})"
        if self.enabled.valid:
            return str(self.enabled)
        if self.executed.valid:
            return f"({self.executed.value})"
        return "-"

    def to_dict(self):
        return {"enabled": self.enabled.to_dict(), "executed": self.executed.to_dict()}


@dataclass
class Duration:
    valid: bool = False
    seconds: float = 0.0

    def __str__(self):
        if not self.valid or self.seconds <= 0:
            return "-"

        total_minutes = int(self.seconds // 60)
        minutes = total_minutes % 60
        hours = (total_minutes // 60) % 24
        days = total_minutes // 1440

        parts = []
        if days == 1:
            parts.append("1 day")
        elif days > 1:
            parts.append(f"{days} days")

        if hours == 1:
            parts.append("1 hour")
        elif days > 0 or hours > 1:
            parts.append(f"{hours} hours")

        if minutes == 1:
            parts.append("1 minute")
        else:
            parts.append(f"{minutes} minutes")

        return ", ".join(parts)

    def to_dict(self):
        return self.seconds if self.valid else None


def format_milliseconds(value: FloatValue) -> str:
    if not value.valid:
        return "-"
    if abs(value.value - round(value.value)) <= 0.005:
        return f"{value.value:.0f}"
    return f"{value.value:.2f}"


@dataclass
class Inventory:
    vendor: str = ""
    version: str = ""

    def __str__(self):
        out = self.vendor or "Unknown"
        if self.version:
            out += " " + self.version
        return out

    def to_dict(self):
        return {"vendor": self.vendor, "version": self.version}


# ── Line mode ──


class ModeType(enum.Enum):
    UNKNOWN = "Unknown"
    ADSL = "ADSL"
    ADSL2 = "ADSL2"
    ADSL2_PLUS = "ADSL2+"
    VDSL2 = "VDSL2"

    def __str__(self):
        return self.value

    @property
    def is_adsl(self):
        return self in (ModeType.ADSL, ModeType.ADSL2, ModeType.ADSL2_PLUS)


class ModeSubtype(enum.Enum):
    UNKNOWN = "Unknown"
    ANNEX_A = "Annex A"
    ANNEX_B = "Annex B"
    ANNEX_I = "Annex I"
    ANNEX_J = "Annex J"
    ANNEX_L = "Annex L"
    ANNEX_M = "Annex M"
    PROFILE_8A = "Profile 8a"
    PROFILE_8B = "Profile 8b"
    PROFILE_8C = "Profile 8c"
    PROFILE_8D = "Profile 8d"
    PROFILE_12A = "Profile 12a"
    PROFILE_12B = "Profile 12b"
    PROFILE_17A = "Profile 17a"
    PROFILE_30A = "Profile 30a"
    PROFILE_35B = "Profile 35b"

    def __str__(self):
        return self.value


_VDSL2_BIN_COUNT = {
    ModeSubtype.PROFILE_8A: 2048,
    ModeSubtype.PROFILE_8B: 2048,
    ModeSubtype.PROFILE_8C: 1972,
    ModeSubtype.PROFILE_8D: 2048,
    ModeSubtype.PROFILE_12A: 2783,
    ModeSubtype.PROFILE_12B: 2783,
    ModeSubtype.PROFILE_17A: 4096,
    ModeSubtype.PROFILE_30A: 3479,
    ModeSubtype.PROFILE_35B: 8192,
}


@dataclass(frozen=True)
class Mode:
    type: ModeType = ModeType.UNKNOWN
    subtype: ModeSubtype = ModeSubtype.UNKNOWN

    def __str__(self):
        if self.subtype != ModeSubtype.UNKNOWN:
            return f"{self.type} {self.subtype}"
        return str(self.type)

    @property
    def bin_count(self) -> int:
        if self.type in (ModeType.ADSL, ModeType.ADSL2):
            return 256
        if self.type == ModeType.ADSL2_PLUS:
            return 512
        if self.type == ModeType.VDSL2:
            return _VDSL2_BIN_COUNT.get(self.subtype, 8192)
        return 8192

    @property
    def carrier_spacing(self) -> float:
        """Subcarrier spacing in kHz."""
        if self.type == ModeType.VDSL2 and self.subtype == ModeSubtype.PROFILE_30A:
            return 8.625
        return 4.3125


_ANNEX_TOKENS = [
    ("annexa", ModeSubtype.ANNEX_A),
    ("annexb", ModeSubtype.ANNEX_B),
    ("annexi", ModeSubtype.ANNEX_I),
    ("annexj", ModeSubtype.ANNEX_J),
    ("annexl", ModeSubtype.ANNEX_L),
    ("annexm", ModeSubtype.ANNEX_M),
]

_PROFILE_TOKENS = [
    ("8a", ModeSubtype.PROFILE_8A),
    ("8b", ModeSubtype.PROFILE_8B),
    ("8c", ModeSubtype.PROFILE_8C),
    ("8d", ModeSubtype.PROFILE_8D),
    ("12a", ModeSubtype.PROFILE_12A),
    ("12b", ModeSubtype.PROFILE_12B),
    ("17a", ModeSubtype.PROFILE_17A),
    ("30a", ModeSubtype.PROFILE_30A),
    ("35b", ModeSubtype.PROFILE_35B),
]


def parse_mode(text: str) -> Mode:
    """Parse a free-text mode description such as "VDSL2 17a" or "G.992.5".

    Profile tokens win over annex letters: an annex only becomes the subtype
    when the string names an ADSL-family standard.
    """
    s = re.sub(r"[\s_]", "", text or "").lower()

    if "adsl" in s or "g.dmt" in s or "g.992" in s:
        if "adsl2+" in s or "adsl2p" in s or "g.992.5" in s:
            mode_type = ModeType.ADSL2_PLUS
        elif "adsl2" in s or "g.992.3" in s:
            mode_type = ModeType.ADSL2
        else:
            mode_type = ModeType.ADSL
        for token, subtype in _ANNEX_TOKENS:
            if token in s:
                return Mode(mode_type, subtype)
        return Mode(mode_type)

    for token, subtype in _PROFILE_TOKENS:
        if token in s:
            return Mode(ModeType.VDSL2, subtype)

    if "vdsl2" in s or "g.993.2" in s or "g.993.5" in s:
        return Mode(ModeType.VDSL2)

    return Mode()


# ── Line state ──


class State(enum.Enum):
    UNKNOWN = "Unknown"
    IDLE = "Idle"
    SILENT = "Silent"
    HANDSHAKE = "Handshake"
    TRAINING = "Training"
    CHANNEL_DISCOVERY = "Channel Discovery"
    CHANNEL_ANALYSIS_EXCHANGE = "Channel Analysis & Exchange"
    INIT = "Init"
    SHOWTIME = "Showtime"
    ERROR = "Error"

    def __str__(self):
        return self.value


def parse_state(text: str) -> State:
    """Map a vendor state description to a line state."""
    s = (text or "").strip().lower()

    if "showtime" in s:
        return State.SHOWTIME
    if "idle" in s or "ready" in s or s in ("down", "off"):
        return State.IDLE
    if "silent" in s:
        return State.SILENT
    if "handshake" in s or "g.994" in s:
        return State.HANDSHAKE
    if "discovery" in s:
        return State.CHANNEL_DISCOVERY
    if "analysis" in s or "exchange" in s:
        return State.CHANNEL_ANALYSIS_EXCHANGE
    if "train" in s or "g.992" in s or "g.993" in s or "full init" in s:
        return State.TRAINING
    if "init" in s:
        return State.INIT
    if "error" in s or "fail" in s:
        return State.ERROR
    return State.UNKNOWN


_TR06X_STATES = {
    "disabled": State.IDLE,
    "nosignal": State.IDLE,
    "initializing": State.IDLE,
    "establishinglink": State.INIT,
    "up": State.SHOWTIME,
    "error": State.ERROR,
}


def parse_state_tr06x(text: str) -> State:
    """Map a TR-069/TR-064 DSL interface status string to a line state."""
    return _TR06X_STATES.get((text or "").strip().lower(), State.UNKNOWN)


# ── Per-subcarrier data ──


@dataclass
class Band:
    start: int
    end: int

    def to_dict(self):
        return {"start": self.start, "end": self.end}


@dataclass
class BandsDownUp:
    downstream: list = field(default_factory=list)
    upstream: list = field(default_factory=list)

    def to_dict(self):
        return {
            "downstream": [b.to_dict() for b in self.downstream],
            "upstream": [b.to_dict() for b in self.upstream],
        }


@dataclass
class BinsBits:
    data: list = field(default_factory=list)


@dataclass
class BinsBitsDownUp:
    downstream: BinsBits = field(default_factory=BinsBits)
    upstream: BinsBits = field(default_factory=BinsBits)

    def to_dict(self):
        return {"downstream": list(self.downstream.data), "upstream": list(self.upstream.data)}


@dataclass
class BinsFloat:
    group_size: int = 0
    data: list = field(default_factory=list)

    def to_dict(self):
        return {"group_size": self.group_size, "data": list(self.data)}


@dataclass
class BinsFloatDownUp:
    downstream: BinsFloat = field(default_factory=BinsFloat)
    upstream: BinsFloat = field(default_factory=BinsFloat)

    def to_dict(self):
        return {"downstream": self.downstream.to_dict(), "upstream": self.upstream.to_dict()}


@dataclass
class Bins:
    mode: Mode = field(default_factory=Mode)
    bands: BandsDownUp = field(default_factory=BandsDownUp)
    pilot_tones: list = field(default_factory=list)
    bits: BinsBitsDownUp = field(default_factory=BinsBitsDownUp)
    snr: BinsFloatDownUp = field(default_factory=BinsFloatDownUp)
    qln: BinsFloatDownUp = field(default_factory=BinsFloatDownUp)
    hlog: BinsFloatDownUp = field(default_factory=BinsFloatDownUp)

    def to_dict(self):
        return {
            "mode": str(self.mode),
            "bin_count": self.mode.bin_count,
            "carrier_spacing": self.mode.carrier_spacing,
            "bands": self.bands.to_dict(),
            "pilot_tones": list(self.pilot_tones),
            "bits": self.bits.to_dict(),
            "snr": self.snr.to_dict(),
            "qln": self.qln.to_dict(),
            "hlog": self.hlog.to_dict(),
        }


# ── Status ──


@dataclass
class Status:
    state: State = State.UNKNOWN
    mode: Mode = field(default_factory=Mode)
    uptime: Duration = field(default_factory=Duration)

    downstream_actual_rate: IntValue = field(default_factory=IntValue)
    upstream_actual_rate: IntValue = field(default_factory=IntValue)
    downstream_attainable_rate: IntValue = field(default_factory=IntValue)
    upstream_attainable_rate: IntValue = field(default_factory=IntValue)
    downstream_min_error_free_throughput: IntValue = field(default_factory=IntValue)
    upstream_min_error_free_throughput: IntValue = field(default_factory=IntValue)

    downstream_bitswap: OLRValue = field(default_factory=OLRValue)
    upstream_bitswap: OLRValue = field(default_factory=OLRValue)
    downstream_seamless_rate_adaptation: OLRValue = field(default_factory=OLRValue)
    upstream_seamless_rate_adaptation: OLRValue = field(default_factory=OLRValue)

    downstream_interleaving_delay: FloatValue = field(default_factory=FloatValue)
    upstream_interleaving_delay: FloatValue = field(default_factory=FloatValue)
    downstream_impulse_noise_protection: FloatValue = field(default_factory=FloatValue)
    upstream_impulse_noise_protection: FloatValue = field(default_factory=FloatValue)
    downstream_retransmission_enabled: BoolValue = field(default_factory=BoolValue)
    upstream_retransmission_enabled: BoolValue = field(default_factory=BoolValue)

    downstream_vectoring_state: VectoringValue = field(default_factory=VectoringValue)
    upstream_vectoring_state: VectoringValue = field(default_factory=VectoringValue)

    downstream_attenuation: FloatValue = field(default_factory=FloatValue)
    upstream_attenuation: FloatValue = field(default_factory=FloatValue)
    downstream_snr_margin: FloatValue = field(default_factory=FloatValue)
    upstream_snr_margin: FloatValue = field(default_factory=FloatValue)
    downstream_power: FloatValue = field(default_factory=FloatValue)
    upstream_power: FloatValue = field(default_factory=FloatValue)

    downstream_rtx_tx_count: IntValue = field(default_factory=IntValue)
    upstream_rtx_tx_count: IntValue = field(default_factory=IntValue)
    downstream_rtx_c_count: IntValue = field(default_factory=IntValue)
    upstream_rtx_c_count: IntValue = field(default_factory=IntValue)
    downstream_rtx_uc_count: IntValue = field(default_factory=IntValue)
    upstream_rtx_uc_count: IntValue = field(default_factory=IntValue)
    downstream_fec_count: IntValue = field(default_factory=IntValue)
    upstream_fec_count: IntValue = field(default_factory=IntValue)
    downstream_crc_count: IntValue = field(default_factory=IntValue)
    upstream_crc_count: IntValue = field(default_factory=IntValue)
    downstream_es_count: IntValue = field(default_factory=IntValue)
    upstream_es_count: IntValue = field(default_factory=IntValue)
    downstream_ses_count: IntValue = field(default_factory=IntValue)
    upstream_ses_count: IntValue = field(default_factory=IntValue)

    far_end_inventory: Inventory = field(default_factory=Inventory)
    near_end_inventory: Inventory = field(default_factory=Inventory)

    def summary(self) -> str:
        """Render the fixed-width text table used by the CLI and archives."""
        lines = [
            f"           State:    {self.state}",
            f"            Mode:    {self.mode}",
            f"          Uptime:    {self.uptime}",
            "",
            f"          Remote:    {self.far_end_inventory}",
            f"           Modem:    {self.near_end_inventory}",
        ]
        for group in _SUMMARY_ROWS:
            lines.append("")
            for label, name, unit in group:
                down = getattr(self, "downstream_" + name)
                up = getattr(self, "upstream_" + name)
                if unit == "ms":
                    down_str, up_str = format_milliseconds(down), format_milliseconds(up)
                else:
                    down_str, up_str = str(down), str(up)
                lines.append(f"{label:>16}:    {down_str:>8} {unit:<7}  {up_str:>8} {unit:<7}".rstrip())
        return "\n".join(lines) + "\n"

    def to_dict(self):
        out = {}
        for f in fields(self):
            val = getattr(self, f.name)
            if isinstance(val, (State, Mode)):
                out[f.name] = str(val)
            else:
                out[f.name] = val.to_dict()
        return out


_SUMMARY_ROWS = [
    [
        ("Actual rate", "actual_rate", "kbit/s"),
        ("Attainable rate", "attainable_rate", "kbit/s"),
        ("MINEFTR", "min_error_free_throughput", "kbit/s"),
    ],
    [
        ("Bitswap", "bitswap", ""),
        ("Rate adaptation", "seamless_rate_adaptation", ""),
    ],
    [
        ("Interleaving", "interleaving_delay", "ms"),
        ("INP", "impulse_noise_protection", "symbols"),
        ("Retransmission", "retransmission_enabled", ""),
    ],
    [
        ("Vectoring", "vectoring_state", ""),
    ],
    [
        ("Attenuation", "attenuation", "dB"),
        ("SNR margin", "snr_margin", "dB"),
        ("Transmit power", "power", "dBm"),
    ],
    [
        ("RTX TX Count", "rtx_tx_count", ""),
        ("RTX C Count", "rtx_c_count", ""),
        ("RTX UC Count", "rtx_uc_count", ""),
    ],
    [
        ("FEC Count", "fec_count", ""),
        ("CRC Count", "crc_count", ""),
    ],
    [
        ("ES Count", "es_count", ""),
        ("SES Count", "ses_count", ""),
    ],
]


# Counter fields tracked by the errors history, in snapshot order.
ERROR_COUNTERS = (
    "downstream_rtx_tx_count", "upstream_rtx_tx_count",
    "downstream_rtx_c_count", "upstream_rtx_c_count",
    "downstream_rtx_uc_count", "upstream_rtx_uc_count",
    "downstream_fec_count", "upstream_fec_count",
    "downstream_crc_count", "upstream_crc_count",
    "downstream_es_count", "upstream_es_count",
    "downstream_ses_count", "upstream_ses_count",
)


# ── History views ──


@dataclass
class BinsFloatMinMax:
    group_size: int = 0
    min: list = field(default_factory=list)
    max: list = field(default_factory=list)

    def to_dict(self):
        return {"group_size": self.group_size, "min": list(self.min), "max": list(self.max)}


@dataclass
class BinsFloatMinMaxDownUp:
    downstream: BinsFloatMinMax = field(default_factory=BinsFloatMinMax)
    upstream: BinsFloatMinMax = field(default_factory=BinsFloatMinMax)


@dataclass
class BinsHistory:
    snr: BinsFloatMinMaxDownUp = field(default_factory=BinsFloatMinMaxDownUp)

    def to_dict(self):
        return {
            "snr": {
                "downstream": self.snr.downstream.to_dict(),
                "upstream": self.snr.upstream.to_dict(),
            }
        }


@dataclass
class ErrorsHistory:
    """Per-period counter increments, oldest period first."""

    end_time: float = 0.0
    period_length: float = 0.0
    period_count: int = 0
    showtime: list = field(default_factory=list)
    counters: dict = field(default_factory=dict)

    def __str__(self):
        lines = [
            f"End time: {self.end_time}",
            f"Period length: {Duration(True, self.period_length)}",
            f"Period count: {self.period_count}",
            "",
        ]
        for name in ERROR_COUNTERS:
            values = " ".join(str(v) for v in self.counters.get(name, []))
            lines.append(f"{name}: {values}")
        return "\n".join(lines) + "\n"

    def to_dict(self):
        return {
            "end_time": self.end_time,
            "period_length": self.period_length,
            "period_count": self.period_count,
            "showtime": [v.to_dict() for v in self.showtime],
            "counters": {
                name: [v.to_dict() for v in values]
                for name, values in self.counters.items()
            },
        }
