"""Vendor-independent normalization used by the device drivers."""

import re

from .models import Band, FloatValue, ModeSubtype, ModeType

VENDOR_NAMES = {
    "ALCB": "Alcatel",
    "ANDV": "Analog Devices",
    "BDCM": "Broadcom",
    "CENT": "Centillium",
    "CNXT": "Conexant",
    "DRAY": "DrayTek",
    "GSPN": "Globespan",
    "IFTN": "Infineon",
    "IKNS": "Ikanos",
    "RETK": "Realtek",
    "META": "Metanoia",
    "MTIA": "Metanoia",
    "STMI": "STMicro",
    "TCCN": "TrendChip",
    "TCTN": "TrendChip",
    "TMMB": "Thomson",
    "TSTC": "Texas Instruments",
}


def format_vendor(code: str) -> str:
    """Translate a T.35 vendor code into a readable name."""
    if code in VENDOR_NAMES:
        return VENDOR_NAMES[code]
    return code.split("\x00", 1)[0]


def format_version(vendor: str, version: bytes) -> str:
    """Format the two-byte vendor version number."""
    if len(version) != 2 or version == b"\x00\x00":
        return ""
    a, b = version[0], version[1]

    if vendor == "Infineon":
        if a & 0xF0 == 0x90:
            return "%d.%d.%d.%d (%d.%d)" % (
                a >> 4, ((a & 0xF) << 1) + (b >> 7), (b >> 4) & 0x7, b & 0xF, a, b)
        return "%d.%d.%d.%d (%d.%d)" % (a >> 4, a & 0xF, b >> 4, b & 0xF, a, b)

    if vendor == "Broadcom":
        return "%d.%d.%d (%d.%d)" % (a >> 4, ((a & 0xF) << 1) + (b >> 7), b & 0x7F, a, b)

    return f"{a}.{b}"


def parse_hexadecimal(text: str) -> bytes:
    """Decode a hex string with optional 0x prefix; invalid input yields b""."""
    if text.startswith("0x"):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        return b""


def parse_float(text) -> FloatValue:
    """Parse a number the way devices print it; never substitutes zero."""
    try:
        return FloatValue(True, float(str(text).strip().replace(",", ".")))
    except (TypeError, ValueError):
        return FloatValue()


# ── Bands ──

_ANNEX_UPSTREAM_START = {
    ModeSubtype.ANNEX_A: 6,
    ModeSubtype.ANNEX_L: 6,
    ModeSubtype.ANNEX_M: 6,
    ModeSubtype.ANNEX_B: 32,
    ModeSubtype.ANNEX_I: 1,
    ModeSubtype.ANNEX_J: 1,
}

_ANNEX_UPSTREAM_END = {
    ModeSubtype.ANNEX_A: 31,
    ModeSubtype.ANNEX_I: 31,
    ModeSubtype.ANNEX_L: 31,
    ModeSubtype.ANNEX_B: 63,
    ModeSubtype.ANNEX_J: 63,
    ModeSubtype.ANNEX_M: 63,
}


def _bands_from_annex(bins) -> bool:
    subtype = bins.mode.subtype
    if subtype not in _ANNEX_UPSTREAM_START:
        return False

    up = Band(_ANNEX_UPSTREAM_START[subtype], _ANNEX_UPSTREAM_END[subtype])
    if subtype == ModeSubtype.ANNEX_L:
        down_end = 127
    elif bins.mode.type == ModeType.ADSL2_PLUS:
        down_end = 511
    else:
        down_end = 255

    bins.bands.upstream = [up]
    bins.bands.downstream = [Band(up.end + 1, down_end)]
    return True


def _bands_from_bits(bins):
    count = bins.mode.bin_count
    bits_down = bins.bits.downstream.data
    bits_up = bins.bits.upstream.data
    if len(bits_down) != count or len(bits_up) != count:
        return

    run_start = None
    run_end = 0
    run_down = False

    def close_run():
        target = bins.bands.downstream if run_down else bins.bands.upstream
        target.append(Band(run_start, run_end))

    for i in range(count):
        if bits_down[i] > 0:
            is_down = True
        elif bits_up[i] > 0:
            is_down = False
        else:
            continue

        if run_start is not None and is_down != run_down:
            close_run()
            run_start = None
        if run_start is None:
            run_start = i
            run_down = is_down
        run_end = i

    if run_start is not None:
        close_run()


def generate_bands(bins):
    """Fill in bins.bands when the device did not report a band plan."""
    if bins.bands.downstream or bins.bands.upstream:
        return

    if bins.mode.type.is_adsl and _bands_from_annex(bins):
        return
    _bands_from_bits(bins)


class BandDecider:
    """Assigns a subcarrier to a direction using the gaps between bands.

    Boundaries sit halfway between the end of one band and the start of the
    next, so unused tones near a band are attributed to it.
    """

    def __init__(self, bands):
        ordered = sorted(
            [(b, True) for b in bands.downstream] + [(b, False) for b in bands.upstream],
            key=lambda item: item[0].start,
        )
        self._is_downstream = [is_down for _, is_down in ordered]
        self._max_index = [
            (prev.end + cur.start) // 2
            for (prev, _), (cur, _) in zip(ordered, ordered[1:])
        ]

    def is_downstream(self, index: int) -> bool:
        if not self._is_downstream:
            return True
        for i, limit in enumerate(self._max_index):
            if index <= limit:
                return self._is_downstream[i]
        return self._is_downstream[-1]


# ── SNR group size ──


def guess_snr_group_size(max_valid_snr_index: int, max_valid_bits_index: int, bin_count: int) -> int:
    """Guess the silent downsampling factor a device applied to its SNR data."""
    if bin_count <= 512 or max_valid_snr_index <= 0 or max_valid_bits_index <= 0:
        return 1

    max_group_size = bin_count // max_valid_snr_index

    group_size = 1
    while group_size < max_group_size:
        # SNR may extend past the loaded bits, but rarely ends much earlier
        if max_valid_snr_index * group_size >= 0.9 * max_valid_bits_index:
            break
        group_size *= 2
    return group_size


# ── Status fixups ──


def normalize_power(status):
    """Undo swapped transmit power values reported by some VDSL2 chipsets."""
    if status.mode.type != ModeType.VDSL2:
        return
    down, up = status.downstream_power, status.upstream_power
    if down.valid and up.valid and down.value < up.value:
        status.downstream_power, status.upstream_power = up, down


def normalize_olr(value):
    """Treat an OLR feature as enabled when it has been executed."""
    if not value.enabled.valid and value.executed.valid and value.executed.value > 0:
        value.enabled.valid = True
        value.enabled.value = True


def normalize_status(status):
    normalize_power(status)
    for olr in (status.downstream_bitswap, status.upstream_bitswap,
                status.downstream_seamless_rate_adaptation,
                status.upstream_seamless_rate_adaptation):
        normalize_olr(olr)


# ── Host parsing ──

_PORT_RE = re.compile(r"^\d{1,5}$")


def split_host_port(hostport: str):
    """Split "host[:port]" into (host, port); port is 0 when absent.

    IPv6 addresses must be given in brackets.
    """
    if ":" not in hostport:
        return hostport, 0

    if hostport.count(":") > 1:
        if not hostport.startswith("["):
            raise ValueError("invalid host")
        if hostport.endswith("]"):
            return hostport[1:-1], 0

    if hostport.startswith("["):
        end = hostport.find("]")
        if end == -1 or hostport[end + 1:end + 2] != ":":
            raise ValueError("invalid host")
        host, port_str = hostport[1:end], hostport[end + 2:]
    else:
        host, port_str = hostport.rsplit(":", 1)

    if not _PORT_RE.match(port_str) or int(port_str) > 65535:
        raise ValueError(f"invalid port: {port_str}")
    return host, int(port_str)
