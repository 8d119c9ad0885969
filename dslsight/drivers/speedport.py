"""Telekom Speedport driver using the engineer JSON pages."""

import hashlib
import json
import logging
import re

import requests

from . import registry
from .base import (
    AuthType,
    AuthenticationError,
    ConnectionLostError,
    Driver,
    DriverConfig,
    DriverDesc,
    DriverError,
    OptionDesc,
    OptionType,
    Tristate,
)
from ..helpers import generate_bands
from ..models import (
    Bins,
    FloatValue,
    IntValue,
    Mode,
    ModeSubtype,
    ModeType,
    Status,
    parse_mode,
    parse_state_tr06x,
)

log = logging.getLogger("dslsight.driver.speedport")

HTTP_TIMEOUT = 10
BITS_ENTRIES = 512

_CHALLENGE_RE = re.compile(r'challenge\s?=\s?"([0-9A-Za-z]+)"')


def hash_password(challenge: str, password: str) -> str:
    return hashlib.sha256(f"{challenge}:{password}".encode()).hexdigest()


def parse_response(text) -> dict:
    """Index a Speedport JSON response ([{vartype, varid, varvalue}, ...]) by varid."""
    try:
        items = json.loads(text)
    except ValueError as e:
        raise DriverError(f"invalid response: {e}") from e
    if not isinstance(items, list):
        raise DriverError("invalid response: expected a list")
    return {
        item.get("varid", ""): str(item.get("varvalue", ""))
        for item in items
        if isinstance(item, dict)
    }


class SpeedportSession:
    def __init__(self, host, password_callback, tls_skip_verify=False):
        if not host.startswith(("http://", "https://")):
            host = "http://" + host
        host = host.rstrip("/")
        if host.count("/") != 2:
            raise ValueError("invalid host")
        self.host = host

        self._http = requests.Session()
        self._http.verify = not tls_skip_verify
        try:
            self._authenticate(password_callback)
        except Exception:
            self._http.close()
            raise

    def _authenticate(self, password_callback):
        index = self.get("/html/login/index.html")
        match = _CHALLENGE_RE.search(index)
        if not match:
            raise DriverError("no challenge found")
        self.challenge = match.group(1)

        try:
            password = password_callback() if password_callback else ""
        except Exception as e:
            raise AuthenticationError(str(e)) from e

        self._login(password)

    def _login(self, password):
        values = parse_response(self.post("/data/Login.json", {
            "csrf_token": "nulltoken",
            "password": hash_password(self.challenge, password),
            "challengev": self.challenge,
        }))

        login = values.get("login")
        if login == "failed":
            if "login_locked" in values:
                try:
                    wait_time = int(values["login_locked"])
                except ValueError:
                    wait_time = 0
                raise AuthenticationError(
                    f"authentication failed, login locked for {wait_time} seconds",
                    wait_time=wait_time)
            raise AuthenticationError("authentication failed")
        if login != "success":
            raise DriverError("unexpected response to login request")
        log.info("Login OK")

    def _check(self, r, path):
        if r.status_code != 200:
            msg = f"request for {path} failed with status {r.status_code}"
            if r.status_code == 302:
                raise ConnectionLostError(msg)
            raise DriverError(msg)
        return r.text

    def _request(self, method, path, **kwargs):
        try:
            r = self._http.request(method, self.host + path, timeout=HTTP_TIMEOUT,
                                   allow_redirects=False, **kwargs)
        except requests.ConnectionError as e:
            raise ConnectionLostError(f"request for {path} failed: {e}") from e
        except requests.RequestException as e:
            raise DriverError(f"request for {path} failed: {e}") from e
        return self._check(r, path)

    def get(self, path):
        return self._request("GET", path)

    def post(self, path, data):
        return self._request("POST", path, data=data)

    def load_data(self, path):
        text = self.get(path)
        return text, parse_response(text)

    def close(self):
        try:
            self._http.post(self.host + "/data/Login.json", data={"logout": "byby"},
                            timeout=HTTP_TIMEOUT, allow_redirects=False)
        except requests.RequestException as e:
            log.debug("Logout failed: %s", e)
        self._http.close()


# ── Interpretation ──


def _int(values, key) -> IntValue:
    try:
        return IntValue(True, int(values[key]))
    except (KeyError, ValueError):
        return IntValue()


def _float(values, key, factor) -> FloatValue:
    try:
        return FloatValue(True, float(values[key]) * factor)
    except (KeyError, ValueError):
        return FloatValue()


def interpret_mode(values) -> Mode:
    if "DslOperMode" not in values:
        return Mode()
    if values["DslOperMode"] == "VDSL":
        return Mode(ModeType.VDSL2)
    return parse_mode(values["DslOperMode"])


def interpret_status(values_version, values_dsl) -> Status:
    status = Status()
    if "State" in values_dsl:
        status.state = parse_state_tr06x(values_dsl["State"])
    status.mode = interpret_mode(values_dsl)

    status.near_end_inventory.vendor = "Speedport"
    status.near_end_inventory.version = values_version.get("Xdsl", "")
    if status.near_end_inventory.version.startswith("B2pv"):
        status.near_end_inventory.vendor = "Broadcom"

    status.downstream_actual_rate = _int(values_dsl, "ActualDataDown")
    status.upstream_actual_rate = _int(values_dsl, "ActualDataUp")
    status.downstream_attainable_rate = _int(values_dsl, "AttainDataDown")
    status.upstream_attainable_rate = _int(values_dsl, "AttainDataUp")

    status.downstream_interleaving_delay = _float(values_dsl, "InterDelayDown", 1)
    status.upstream_interleaving_delay = _float(values_dsl, "InterDelayUp", 1)
    status.downstream_attenuation = _float(values_dsl, "LineAttenDown", 0.1)
    status.upstream_attenuation = _float(values_dsl, "LineAttenUp", 0.1)
    status.downstream_snr_margin = _float(values_dsl, "SnrMarginDown", 0.1)
    status.upstream_snr_margin = _float(values_dsl, "SnrMarginUp", 0.1)
    status.downstream_power = _float(values_dsl, "SignalLevDown", 0.1)
    status.upstream_power = _float(values_dsl, "SignalLevUp", 0.1)

    status.downstream_fec_count = _int(values_dsl, "FecErrCDown")
    status.upstream_fec_count = _int(values_dsl, "FecErrCUp")
    status.downstream_crc_count = _int(values_dsl, "CrcErrCDown")
    status.upstream_crc_count = _int(values_dsl, "CrcErrCUp")
    return status


def parse_bits_list(text):
    """Decode "||"-separated rows of "offset|b0|...|b7" hex nibbles.

    Returns (values, index of the last nonzero value), or ([], 0) for
    malformed input.
    """
    out = []
    last_nonzero = 0
    for line in (text or "").split("||"):
        if not line:
            continue
        items = line.split("|")
        if len(items) != 9:
            return [], 0
        for item in items[1:]:
            try:
                val = int(item, 16)
            except ValueError:
                val = 0
            if not 0 <= val <= 15:
                val = 0
            out.append(val)
            if val > 0:
                last_nonzero = len(out) - 1
    return out, last_nonzero


def _scale(values, factor):
    return [val for val in values for _ in range(factor)]


def interpret_bins(status, values_dsl) -> Bins:
    bins = Bins(mode=status.mode)

    bits_down, last_down = parse_bits_list(values_dsl.get("BinallocaDown"))
    bits_up, last_up = parse_bits_list(values_dsl.get("BinallocaUp"))

    if len(bits_down) == BITS_ENTRIES and len(bits_up) == BITS_ENTRIES:
        if bins.mode.type == ModeType.VDSL2:
            # the profile is not reported, but 35b moves the downstream
            # far beyond the last 17a upstream band
            if last_up < 180 and last_down > 170:
                bins.mode = Mode(ModeType.VDSL2, ModeSubtype.PROFILE_35B)
            else:
                bins.mode = Mode(ModeType.VDSL2, ModeSubtype.PROFILE_17A)
            status.mode = bins.mode

        count = bins.mode.bin_count
        if count >= BITS_ENTRIES:
            factor = count // BITS_ENTRIES
            bins.bits.downstream.data = _scale(bits_down, factor)
            bins.bits.upstream.data = _scale(bits_up, factor)
        else:
            # ADSL and ADSL2 only use the lower part of the table
            bins.bits.downstream.data = bits_down[:count]
            bins.bits.upstream.data = bits_up[:count]

    generate_bands(bins)
    return bins


class SpeedportDriver(Driver):
    def __init__(self, config: DriverConfig):
        super().__init__(config)
        self._session = SpeedportSession(
            config.host, config.auth_password,
            tls_skip_verify=config.option_enabled("TLSSkipVerify"),
        )

    def update_data(self):
        raw_version, values_version = self._session.load_data("/engineer/data/Version.json")
        raw_dsl, values_dsl = self._session.load_data("/engineer/data/DSL.json")

        self._raw_data = (
            f"/engineer/data/Version.json\n{raw_version}\n"
            f"/engineer/data/DSL.json\n{raw_dsl}\n"
        ).encode("utf-8")

        status = interpret_status(values_version, values_dsl)
        self._bins = interpret_bins(status, values_dsl)
        self._status = status

    def close(self):
        self._session.close()


DESC = DriverDesc(
    title="Speedport",
    requires_user=Tristate.NO,
    supported_auth_types=AuthType.PASSWORD,
    options={
        "TLSSkipVerify": OptionDesc(
            "verification of TLS certificates will be skipped if set to 1", OptionType.BOOL),
    },
)

registry.register("speedport", SpeedportDriver, DESC)
