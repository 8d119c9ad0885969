"""AVM FRITZ!Box driver: web UI data pages plus TR-064 statistics."""

import hashlib
import json
import logging
import re
import xml.etree.ElementTree as ET

import requests
from bs4 import BeautifulSoup

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
from ..helpers import BandDecider, generate_bands, normalize_status
from ..models import (
    Band,
    Bins,
    BinsFloat,
    BinsFloatDownUp,
    BoolValue,
    Duration,
    FloatValue,
    IntValue,
    State,
    Status,
    VectoringState,
    VectoringValue,
    parse_mode,
)

log = logging.getLogger("dslsight.driver.fritzbox")

HTTP_TIMEOUT = 10
SUPPORT_DATA_TIMEOUT = 60
INVALID_SID = "0000000000000000"

_DEFAULT_USER_RE = re.compile(r"fritz[0-9]{4}")
_NON_LETTERS_RE = re.compile(r"[\W\d_]+")

TR064_SERVICE = "urn:dslforum-org:service:WANDSLInterfaceConfig:1"
TR064_CONTROL_PATH = "/upnp/control/wandslifconfig1"

_SOAP_TEMPLATE = (
    '<?xml version="1.0"?>'
    '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
    's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
    '<s:Body><u:{action} xmlns:u="{service}"></u:{action}></s:Body>'
    '</s:Envelope>'
)


class HTTPStatusError(DriverError):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def challenge_response(challenge: str, password: str) -> str:
    """Compute the login_sid.lua response (PBKDF2 for "2$" challenges, else MD5)."""
    if challenge.startswith("2$"):
        parts = challenge.split("$")
        if len(parts) != 5:
            return ""
        iter1, salt1 = int(parts[1]), bytes.fromhex(parts[2])
        iter2, salt2 = int(parts[3]), bytes.fromhex(parts[4])
        hash1 = hashlib.pbkdf2_hmac("sha256", password.encode(), salt1, iter1)
        hash2 = hashlib.pbkdf2_hmac("sha256", hash1, salt2, iter2)
        return f"{parts[4]}${hash2.hex()}"

    # legacy firmware: characters outside latin-1 are replaced by a dot
    password = "".join(c if ord(c) <= 255 else "." for c in password)
    md5_hash = hashlib.md5(f"{challenge}-{password}".encode("utf-16-le")).hexdigest()
    return f"{challenge}-{md5_hash}"


def _normalize_host(host: str) -> str:
    if not host.startswith(("http://", "https://")):
        host = "http://" + host
    host = host.rstrip("/")
    if host.count("/") != 2:
        raise ValueError("invalid host")
    return host


def _xml_values(text: str) -> dict:
    """Flatten an XML document into {local tag name: text}."""
    root = ET.fromstring(text)
    values = {}
    for elem in root.iter():
        tag = elem.tag.rsplit("}", 1)[-1]
        values[tag] = (elem.text or "").strip()
    return values


# ── Session ──


class FritzBoxSession:
    """HTTP session with a FRITZ!Box, authenticated through login_sid.lua."""

    def __init__(self, host, username, password_callback, tls_skip_verify=False):
        self.host = _normalize_host(host)
        self.username = username
        self.password = ""
        self.sid = ""
        self._http = requests.Session()
        self._http.verify = not tls_skip_verify
        try:
            self._login(password_callback)
        except Exception:
            self._http.close()
            raise

    def _login(self, password_callback):
        enforce_auth = self.host.startswith("https://")

        info = self._session_info(self.get("/login_sid.lua?version=2"))
        if info["sid"] != INVALID_SID and not enforce_auth:
            self.sid = info["sid"]
            return

        if info["block_time"] > 0:
            raise AuthenticationError(
                f"login blocked for {info['block_time']} seconds", wait_time=info["block_time"])

        # firmware >= 7.25 accepts logins without a user name selection
        if not self.username:
            users = info["users"]
            if len(users) == 1:
                self.username = users[0]
            else:
                self.username = next((u for u in users if _DEFAULT_USER_RE.search(u)), "")

        if password_callback is not None:
            try:
                self.password = password_callback()
            except Exception as e:
                raise AuthenticationError(str(e)) from e
        if enforce_auth and not self.password:
            raise AuthenticationError("password authentication is required when TLS is used")

        response = challenge_response(info["challenge"], self.password)
        info = self._session_info(self.post(
            "/login_sid.lua?version=2",
            data={"username": self.username, "response": response},
        ))
        if info["sid"] == INVALID_SID:
            raise AuthenticationError("authentication failed")

        self.sid = info["sid"]
        log.info("Auth OK (SID: %s...)", self.sid[:8])

    @staticmethod
    def _session_info(text):
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise DriverError(f"invalid session info: {e}") from e
        block_time = root.findtext("BlockTime") or "0"
        return {
            "sid": root.findtext("SID") or INVALID_SID,
            "challenge": root.findtext("Challenge") or "",
            "block_time": int(block_time) if block_time.isdigit() else 0,
            "users": [u.text or "" for u in root.findall("Users/User")],
        }

    def _request(self, method, url, path, timeout=HTTP_TIMEOUT, **kwargs):
        try:
            r = self._http.request(method, url, timeout=timeout, allow_redirects=False, **kwargs)
        except requests.ConnectionError as e:
            raise ConnectionLostError(f"request for {path} failed: {e}") from e
        except requests.RequestException as e:
            raise DriverError(f"request for {path} failed: {e}") from e
        return r

    def _checked(self, r, path):
        if r.status_code != 200:
            msg = f"request for {path} failed with status {r.status_code}"
            if r.status_code == 303:
                raise ConnectionLostError(msg)
            raise HTTPStatusError(msg, r.status_code)
        return r.text

    def get(self, path, params=None):
        return self._checked(self._request("GET", self.host + path, path, params=params), path)

    def post(self, path, data=None):
        return self._checked(self._request("POST", self.host + path, path, data=data), path)

    def load_get(self, path, params):
        return self.get(path, params={**params, "sid": self.sid})

    def load_post(self, path, data):
        return self.post(path, data={**data, "sid": self.sid})

    def load_support_data(self):
        """Fetch the DSLManager section of the support data dump."""
        path = "/cgi-bin/firmwarecfg"
        # multipart with this exact field order
        files = {"sid": (None, self.sid), "DiagnosisData": (None, "")}
        r = self._request("POST", self.host + path, path,
                          timeout=SUPPORT_DATA_TIMEOUT, files=files, stream=True)
        try:
            if r.status_code != 200:
                self._checked(r, path)
            lines = []
            found = False
            for line in r.iter_lines(decode_unicode=True):
                if not found and line.startswith("#### BEGIN SECTION DSLManager_port"):
                    found = True
                if found:
                    lines.append(line)
                    if line.startswith("#### END SECTION DSLManager_port"):
                        break
            return "\n".join(lines)
        finally:
            r.close()

    def _host_without_port(self):
        bracket = self.host.rfind("]")
        if bracket != -1:
            return self.host[:bracket + 1]
        colon = self.host.rfind(":")
        if colon > 5:
            return self.host[:colon]
        return self.host

    def load_tr064(self, path, service, action):
        if self.host.startswith("https://"):
            url = self.host + "/tr064" + path
        else:
            url = self._host_without_port() + ":49000" + path

        soap_action = f"{service}#{action}"
        # the digest login fails for an empty user name
        auth = requests.auth.HTTPDigestAuth(self.username or " ", self.password)
        r = self._request(
            "POST", url, soap_action,
            data=_SOAP_TEMPLATE.format(action=action, service=service),
            headers={"Content-Type": "text/xml; charset=utf-8", "SOAPAction": soap_action},
            auth=auth,
        )
        if r.status_code != 200:
            msg = f"request for {soap_action} failed with status {r.status_code}"
            if r.status_code == 401:
                raise ConnectionLostError(msg)
            raise HTTPStatusError(msg, r.status_code)
        return r.text

    def close(self):
        if not self.sid:
            return
        try:
            self._http.post(
                self.host + "/login_sid.lua?version=2",
                data={"logout": "", "sid": self.sid},
                timeout=HTTP_TIMEOUT, allow_redirects=False,
            )
        except requests.RequestException as e:
            log.debug("Logout failed: %s", e)
        self.sid = ""
        self._http.close()


# ── Overview ──


def interpret_state(state: str) -> State:
    if state.startswith("ready"):
        return State.SHOWTIME
    if state == "training":
        return State.INIT
    if state == "off":
        return State.IDLE
    if state == "error":
        return State.ERROR
    return State.UNKNOWN


_TIME_FACTORS = (("minute", 60), ("stunde", 3600), ("tag", 86400))


def interpret_time(text: str) -> Duration:
    """Parse German uptime text like "3 Tage 4 Stunden 12 Minuten"."""
    out = Duration()
    words = text.split()
    for i in range(1, len(words)):
        part = words[i].lower()
        factor = next((f for prefix, f in _TIME_FACTORS if part.startswith(prefix)), None)
        if factor is None:
            continue
        try:
            val = int(words[i - 1])
        except ValueError:
            return Duration()
        out.valid = True
        out.seconds += val * factor
    return out


def _apply_line(status, line):
    status.state = interpret_state(str(line.get("state", "")))
    status.mode = parse_mode(str(line.get("mode", "")))
    if status.state == State.SHOWTIME:
        status.uptime = interpret_time(str(line.get("time", "")))


def parse_overview(status, text):
    try:
        data = json.loads(text)["data"]["connectionData"]
    except (ValueError, KeyError, TypeError):
        return

    lines = data.get("line") or []
    if lines:
        _apply_line(status, lines[0])

    status.near_end_inventory.vendor = "AVM"
    status.near_end_inventory.version = data.get("version", "")
    status.far_end_inventory.vendor = data.get("externApText", "")
    status.far_end_inventory.version = data.get("externApValue", "").removeprefix("Version ")


def parse_overview_legacy(status, text):
    """Older firmware serves the line info through dsl_overview.lua get_data."""
    try:
        data = json.loads(text)
    except ValueError:
        return
    lines = data.get("line") or []
    if lines:
        _apply_line(status, lines[0])
        if status.state == State.UNKNOWN:
            train_state = str(lines[0].get("train_state", "")).lower()
            if train_state.startswith("dsl aktiv"):
                status.state = State.SHOWTIME
                status.uptime = interpret_time(str(lines[0].get("time", "")))
            elif train_state.startswith("training"):
                status.state = State.INIT
            elif train_state.startswith("nicht verbunden"):
                status.state = State.IDLE
    status.near_end_inventory.vendor = "AVM"


# ── Stats ──


def _stats_key(title):
    return _NON_LETTERS_RE.sub("", title).lower()


def parse_stats_values(text) -> dict:
    """Map normalized row titles of the dslStat page to (downstream, upstream)."""
    try:
        items = json.loads(text)["data"]["negotiatedValues"]
    except (ValueError, KeyError, TypeError):
        return {}

    values = {}
    for item in items:
        val = item.get("val") or []
        # single string values are of no interest
        if not val or not isinstance(val[0], dict):
            continue
        values[_stats_key(item.get("title", ""))] = (
            str(val[0].get("ds", "")), str(val[0].get("us", "")))
    return values


def parse_stats_values_legacy(html) -> dict:
    soup = BeautifulSoup(html, "html.parser")
    table = soup.find("table")
    if table is None:
        return {}
    values = {}
    for row in table.find_all("tr"):
        cols = row.find_all("td")
        if len(cols) != 4:
            continue
        key = _stats_key(cols[0].get_text())
        if key:
            values[key] = (cols[2].get_text(strip=True), cols[3].get_text(strip=True))
    return values


def parse_stats_errors_legacy(status, html):
    soup = BeautifulSoup(html, "html.parser")
    tables = soup.find_all("table")
    if not tables:
        return
    rows = tables[-1].find_all("tr")
    if len(rows) < 4:
        return

    def cells(row):
        return [td.get_text(strip=True) for td in row.find_all("td")]

    if len(rows) == 4:
        near, far = cells(rows[2]), cells(rows[3])
        if len(near) == 5:
            status.downstream_es_count = _int(near[1])
            status.downstream_ses_count = _int(near[2])
        if len(far) == 5:
            status.upstream_es_count = _int(far[1])
            status.upstream_ses_count = _int(far[2])
    else:
        es, ses = cells(rows[2]), cells(rows[3])
        if len(es) == 3:
            status.downstream_es_count = _int(es[1])
            status.upstream_es_count = _int(es[2])
        if len(ses) == 3:
            status.downstream_ses_count = _int(ses[1])
            status.upstream_ses_count = _int(ses[2])


def _int(val) -> IntValue:
    try:
        return IntValue(True, int(val))
    except (TypeError, ValueError):
        return IntValue()


def _float(val) -> FloatValue:
    try:
        return FloatValue(True, float(val))
    except (TypeError, ValueError):
        return FloatValue()


def _bool(val) -> BoolValue:
    if val in ("an", "aus"):
        return BoolValue(True, val == "an")
    return BoolValue()


def _delay(val) -> FloatValue:
    if val in ("fast", "< 1"):
        return FloatValue(True, 0.0)
    if val.endswith("ms"):
        return _float(val[:-2].strip())
    return FloatValue()


_VECTORING = {
    "aus": VectoringState.OFF,
    "friendly": VectoringState.FRIENDLY,
    "full": VectoringState.FULL,
}


def _vectoring(val) -> VectoringValue:
    if val in _VECTORING:
        return VectoringValue(True, _VECTORING[val])
    return VectoringValue()


def interpret_stats(status, values):
    def pair(key, conv):
        if key not in values:
            return conv(""), conv("")
        down, up = values[key]
        return conv(down), conv(up)

    status.downstream_actual_rate, status.upstream_actual_rate = pair("aktuelledatenrate", _int)
    status.downstream_attainable_rate, status.upstream_attainable_rate = pair("leitungskapazität", _int)
    (status.downstream_min_error_free_throughput,
     status.upstream_min_error_free_throughput) = pair("mineffektivedatenrate", _int)

    (status.downstream_bitswap.enabled,
     status.upstream_bitswap.enabled) = pair("trägertauschbitswap", _bool)
    (status.downstream_seamless_rate_adaptation.enabled,
     status.upstream_seamless_rate_adaptation.enabled) = pair("nahtloseratenadaption", _bool)

    (status.downstream_interleaving_delay,
     status.upstream_interleaving_delay) = pair("latenz", _delay)
    (status.downstream_impulse_noise_protection,
     status.upstream_impulse_noise_protection) = pair("impulsstörungsschutzinp", _float)
    (status.downstream_retransmission_enabled,
     status.upstream_retransmission_enabled) = pair("ginp", _bool)

    (status.downstream_vectoring_state,
     status.upstream_vectoring_state) = pair("gvector", _vectoring)

    status.downstream_attenuation, status.upstream_attenuation = pair("leitungsdämpfung", _float)
    status.downstream_snr_margin, status.upstream_snr_margin = pair("störabstandsmarge", _float)


# ── Spectrum ──


def _number(val) -> int:
    try:
        return int(str(val).strip())
    except (TypeError, ValueError):
        return 0


def _is_upstream(us_bands, index):
    return any(_number(b.get("FIRST")) <= index <= _number(b.get("LAST")) for b in us_bands)


def parse_spectrum(bins, status, text, legacy=False):
    bins.mode = status.mode
    try:
        decoded = json.loads(text)
        ports = decoded["port"] if legacy else decoded["data"]["ports"]
    except (ValueError, KeyError, TypeError):
        return
    if not ports:
        return

    data = ports[0]
    if isinstance(data, dict) and isinstance(data.get("us"), dict):
        data = data["us"]
    if not isinstance(data, dict):
        return

    us_bands = data.get("BIT_BANDCONFIG") or data.get("BIT_US_BANDCONFIG") or []

    bat_group = _number(data.get("TONES_PER_BAT_VALUE"))
    pilots = [_number(v) for v in data.get("PILOT_VALUES") or []]
    if bat_group:
        bins.pilot_tones = [p * bat_group + bat_group // 2 for p in pilots]
        pilot = _number(data.get("PILOT"))
        if not bins.pilot_tones and pilot:
            bins.pilot_tones = [pilot * bat_group + bat_group // 2]

        values = [_number(v) for v in data.get("ACT_BIT_VALUES") or []]
        bin_count = _number(data.get("MAX_BAT_TONE")) or len(values) * bat_group
        down, up = [0] * bin_count, [0] * bin_count
        for i, val in enumerate(values):
            if not val:
                continue
            target = up if _is_upstream(us_bands, i) else down
            for num in range(i * bat_group, min((i + 1) * bat_group, bin_count)):
                target[num] = val
        bins.bits.downstream.data = down
        bins.bits.upstream.data = up

    snr_group = _number(data.get("TONES_PER_SNR_VALUE"))
    if snr_group:
        values = [_number(v) for v in data.get("ACT_SNR_VALUES") or []]
        bin_count = _number(data.get("MAX_SNR_TONE")) or len(values) * snr_group
        # -32.5 is below the valid range and marks unused groups
        down = BinsFloat(snr_group, [-32.5] * (bin_count // snr_group))
        up = BinsFloat(snr_group, [-32.5] * (bin_count // snr_group))
        for num, val in enumerate(values[:len(down.data)]):
            if not val:
                continue
            target = up if _is_upstream(us_bands, num) else down
            target.data[num] = val / 2
        bins.snr = BinsFloatDownUp(down, up)

    generate_bands(bins)


# ── TR-064 ──


def parse_tr064(status, info_xml, stats_xml):
    try:
        info = _xml_values(info_xml)
    except ET.ParseError:
        info = None
    if info is not None:
        for name, attr in (("NewUpstreamPower", "upstream_power"),
                           ("NewDownstreamPower", "downstream_power")):
            value = _float(info.get(name))
            if not value.valid:
                continue
            # zero means not reported, anything else is offset by 500
            if value.value:
                value.value -= 500
            # UR8 based 7270v3 reports tenths
            if status.near_end_inventory.version.startswith("1.52."):
                value.value *= 0.1
            setattr(status, attr, value)

    try:
        stats = _xml_values(stats_xml)
    except ET.ParseError:
        return

    def counter(attr, name):
        value = _int(stats.get(name))
        if value.valid:
            setattr(status, attr, value)

    if not status.downstream_es_count.valid:
        counter("downstream_es_count", "NewErroredSecs")
    if not status.downstream_ses_count.valid:
        counter("downstream_ses_count", "NewSeverelyErroredSecs")
    counter("downstream_fec_count", "NewFECErrors")
    counter("upstream_fec_count", "NewATUCFECErrors")
    counter("downstream_crc_count", "NewCRCErrors")
    counter("upstream_crc_count", "NewATUCCRCErrors")


# ── Support data ──


def _support_values(text):
    values = {}
    for line in text.splitlines():
        key, sep, val = line.partition(":")
        if sep:
            values[key] = val.strip()
    return values


def _support_bands(val, group_size):
    data = [v.strip() for v in val.split(",")]
    if len(data) % 2 or not group_size:
        return None
    return [
        Band(_number(data[i]) * group_size, _number(data[i + 1]) * group_size + group_size - 1)
        for i in range(0, len(data), 2)
    ]


def _support_group_size(last_bin, length):
    group_size = 1
    while length * group_size < last_bin + 1:
        group_size *= 2
    return group_size


def _support_bins(data, bands) -> BinsFloat:
    values = data.split(",") if data else []
    if len(values) <= 1 or not bands:
        return BinsFloat()
    out = BinsFloat(_support_group_size(bands[-1].end, len(values)), [0.0] * len(values))
    for num, val in enumerate(values):
        parsed = _float(val)
        if parsed.valid:
            out.data[num] = parsed.value / 10
    return out


def _support_bins_down_up(data, bands, default) -> BinsFloatDownUp:
    values = data.split(",")
    if len(values) <= 1 or not bands.downstream or not bands.upstream:
        return BinsFloatDownUp()
    down = BinsFloat(_support_group_size(bands.downstream[-1].end, len(values)), [default] * len(values))
    up = BinsFloat(_support_group_size(bands.upstream[-1].end, len(values)), [default] * len(values))
    decider = BandDecider(bands)
    for num, val in enumerate(values):
        parsed = _float(val)
        if not parsed.valid:
            continue
        target = down if decider.is_downstream(num * down.group_size) else up
        target.data[num] = parsed.value / 10
    return BinsFloatDownUp(down, up)


def parse_support_data(status, bins, text):
    if status.state != State.SHOWTIME or not text:
        return
    values = _support_values(text)

    def counter(key):
        return _int(values[key]) if key in values else IntValue()

    if status.downstream_retransmission_enabled.value:
        status.downstream_rtx_tx_count = counter("DS RTX retransmitted DTUs")
        status.downstream_rtx_c_count = counter("DS RTX corrected DTUs")
        status.downstream_rtx_uc_count = counter("DS RTX uncorrected DTUs")
    if status.upstream_retransmission_enabled.value:
        status.upstream_rtx_tx_count = counter("US RTX retransmitted DTUs")
        status.upstream_rtx_c_count = counter("US RTX corrected DTUs")
        status.upstream_rtx_uc_count = counter("US RTX uncorrected DTUs")

    bat_group = _number(values.get("BAT Bins per Group"))
    for key, attr in (("DS Bands", "downstream"), ("US Bands", "upstream")):
        if key in values:
            bands = _support_bands(values[key], bat_group)
            if bands is not None:
                setattr(bins.bands, attr, bands)

    if "HLOG Array" in values:
        bins.hlog = _support_bins_down_up(values["HLOG Array"], bins.bands, -96.3)
    else:
        bins.hlog = BinsFloatDownUp(
            _support_bins(values.get("HLOG DS Array"), bins.bands.downstream),
            _support_bins(values.get("HLOG US Array"), bins.bands.upstream))

    if "QLN Array" in values:
        bins.qln = _support_bins_down_up(values["QLN Array"], bins.bands, 0.0)
    else:
        bins.qln = BinsFloatDownUp(
            _support_bins(values.get("QLN DS Array"), bins.bands.downstream),
            _support_bins(values.get("QLN US Array"), bins.bands.upstream))


# ── Driver ──


def _is_page(text, page):
    try:
        return json.loads(text).get("pid") == page
    except (ValueError, AttributeError):
        return False


class FritzBoxDriver(Driver):
    """Driver for AVM FRITZ!Box DSL routers.

    Line data comes from the web UI pages (JSON on current firmware, HTML
    on older releases), error counters and transmit power from TR-064.
    """

    def __init__(self, config: DriverConfig):
        super().__init__(config)
        self._load_support_data = config.option_enabled("LoadSupportData")
        self._session = FritzBoxSession(
            config.host, config.user, config.auth_password,
            tls_skip_verify=config.option_enabled("TLSSkipVerify"),
        )

    def _page(self, page, legacy_path, legacy_params):
        """Load a data.lua page, falling back to the pre-7.39 Lua page."""
        try:
            text = self._session.load_post("/data.lua", {"lang": "de", "page": page, "xhr": "1"})
        except HTTPStatusError as e:
            if e.status_code != 404:
                raise
            text = ""
        if _is_page(text, page):
            return text, False
        return self._session.load_get(legacy_path, legacy_params), True

    def update_data(self):
        raw = {}

        overview = self._session.load_post("/data.lua", {"lang": "de", "page": "dslOv", "xhr": "1"})
        raw["DSL Overview"] = overview
        overview_legacy = not overview.startswith("{")
        if overview_legacy:
            raw["DSL Overview data"] = self._session.load_get(
                "/internet/dsl_overview.lua",
                {"action": "get_data", "myXhr": "1", "useajax": "1", "xhr": "1"})

        stats, stats_legacy = self._page(
            "dslStat", "/internet/dsl_stats_tab.lua",
            {"update": "mainDiv", "useajax": "1", "xhr": "1"})
        raw["DSL Stats"] = stats

        spectrum, spectrum_legacy = self._page(
            "dslSpectrum", "/internet/dsl_spectrum.lua",
            {"myXhr": "1", "useajax": "1", "xhr": "1"})
        raw["DSL Spectrum"] = spectrum

        raw["Interface Config Info"] = self._session.load_tr064(
            TR064_CONTROL_PATH, TR064_SERVICE, "GetInfo")
        raw["Interface Config Statistics Total"] = self._session.load_tr064(
            TR064_CONTROL_PATH, TR064_SERVICE, "GetStatisticsTotal")

        if self._load_support_data:
            raw["Support Data"] = self._session.load_support_data()

        status = Status()
        bins = Bins()

        if overview_legacy:
            parse_overview_legacy(status, raw["DSL Overview data"])
        else:
            parse_overview(status, overview)

        if stats_legacy:
            interpret_stats(status, parse_stats_values_legacy(stats))
            parse_stats_errors_legacy(status, stats)
        else:
            interpret_stats(status, parse_stats_values(stats))

        parse_spectrum(bins, status, spectrum, legacy=spectrum_legacy)
        parse_tr064(status, raw["Interface Config Info"], raw["Interface Config Statistics Total"])
        parse_support_data(status, bins, raw.get("Support Data", ""))
        normalize_status(status)

        self._status = status
        self._bins = bins
        self._raw_data = "".join(
            f"////// {title}\n\n{text}\n\n" for title, text in raw.items()
        ).encode("utf-8")

    def close(self):
        self._session.close()


DESC = DriverDesc(
    title="AVM FRITZ!Box",
    requires_user=Tristate.MAYBE,
    supported_auth_types=AuthType.PASSWORD,
    options={
        "LoadSupportData": OptionDesc(
            "load support data to get additional data if set to 1", OptionType.BOOL),
        "TLSSkipVerify": OptionDesc(
            "verification of TLS certificates will be skipped if set to 1", OptionType.BOOL),
    },
)

registry.register("fritzbox", FritzBoxDriver, DESC)
