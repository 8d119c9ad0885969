"""Tests for the acquisition supervisor: state fan-out, polling cadence,
credential prompts and history persistence."""

import gzip
import queue
import threading
import time

import pytest

from dslsight import supervisor as supervisor_mod
from dslsight.drivers import (
    AuthType,
    AuthenticationError,
    ConnectionLostError,
    Driver,
    DriverConfig,
    DriverDesc,
    DriverRegistry,
    PrivateKeys,
)
from dslsight.history import BinsHistoryEngine, ErrorsHistoryEngine
from dslsight.supervisor import (
    STATE_ENCRYPTION_PASSPHRASE,
    STATE_ERROR,
    STATE_LOADING,
    STATE_PASSPHRASE,
    STATE_PASSWORD,
    STATE_READY,
    CredentialNotRequiredError,
    StateChange,
    Supervisor,
)

from conftest import make_bins, make_status

TIMEOUT = 5
FINGERPRINT = "SHA256:0123456789abcdef"


@pytest.fixture(autouse=True)
def fast_backoff(monkeypatch):
    monkeypatch.setattr(supervisor_mod, "BACKOFF_INITIAL", 0.01)
    monkeypatch.setattr(supervisor_mod, "BACKOFF_MAX", 0.02)


class FakeDevice:
    """Scripted device; connect_errors and poll_errors are raised by successive
    connects and polls (None = success)."""

    def __init__(self, password=None, passphrase=None, encryption_passphrase=None,
                 connect_errors=(), poll_errors=(), snr=15.0):
        self.connect_errors = list(connect_errors)
        self.password = password
        self.passphrase = passphrase
        self.encryption_passphrase = encryption_passphrase
        self.poll_errors = list(poll_errors)
        self.snr = snr
        self.connects = 0
        self.polls = 0
        self.closed = 0

    def factory(self, config):
        self.connects += 1
        if self.connect_errors:
            error = self.connect_errors.pop(0)
            if error is not None:
                raise error
        if self.password is not None and config.auth_password() != self.password:
            raise AuthenticationError("wrong password")
        if self.passphrase is not None and config.auth_private_keys.passphrase(FINGERPRINT) != self.passphrase:
            raise AuthenticationError("wrong passphrase")
        if (self.encryption_passphrase is not None
                and config.encryption_passphrase() != self.encryption_passphrase):
            raise AuthenticationError("wrong encryption passphrase")
        return FakeDriver(config, self)

    def registry(self):
        auth = AuthType.NONE
        if self.password is not None:
            auth |= AuthType.PASSWORD
        if self.passphrase is not None:
            auth |= AuthType.PRIVATE_KEYS
        reg = DriverRegistry()
        reg.register("fake", self.factory, DriverDesc(
            title="Fake",
            supported_auth_types=auth,
            supports_encryption_passphrase=self.encryption_passphrase is not None,
        ))
        return reg


class RecordingEvent(threading.Event):
    """Cancellation event recording back-off waits instead of sleeping them."""

    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return super().wait(None if timeout is None else 0.01)


class FakeDriver(Driver):
    def __init__(self, config, device):
        super().__init__(config)
        self._device = device

    def update_data(self):
        self._device.polls += 1
        if self._device.poll_errors:
            error = self._device.poll_errors.pop(0)
            if error is not None:
                raise error
        self._status = make_status(downstream_fec_count=self._device.polls)
        self._bins = make_bins(snr_down=[self._device.snr] * 512)
        self._raw_data = b"raw"

    def close(self):
        self._device.closed += 1


def _supervisor(device, config=None, **kwargs):
    kwargs.setdefault("interval_default", 30)
    kwargs.setdefault("interval_short", 30)
    return Supervisor(config or DriverConfig(type="fake", host="device"),
                      registry=device.registry(), **kwargs)


def _receiver(sup, maxsize=32):
    q = queue.Queue(maxsize=maxsize)
    assert sup.register_receiver(q)
    return q


def _next_state(q):
    return q.get(timeout=TIMEOUT).state


def _collect_until(q, state, limit=20):
    states = []
    while len(states) < limit:
        states.append(_next_state(q))
        if states[-1] == state:
            return states
    raise AssertionError(f"{state} not reached: {states}")


def _wait_for_state(sup, state):
    for _ in range(100):
        if sup.state().state == state:
            return
        time.sleep(0.05)
    raise AssertionError(f"{state} not reached")


# ── State messages ──


class TestStateChange:
    def test_ready_message(self):
        status = make_status()
        change = StateChange(
            state=STATE_READY, has_data=True, time=1.5, status=status, bins=make_bins(),
            bins_history=BinsHistoryEngine().data(),
            errors_history=ErrorsHistoryEngine().data(),
        )
        msg = change.to_message()
        assert msg["state"] == "ready"
        assert msg["data"]["time"] == 1.5
        assert msg["data"]["summary"] == status.summary()
        assert set(msg["data"]) == {"time", "summary", "status", "bins", "bins_history", "errors_history"}

    def test_passphrase_message_carries_fingerprint(self):
        msg = StateChange(state=STATE_PASSPHRASE, fingerprint=FINGERPRINT).to_message()
        assert msg == {"state": "passphrase", "data": FINGERPRINT}

    def test_error_message(self):
        msg = StateChange(state=STATE_ERROR, error="timeout").to_message()
        assert msg["data"] == "failed to load data from device: timeout"

    def test_prompt_states_have_no_data(self):
        assert StateChange(state=STATE_PASSWORD).to_message() == {"state": "password", "data": None}
        assert StateChange(state=STATE_LOADING).to_message() == {"state": "loading", "data": None}


# ── Fan-out ──


class TestFanOut:
    def test_initial_state_before_start(self):
        sup = _supervisor(FakeDevice())
        try:
            q = _receiver(sup)
            assert _next_state(q) == STATE_LOADING
            assert sup.state().state == STATE_LOADING
        finally:
            sup.close()

    def test_receivers_get_same_sequence(self):
        device = FakeDevice(poll_errors=[ConnectionLostError("gone")])
        sup = _supervisor(device)
        a, b = _receiver(sup), _receiver(sup)
        sup.start()
        try:
            seq_a = _collect_until(a, STATE_READY)
            seq_b = _collect_until(b, STATE_READY)
        finally:
            sup.close()
        assert seq_a == seq_b == [STATE_LOADING, STATE_ERROR, STATE_READY]

    def test_full_receiver_rejected(self):
        sup = _supervisor(FakeDevice())
        try:
            q = queue.Queue(maxsize=1)
            q.put("occupied")
            assert not sup.register_receiver(q)
        finally:
            sup.close()

    def test_slow_receiver_dropped(self):
        sup = _supervisor(FakeDevice(), interval_default=30, interval_short=10)
        slow = queue.Queue(maxsize=1)
        assert sup.register_receiver(slow)
        fast = _receiver(sup)
        sup.start()
        try:
            _collect_until(fast, STATE_READY)
            sup.state()
            assert slow not in sup._receivers
            assert fast in sup._receivers
            assert slow.qsize() == 1
        finally:
            sup.close()

    def test_unregister(self):
        sup = _supervisor(FakeDevice())
        try:
            q = _receiver(sup)
            sup.unregister_receiver(q)
            sup.unregister_receiver(q)
            assert q not in sup._receivers
        finally:
            sup.close()


class TestStopped:
    def test_state_after_close(self):
        sup = _supervisor(FakeDevice())
        sup.close()
        assert sup.state().state == STATE_LOADING

    def test_unregister_after_close(self):
        sup = _supervisor(FakeDevice())
        q = _receiver(sup)
        sup.close()
        sup.unregister_receiver(q)

    def test_register_after_close(self):
        sup = _supervisor(FakeDevice())
        sup.close()
        with pytest.raises(RuntimeError, match="not running"):
            sup.register_receiver(queue.Queue())

    def test_request_racing_distributor_exit(self):
        sup = _supervisor(FakeDevice())
        sup._inbox.put(("stop",))
        assert sup.state().state == STATE_LOADING
        sup._distributor.join(TIMEOUT)
        assert not sup._distributor.is_alive()


# ── Polling cadence ──


class TestInterval:
    def test_short_interval_while_subscribed(self):
        sup = _supervisor(FakeDevice(), interval_default=30, interval_short=10)
        try:
            assert sup._interval == 30
            q = _receiver(sup)
            assert sup._interval == 10
            sup.unregister_receiver(q)
            assert sup._interval == 30
        finally:
            sup.close()

    def test_next_poll_aligns_to_short_interval(self):
        device = FakeDevice()
        sup = _supervisor(device, interval_default=3600, interval_short=0.05)
        sup.start()
        try:
            _wait_for_state(sup, STATE_READY)
            assert device.polls == 1
            q = _receiver(sup)
            # the last state is replayed first, then a fresh poll follows
            assert _next_state(q) == STATE_READY
            assert _next_state(q) == STATE_READY
            assert device.polls >= 2
        finally:
            sup.close()

    def test_unregister_reverts_before_next_poll(self):
        device = FakeDevice()
        sup = _supervisor(device, interval_default=3600, interval_short=0.05)
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_READY)
            sup.unregister_receiver(q)
            time.sleep(0.2)
            polls = device.polls
            time.sleep(0.3)
            assert device.polls == polls
            assert sup._interval == 3600
        finally:
            sup.close()

    def test_default_interval_after_last_receiver_dropped(self):
        sup = _supervisor(FakeDevice(), interval_default=30, interval_short=10)
        slow = queue.Queue(maxsize=1)
        assert sup.register_receiver(slow)
        sup.start()
        try:
            _wait_for_state(sup, STATE_READY)
            assert sup._interval == 30
        finally:
            sup.close()

    def test_polls_repeat(self):
        device = FakeDevice()
        sup = _supervisor(device, interval_default=30, interval_short=0.05)
        q = _receiver(sup)
        sup.start()
        try:
            ready = 0
            while ready < 3:
                if _next_state(q) == STATE_READY:
                    ready += 1
        finally:
            sup.close()
        assert device.polls >= 3
        assert device.connects == 1

    def test_consecutive_errors_force_reconnect(self, monkeypatch):
        monkeypatch.setattr(supervisor_mod, "MAX_CONSECUTIVE_ERRORS", 2)
        device = FakeDevice(poll_errors=[RuntimeError("bad page"), RuntimeError("bad page")])
        sup = _supervisor(device, interval_default=30, interval_short=0.05)
        q = _receiver(sup)
        sup.start()
        try:
            states = _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert states.count(STATE_ERROR) == 2
        assert device.connects == 2
        assert device.closed >= 1


# ── Retries ──


class TestRetries:
    def test_lockout_raises_backoff(self):
        device = FakeDevice(connect_errors=[AuthenticationError("login blocked", wait_time=7)])
        sup = _supervisor(device)
        sup._cancelled = RecordingEvent()
        q = _receiver(sup)
        sup.start()
        try:
            states = _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert states == [STATE_LOADING, STATE_ERROR, STATE_READY]
        assert sup._cancelled.waits == [7]

    def test_backoff_doubles_up_to_limit(self):
        device = FakeDevice(connect_errors=[RuntimeError("unreachable")] * 3)
        sup = _supervisor(device)
        sup._cancelled = RecordingEvent()
        q = _receiver(sup)
        sup.start()
        try:
            states = _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert states.count(STATE_ERROR) == 3
        assert sup._cancelled.waits == pytest.approx([0.01, 0.02, 0.02])

    def test_failed_poll_retried_once_per_period(self):
        device = FakeDevice(poll_errors=[RuntimeError("bad page")] * 3)
        sup = _supervisor(device, interval_default=3600, interval_short=3600)
        q = _receiver(sup)
        sup.start()
        try:
            states = [_next_state(q) for _ in range(3)]
            time.sleep(0.2)
            assert device.polls == 2
        finally:
            sup.close()
        assert states == [STATE_LOADING, STATE_ERROR, STATE_ERROR]
        assert device.connects == 1

    def test_single_failure_recovered_within_period(self):
        device = FakeDevice(poll_errors=[RuntimeError("bad page")])
        sup = _supervisor(device, interval_default=3600, interval_short=3600)
        q = _receiver(sup)
        sup.start()
        try:
            states = _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert states == [STATE_LOADING, STATE_ERROR, STATE_READY]
        assert device.polls == 2
        assert device.connects == 1


# ── Credentials ──


class TestCredentials:
    def test_password_retry_sequence(self):
        device = FakeDevice(password="right")
        sup = _supervisor(device)
        q = _receiver(sup)
        sup.start()
        try:
            states = [_next_state(q)]
            states.append(_next_state(q))
            assert states[-1] == STATE_PASSWORD
            sup.set_password("wrong")
            states += _collect_until(q, STATE_PASSWORD)
            sup.set_password("right")
            states += _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert states == [
            STATE_LOADING, STATE_PASSWORD, STATE_LOADING, STATE_ERROR,
            STATE_PASSWORD, STATE_LOADING, STATE_READY,
        ]

    def test_password_cached_across_reconnects(self):
        device = FakeDevice(password="right", poll_errors=[None, ConnectionLostError("gone")])
        sup = _supervisor(device, interval_short=0.05)
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_PASSWORD)
            sup.set_password("right")
            _collect_until(q, STATE_READY)
            states = _collect_until(q, STATE_ERROR)
            states += _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert STATE_PASSWORD not in states
        assert device.connects == 2

    def test_auth_failure_on_reconnect_clears_password(self):
        device = FakeDevice(
            password="right",
            connect_errors=[None, AuthenticationError("rejected")],
            poll_errors=[None, ConnectionLostError("gone")],
        )
        sup = _supervisor(device, interval_short=0.05)
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_PASSWORD)
            sup.set_password("right")
            _collect_until(q, STATE_READY)
            states = _collect_until(q, STATE_PASSWORD)
            sup.set_password("right")
            states += _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert states == [STATE_ERROR, STATE_ERROR, STATE_PASSWORD, STATE_LOADING, STATE_READY]
        assert device.connects == 3

    def test_auth_failure_during_poll_clears_password(self):
        device = FakeDevice(password="right", poll_errors=[None, AuthenticationError("session expired")])
        sup = _supervisor(device, interval_short=0.05)
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_PASSWORD)
            sup.set_password("right")
            _collect_until(q, STATE_READY)
            states = _collect_until(q, STATE_PASSWORD)
            sup.set_password("right")
            states += _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert states == [STATE_ERROR, STATE_PASSWORD, STATE_LOADING, STATE_READY]
        assert device.connects == 2

    def test_unrequested_credential_rejected(self):
        sup = _supervisor(FakeDevice(password="right"))
        try:
            with pytest.raises(CredentialNotRequiredError):
                sup.set_password("right")
            with pytest.raises(CredentialNotRequiredError):
                sup.set_passphrase("x")
            with pytest.raises(CredentialNotRequiredError):
                sup.set_encryption_passphrase("x")
        finally:
            sup.close()

    def test_wrong_credential_kind_rejected(self):
        sup = _supervisor(FakeDevice(password="right"))
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_PASSWORD)
            with pytest.raises(CredentialNotRequiredError):
                sup.set_passphrase("x")
            sup.set_password("right")
            with pytest.raises(CredentialNotRequiredError):
                sup.set_password("again")
            _collect_until(q, STATE_READY)
        finally:
            sup.close()

    def test_passphrase_prompt_carries_fingerprint(self):
        device = FakeDevice(passphrase="secret")
        config = DriverConfig(type="fake", host="device", auth_private_keys=PrivateKeys(keys=["KEY"]))
        sup = _supervisor(device, config=config)
        q = _receiver(sup)
        sup.start()
        try:
            _next_state(q)
            change = q.get(timeout=TIMEOUT)
            assert change.state == STATE_PASSPHRASE
            assert change.to_message()["data"] == FINGERPRINT
            sup.set_passphrase("secret")
            _collect_until(q, STATE_READY)
        finally:
            sup.close()

    def test_encryption_passphrase_prompt(self):
        device = FakeDevice(encryption_passphrase="enc")
        sup = _supervisor(device)
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_ENCRYPTION_PASSPHRASE)
            sup.set_encryption_passphrase("enc")
            _collect_until(q, STATE_READY)
        finally:
            sup.close()

    def test_configured_password_not_prompted(self):
        device = FakeDevice(password="right")
        config = DriverConfig(type="fake", host="device", auth_password=lambda: "right")
        sup = _supervisor(device, config=config)
        q = _receiver(sup)
        sup.start()
        try:
            states = _collect_until(q, STATE_READY)
        finally:
            sup.close()
        assert states == [STATE_LOADING, STATE_READY]

    def test_close_during_prompt(self):
        device = FakeDevice(password="right")
        sup = _supervisor(device)
        q = _receiver(sup)
        sup.start()
        _collect_until(q, STATE_PASSWORD)
        sup.close()
        assert not sup._updater.is_alive()
        assert not sup._distributor.is_alive()

    def test_error_state_keeps_last_data(self):
        device = FakeDevice(poll_errors=[None, RuntimeError("bad page")])
        sup = _supervisor(device, interval_short=0.05)
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_READY)
            change = q.get(timeout=TIMEOUT)
        finally:
            sup.close()
        assert change.state == STATE_ERROR
        assert change.has_data
        assert change.status is not None
        assert change.raw_data == b"raw"


# ── Persistence ──


class TestPersistence:
    def test_histories_saved_on_close(self, tmp_path):
        device = FakeDevice()
        sup = _supervisor(device, state_dir=str(tmp_path))
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_READY)
        finally:
            sup.close()

        assert (tmp_path / "bins.dat.gz").exists()
        errors_file = tmp_path / "errors.dat.gz"
        assert errors_file.exists()
        with gzip.open(errors_file, "rb") as f:
            ErrorsHistoryEngine().load(f)

    def test_nothing_saved_without_data(self, tmp_path):
        sup = _supervisor(FakeDevice(password="right"), state_dir=str(tmp_path))
        q = _receiver(sup)
        sup.start()
        _collect_until(q, STATE_PASSWORD)
        sup.close()
        assert not (tmp_path / "bins.dat.gz").exists()

    def test_histories_restored(self, tmp_path):
        first = _supervisor(FakeDevice(snr=15.0), state_dir=str(tmp_path))
        q = _receiver(first)
        first.start()
        try:
            _collect_until(q, STATE_READY)
        finally:
            first.close()

        second = _supervisor(FakeDevice(snr=20.0), state_dir=str(tmp_path))
        q = _receiver(second)
        second.start()
        try:
            _collect_until(q, STATE_READY)
            change = second.state()
        finally:
            second.close()
        snr = change.bins_history.snr.downstream
        assert snr.min[0] == 15.0
        assert snr.max[0] == 20.0

    def test_corrupt_state_file_ignored(self, tmp_path):
        (tmp_path / "errors.dat.gz").write_bytes(b"not gzip")
        sup = _supervisor(FakeDevice(), state_dir=str(tmp_path))
        q = _receiver(sup)
        sup.start()
        try:
            _collect_until(q, STATE_READY)
        finally:
            sup.close()
