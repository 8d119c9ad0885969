"""Acquisition supervisor: owns the device session, polls it and fans out state."""

import dataclasses
import gzip
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass

from . import drivers
from .drivers.base import AuthType, AuthenticationError, ConnectionLostError, DriverConfig
from .history import BinsConfig, BinsHistoryEngine, ErrorsConfig, ErrorsHistoryEngine, SnapshotError, truncate
from .models import Bins, BinsHistory, ErrorsHistory, Status

log = logging.getLogger("dslsight.supervisor")

STATE_READY = "ready"
STATE_PASSWORD = "password"
STATE_PASSPHRASE = "passphrase"
STATE_ENCRYPTION_PASSPHRASE = "encryption-passphrase"
STATE_LOADING = "loading"
STATE_ERROR = "error"

INTERVAL_DEFAULT = 30
INTERVAL_SHORT = 10
SAVE_INTERVAL = 600

BACKOFF_INITIAL = 2
BACKOFF_MAX = 30
MAX_ATTEMPTS_PER_PERIOD = 2
MAX_CONSECUTIVE_ERRORS = 10
REPLY_POLL_INTERVAL = 0.5

BINS_STATE_FILE = "bins.dat.gz"
ERRORS_STATE_FILE = "errors.dat.gz"

_STOPPED = object()

_CREDENTIAL_NAMES = {
    STATE_PASSWORD: "password",
    STATE_PASSPHRASE: "passphrase",
    STATE_ENCRYPTION_PASSPHRASE: "encryption passphrase",
}


class CredentialNotRequiredError(RuntimeError):
    """A credential was supplied while none of that kind was awaited."""


@dataclass
class StateChange:
    """One observation of the supervisor, as seen by subscribers.

    Non-ready states carry the data of the last successful poll (has_data)
    so that consumers can keep showing it.
    """

    state: str = STATE_LOADING
    has_data: bool = False
    time: float = 0.0
    raw_data: bytes = b""
    status: Status | None = None
    bins: Bins | None = None
    bins_history: BinsHistory | None = None
    errors_history: ErrorsHistory | None = None
    fingerprint: str = ""
    error: str = ""

    def to_message(self) -> dict:
        """Build the {"state", "data"} message sent to dashboard clients."""
        msg = {"state": self.state, "data": None}
        if self.state == STATE_READY:
            msg["data"] = {
                "time": self.time,
                "summary": self.status.summary(),
                "status": self.status.to_dict(),
                "bins": self.bins.to_dict(),
                "bins_history": self.bins_history.to_dict(),
                "errors_history": self.errors_history.to_dict(),
            }
        elif self.state == STATE_PASSPHRASE:
            msg["data"] = self.fingerprint
        elif self.state == STATE_ERROR:
            msg["data"] = "failed to load data from device: " + self.error
        return msg


class Supervisor:
    """Long-running poller for a single device.

    Two threads: the updater owns the driver session, the histories and the
    cached credentials; the distributor owns the receiver queues and the last
    state change. All public methods are safe to call from other threads.
    """

    def __init__(self, config: DriverConfig, state_dir=None, registry=None,
                 interval_default=INTERVAL_DEFAULT, interval_short=INTERVAL_SHORT,
                 save_interval=SAVE_INTERVAL,
                 bins_config=BinsConfig(), errors_config=ErrorsConfig()):
        self._config = dataclasses.replace(config)
        self._registry = registry or drivers.registry
        self._state_dir = state_dir
        self._interval_default = interval_default
        self._interval_short = interval_short
        self._save_interval = save_interval
        self._bins_config = bins_config
        self._errors_config = errors_config

        # distributor
        self._inbox = queue.Queue()
        self._receivers = []
        self._last_state_change = StateChange()
        self._interval = interval_default

        # updater
        self._driver = None
        self._last_data = StateChange()
        self._err_count = 0
        self._password = ""
        self._passphrases = {}
        self._encryption_passphrase = ""

        self._cancelled = threading.Event()
        self._wake = threading.Event()
        self._credential_cond = threading.Condition()
        self._awaiting = None
        self._answer = None

        self._distributor = threading.Thread(
            target=self._distribute, name="dslsight-distributor", daemon=True)
        self._updater = threading.Thread(
            target=self._update, name="dslsight-updater", daemon=True)
        self._distributor.start()

    # ── Public API ──

    def start(self):
        """Start polling; receivers may already be registered."""
        self._updater.start()

    def close(self):
        """Cancel polling and block until both threads have finished."""
        self._cancelled.set()
        self._wake.set()
        with self._credential_cond:
            self._credential_cond.notify_all()
        if self._updater.is_alive():
            self._updater.join()
        elif self._distributor.is_alive():
            self._inbox.put(("stop",))
        if self._distributor.is_alive():
            self._distributor.join()

    def state(self) -> StateChange:
        change = self._ask("state")
        if change is _STOPPED:
            return self._last_state_change
        return change

    def register_receiver(self, receiver: queue.Queue) -> bool:
        """Subscribe a bounded queue; it first receives the last state.

        Returns False if the queue is full and was therefore not admitted.
        """
        admitted = self._ask("register", receiver)
        if admitted is _STOPPED:
            raise RuntimeError("supervisor is not running")
        return admitted

    def unregister_receiver(self, receiver: queue.Queue):
        """Unsubscribe a queue; a no-op once the supervisor has stopped."""
        self._ask("unregister", receiver)

    def set_password(self, password: str):
        self._answer_credential(STATE_PASSWORD, password)

    def set_passphrase(self, passphrase: str):
        self._answer_credential(STATE_PASSPHRASE, passphrase)

    def set_encryption_passphrase(self, passphrase: str):
        self._answer_credential(STATE_ENCRYPTION_PASSPHRASE, passphrase)

    def _ask(self, *msg):
        """Send a request to the distributor and wait for its reply.

        Returns _STOPPED if the distributor exits without answering.
        """
        reply = queue.Queue(maxsize=1)
        if self._distributor.is_alive():
            self._inbox.put(msg + (reply,))
            while True:
                try:
                    return reply.get(timeout=REPLY_POLL_INTERVAL)
                except queue.Empty:
                    if not self._distributor.is_alive():
                        break
        try:
            return reply.get_nowait()
        except queue.Empty:
            return _STOPPED

    # ── Distributor ──

    def _set_interval(self, interval):
        if interval != self._interval:
            self._interval = interval
            self._wake.set()

    def _distribute(self):
        while True:
            msg = self._inbox.get()
            kind = msg[0]

            if kind == "change":
                self._last_state_change = msg[1]
                for receiver in list(self._receivers):
                    try:
                        receiver.put_nowait(msg[1])
                    except queue.Full:
                        log.debug("Dropping slow receiver")
                        self._receivers.remove(receiver)
                if not self._receivers:
                    self._set_interval(self._interval_default)

            elif kind == "register":
                receiver, reply = msg[1], msg[2]
                try:
                    receiver.put_nowait(self._last_state_change)
                except queue.Full:
                    reply.put(False)
                    continue
                if receiver not in self._receivers:
                    self._receivers.append(receiver)
                self._set_interval(self._interval_short)
                reply.put(True)

            elif kind == "unregister":
                receiver, reply = msg[1], msg[2]
                if receiver in self._receivers:
                    self._receivers.remove(receiver)
                if not self._receivers:
                    self._set_interval(self._interval_default)
                reply.put(None)

            elif kind == "state":
                msg[1].put(self._last_state_change)

            elif kind == "stop":
                return

    def _emit(self, change: StateChange):
        self._inbox.put(("change", change))

    def _with_last_data(self, change: StateChange) -> StateChange:
        if not self._last_data.has_data:
            return change
        last = self._last_data
        return dataclasses.replace(
            change,
            has_data=True,
            time=last.time,
            raw_data=last.raw_data,
            status=last.status,
            bins=last.bins,
            bins_history=last.bins_history,
            errors_history=last.errors_history,
        )

    # ── Credentials ──

    def _answer_credential(self, kind, value):
        with self._credential_cond:
            if self._awaiting != kind or self._answer is not None:
                raise CredentialNotRequiredError(f"no {_CREDENTIAL_NAMES[kind]} required")
            self._answer = value
            self._credential_cond.notify_all()

    def _await_credential(self, kind, fingerprint="") -> str | None:
        """Emit a prompt state and block until answered; None if cancelled."""
        with self._credential_cond:
            self._awaiting = kind
            self._answer = None

        self._emit(self._with_last_data(StateChange(state=kind, fingerprint=fingerprint)))

        with self._credential_cond:
            while self._answer is None and not self._cancelled.is_set():
                self._credential_cond.wait()
            answer = self._answer
            self._awaiting = None
            self._answer = None

        if answer is None:
            return None
        self._emit(self._with_last_data(StateChange(state=STATE_LOADING)))
        return answer

    def _password_callback(self):
        if not self._password:
            answer = self._await_credential(STATE_PASSWORD)
            if answer is None:
                return ""
            self._password = answer
        return self._password

    def _passphrase_callback(self, fingerprint):
        if not self._passphrases.get(fingerprint):
            answer = self._await_credential(STATE_PASSPHRASE, fingerprint)
            if answer is None:
                return ""
            self._passphrases[fingerprint] = answer
        return self._passphrases[fingerprint]

    def _encryption_passphrase_callback(self):
        if not self._encryption_passphrase:
            answer = self._await_credential(STATE_ENCRYPTION_PASSPHRASE)
            if answer is None:
                return ""
            self._encryption_passphrase = answer
        return self._encryption_passphrase

    def _install_callbacks(self):
        desc = self._registry.desc(self._config.type)
        cfg = self._config

        if desc.supported_auth_types & AuthType.PASSWORD and cfg.auth_password is None:
            cfg.auth_password = self._password_callback
        if (desc.supported_auth_types & AuthType.PRIVATE_KEYS and cfg.auth_private_keys is not None
                and cfg.auth_private_keys.passphrase is None):
            cfg.auth_private_keys = dataclasses.replace(
                cfg.auth_private_keys, passphrase=self._passphrase_callback)
        if desc.supports_encryption_passphrase and cfg.encryption_passphrase is None:
            cfg.encryption_passphrase = self._encryption_passphrase_callback

    # ── Updater ──

    def _connect(self) -> bool:
        """Open a driver session, retrying with back-off. False if cancelled."""
        backoff = BACKOFF_INITIAL
        while True:
            try:
                self._driver = self._registry.new_driver(self._config)
                self._err_count = 0
                return True
            except Exception as e:
                if self._cancelled.is_set():
                    return False
                if isinstance(e, AuthenticationError):
                    self._clear_credentials()
                    backoff = max(backoff, e.wait_time)
                log.warning("Connect failed: %s", e)
                self._emit(self._with_last_data(StateChange(state=STATE_ERROR, error=str(e))))

            if self._cancelled.wait(backoff):
                return False
            backoff = min(backoff * 2, BACKOFF_MAX)

    def _clear_credentials(self):
        self._password = ""
        self._passphrases = {}
        self._encryption_passphrase = ""

    def _close_driver(self):
        if self._driver is not None:
            try:
                self._driver.close()
            except Exception as e:
                log.warning("Closing device session failed: %s", e)
            self._driver = None

    def _poll(self, bins_history, errors_history) -> bool:
        """Run one acquisition period. Returns False if cancelled."""
        for _ in range(MAX_ATTEMPTS_PER_PERIOD):
            if self._driver is None and not self._connect():
                return False

            try:
                self._driver.update_data()
            except Exception as e:
                self._err_count += 1
                log.warning("Update failed (%d): %s", self._err_count, e)
                self._emit(self._with_last_data(StateChange(state=STATE_ERROR, error=str(e))))
                if isinstance(e, AuthenticationError):
                    self._clear_credentials()
                if (isinstance(e, (ConnectionLostError, AuthenticationError))
                        or self._err_count >= MAX_CONSECUTIVE_ERRORS):
                    self._close_driver()
                continue

            now = time.time()
            status, bins = self._driver.status(), self._driver.bins()
            bins_history.update(status, bins, now)
            errors_history.update(status, now)

            self._last_data = StateChange(
                state=STATE_READY,
                has_data=True,
                time=now,
                raw_data=self._driver.raw_data(),
                status=status,
                bins=bins,
                bins_history=bins_history.data(),
                errors_history=errors_history.data(),
            )
            self._emit(self._last_data)
            self._err_count = 0
            return True
        return True

    def _wait_next_poll(self) -> bool:
        """Sleep until the next interval boundary. False if cancelled."""
        while True:
            self._wake.clear()
            if self._cancelled.is_set():
                return False
            interval = self._interval
            now = time.time()
            next_update = truncate(now, interval) + interval
            if not self._wake.wait(next_update - now):
                return True

    def _update(self):
        bins_history = BinsHistoryEngine(self._bins_config)
        errors_history = ErrorsHistoryEngine(self._errors_config)
        try:
            self._install_callbacks()
            self._load_history(bins_history, errors_history)
            next_save = truncate(time.time(), self._save_interval) + self._save_interval

            while not self._cancelled.is_set():
                if not self._poll(bins_history, errors_history):
                    break
                if self._last_data.has_data and time.time() > next_save:
                    self._save_history(bins_history, errors_history)
                    next_save = truncate(time.time(), self._save_interval) + self._save_interval
                if not self._wait_next_poll():
                    break
        finally:
            if self._last_data.has_data:
                self._save_history(bins_history, errors_history)
            self._close_driver()
            self._inbox.put(("stop",))

    # ── Persistent state ──

    def _history_files(self, bins_history, errors_history):
        return (
            ("bins", os.path.join(self._state_dir, BINS_STATE_FILE), bins_history),
            ("errors", os.path.join(self._state_dir, ERRORS_STATE_FILE), errors_history),
        )

    def _load_history(self, bins_history, errors_history):
        if not self._state_dir:
            return
        for name, path, engine in self._history_files(bins_history, errors_history):
            try:
                with gzip.open(path, "rb") as f:
                    engine.load(f)
                log.info("Loaded %s history from %s", name, path)
            except FileNotFoundError:
                pass
            except (OSError, EOFError, SnapshotError) as e:
                log.warning("Failed to load %s history: %s", name, e)

    def _save_history(self, bins_history, errors_history):
        if not self._state_dir:
            return
        for name, path, engine in self._history_files(bins_history, errors_history):
            try:
                os.makedirs(self._state_dir, exist_ok=True)
                with gzip.open(path, "wb") as f:
                    engine.save(f)
            except OSError as e:
                log.warning("Failed to save %s history: %s", name, e)
