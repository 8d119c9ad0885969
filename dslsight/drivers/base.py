"""Base class, configuration and error types for DSL device drivers."""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

KNOWN_HOSTS_IGNORE = "IGNORE"


class DriverError(Exception):
    """Base class for errors reported by a driver."""


class AuthenticationError(DriverError):
    """Credentials were rejected or the device is locking out logins.

    wait_time is the lock-out duration in seconds reported by the device.
    """

    def __init__(self, message: str = "authentication failed", wait_time: float = 0):
        super().__init__(message)
        self.wait_time = wait_time


class ConnectionLostError(DriverError):
    """The device session is gone and must be re-established."""


class Tristate(enum.Enum):
    NO = "no"
    YES = "yes"
    MAYBE = "maybe"


class AuthType(enum.IntFlag):
    NONE = 0
    PASSWORD = 1
    PRIVATE_KEYS = 2


class OptionType(enum.Enum):
    STRING = "string"
    BOOL = "bool"
    ENUM = "enum"


@dataclass
class OptionDesc:
    description: str
    type: OptionType = OptionType.STRING
    values: list = field(default_factory=list)  # (value, title) pairs for enums


@dataclass
class DriverDesc:
    title: str
    requires_user: Tristate = Tristate.NO
    supported_auth_types: AuthType = AuthType.PASSWORD
    requires_known_hosts: bool = False
    supports_encryption_passphrase: bool = False
    options: dict = field(default_factory=dict)


@dataclass
class PrivateKeys:
    keys: list = field(default_factory=list)  # PEM encoded
    passphrase: Callable[[str], str] | None = None  # called with the key fingerprint


@dataclass
class DriverConfig:
    """Everything a driver needs to open a session with one device.

    Secrets are passed as callbacks so that they can be requested
    interactively, at the moment the driver actually needs them.
    """

    type: str
    host: str = ""
    user: str = ""
    auth_password: Callable[[], str] | None = None
    auth_private_keys: PrivateKeys | None = None
    known_hosts: str = ""
    encryption_passphrase: Callable[[], str] | None = None
    options: dict = field(default_factory=dict)

    def option_enabled(self, key: str) -> bool:
        return self.options.get(key) == "1"


class Driver(ABC):
    """Abstract base class for DSL devices.

    The constructor opens the session (and authenticates); update_data()
    fetches one coherent observation that the accessors then return.
    Instances are used from a single thread only.
    """

    def __init__(self, config: DriverConfig):
        self._config = config
        self._raw_data = b""
        self._status = None
        self._bins = None

    def raw_data(self) -> bytes:
        return self._raw_data

    def status(self):
        return self._status

    def bins(self):
        return self._bins

    @abstractmethod
    def update_data(self) -> None:
        """Fetch fresh data from the device. Raises on failure."""
        ...

    @abstractmethod
    def close(self) -> None:
        """End the device session. Safe to call more than once."""
        ...
