"""DSL device driver registry."""

import importlib
import logging
import threading

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
    PrivateKeys,
    Tristate,
)

log = logging.getLogger("dslsight.drivers")

BUILTIN_DRIVERS = (
    "dslsight.drivers.fritzbox",
    "dslsight.drivers.speedport",
    "dslsight.drivers.demo",
)


class DriverRegistry:
    """Maps driver identifiers to (factory, descriptor) pairs."""

    def __init__(self):
        self._items = {}
        self._lock = threading.Lock()

    def register(self, identifier: str, factory, desc: DriverDesc):
        with self._lock:
            if identifier in self._items:
                raise RuntimeError(f"driver identifier '{identifier}' already in use")
            self._items[identifier] = (factory, desc)

    def _item(self, identifier):
        with self._lock:
            item = self._items.get(identifier)
        if item is None:
            supported = ", ".join(self.types())
            raise ValueError(f"Unknown device type '{identifier}'. Supported: {supported}")
        return item

    def desc(self, identifier: str) -> DriverDesc:
        return self._item(identifier)[1]

    def types(self):
        with self._lock:
            return sorted(self._items)

    def display_names(self):
        with self._lock:
            return {k: desc.title for k, (_, desc) in sorted(self._items.items())}

    def validate(self, config: DriverConfig):
        """Check a config against the driver descriptor; raises ValueError."""
        desc = self.desc(config.type)

        if desc.requires_user == Tristate.YES and not config.user:
            raise ValueError("user required for this device type")
        if desc.requires_user == Tristate.NO and config.user:
            raise ValueError("user not supported for this device type")

        if config.auth_password is not None and not desc.supported_auth_types & AuthType.PASSWORD:
            raise ValueError("password authentication not supported for this device type")
        if config.auth_private_keys is not None and not desc.supported_auth_types & AuthType.PRIVATE_KEYS:
            raise ValueError("private key authentication not supported for this device type")

        if desc.requires_known_hosts and not config.known_hosts:
            raise ValueError("known hosts required for this device type")
        if config.encryption_passphrase is not None and not desc.supports_encryption_passphrase:
            raise ValueError("encryption passphrase not supported for this device type")

        for key, value in config.options.items():
            option = desc.options.get(key)
            if option is None:
                raise ValueError(f"unknown option '{key}'")
            if option.type == OptionType.BOOL and value not in ("0", "1"):
                raise ValueError(f"invalid value for option '{key}': expected 0 or 1")
            if option.type == OptionType.ENUM and value not in [v for v, _ in option.values]:
                raise ValueError(f"invalid value for option '{key}': {value}")

    def new_driver(self, config: DriverConfig) -> Driver:
        """Validate the config and open a driver session."""
        self.validate(config)
        factory, _ = self._item(config.type)
        log.info("Connecting to %s device at %s", config.type, config.host or "(no host)")
        return factory(config)


registry = DriverRegistry()


def register_all():
    """Import the built-in drivers, which register themselves."""
    for module_path in BUILTIN_DRIVERS:
        importlib.import_module(module_path)


def load_driver(config: DriverConfig) -> Driver:
    """Instantiate a driver from the process-wide registry."""
    register_all()
    return registry.new_driver(config)


__all__ = [
    "AuthType",
    "AuthenticationError",
    "ConnectionLostError",
    "Driver",
    "DriverConfig",
    "DriverDesc",
    "DriverError",
    "DriverRegistry",
    "OptionDesc",
    "OptionType",
    "PrivateKeys",
    "Tristate",
    "load_driver",
    "register_all",
    "registry",
]
