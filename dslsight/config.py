"""Configuration management with persistent config.json + env var overrides."""

import json
import logging
import os

from .drivers.base import DriverConfig, PrivateKeys

log = logging.getLogger("dslsight.config")

DEFAULTS = {
    "device_type": "",
    "host": "",
    "user": "",
    "password": "",
    "options": "",
    "known_hosts": "",
    "private_key": "",
    "web_host": "0.0.0.0",
    "web_port": 8765,
    "state_dir": "",
    "interval_default": 30,
    "interval_short": 10,
}

ENV_MAP = {
    "device_type": "DSL_DEVICE_TYPE",
    "host": "DSL_HOST",
    "user": "DSL_USER",
    "password": "DSL_PASSWORD",
    "options": "DSL_OPTIONS",
    "known_hosts": "DSL_KNOWN_HOSTS",
    "private_key": "DSL_PRIVATE_KEY",
    "web_host": "WEB_HOST",
    "web_port": "WEB_PORT",
    "state_dir": "STATE_DIR",
    "interval_default": "INTERVAL_DEFAULT",
    "interval_short": "INTERVAL_SHORT",
}

INT_KEYS = {"web_port", "interval_default", "interval_short"}


def parse_options(text) -> dict:
    """Parse "Key=Value,Key2=Value2" (or an already parsed dict)."""
    if isinstance(text, dict):
        return {str(k): str(v) for k, v in text.items()}
    options = {}
    for item in (text or "").split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"invalid option: {item}")
        options[key.strip()] = value.strip()
    return options


class ConfigManager:
    """Loads config from config.json, env vars override file values."""

    def __init__(self, data_dir="/data"):
        self.data_dir = data_dir
        self.config_path = os.path.join(data_dir, "config.json")
        self._file_config = {}
        self._load()

    def _load(self):
        """Load config.json if it exists."""
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r") as f:
                    self._file_config = json.load(f)
                log.info("Loaded config from %s", self.config_path)
            except (OSError, ValueError) as e:
                log.warning("Failed to load config.json: %s", e)
                self._file_config = {}
        else:
            log.info("No config.json found, using defaults/env")

    def get(self, key, default=None):
        """Get config value: env var > config.json > default."""
        env_name = ENV_MAP.get(key)
        if env_name:
            env_val = os.environ.get(env_name)
            if env_val is not None and env_val != "":
                if key in INT_KEYS:
                    return int(env_val)
                return env_val

        if key in self._file_config:
            val = self._file_config[key]
            if key in INT_KEYS and not isinstance(val, int):
                return int(val)
            return val

        if default is not None:
            return default
        return DEFAULTS.get(key)

    def is_configured(self):
        """True if a device type is set (from env or config.json)."""
        return bool(self.get("device_type"))

    def get_state_dir(self):
        """History snapshots go to state_dir, or <data_dir>/state."""
        return self.get("state_dir") or os.path.join(self.data_dir, "state")

    def to_driver_config(self) -> DriverConfig:
        """Build the driver config; secrets not configured are prompted for later."""
        config = DriverConfig(
            type=self.get("device_type"),
            host=self.get("host"),
            user=self.get("user"),
            known_hosts=self.get("known_hosts"),
            options=parse_options(self.get("options")),
        )

        password = self.get("password")
        if password:
            config.auth_password = lambda: password

        key_path = self.get("private_key")
        if key_path:
            with open(key_path, "r") as f:
                config.auth_private_keys = PrivateKeys(keys=[f.read()])

        return config
