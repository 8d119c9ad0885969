"""Single-shot acquisition from the command line."""

import argparse
import getpass
import os
import sys
import time

from . import drivers
from .archive import filename_base, write_archive
from .drivers.base import KNOWN_HOSTS_IGNORE, AuthType, DriverConfig, PrivateKeys
from .history import BinsHistoryEngine, ErrorsHistoryEngine
from .supervisor import STATE_READY, StateChange


def _option(value):
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError("invalid format for device specific option")
    return key, val


def _device_options_help():
    lines = ["device-specific options:"]
    for device_type in drivers.registry.types():
        desc = drivers.registry.desc(device_type)
        if not desc.options:
            continue
        lines.append(f"  {device_type}:")
        for key, option in sorted(desc.options.items()):
            lines.append(f"    {key}")
            lines.append(f"        {option.description}")
    return "\n".join(lines)


def build_parser():
    types = ", ".join(drivers.registry.types())
    parser = argparse.ArgumentParser(
        prog="dslsight-cli",
        description="Load the DSL line status from a device once.",
        epilog=_device_options_help(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("host", nargs="?", default="", help="device host name or address")
    parser.add_argument("-d", dest="device", required=True, help=f"device type (valid options: {types})")
    parser.add_argument("-u", dest="user", default="", help="user name (optional depending on device type)")
    parser.add_argument("-o", dest="options", action="append", type=_option, default=[],
                        metavar="KEY=VALUE", help="device-specific option")
    parser.add_argument("--private-key", default="",
                        help="private key file for SSH authentication")
    parser.add_argument("--known-hosts", default="",
                        help='known hosts file for SSH host key validation, skipped if set to "IGNORE"')
    parser.add_argument("--archive", action="store_true",
                        help="write a ZIP report instead of separate files")
    return parser


def _read_file(path):
    with open(path, "r") as f:
        return f.read()


def _load_known_hosts(path):
    if path == KNOWN_HOSTS_IGNORE:
        return KNOWN_HOSTS_IGNORE
    if not path:
        path = os.path.join(os.path.expanduser("~"), ".ssh", "known_hosts")
        if not os.path.exists(path):
            return ""
    return _read_file(path)


def build_config(args) -> DriverConfig:
    """Turn parsed arguments into a driver config with interactive prompts."""
    desc = drivers.registry.desc(args.device)
    config = DriverConfig(
        type=args.device,
        host=args.host,
        user=args.user,
        options=dict(args.options),
    )

    if desc.supported_auth_types & AuthType.PASSWORD:
        def password():
            print(" password required")
            value = getpass.getpass("Password: ")
            print("Authenticating...", end="", flush=True)
            return value
        config.auth_password = password

    if desc.supported_auth_types & AuthType.PRIVATE_KEYS:
        def passphrase(fingerprint):
            print(" passphrase required")
            print("Fingerprint: " + fingerprint)
            value = getpass.getpass("Passphrase: ")
            print("Authenticating...", end="", flush=True)
            return value
        keys = [_read_file(args.private_key)] if args.private_key else []
        config.auth_private_keys = PrivateKeys(keys=keys, passphrase=passphrase)

    if desc.requires_known_hosts:
        config.known_hosts = _load_known_hosts(args.known_hosts)

    if desc.supports_encryption_passphrase:
        config.encryption_passphrase = lambda: getpass.getpass("Encryption passphrase: ")

    return config


def _write(path, data):
    mode = "wb" if isinstance(data, bytes) else "w"
    with open(path, mode) as f:
        f.write(data)


def main(argv=None):
    drivers.register_all()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.device not in drivers.registry.types():
        parser.error("invalid or missing device type")

    try:
        config = build_config(args)
        drivers.registry.validate(config)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    print()
    print("Connecting...", end="", flush=True)
    try:
        driver = drivers.registry.new_driver(config)
    except Exception as e:
        print(" failed:", e)
        return 1

    try:
        print(" done")
        print("Loading data...", end="", flush=True)
        try:
            driver.update_data()
        except Exception as e:
            print(" failed:", e)
            return 1
        print(" done")
        print()

        status = driver.status()
        print(status.summary())

        now = time.time()
        base = filename_base(now)
        if args.archive:
            bins_history = BinsHistoryEngine()
            bins_history.update(status, driver.bins(), now)
            errors_history = ErrorsHistoryEngine()
            errors_history.update(status, now)
            state = StateChange(
                state=STATE_READY,
                has_data=True,
                time=now,
                raw_data=driver.raw_data(),
                status=status,
                bins=driver.bins(),
                bins_history=bins_history.data(),
                errors_history=errors_history.data(),
            )
            with open(base + ".zip", "wb") as f:
                write_archive(f, base, state)
        else:
            _write(base + "_summary.txt", status.summary())
            _write(base + "_raw.txt", driver.raw_data())
    except OSError as e:
        print("failed to write file:", e)
        return 1
    finally:
        driver.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
