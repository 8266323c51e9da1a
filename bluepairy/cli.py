"""Command line entry point: pair with a device before its consumer starts."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dbus_next.errors import DBusError
import voluptuous as vol

from .colored_logging import setup_colored_logging
from .config import (
    CONF_DISCOVERY_TIMEOUT,
    CONF_FORGET_FAILED,
    CONF_HIDP,
    CONF_NAME_PATTERN,
    CONF_PROFILES,
    BluepairyConfig,
)
from .constants import DEFAULT_DISCOVERY_TIMEOUT
from .errors import TransportError
from .manager import PairingManager, PairingResult
from .transport import Transport

_LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bluepairy",
        description=(
            "Discover, pair, trust and connect a Bluetooth device whose "
            "friendly name matches a regular expression"
        ),
    )
    parser.add_argument("friendly_name", help="Device name (regular expression)")
    parser.add_argument(
        "-u",
        "--profile-uuid",
        action="append",
        default=[],
        dest="profiles",
        metavar="UUID",
        help="Profile UUID the device must offer (repeatable)",
    )
    parser.add_argument(
        "--hidp",
        action="store_true",
        help="Require the HID profile to be present",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_DISCOVERY_TIMEOUT,
        help="Give up discovery after this many seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--forget-failed",
        action="store_true",
        help="Remove a device from its adapter after a failed pairing attempt",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser


async def async_main(config: BluepairyConfig) -> PairingResult:
    transport = await Transport.connect()
    try:
        manager = PairingManager(config, transport)
        return await manager.run()
    finally:
        transport.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_colored_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = BluepairyConfig.from_dict(
            {
                CONF_NAME_PATTERN: args.friendly_name,
                CONF_PROFILES: args.profiles,
                CONF_HIDP: args.hidp,
                CONF_DISCOVERY_TIMEOUT: args.timeout,
                CONF_FORGET_FAILED: args.forget_failed,
            }
        )
    except vol.Invalid as exc:
        parser.error(str(exc))

    if config.required_profiles:
        print("Bluetooth Profile UUIDs required to be offered by the device:")
        for uuid in sorted(config.required_profiles):
            print(uuid)

    try:
        result = asyncio.run(async_main(config))
    except TransportError as exc:
        _LOGGER.error("%s", exc)
        return 1
    except DBusError as exc:
        _LOGGER.error("BlueZ request failed: %s: %s", exc.type, exc.text)
        return 1
    except KeyboardInterrupt:
        _LOGGER.warning("Interrupted")
        return 1

    if not result.success:
        return 1
    for device in result.devices:
        print(f"{device.name} ({device.address})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
