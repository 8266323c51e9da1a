"""Run configuration, validated with voluptuous."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any

import voluptuous as vol

from .constants import (
    DEFAULT_CONFIRM_TIMEOUT,
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    HIDP_UUID,
)

CONF_NAME_PATTERN = "name_pattern"
CONF_PROFILES = "profiles"
CONF_HIDP = "hidp"
CONF_DISCOVERY_TIMEOUT = "discovery_timeout"
CONF_CONFIRM_TIMEOUT = "confirm_timeout"
CONF_POLL_INTERVAL = "poll_interval"
CONF_FORGET_FAILED = "forget_failed"


def _regex(value: Any) -> re.Pattern[str]:
    try:
        return re.compile(value)
    except re.error as exc:
        raise vol.Invalid(f"invalid regular expression: {exc}") from exc


_POSITIVE = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_NAME_PATTERN): vol.All(
            str,
            vol.Length(min=1, msg="empty friendly name is not allowed"),
            _regex,
        ),
        vol.Optional(CONF_PROFILES, default=list): [
            vol.All(
                str,
                vol.Strip,
                vol.Length(min=1, msg="empty UUIDs are not allowed"),
                vol.Lower,
            )
        ],
        vol.Optional(CONF_HIDP, default=False): bool,
        vol.Optional(CONF_DISCOVERY_TIMEOUT, default=DEFAULT_DISCOVERY_TIMEOUT): _POSITIVE,
        vol.Optional(CONF_CONFIRM_TIMEOUT, default=DEFAULT_CONFIRM_TIMEOUT): _POSITIVE,
        vol.Optional(CONF_POLL_INTERVAL, default=DEFAULT_POLL_INTERVAL): _POSITIVE,
        vol.Optional(CONF_FORGET_FAILED, default=False): bool,
    }
)


@dataclass(frozen=True)
class BluepairyConfig:
    name_pattern: re.Pattern[str]
    profiles: tuple[str, ...] = ()
    hidp: bool = False
    discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    # Remove a device from its adapter after a failed pairing attempt
    forget_failed: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BluepairyConfig:
        """Validate raw options and build a config.

        Raises:
            vol.Invalid: The options do not pass validation
        """
        conf = CONFIG_SCHEMA(data)
        return cls(
            name_pattern=conf[CONF_NAME_PATTERN],
            profiles=tuple(conf[CONF_PROFILES]),
            hidp=conf[CONF_HIDP],
            discovery_timeout=conf[CONF_DISCOVERY_TIMEOUT],
            confirm_timeout=conf[CONF_CONFIRM_TIMEOUT],
            poll_interval=conf[CONF_POLL_INTERVAL],
            forget_failed=conf[CONF_FORGET_FAILED],
        )

    @property
    def required_profiles(self) -> frozenset[str]:
        """Profile UUIDs a device must offer, including HID when requested."""
        profiles = set(self.profiles)
        if self.hidp:
            profiles.add(HIDP_UUID)
        return frozenset(profiles)
