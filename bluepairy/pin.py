"""PIN guessing for devices that expect a serial-derived PIN code.

Handy Tech braille displays advertise a name ending in their serial number
and expect a PIN derived from it. Everything else gets the fallback PIN.
"""

from __future__ import annotations

import re

from .constants import FALLBACK_PIN

SERIAL_LENGTH = 5

# (family, template) pairs matched against the whole name; group 1 captures
# the trailing serial
PIN_TEMPLATES: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (family, re.compile(template))
    for family, template in (
        ("Actilino", r"Actilino ALO([0-9]+)"),
        ("Active Star", r"Active Star AS([0-9]+)"),
        ("Active Braille", r"Active Braille AB[0-9]/([0-9]+)"),
        ("Basic Braille", r"Basic Braille BB[0-9]/([0-9]+)"),
        ("Basic Braille Plus", r"Basic Braille Plus BP[0-9]/([0-9]+)"),
        ("Braille Star", r"Braille Star 40 BS([0-9]+)"),
        ("Braillino", r"Braillino BL([0-9]+)"),
        ("Braille Wave", r"Braille Wave BW([0-9]+)"),
        ("Easy Braille", r"Easy Braille EBR([0-9]+)"),
        ("Activator", r"Activator AC[0-9]/([0-9]+)"),
    )
)


def match_serial(name: str) -> tuple[str, str] | None:
    """Return (family, serial) for the first template matching name."""

    for family, template in PIN_TEMPLATES:
        match = template.fullmatch(name)
        if match:
            return family, match.group(1)
    return None


def pin_from_serial(serial: str) -> str:
    """Shift every serial digit by its 1-based position, modulo 10."""

    return "".join(
        str((int(digit) + index + 1) % 10) for index, digit in enumerate(serial)
    )


def guess_pin(name: str | None) -> str:
    """Return the PIN a device with this advertised name most likely expects.

    Args:
        name: Friendly name reported by the daemon (may be empty)

    Returns:
        A 5 digit PIN for known name templates with a 5 digit serial,
        otherwise the fallback PIN "0000"
    """
    if not name:
        return FALLBACK_PIN
    matched = match_serial(name)
    if matched is None:
        return FALLBACK_PIN
    _, serial = matched
    if len(serial) != SERIAL_LENGTH:
        return FALLBACK_PIN
    return pin_from_serial(serial)
