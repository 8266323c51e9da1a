"""Decoding of inbound bus messages and BlueZ property maps.

Pure functions that turn dbus_next messages into typed events and copy
known, correctly typed property values onto cache records.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from typing import Any, NamedTuple

from dbus_next import Message, MessageType, Variant

from .constants import (
    INTERFACES_ADDED,
    INTERFACES_REMOVED,
    OBJECT_MANAGER_INTERFACE,
    PROP_ADAPTER,
    PROP_ADDRESS,
    PROP_CONNECTED,
    PROP_DISCOVERING,
    PROP_NAME,
    PROP_PAIRED,
    PROP_POWERED,
    PROP_TRUSTED,
    PROP_UUIDS,
    PROPERTIES_CHANGED,
    PROPERTIES_INTERFACE,
)

_LOGGER = logging.getLogger(__name__)


@dataclass
class PropertiesChanged:
    path: str
    interface: str
    changed: dict[str, Any]
    invalidated: list[str] = field(default_factory=list)


@dataclass
class InterfacesAdded:
    path: str
    interfaces: dict[str, dict[str, Any]]


@dataclass
class InterfacesRemoved:
    path: str
    interfaces: list[str]


@dataclass
class MethodCall:
    message: Message

    @property
    def path(self) -> str | None:
        return self.message.path

    @property
    def interface(self) -> str | None:
        return self.message.interface

    @property
    def member(self) -> str | None:
        return self.message.member


@dataclass
class MethodReturn:
    reply_serial: int


@dataclass
class ErrorReply:
    reply_serial: int
    error_name: str
    text: str


InboundEvent = (
    PropertiesChanged
    | InterfacesAdded
    | InterfacesRemoved
    | MethodCall
    | MethodReturn
    | ErrorReply
)


class PropertySpec(NamedTuple):
    """How one wire property lands on a record attribute."""

    signature: str
    attribute: str
    convert: Callable[[Any], Any]


def _string_set(value: Any) -> set[str]:
    if not all(isinstance(item, str) for item in value):
        raise TypeError("UUIDs must be strings")
    return set(value)


ADAPTER_PROPERTIES: dict[str, PropertySpec] = {
    PROP_ADDRESS: PropertySpec("s", "address", str),
    PROP_NAME: PropertySpec("s", "name", str),
    PROP_POWERED: PropertySpec("b", "powered", bool),
    PROP_DISCOVERING: PropertySpec("b", "discovering", bool),
}

DEVICE_PROPERTIES: dict[str, PropertySpec] = {
    PROP_ADAPTER: PropertySpec("o", "adapter", str),
    PROP_ADDRESS: PropertySpec("s", "address", str),
    PROP_NAME: PropertySpec("s", "name", str),
    PROP_PAIRED: PropertySpec("b", "paired", bool),
    PROP_TRUSTED: PropertySpec("b", "trusted", bool),
    PROP_CONNECTED: PropertySpec("b", "connected", bool),
    # A UUIDs update always replaces the whole profile set
    PROP_UUIDS: PropertySpec("as", "uuids", _string_set),
}


def apply_properties(
    target: Any, properties: Any, table: dict[str, PropertySpec]
) -> list[str]:
    """Copy recognised properties onto target and return the names applied.

    Properties missing from the map keep their current value. Unknown names
    are skipped silently; known names carrying the wrong type are skipped
    with a warning.
    """
    if not isinstance(properties, dict):
        _LOGGER.warning(
            "Ignoring property map for %s: expected dict, got %s",
            getattr(target, "path", target),
            type(properties).__name__,
        )
        return []

    applied: list[str] = []
    for name, value in properties.items():
        spec = table.get(name)
        if spec is None:
            continue
        if not isinstance(value, Variant) or value.signature != spec.signature:
            _LOGGER.warning(
                "Ignoring %s on %s: expected signature %r, got %r",
                name,
                getattr(target, "path", target),
                spec.signature,
                getattr(value, "signature", type(value).__name__),
            )
            continue
        try:
            converted = spec.convert(value.value)
        except (TypeError, ValueError) as exc:
            _LOGGER.warning(
                "Ignoring %s on %s: %s", name, getattr(target, "path", target), exc
            )
            continue
        setattr(target, spec.attribute, converted)
        applied.append(name)
    return applied


def _decode_signal(msg: Message) -> InboundEvent | None:
    body = msg.body or []

    if msg.interface == PROPERTIES_INTERFACE and msg.member == PROPERTIES_CHANGED:
        if len(body) < 2 or not isinstance(body[0], str) or not isinstance(
            body[1], dict
        ):
            _LOGGER.warning(
                "Malformed PropertiesChanged on %s (signature %r)",
                msg.path,
                msg.signature,
            )
            return None
        invalidated = body[2] if len(body) > 2 and isinstance(body[2], list) else []
        return PropertiesChanged(msg.path, body[0], body[1], invalidated)

    if msg.interface == OBJECT_MANAGER_INTERFACE and msg.member == INTERFACES_ADDED:
        if len(body) < 2 or not isinstance(body[0], str) or not isinstance(
            body[1], dict
        ):
            _LOGGER.warning("Malformed InterfacesAdded (signature %r)", msg.signature)
            return None
        return InterfacesAdded(body[0], body[1])

    if msg.interface == OBJECT_MANAGER_INTERFACE and msg.member == INTERFACES_REMOVED:
        if len(body) < 2 or not isinstance(body[0], str) or not isinstance(
            body[1], list
        ):
            _LOGGER.warning(
                "Malformed InterfacesRemoved (signature %r)", msg.signature
            )
            return None
        return InterfacesRemoved(body[0], body[1])

    _LOGGER.debug("Signal %s.%s on %s", msg.interface, msg.member, msg.path)
    return None


def decode_message(msg: Message) -> InboundEvent | None:
    """Classify an inbound message into one of the known event kinds.

    Returns None for signals this program does not track and for signals
    whose arguments do not have the expected shape.
    """
    if msg.message_type == MessageType.SIGNAL:
        return _decode_signal(msg)
    if msg.message_type == MessageType.METHOD_CALL:
        return MethodCall(msg)
    if msg.message_type == MessageType.METHOD_RETURN:
        return MethodReturn(msg.reply_serial)
    if msg.message_type == MessageType.ERROR:
        text = msg.body[0] if msg.body and isinstance(msg.body[0], str) else ""
        return ErrorReply(msg.reply_serial, msg.error_name or "", text)
    return None
