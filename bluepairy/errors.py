"""Typed errors for BlueZ method failures and bus setup problems."""

from __future__ import annotations

from dbus_next import Message, MessageType
from dbus_next.errors import DBusError
from dbus_next.validators import is_interface_name_valid

from .constants import BLUEZ_ERROR_PREFIX


class TransportError(RuntimeError):
    """The system bus could not be acquired or set up."""


class BluezError(DBusError):
    """Base class for errors reported by the BlueZ daemon."""

    error_name = BLUEZ_ERROR_PREFIX + "Failed"

    def __init__(self, text: str, error_name: str | None = None) -> None:
        super().__init__(error_name or self.error_name, text)

    def __str__(self) -> str:
        return f"{self.type}: {self.text}"


class AlreadyConnected(BluezError):
    error_name = BLUEZ_ERROR_PREFIX + "AlreadyConnected"


class AlreadyExists(BluezError):
    error_name = BLUEZ_ERROR_PREFIX + "AlreadyExists"


class AuthenticationFailed(BluezError):
    error_name = BLUEZ_ERROR_PREFIX + "AuthenticationFailed"


class AuthenticationRejected(BluezError):
    error_name = BLUEZ_ERROR_PREFIX + "AuthenticationRejected"


class AuthenticationTimeout(BluezError):
    error_name = BLUEZ_ERROR_PREFIX + "AuthenticationTimeout"


class ConnectionAttemptFailed(BluezError):
    error_name = BLUEZ_ERROR_PREFIX + "ConnectionAttemptFailed"


class Failed(BluezError):
    error_name = BLUEZ_ERROR_PREFIX + "Failed"


class UnknownBluezError(BluezError):
    """Unclassified daemon error, keeps the raw error name."""

    error_name = BLUEZ_ERROR_PREFIX + "Unknown"

    def __init__(self, error_name: str, text: str) -> None:
        self.raw_name = error_name
        if not is_interface_name_valid(error_name):
            error_name = self.error_name
        super().__init__(text, error_name)


_ERRORS_BY_NAME: dict[str, type[BluezError]] = {
    cls.error_name: cls
    for cls in (
        AlreadyConnected,
        AlreadyExists,
        AuthenticationFailed,
        AuthenticationRejected,
        AuthenticationTimeout,
        ConnectionAttemptFailed,
        Failed,
    )
}


def error_for(error_name: str, text: str) -> BluezError:
    """Return the typed error for a D-Bus error name."""

    cls = _ERRORS_BY_NAME.get(error_name)
    if cls is None:
        return UnknownBluezError(error_name, text)
    return cls(text)


def error_from_reply(reply: Message) -> BluezError:
    """Build the typed error carried by an ERROR reply message."""

    if reply.message_type != MessageType.ERROR:
        raise ValueError(f"Not an error reply: {reply.message_type}")
    text = ""
    if reply.signature.startswith("s") and reply.body:
        text = reply.body[0]
    return error_for(reply.error_name or "", text)
