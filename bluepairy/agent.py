"""Pairing agent answering BlueZ authentication requests."""

from __future__ import annotations

from collections.abc import Callable
import logging

from dbus_next import Message
from dbus_next.errors import DBusError

from .bluez import BluezClient
from .constants import (
    AGENT_CAPABILITY,
    AGENT_PATH,
    ERROR_REJECTED,
    REQUEST_CONFIRMATION,
    REQUEST_PIN_CODE,
)
from .decoder import MethodCall
from .errors import AlreadyExists, TransportError, UnknownBluezError
from .objects import ObjectCache
from .pin import guess_pin

_LOGGER = logging.getLogger(__name__)


class PairingAgent:
    """org.bluez.Agent1 implementation for unattended pairing.

    PIN codes are derived from the device name, numeric comparison is
    always confirmed. Other agent methods are not claimed and get the
    bus library's default reply.
    """

    def __init__(
        self,
        cache: ObjectCache,
        pin_for: Callable[[str], str] = guess_pin,
        path: str = AGENT_PATH,
    ) -> None:
        """Initialize the pairing agent.

        Args:
            cache: Object cache used to look up the requesting device
            pin_for: Maps a device name to the PIN code to answer with
            path: Object path the agent is exported at
        """
        self.cache = cache
        self.pin_for = pin_for
        self.path = path

    def handle(self, call: MethodCall) -> Message:
        """Return the reply for an agent method call.

        Raises:
            UnknownBluezError: The call cannot be answered (sent back as
                org.bluez.Error.Rejected)
        """
        msg = call.message
        if call.member == REQUEST_PIN_CODE:
            return self.request_pin_code(msg)
        if call.member == REQUEST_CONFIRMATION:
            return self.request_confirmation(msg)
        raise UnknownBluezError(ERROR_REJECTED, f"{call.member} is not supported")

    def request_pin_code(self, msg: Message) -> Message:
        """Handle PIN code request from BlueZ.

        Args:
            msg: Method call carrying the device object path

        Returns:
            Method return carrying the PIN code as string
        """
        if not msg.body or not isinstance(msg.body[0], str):
            _LOGGER.warning("RequestPinCode without device path: %r", msg.body)
            raise UnknownBluezError(ERROR_REJECTED, "Missing device path")

        device_path = msg.body[0]
        # The request may name a device we have not seen a signal for yet
        device = self.cache.get_or_create_device(device_path)
        pin = self.pin_for(device.name)
        _LOGGER.info(
            "PIN code requested for %s (%s), answering %s",
            device.name or "unnamed device",
            device_path,
            pin,
        )
        return Message.new_method_return(msg, "s", [pin])

    def request_confirmation(self, msg: Message) -> Message:
        """Handle confirmation request from BlueZ by always accepting."""
        device_path = msg.body[0] if msg.body else None
        passkey = msg.body[1] if len(msg.body or []) > 1 else None
        _LOGGER.info(
            "Confirmation requested for device %s with passkey: %s",
            device_path,
            f"{passkey:06d}" if isinstance(passkey, int) else passkey,
        )
        _LOGGER.debug("Auto-confirming passkey")
        return Message.new_method_return(msg)

    async def register(self, bluez: BluezClient) -> None:
        """Register with the agent manager and ask to be the default agent."""

        bluez.transport.export_agent(self.path, self)
        try:
            try:
                await bluez.register_agent(self.path, AGENT_CAPABILITY)
            except AlreadyExists as exc:
                _LOGGER.warning(
                    "Failed to register agent (may already exist): %s", exc
                )
                await bluez.unregister_agent(self.path)
                await bluez.register_agent(self.path, AGENT_CAPABILITY)
                _LOGGER.info("Re-registered agent after unregistering old one")
        except DBusError as exc:
            raise TransportError(f"Failed to register pairing agent: {exc}") from exc
        _LOGGER.info("Agent registered with BlueZ at path: %s", self.path)

        try:
            await bluez.request_default_agent(self.path)
            _LOGGER.debug("Agent set as default")
        except DBusError as exc:
            _LOGGER.warning("Could not become the default agent: %s", exc)
