"""Method calls understood by the BlueZ daemon."""

from __future__ import annotations

from typing import Any

from dbus_next import Variant

from .constants import (
    ADAPTER_INTERFACE,
    AGENT_MANAGER_INTERFACE,
    AGENT_MANAGER_PATH,
    BLUEZ_ROOT_PATH,
    BLUEZ_SERVICE,
    CONNECT_PROFILE,
    DEVICE_INTERFACE,
    GET_MANAGED_OBJECTS,
    OBJECT_MANAGER_INTERFACE,
    PAIR,
    PROP_POWERED,
    PROP_TRUSTED,
    PROPERTIES_INTERFACE,
    REGISTER_AGENT,
    REMOVE_DEVICE,
    REQUEST_DEFAULT_AGENT,
    SET_PROPERTY,
    START_DISCOVERY,
    STOP_DISCOVERY,
    UNREGISTER_AGENT,
)
from .transport import PendingCall, Transport


class BluezClient:
    """Thin wrapper issuing BlueZ method calls over a Transport.

    Every coroutine waits for the daemon's reply and raises the typed
    ``BluezError`` it reports. ``pair`` is the exception: it returns a
    ``PendingCall`` because pairing completes only after the agent has
    answered the daemon's authentication requests.
    """

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    async def _call(
        self,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: list[Any] | None = None,
    ) -> Any:
        reply = await self.transport.call(
            BLUEZ_SERVICE, path, interface, member, signature, body
        )
        return reply.body

    async def get_managed_objects(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Return object path -> interface -> property -> Variant."""
        body = await self._call(
            BLUEZ_ROOT_PATH, OBJECT_MANAGER_INTERFACE, GET_MANAGED_OBJECTS
        )
        return body[0] if body else {}

    async def _set_property(
        self, path: str, interface: str, name: str, value: Variant
    ) -> None:
        await self._call(
            path, PROPERTIES_INTERFACE, SET_PROPERTY, "ssv", [interface, name, value]
        )

    async def set_powered(self, adapter_path: str, powered: bool = True) -> None:
        await self._set_property(
            adapter_path, ADAPTER_INTERFACE, PROP_POWERED, Variant("b", powered)
        )

    async def start_discovery(self, adapter_path: str) -> None:
        await self._call(adapter_path, ADAPTER_INTERFACE, START_DISCOVERY)

    async def stop_discovery(self, adapter_path: str) -> None:
        await self._call(adapter_path, ADAPTER_INTERFACE, STOP_DISCOVERY)

    async def remove_device(self, adapter_path: str, device_path: str) -> None:
        await self._call(
            adapter_path, ADAPTER_INTERFACE, REMOVE_DEVICE, "o", [device_path]
        )

    def pair(self, device_path: str) -> PendingCall:
        return self.transport.send_async(
            BLUEZ_SERVICE, device_path, DEVICE_INTERFACE, PAIR
        )

    async def set_trusted(self, device_path: str, trusted: bool = True) -> None:
        await self._set_property(
            device_path, DEVICE_INTERFACE, PROP_TRUSTED, Variant("b", trusted)
        )

    async def connect_profile(self, device_path: str, uuid: str) -> None:
        await self._call(device_path, DEVICE_INTERFACE, CONNECT_PROFILE, "s", [uuid])

    async def register_agent(self, agent_path: str, capability: str) -> None:
        await self._call(
            AGENT_MANAGER_PATH,
            AGENT_MANAGER_INTERFACE,
            REGISTER_AGENT,
            "os",
            [agent_path, capability],
        )

    async def unregister_agent(self, agent_path: str) -> None:
        await self._call(
            AGENT_MANAGER_PATH, AGENT_MANAGER_INTERFACE, UNREGISTER_AGENT, "o", [agent_path]
        )

    async def request_default_agent(self, agent_path: str) -> None:
        await self._call(
            AGENT_MANAGER_PATH,
            AGENT_MANAGER_INTERFACE,
            REQUEST_DEFAULT_AGENT,
            "o",
            [agent_path],
        )
