"""
Shared fixtures: an in-memory BlueZ daemon behind a fake MessageBus.

FakeBluez implements the parts of dbus_next.aio.MessageBus the transport
uses (call, send, add_message_handler, remove_message_handler, disconnect)
and answers BlueZ method calls the way bluetoothd does: property changes
are signalled before the method reply, Pair asks the registered agent for
a PIN code and waits for the answer.
"""

import asyncio
import itertools
import re

import pytest
from dbus_next import Message, MessageType, Variant

from bluepairy.config import BluepairyConfig
from bluepairy.constants import (
    ADAPTER_INTERFACE,
    AGENT_INTERFACE,
    DEVICE_INTERFACE,
    HIDP_UUID,
    OBJECT_MANAGER_INTERFACE,
    PROPERTIES_INTERFACE,
    SPP_UUID,
)
from bluepairy.transport import Transport

ADAPTER_PATH = "/org/bluez/hci0"
DEVICE_PATH = "/org/bluez/hci0/dev_00_07_80_12_34_56"
DEVICE_ADDRESS = "00:07:80:12:34:56"
DEVICE_NAME = "Actilino ALO12345"


def adapter_props(powered=True, discovering=False, address="00:1A:7D:DA:71:13"):
    return {
        "Address": Variant("s", address),
        "Name": Variant("s", "raspberrypi"),
        "Powered": Variant("b", powered),
        "Discovering": Variant("b", discovering),
    }


def device_props(
    name=DEVICE_NAME,
    paired=False,
    trusted=False,
    uuids=(HIDP_UUID, SPP_UUID),
    adapter=ADAPTER_PATH,
    address=DEVICE_ADDRESS,
):
    return {
        "Adapter": Variant("o", adapter),
        "Address": Variant("s", address),
        "Name": Variant("s", name),
        "Paired": Variant("b", paired),
        "Trusted": Variant("b", trusted),
        "Connected": Variant("b", False),
        "UUIDs": Variant("as", list(uuids)),
    }


def properties_changed(path, interface, changed):
    return Message.new_signal(
        path,
        PROPERTIES_INTERFACE,
        "PropertiesChanged",
        "sa{sv}as",
        [interface, changed, []],
    )


def interfaces_added(path, interfaces):
    return Message.new_signal(
        "/", OBJECT_MANAGER_INTERFACE, "InterfacesAdded", "oa{sa{sv}}", [path, interfaces]
    )


def interfaces_removed(path, interfaces):
    return Message.new_signal(
        "/", OBJECT_MANAGER_INTERFACE, "InterfacesRemoved", "oas", [path, interfaces]
    )


class FakeBluez:
    """Scripted bluetoothd reachable through a MessageBus-like surface."""

    def __init__(self):
        self.handlers = []
        self.calls = []
        self.sent = []
        self.disconnected = False
        self.objects = {}
        # Devices that show up once discovery starts
        self.discoverable = {}
        self.agent_path = None
        self.pin_codes = []
        self.confirmations = []
        # Knobs for failure scenarios
        self.power_responds = True
        self.pair_errors = {}
        self.pair_uses_confirmation = False
        self.connect_errors = {}
        self.vanish_on_pair = set()
        self.abandoned_pairs = []
        self._serials = itertools.count(1)
        self._agent_replies = {}

    # -- MessageBus surface -------------------------------------------------

    def add_message_handler(self, handler):
        self.handlers.append(handler)

    def remove_message_handler(self, handler):
        self.handlers.remove(handler)

    def disconnect(self):
        self.disconnected = True

    def send(self, msg):
        self.sent.append(msg)
        waiter = self._agent_replies.pop(msg.reply_serial, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(msg)
        future = asyncio.get_running_loop().create_future()
        future.set_result(None)
        return future

    async def call(self, msg):
        msg.serial = next(self._serials)
        self.calls.append(msg)
        await asyncio.sleep(0)
        handler = getattr(self, f"_on_{msg.member}", None)
        if handler is None:
            reply = Message.new_error(
                msg,
                "org.freedesktop.DBus.Error.UnknownMethod",
                f"{msg.member} is not implemented",
            )
        else:
            reply = await handler(msg)
        self.deliver(reply)
        return reply

    # -- helpers for tests --------------------------------------------------

    def deliver(self, msg):
        """Pass an inbound message through the installed handlers."""
        if not msg.serial:
            msg.serial = next(self._serials)
        for handler in list(self.handlers):
            if handler(msg):
                return True
        return False

    def add_adapter(self, path=ADAPTER_PATH, **kwargs):
        self.objects.setdefault(path, {})[ADAPTER_INTERFACE] = adapter_props(**kwargs)

    def add_device(self, path=DEVICE_PATH, **kwargs):
        self.objects.setdefault(path, {})[DEVICE_INTERFACE] = device_props(**kwargs)

    def add_discoverable(self, path=DEVICE_PATH, **kwargs):
        self.discoverable[path] = device_props(**kwargs)

    def set_property(self, path, interface, name, value):
        self.objects[path][interface][name] = value
        self.deliver(properties_changed(path, interface, {name: value}))

    def remove_object(self, path):
        interfaces = list(self.objects.pop(path))
        self.deliver(interfaces_removed(path, interfaces))

    def members(self, member):
        return [msg for msg in self.calls if msg.member == member]

    # -- method handlers ----------------------------------------------------

    async def _ok(self, msg, signature="", body=None):
        return Message.new_method_return(msg, signature, body or [])

    async def _on_AddMatch(self, msg):
        return await self._ok(msg)

    async def _on_GetManagedObjects(self, msg):
        return await self._ok(msg, "a{oa{sa{sv}}}", [self.objects])

    async def _on_RegisterAgent(self, msg):
        self.agent_path = msg.body[0]
        return await self._ok(msg)

    async def _on_RequestDefaultAgent(self, msg):
        return await self._ok(msg)

    async def _on_UnregisterAgent(self, msg):
        self.agent_path = None
        return await self._ok(msg)

    async def _on_Set(self, msg):
        interface, name, value = msg.body
        if interface == ADAPTER_INTERFACE and name == "Powered":
            if self.power_responds:
                self.set_property(msg.path, interface, name, value)
        else:
            self.set_property(msg.path, interface, name, value)
        return await self._ok(msg)

    async def _on_StartDiscovery(self, msg):
        self.set_property(msg.path, ADAPTER_INTERFACE, "Discovering", Variant("b", True))
        for path, props in list(self.discoverable.items()):
            self.objects.setdefault(path, {})[DEVICE_INTERFACE] = props
            self.deliver(interfaces_added(path, {DEVICE_INTERFACE: props}))
        self.discoverable.clear()
        return await self._ok(msg)

    async def _on_StopDiscovery(self, msg):
        self.set_property(msg.path, ADAPTER_INTERFACE, "Discovering", Variant("b", False))
        return await self._ok(msg)

    async def _ask_agent(self, member, signature, body):
        request = Message(
            path=self.agent_path,
            interface=AGENT_INTERFACE,
            member=member,
            signature=signature,
            body=body,
            serial=next(self._serials),
        )
        waiter = asyncio.get_running_loop().create_future()
        self._agent_replies[request.serial] = waiter
        self.deliver(request)
        return await waiter

    async def _on_Pair(self, msg):
        path = msg.path
        if path in self.vanish_on_pair:
            self.remove_object(path)
            # bluetoothd never answers for a device that went away mid-pairing
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.abandoned_pairs.append(path)
                raise
        if path in self.pair_errors:
            name, text = self.pair_errors[path]
            return Message.new_error(msg, name, text)

        if self.pair_uses_confirmation:
            reply = await self._ask_agent("RequestConfirmation", "ou", [path, 123456])
            self.confirmations.append(reply)
        else:
            reply = await self._ask_agent("RequestPinCode", "o", [path])
            self.pin_codes.append(reply.body[0])
        if reply.message_type == MessageType.ERROR:
            return Message.new_error(
                msg, "org.bluez.Error.AuthenticationRejected", "Authentication Rejected"
            )
        self.set_property(path, DEVICE_INTERFACE, "Paired", Variant("b", True))
        return await self._ok(msg)

    async def _on_ConnectProfile(self, msg):
        uuid = msg.body[0]
        if uuid in self.connect_errors:
            name, text = self.connect_errors[uuid]
            return Message.new_error(msg, name, text)
        return await self._ok(msg)

    async def _on_RemoveDevice(self, msg):
        device_path = msg.body[0]
        if device_path not in self.objects:
            return Message.new_error(
                msg, "org.bluez.Error.DoesNotExist", "Does Not Exist"
            )
        self.remove_object(device_path)
        return await self._ok(msg)


@pytest.fixture
def bluez():
    """A fake daemon with one powered adapter and no devices."""
    daemon = FakeBluez()
    daemon.add_adapter()
    return daemon


@pytest.fixture
def transport(bluez):
    return Transport(bluez, call_timeout=2.0)


def make_config(pattern="^Actilino", profiles=(), hidp=False, **overrides):
    options = {
        "discovery_timeout": 3.0,
        "confirm_timeout": 0.5,
        "poll_interval": 0.01,
        **overrides,
    }
    return BluepairyConfig(
        name_pattern=re.compile(pattern),
        profiles=tuple(profiles),
        hidp=hidp,
        **options,
    )
