"""Tests for inbound message classification and property decoding."""

import logging

from dbus_next import Message, Variant

from bluepairy.decoder import (
    DEVICE_PROPERTIES,
    ErrorReply,
    InterfacesAdded,
    InterfacesRemoved,
    MethodCall,
    MethodReturn,
    PropertiesChanged,
    apply_properties,
    decode_message,
)
from bluepairy.objects import Device

from conftest import (
    DEVICE_PATH,
    device_props,
    interfaces_added,
    interfaces_removed,
    properties_changed,
)


def _call(member="RequestPinCode"):
    return Message(
        path="/bluepairy/agent",
        interface="org.bluez.Agent1",
        member=member,
        signature="o",
        body=[DEVICE_PATH],
        serial=3,
    )


def test_decode_properties_changed():
    msg = properties_changed(
        DEVICE_PATH, "org.bluez.Device1", {"Paired": Variant("b", True)}
    )
    event = decode_message(msg)
    assert isinstance(event, PropertiesChanged)
    assert event.path == DEVICE_PATH
    assert event.interface == "org.bluez.Device1"
    assert event.changed["Paired"].value is True


def test_decode_interfaces_added_and_removed():
    added = decode_message(
        interfaces_added(DEVICE_PATH, {"org.bluez.Device1": device_props()})
    )
    assert isinstance(added, InterfacesAdded)
    assert added.path == DEVICE_PATH
    assert "org.bluez.Device1" in added.interfaces

    removed = decode_message(interfaces_removed(DEVICE_PATH, ["org.bluez.Device1"]))
    assert isinstance(removed, InterfacesRemoved)
    assert removed.interfaces == ["org.bluez.Device1"]


def test_decode_method_call_and_replies():
    call = _call()
    event = decode_message(call)
    assert isinstance(event, MethodCall)
    assert event.member == "RequestPinCode"
    assert event.path == "/bluepairy/agent"

    ret = decode_message(Message.new_method_return(call, "s", ["0000"]))
    assert ret == MethodReturn(3)

    err = decode_message(Message.new_error(call, "org.bluez.Error.Rejected", "no"))
    assert err == ErrorReply(3, "org.bluez.Error.Rejected", "no")


def test_decode_ignores_untracked_signal():
    msg = Message.new_signal("/org/bluez/hci0", "org.bluez.Adapter1", "Whatever")
    assert decode_message(msg) is None


def test_decode_malformed_signal(caplog):
    msg = Message.new_signal(
        "/", "org.freedesktop.DBus.ObjectManager", "InterfacesAdded", "s", ["oops"]
    )
    with caplog.at_level(logging.WARNING):
        assert decode_message(msg) is None
    assert "Malformed InterfacesAdded" in caplog.text


def test_apply_properties_partial_update():
    device = Device(DEVICE_PATH, name="Old", paired=True)
    applied = apply_properties(
        device, {"Name": Variant("s", "New")}, DEVICE_PROPERTIES
    )
    assert applied == ["Name"]
    assert device.name == "New"
    assert device.paired is True


def test_apply_properties_skips_wrong_type(caplog):
    device = Device(DEVICE_PATH, paired=False)
    with caplog.at_level(logging.WARNING):
        applied = apply_properties(
            device,
            {"Paired": Variant("s", "yes"), "Trusted": Variant("b", True)},
            DEVICE_PROPERTIES,
        )
    assert applied == ["Trusted"]
    assert device.paired is False
    assert device.trusted is True
    assert "Ignoring Paired" in caplog.text


def test_apply_properties_skips_unknown_and_bare_values():
    device = Device(DEVICE_PATH)
    applied = apply_properties(
        device,
        {"RSSI": Variant("n", -40), "Name": "not a variant"},
        DEVICE_PROPERTIES,
    )
    assert applied == []
    assert device.name == ""


def test_apply_properties_uuids_replace_whole_set():
    device = Device(DEVICE_PATH, uuids={"a", "b"})
    apply_properties(device, {"UUIDs": Variant("as", ["c"])}, DEVICE_PROPERTIES)
    assert device.uuids == {"c"}


def test_apply_properties_rejects_non_mapping():
    device = Device(DEVICE_PATH)
    assert apply_properties(device, ["Name"], DEVICE_PROPERTIES) == []

