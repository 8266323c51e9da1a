"""In-memory mirror of the BlueZ object graph."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging
import re
from typing import Any

from .constants import ADAPTER_INTERFACE, DEVICE_INTERFACE
from .decoder import (
    ADAPTER_PROPERTIES,
    DEVICE_PROPERTIES,
    InboundEvent,
    InterfacesAdded,
    InterfacesRemoved,
    PropertiesChanged,
    apply_properties,
)

_LOGGER = logging.getLogger(__name__)


@dataclass
class Adapter:
    """A local Bluetooth controller (org.bluez.Adapter1)."""

    path: str
    address: str = ""
    name: str = ""
    powered: bool = False
    discovering: bool = False

    @property
    def label(self) -> str:
        """Human friendly adapter name for logs."""
        return self.path.rsplit("/", maxsplit=1)[-1]


@dataclass
class Device:
    """A remote Bluetooth device (org.bluez.Device1).

    ``adapter`` is the object path of the owning adapter, not the adapter
    itself. Resolve it through ``ObjectCache.adapter_of`` which returns None
    once the adapter has been removed.
    """

    path: str
    address: str = ""
    name: str = ""
    paired: bool = False
    trusted: bool = False
    connected: bool = False
    adapter: str | None = None
    uuids: set[str] = field(default_factory=set)


def name_matches(pattern: re.Pattern[str], name: str) -> bool:
    """Return True if pattern finds a non-empty match anywhere in name."""

    return any(match.group(0) for match in pattern.finditer(name))


def has_profiles(device: Device, required: Iterable[str]) -> bool:
    """Return True if the device offers every required profile UUID."""

    return device.uuids.issuperset(required)


class ObjectCache:
    """Adapters and devices keyed by object path."""

    def __init__(self) -> None:
        self._adapters: dict[str, Adapter] = {}
        self._devices: dict[str, Device] = {}

    @property
    def adapters(self) -> list[Adapter]:
        return list(self._adapters.values())

    @property
    def devices(self) -> list[Device]:
        return list(self._devices.values())

    def adapter(self, path: str | None) -> Adapter | None:
        if path is None:
            return None
        return self._adapters.get(path)

    def device(self, path: str) -> Device | None:
        return self._devices.get(path)

    def has_adapter(self, path: str | None) -> bool:
        return path is not None and path in self._adapters

    def has_device(self, path: str) -> bool:
        return path in self._devices

    def adapter_of(self, device: Device) -> Adapter | None:
        """Return the device's adapter if it is still known."""
        return self.adapter(device.adapter)

    def get_or_create_adapter(self, path: str) -> Adapter:
        adapter = self._adapters.get(path)
        if adapter is None:
            adapter = self._adapters[path] = Adapter(path)
            _LOGGER.debug("Tracking adapter %s", path)
        return adapter

    def get_or_create_device(self, path: str) -> Device:
        device = self._devices.get(path)
        if device is None:
            device = self._devices[path] = Device(path)
            _LOGGER.debug("Tracking device %s", path)
        return device

    def remove_adapter(self, path: str) -> None:
        if self._adapters.pop(path, None) is None:
            _LOGGER.warning("Removal of unknown adapter %s ignored", path)
        else:
            _LOGGER.debug("Adapter %s removed", path)

    def remove_device(self, path: str) -> None:
        if self._devices.pop(path, None) is None:
            _LOGGER.warning("Removal of unknown device %s ignored", path)
        else:
            _LOGGER.debug("Device %s removed", path)

    def apply_properties(self, target: Adapter | Device, properties: Any) -> list[str]:
        """Merge a (partial) property map into an adapter or device."""

        table = ADAPTER_PROPERTIES if isinstance(target, Adapter) else DEVICE_PROPERTIES
        return apply_properties(target, properties, table)

    def _apply_interface(self, path: str, interface: str, properties: Any) -> None:
        if interface == ADAPTER_INTERFACE:
            self.apply_properties(self.get_or_create_adapter(path), properties)
        elif interface == DEVICE_INTERFACE:
            self.apply_properties(self.get_or_create_device(path), properties)

    def load_managed_objects(self, objects: Any) -> None:
        """Populate the cache from a GetManagedObjects reply body."""

        if not isinstance(objects, dict):
            _LOGGER.warning(
                "Ignoring managed objects: expected dict, got %s",
                type(objects).__name__,
            )
            return
        for path, interfaces in objects.items():
            if not isinstance(interfaces, dict):
                _LOGGER.warning("Ignoring malformed interface map for %s", path)
                continue
            for interface, properties in interfaces.items():
                self._apply_interface(path, interface, properties)

    def apply_event(self, event: InboundEvent) -> None:
        """Update the cache from a decoded signal; other events are ignored."""

        if isinstance(event, PropertiesChanged):
            self._apply_interface(event.path, event.interface, event.changed)
        elif isinstance(event, InterfacesAdded):
            for interface, properties in event.interfaces.items():
                self._apply_interface(event.path, interface, properties)
        elif isinstance(event, InterfacesRemoved):
            # Device first, in case one path ever carried both
            if DEVICE_INTERFACE in event.interfaces:
                self.remove_device(event.path)
            if ADAPTER_INTERFACE in event.interfaces:
                self.remove_adapter(event.path)
