"""Discovery and pairing state machine driven over the BlueZ object cache."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import contextlib
from enum import Enum
import logging
from typing import NamedTuple

from dbus_next.errors import DBusError

from .agent import PairingAgent
from .bluez import BluezClient
from .config import BluepairyConfig
from .constants import ERROR_IN_PROGRESS
from .errors import AlreadyConnected, AlreadyExists, BluezError
from .objects import Adapter, Device, ObjectCache, has_profiles, name_matches
from .transport import Transport

_LOGGER = logging.getLogger(__name__)


class Stage(Enum):
    SETUP = "setup"
    POWER_UP = "power-up"
    MATCH_EXISTING = "match-existing"
    DISCOVER = "discover"
    RESOLVE = "resolve"
    DONE = "done"


class PairingResult(NamedTuple):
    """Outcome of a pairing run."""

    devices: list[Device]
    connected_profiles: list[str]

    @property
    def success(self) -> bool:
        return bool(self.devices)


class PairingManager:
    """Find, pair, trust and connect a device matching the configuration.

    The manager owns the object cache and the agent for the lifetime of a
    run. Every wait for daemon-side state polls ``Transport.read_dispatch``,
    so cached records may change or vanish across any ``await``; records are
    looked up again by path after each wait.
    """

    def __init__(
        self,
        config: BluepairyConfig,
        transport: Transport,
        cache: ObjectCache | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.cache = cache if cache is not None else ObjectCache()
        self.bluez = BluezClient(transport)
        self.agent = PairingAgent(self.cache)
        self.required = config.required_profiles
        self.stage = Stage.SETUP
        # Adapters that failed to confirm power-up or discovery are left alone
        self._excluded_adapters: set[str] = set()
        self._discovery_started: set[str] = set()
        transport.set_event_handler(self.cache.apply_event)

    def _set_stage(self, stage: Stage) -> None:
        _LOGGER.debug("Stage %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    # ------------------------------------------------------------------
    # Cache queries
    # ------------------------------------------------------------------

    def matches(self, device: Device) -> bool:
        return name_matches(self.config.name_pattern, device.name) and has_profiles(
            device, self.required
        )

    def _adapter_ready(self, adapter: Adapter | None) -> bool:
        return (
            adapter is not None
            and adapter.powered
            and adapter.path not in self._excluded_adapters
        )

    def powered_adapters(self) -> list[Adapter]:
        """Powered adapters not excluded earlier in this run."""
        return [
            adapter for adapter in self.cache.adapters if self._adapter_ready(adapter)
        ]

    def usable_devices(self) -> list[Device]:
        """Paired, matching devices on a usable adapter."""
        usable = []
        for device in self.cache.devices:
            if not self._adapter_ready(self.cache.adapter_of(device)):
                continue
            if device.paired and self.matches(device):
                usable.append(device)
        return usable

    def pairable_devices(self) -> list[Device]:
        """Unpaired, matching devices on a usable adapter."""
        pairable = []
        for device in self.cache.devices:
            if not self._adapter_ready(self.cache.adapter_of(device)):
                continue
            if not device.paired and self.matches(device):
                pairable.append(device)
        return pairable

    def is_discovering(self) -> bool:
        return any(adapter.discovering for adapter in self.powered_adapters())

    def _adapter_gone_or(self, path: str, attribute: str) -> bool:
        adapter = self.cache.adapter(path)
        return adapter is None or getattr(adapter, attribute)

    def _device_gone_or(self, path: str, attribute: str) -> bool:
        device = self.cache.device(path)
        return device is None or getattr(device, attribute)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def wait_until(self, predicate: Callable[[], bool], timeout: float) -> bool:
        """Dispatch inbound messages until predicate holds or timeout expires."""

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await self.transport.read_dispatch(
                min(self.config.poll_interval, remaining)
            )
        return True

    # ------------------------------------------------------------------
    # Daemon operations
    # ------------------------------------------------------------------

    async def load_objects(self) -> None:
        """Enumerate adapters and devices already known to the daemon."""

        objects = await self.bluez.get_managed_objects()
        self.cache.load_managed_objects(objects)
        _LOGGER.debug(
            "Found %d adapter(s) and %d device(s)",
            len(self.cache.adapters),
            len(self.cache.devices),
        )

    async def power_up_adapters(self) -> None:
        """Power on every adapter that is off and wait briefly for each."""

        waiting: list[str] = []
        for adapter in self.cache.adapters:
            if adapter.powered:
                continue
            _LOGGER.info(
                "Powering up controller %s (%s)", adapter.label, adapter.address
            )
            try:
                await self.bluez.set_powered(adapter.path, True)
            except BluezError as exc:
                _LOGGER.warning(
                    "Failed to power on controller %s: %s", adapter.label, exc
                )
                self._excluded_adapters.add(adapter.path)
                continue
            waiting.append(adapter.path)

        if not waiting:
            return
        await self.wait_until(
            lambda: all(self._adapter_gone_or(path, "powered") for path in waiting),
            self.config.confirm_timeout,
        )
        for path in waiting:
            adapter = self.cache.adapter(path)
            if adapter is None:
                _LOGGER.warning("Controller %s disappeared while powering up", path)
            elif not adapter.powered:
                _LOGGER.warning(
                    "Controller %s did not power up within %.1f seconds, skipping it",
                    adapter.label,
                    self.config.confirm_timeout,
                )
                self._excluded_adapters.add(path)

    async def start_discovery(self) -> None:
        """Start discovery on powered adapters that are not discovering yet."""

        waiting: list[str] = []
        for adapter in self.powered_adapters():
            if adapter.discovering:
                continue
            _LOGGER.info("Starting discovery on %s (%s)", adapter.label, adapter.path)
            try:
                await self.bluez.start_discovery(adapter.path)
            except BluezError as exc:
                if exc.type != ERROR_IN_PROGRESS:
                    _LOGGER.warning(
                        "Failed to start discovery on %s: %s", adapter.label, exc
                    )
                    self._excluded_adapters.add(adapter.path)
                    continue
            self._discovery_started.add(adapter.path)
            waiting.append(adapter.path)

        if not waiting:
            return
        await self.wait_until(
            lambda: all(self._adapter_gone_or(path, "discovering") for path in waiting),
            self.config.confirm_timeout,
        )
        for path in waiting:
            adapter = self.cache.adapter(path)
            if adapter is None:
                _LOGGER.warning("Controller %s disappeared while starting discovery", path)
            elif adapter.discovering:
                _LOGGER.info("Adapter %s is discovering", adapter.label)
            else:
                _LOGGER.warning(
                    "Adapter %s did not confirm discovery, skipping it", adapter.label
                )
                self._excluded_adapters.add(path)

    async def stop_discovery(self) -> None:
        """Stop discovery on adapters this run started it on."""

        for path in sorted(self._discovery_started):
            adapter = self.cache.adapter(path)
            if adapter is None or not adapter.discovering:
                continue
            try:
                await self.bluez.stop_discovery(path)
            except BluezError as exc:
                _LOGGER.debug("Could not stop discovery on %s: %s", adapter.label, exc)
        self._discovery_started.clear()

    async def pair_device(self, device: Device) -> bool:
        """Pair and trust a device.

        Returns False if the device vanished before pairing completed.

        Raises:
            BluezError: The daemon rejected pairing or trusting the device
        """
        path = device.path
        _LOGGER.info("Trying to pair with %s (%s)", device.name, device.address)
        pending = self.bluez.pair(path)
        while not pending.ready():
            if not self.cache.has_device(path):
                _LOGGER.warning("Device %s disappeared while pairing", path)
                pending.cancel()
                return False
            await self.transport.read_dispatch(self.config.poll_interval)

        try:
            await pending.get()
        except AlreadyExists:
            _LOGGER.info("Device %s is already paired", path)

        # Apply whatever arrived together with the reply
        await self.transport.read_dispatch(0)
        await self.wait_until(
            lambda: self._device_gone_or(path, "paired"), self.config.confirm_timeout
        )
        current = self.cache.device(path)
        if current is None:
            _LOGGER.warning("Device %s disappeared after pairing", path)
            return False
        _LOGGER.info("Paired with %s (%s)", current.name, current.address)
        await self.trust_device(current)
        return True

    async def trust_device(self, device: Device) -> None:
        """Mark a device trusted unless it already is."""

        if device.trusted:
            _LOGGER.debug("Device %s is already trusted", device.path)
            return
        path = device.path
        _LOGGER.debug("Trusting device %s", path)
        await self.bluez.set_trusted(path, True)
        confirmed = await self.wait_until(
            lambda: self._device_gone_or(path, "trusted"), self.config.confirm_timeout
        )
        if not confirmed:
            _LOGGER.warning("Daemon did not confirm trust for %s", path)

    async def forget_device(self, device: Device) -> None:
        """Ask the device's adapter to remove it."""

        adapter = self.cache.adapter_of(device)
        if adapter is None:
            _LOGGER.warning(
                "Cannot forget %s: adapter %s is gone", device.path, device.adapter
            )
            return
        _LOGGER.info("Forgetting %s (%s)", device.name, device.address)
        try:
            await self.bluez.remove_device(adapter.path, device.path)
        except BluezError as exc:
            _LOGGER.warning("Failed to forget %s: %s", device.path, exc)

    async def connect_profiles(self, device: Device) -> list[str]:
        """Connect every required profile; any daemon error is fatal.

        Raises:
            BluezError: A profile connection failed
        """
        connected = []
        for uuid in sorted(self.required):
            _LOGGER.info("Connecting profile %s on %s", uuid, device.name)
            try:
                await self.bluez.connect_profile(device.path, uuid)
            except AlreadyConnected:
                _LOGGER.debug("Profile %s already connected", uuid)
            connected.append(uuid)
        return connected

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _try_pair(self, path: str) -> None:
        device = self.cache.device(path)
        if device is None:
            return
        try:
            await self.pair_device(device)
        except BluezError as exc:
            _LOGGER.warning(
                "Pairing with %s (%s) failed: %s", device.name, device.address, exc
            )
            if self.config.forget_failed and self.cache.has_device(path):
                await self.forget_device(device)

    def _report_missing_profiles(self, reported: set[str]) -> None:
        for device in self.cache.devices:
            if device.path in reported:
                continue
            if not name_matches(self.config.name_pattern, device.name):
                continue
            missing = self.required - device.uuids
            if missing:
                reported.add(device.path)
                _LOGGER.debug(
                    "Device %s (%s) matches but does not offer %s",
                    device.name,
                    device.address,
                    ", ".join(sorted(missing)),
                )

    async def discover(self, deadline: float) -> list[Device]:
        """Discover and pair until a usable device shows up or deadline passes."""

        loop = asyncio.get_running_loop()
        reported: set[str] = set()
        try:
            while loop.time() < deadline:
                await self.transport.read_dispatch(self.config.poll_interval)
                self._report_missing_profiles(reported)

                pairable = [device.path for device in self.pairable_devices()]
                if pairable:
                    for path in pairable:
                        await self._try_pair(path)
                elif not self.is_discovering():
                    await self.start_discovery()

                usable = self.usable_devices()
                if usable:
                    return usable
        finally:
            await self.stop_discovery()

        _LOGGER.error(
            "No device matching %r found within %.0f seconds",
            self.config.name_pattern.pattern,
            self.config.discovery_timeout,
        )
        return []

    async def resolve(self, devices: list[Device]) -> PairingResult:
        """Connect required profiles when exactly one usable device exists."""

        if not devices:
            return PairingResult([], [])
        for device in devices:
            adapter = self.cache.adapter_of(device)
            _LOGGER.info(
                "Usable pairing with %s (%s) via %s found",
                device.name,
                device.address,
                adapter.address if adapter else device.adapter,
            )
        if len(devices) > 1:
            _LOGGER.info(
                "%d usable devices found, not connecting profiles", len(devices)
            )
            return PairingResult(devices, [])
        connected = await self.connect_profiles(devices[0])
        return PairingResult(devices, connected)

    async def setup(self) -> None:
        await self.load_objects()
        await self.agent.register(self.bluez)

    async def teardown(self) -> None:
        with contextlib.suppress(DBusError):
            await self.bluez.unregister_agent(self.agent.path)
            _LOGGER.debug("Agent unregistered")

    async def run(self) -> PairingResult:
        """Run the whole power-up, match, discover, resolve sequence."""

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.discovery_timeout
        if self.required:
            _LOGGER.debug(
                "Profile UUIDs required to be offered by the device: %s",
                ", ".join(sorted(self.required)),
            )

        await self.setup()
        try:
            if not self.cache.adapters:
                _LOGGER.error("No adapter present")
                return PairingResult([], [])

            self._set_stage(Stage.POWER_UP)
            await self.power_up_adapters()
            if not self.powered_adapters():
                _LOGGER.error("Failed to power up any controller")
                return PairingResult([], [])

            self._set_stage(Stage.MATCH_EXISTING)
            devices = self.usable_devices()
            if not devices:
                self._set_stage(Stage.DISCOVER)
                devices = await self.discover(deadline)

            self._set_stage(Stage.RESOLVE)
            return await self.resolve(devices)
        finally:
            self._set_stage(Stage.DONE)
            await self.teardown()
