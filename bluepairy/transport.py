"""System bus transport with an explicit, ordered dispatch step.

Inbound signals and agent method calls are queued by a dbus_next message
handler as they arrive and are only applied when ``read_dispatch`` drains
the queue. Callers waiting for the daemon poll ``read_dispatch`` so the
object cache changes underneath them, in arrival order, while they wait.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
import contextlib
import logging
from typing import Any, Protocol

from dbus_next import BusType, ErrorType, Message, MessageType
from dbus_next.aio import MessageBus
from dbus_next.errors import DBusError

from .constants import (
    ADD_MATCH,
    AGENT_INTERFACE,
    CALL_TIMEOUT,
    DBUS_PATH,
    DBUS_SERVICE,
    HANDLED_AGENT_METHODS,
    SIGNAL_MATCH_RULE,
)
from .decoder import ErrorReply, InboundEvent, MethodCall, MethodReturn, decode_message
from .errors import BluezError, TransportError, UnknownBluezError, error_from_reply

_LOGGER = logging.getLogger(__name__)


class AgentHandler(Protocol):
    def handle(self, call: MethodCall) -> Message: ...


def _raise_for_error(reply: Message | None) -> Message:
    if reply is None:
        raise UnknownBluezError(ErrorType.NO_REPLY.value, "No reply received")
    if reply.message_type == MessageType.ERROR:
        raise error_from_reply(reply)
    return reply


class PendingCall:
    """An outstanding method call whose reply has not been consumed yet."""

    def __init__(self, future: asyncio.Future, description: str) -> None:
        self._future = future
        self.description = description

    def ready(self) -> bool:
        """Return True once the reply (or a failure) has arrived."""
        return self._future.done()

    async def block(self) -> None:
        """Wait until the reply has arrived without consuming it."""
        await asyncio.wait({self._future})

    async def get(self) -> Message:
        """Return the reply, raising the typed daemon error if it carries one."""
        reply = await self._future
        return _raise_for_error(reply)

    def cancel(self) -> None:
        """Stop waiting for the reply; a late reply is dropped."""
        self._future.cancel()


class Transport:
    """One long-lived system bus connection shared by every operation."""

    def __init__(self, bus: Any, call_timeout: float = CALL_TIMEOUT) -> None:
        self._bus = bus
        self._call_timeout = call_timeout
        self._inbox: deque[Message] = deque()
        self._arrived = asyncio.Event()
        self._agents: dict[str, AgentHandler] = {}
        self._event_handler: Callable[[InboundEvent], None] | None = None
        bus.add_message_handler(self._on_message)

    @classmethod
    async def connect(cls) -> Transport:
        """Open the system bus and subscribe to BlueZ signals."""

        try:
            bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
            _LOGGER.debug("Connected to D-Bus system bus")
        except (DBusError, OSError) as exc:
            raise TransportError("Failed to connect to D-Bus system bus") from exc

        transport = cls(bus)
        try:
            await transport.call(
                DBUS_SERVICE,
                DBUS_PATH,
                DBUS_SERVICE,
                ADD_MATCH,
                "s",
                [SIGNAL_MATCH_RULE],
            )
        except DBusError as exc:
            transport.close()
            raise TransportError(
                f"Failed to add match rule {SIGNAL_MATCH_RULE}: {exc}"
            ) from exc
        return transport

    def close(self) -> None:
        self._bus.remove_message_handler(self._on_message)
        self._bus.disconnect()
        _LOGGER.debug("Disconnected from D-Bus system bus")

    def set_event_handler(self, handler: Callable[[InboundEvent], None]) -> None:
        """Route decoded signals (and replies) to handler during dispatch."""
        self._event_handler = handler

    def export_agent(self, path: str, agent: AgentHandler) -> None:
        """Answer agent method calls addressed to path with agent."""
        self._agents[path] = agent

    def _is_agent_call(self, msg: Message) -> bool:
        return (
            msg.message_type == MessageType.METHOD_CALL
            and msg.path in self._agents
            and msg.interface == AGENT_INTERFACE
            and msg.member in HANDLED_AGENT_METHODS
        )

    def _on_message(self, msg: Message) -> bool:
        """dbus_next message handler: queue everything for read_dispatch.

        Returns True only for agent calls we will answer ourselves, so
        dbus_next neither resolves them nor answers them with UnknownMethod.
        Replies to our own calls still reach their waiting futures.
        """
        self._inbox.append(msg)
        self._arrived.set()
        return self._is_agent_call(msg)

    @property
    def pending_messages(self) -> int:
        return len(self._inbox)

    def _new_call(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str,
        body: list[Any] | None,
    ) -> Message:
        return Message(
            destination=destination,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=body or [],
        )

    async def call(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: list[Any] | None = None,
    ) -> Message:
        """Call a method and wait for its reply.

        Raises:
            BluezError: The reply is an error, or no reply arrived in time
        """
        msg = self._new_call(destination, path, interface, member, signature, body)
        _LOGGER.debug("Calling %s.%s on %s", interface, member, path)
        try:
            reply = await asyncio.wait_for(self._bus.call(msg), self._call_timeout)
        except asyncio.TimeoutError:
            raise UnknownBluezError(
                ErrorType.NO_REPLY.value,
                f"{interface}.{member} on {path} timed out after "
                f"{self._call_timeout} seconds",
            ) from None
        return _raise_for_error(reply)

    def send_async(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: list[Any] | None = None,
    ) -> PendingCall:
        """Send a method call and return immediately with a PendingCall."""
        msg = self._new_call(destination, path, interface, member, signature, body)
        _LOGGER.debug("Sending %s.%s to %s", interface, member, path)
        future = asyncio.ensure_future(self._bus.call(msg))
        return PendingCall(future, f"{interface}.{member} on {path}")

    async def read_dispatch(self, timeout: float) -> int:
        """Dispatch every queued inbound message, in arrival order.

        If nothing is queued, waits up to timeout seconds for the first
        message. Returns the number of messages dispatched.
        """
        if not self._inbox:
            self._arrived.clear()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._arrived.wait(), timeout)

        dispatched = 0
        while self._inbox:
            self._dispatch(self._inbox.popleft())
            dispatched += 1
        return dispatched

    def _dispatch(self, msg: Message) -> None:
        event = decode_message(msg)
        if event is None:
            return

        if isinstance(event, MethodCall):
            agent = self._agents.get(msg.path) if self._is_agent_call(msg) else None
            if agent is None:
                _LOGGER.debug(
                    "Method call %s.%s on %s left to default handling",
                    event.interface,
                    event.member,
                    event.path,
                )
                return
            self._answer(agent, event)
            return

        if isinstance(event, MethodReturn):
            _LOGGER.debug("Method return for serial %s", event.reply_serial)
        elif isinstance(event, ErrorReply):
            _LOGGER.debug(
                "Error reply for serial %s: %s: %s",
                event.reply_serial,
                event.error_name,
                event.text,
            )

        if self._event_handler is not None:
            self._event_handler(event)

    def _answer(self, agent: AgentHandler, call: MethodCall) -> None:
        try:
            reply = agent.handle(call)
        except BluezError as exc:
            reply = Message.new_error(call.message, exc.type, exc.text)
        self._bus.send(reply)
