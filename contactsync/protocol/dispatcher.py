"""Packet dispatcher: routes inbound packets to plugin handlers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from contactsync.exceptions import ContactSyncError, InternalServerError, UnsupportedMessageType

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from contactsync.protocol.packets import NetworkPacket

logger = logging.getLogger(__name__)

PacketHandler = Callable[["NetworkPacket"], Awaitable["NetworkPacket"]]


@runtime_checkable
class Plugin(Protocol):
    """A set of handlers for related packet types."""

    supported_packet_types: tuple[str, ...]
    outgoing_packet_types: tuple[str, ...]

    def handlers(self) -> Mapping[str, PacketHandler]:
        """Return the packet type -> handler mapping."""
        ...


@runtime_checkable
class PacketSink(Protocol):
    """Outbound side of the transport."""

    async def send_packet(self, packet: NetworkPacket) -> None: ...


class PacketDispatcher:
    """Fixed mapping from packet type to handler.

    Every successful dispatch produces exactly one response packet.
    """

    def __init__(self, plugins: Iterable[Plugin] = ()) -> None:
        self._handlers: dict[str, PacketHandler] = {}
        self._outgoing: set[str] = set()
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: Plugin) -> None:
        """Add a plugin's handlers; a packet type may only have one handler."""
        handlers = plugin.handlers()
        for packet_type in plugin.supported_packet_types:
            if packet_type not in handlers:
                msg = f"{type(plugin).__name__} declares {packet_type} without a handler"
                raise ValueError(msg)
            if packet_type in self._handlers:
                msg = f"Packet type {packet_type} already has a handler"
                raise ValueError(msg)
            self._handlers[packet_type] = handlers[packet_type]
        self._outgoing.update(plugin.outgoing_packet_types)

    @property
    def supported_packet_types(self) -> list[str]:
        return sorted(self._handlers)

    @property
    def outgoing_packet_types(self) -> list[str]:
        return sorted(self._outgoing)

    async def dispatch(self, packet: NetworkPacket) -> NetworkPacket:
        """Handle one packet and return its response.

        Raises UnsupportedMessageType when no handler is registered. Handler
        errors (MalformedRequestError, PermissionDenied, ...) propagate.
        """
        handler = self._handlers.get(packet.type)
        if handler is None:
            logger.warning("No handler for packet type %s", packet.type)
            raise UnsupportedMessageType(f"Unsupported packet type: {packet.type}")

        response = await handler(packet)
        if response.type not in self._outgoing:
            raise InternalServerError(
                f"Handler for {packet.type} produced undeclared packet type {response.type}"
            )
        return response

    async def on_packet_received(self, packet: NetworkPacket, sink: PacketSink) -> bool:
        """Transport entry point: send exactly one response, or none on failure.

        Returns True if the packet was handled. Protocol errors and
        InternalServerError are logged and swallowed; anything else, such as a
        database OperationalError, propagates to the transport.
        """
        try:
            response = await self.dispatch(packet)
        except ContactSyncError as exc:
            logger.error("Rejected %s packet: %s", packet.type, exc)
            return False
        except InternalServerError as exc:
            logger.error("Failed to handle %s packet: %s", packet.type, exc, exc_info=exc)
            return False
        await sink.send_packet(response)
        return True
