"""Packet endpoints: the HTTP transport for the contacts protocol."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from contactsync.api.deps import get_dispatcher, get_settings
from contactsync.config import Settings
from contactsync.protocol.dispatcher import PacketDispatcher
from contactsync.protocol.packets import NetworkPacket

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["packets"])


class DeviceInfoResponse(BaseModel):
    """Identity card of this device and the packet types it understands."""

    device_id: str
    device_name: str
    incoming_capabilities: list[str]
    outgoing_capabilities: list[str]


@router.post("/packets", response_model=NetworkPacket)
async def receive_packet(
    packet: NetworkPacket,
    dispatcher: Annotated[PacketDispatcher, Depends(get_dispatcher)],
) -> NetworkPacket:
    """Dispatch one inbound packet and return its single response packet."""
    logger.debug("Received %s packet (id=%d)", packet.type, packet.id)
    return await dispatcher.dispatch(packet)


@router.get("/device", response_model=DeviceInfoResponse)
async def device_info(
    settings: Annotated[Settings, Depends(get_settings)],
    dispatcher: Annotated[PacketDispatcher, Depends(get_dispatcher)],
) -> DeviceInfoResponse:
    """Describe this device for the pairing peer."""
    return DeviceInfoResponse(
        device_id=settings.device_id,
        device_name=settings.device_name,
        incoming_capabilities=dispatcher.supported_packet_types,
        outgoing_capabilities=dispatcher.outgoing_packet_types,
    )
