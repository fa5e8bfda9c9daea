"""Contacts packet protocol: packet model, plugin handlers, dispatcher."""

from contactsync.protocol.contacts_plugin import ContactsPlugin
from contactsync.protocol.dispatcher import PacketDispatcher, PacketSink
from contactsync.protocol.packets import NetworkPacket

__all__ = [
    "ContactsPlugin",
    "NetworkPacket",
    "PacketDispatcher",
    "PacketSink",
]
