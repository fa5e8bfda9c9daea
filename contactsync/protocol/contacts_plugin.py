"""Contacts plugin: answers manifest and vCard requests from a paired device."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from contactsync.protocol.packets import (
    PACKET_TYPE_CONTACTS_REQUEST_ALL_UIDS_TIMESTAMPS,
    PACKET_TYPE_CONTACTS_REQUEST_VCARDS_BY_UIDS,
    PACKET_TYPE_CONTACTS_RESPONSE_UIDS_TIMESTAMPS,
    PACKET_TYPE_CONTACTS_RESPONSE_VCARDS,
    build_response_uids_timestamps,
    build_response_vcards,
    parse_uid_list,
    require_uid_list,
)
from contactsync.services.contacts_service import build_manifest, collect_vcards
from contactsync.services.projection_service import READ_CONTACTS, grant_contacts_access
from contactsync.services.vcard_service import DEFAULT_NAMESPACE

if TYPE_CHECKING:
    from collections.abc import Mapping

    from contactsync.config import ContactsSchema, Settings
    from contactsync.protocol.dispatcher import PacketHandler
    from contactsync.protocol.packets import NetworkPacket
    from contactsync.services.projection_service import ContactsAccess
    from contactsync.sources.base import TabularSource

logger = logging.getLogger(__name__)


class ContactsPlugin:
    """Serve the local contact book to the paired device.

    The plugin keeps no state between requests: each packet is answered from
    a fresh read of the contacts table.
    """

    display_name = "Contacts"
    description = "Let the paired device keep a copy of this device's contacts"
    required_permissions = (READ_CONTACTS,)
    # Contacts are sensitive, but the plugin is read-only.
    is_enabled_by_default = True

    supported_packet_types = (
        PACKET_TYPE_CONTACTS_REQUEST_ALL_UIDS_TIMESTAMPS,
        PACKET_TYPE_CONTACTS_REQUEST_VCARDS_BY_UIDS,
    )
    outgoing_packet_types = (
        PACKET_TYPE_CONTACTS_RESPONSE_UIDS_TIMESTAMPS,
        PACKET_TYPE_CONTACTS_RESPONSE_VCARDS,
    )

    def __init__(
        self,
        source: TabularSource,
        access: ContactsAccess | None,
        schema: ContactsSchema,
        device_id: str,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self.source = source
        self.access = access
        self.schema = schema
        self.device_id = device_id
        self.namespace = namespace

    @classmethod
    def from_settings(cls, source: TabularSource, settings: Settings) -> ContactsPlugin:
        return cls(
            source=source,
            access=grant_contacts_access(settings.contacts_access_granted),
            schema=settings.contacts_schema(),
            device_id=settings.device_id,
            namespace=settings.metadata_namespace,
        )

    def handlers(self) -> Mapping[str, PacketHandler]:
        return {
            PACKET_TYPE_CONTACTS_REQUEST_ALL_UIDS_TIMESTAMPS: (
                self.handle_request_all_uids_timestamps
            ),
            PACKET_TYPE_CONTACTS_REQUEST_VCARDS_BY_UIDS: self.handle_request_vcards_by_uid,
        }

    async def handle_request_all_uids_timestamps(self, packet: NetworkPacket) -> NetworkPacket:
        """Reply with the uID and last-modified timestamp of every contact."""
        manifest = await build_manifest(self.source, self.access, self.schema)
        logger.info("Sending manifest with %d contact(s)", len(manifest))
        return build_response_uids_timestamps(manifest)

    async def handle_request_vcards_by_uid(self, packet: NetworkPacket) -> NetworkPacket:
        """Reply with finalized vCards for the requested uIDs.

        The reply's ``uids`` lists only contacts that were found and built,
        which may be fewer than were asked for.
        """
        requested = parse_uid_list(require_uid_list(packet))
        vcards = await collect_vcards(
            self.source,
            self.access,
            self.schema,
            self.device_id,
            requested,
            self.namespace,
        )
        if len(vcards) < len(requested):
            logger.info("Resolved %d of %d requested contact(s)", len(vcards), len(requested))
        return build_response_vcards(vcards)
