"""Contact lookup endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from contactsync.api.deps import get_contacts_plugin
from contactsync.protocol.contacts_plugin import ContactsPlugin
from contactsync.services.contacts_service import lookup_phone_number

router = APIRouter(prefix="/api/contacts", tags=["contacts"])


class PhoneLookupResponse(BaseModel):
    """Name and base64 photo of the contact owning a phone number."""

    name: str | None = None
    photo: str | None = None


@router.get("/lookup", response_model=PhoneLookupResponse)
async def lookup(
    number: Annotated[str, Query(min_length=1, max_length=64)],
    plugin: Annotated[ContactsPlugin, Depends(get_contacts_plugin)],
) -> PhoneLookupResponse:
    """Look up a contact by phone number; unknown numbers return empty fields."""
    info = await lookup_phone_number(plugin.source, plugin.access, plugin.schema, number)
    return PhoneLookupResponse(name=info.get("name"), photo=info.get("photo"))
