"""Application configuration loaded from environment variables."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PLACEHOLDER_DEVICE_ID = "change-me-device-id"


@dataclass(frozen=True)
class ContactsSchema:
    """Names of the contacts table and the columns the protocol reads."""

    table: str = "raw_contacts"
    lookup_column: str = "lookup_key"
    timestamp_column: str = "last_updated_timestamp"
    vcard_column: str = "vcard"
    display_name_column: str = "display_name"
    phone_column: str = "phone_number"
    photo_column: str = "photo"


class Settings(BaseSettings):
    """contactsync application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Database backing the contacts table
    database_url: str = "sqlite+aiosqlite:///data/db/contacts.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    trusted_hosts: list[str] = Field(default_factory=list)

    # Device identity, embedded in every vCard we send
    device_id: str = _PLACEHOLDER_DEVICE_ID
    device_name: str = "contactsync"
    metadata_namespace: str = "KDECONNECT"

    # Contacts table layout
    contacts_table: str = "raw_contacts"
    lookup_column: str = "lookup_key"
    timestamp_column: str = "last_updated_timestamp"
    vcard_column: str = "vcard"
    display_name_column: str = "display_name"
    phone_column: str = "phone_number"
    photo_column: str = "photo"

    # Permission gate: without it no query touches the contacts table
    contacts_access_granted: bool = True

    @field_validator("device_id")
    @classmethod
    def _check_device_id(cls, value: str) -> str:
        if not value or ":" in value or any(ch.isspace() for ch in value):
            raise ValueError("device_id must be non-empty and contain no ':' or whitespace")
        return value

    @field_validator("metadata_namespace")
    @classmethod
    def _check_namespace(cls, value: str) -> str:
        if not value or not value.replace("-", "").isalnum():
            raise ValueError("metadata_namespace must be alphanumeric (dashes allowed)")
        return value.upper()

    def contacts_schema(self) -> ContactsSchema:
        """Build the table/column mapping used by the contacts service."""
        return ContactsSchema(
            table=self.contacts_table,
            lookup_column=self.lookup_column,
            timestamp_column=self.timestamp_column,
            vcard_column=self.vcard_column,
            display_name_column=self.display_name_column,
            phone_column=self.phone_column,
            photo_column=self.photo_column,
        )

    def validate_runtime(self) -> None:
        """Validate settings that must be overridden outside debug mode."""
        if self.debug:
            return

        violations: list[str] = []
        if self.device_id == _PLACEHOLDER_DEVICE_ID:
            violations.append("DEVICE_ID must be set to this device's paired identifier")
        if not self.trusted_hosts:
            violations.append("TRUSTED_HOSTS must be configured in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid production configuration: {joined}")
