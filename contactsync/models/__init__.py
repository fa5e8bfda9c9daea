"""SQLAlchemy ORM models for contactsync."""

from contactsync.models.base import Base
from contactsync.models.contact import RawContact

__all__ = [
    "Base",
    "RawContact",
]
