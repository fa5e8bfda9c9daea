"""Raw contact model: the table the tabular source reads."""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer, LargeBinary, Text
from sqlalchemy.orm import Mapped, mapped_column

from contactsync.models.base import Base


class RawContact(Base):
    """One raw contact row.

    Several rows sharing ``lookup_key`` form a merge group: the device shows
    them as a single logical contact.
    """

    __tablename__ = "raw_contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lookup_key: Mapped[str | None] = mapped_column(Text, index=True)
    display_name: Mapped[str | None] = mapped_column(Text)
    vcard: Mapped[str | None] = mapped_column(Text)
    last_updated_timestamp: Mapped[int | None] = mapped_column(BigInteger)
    phone_number: Mapped[str | None] = mapped_column(Text, index=True)
    photo: Mapped[bytes | None] = mapped_column(LargeBinary)
