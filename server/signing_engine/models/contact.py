from __future__ import annotations

from enum import Enum

from sqlalchemy import Enum as SAEnum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signing_engine.db.base import Base
from signing_engine.models.mixins import Identifier, TimestampMixin


class ContactSource(str, Enum):
    MANUAL = "manual"
    IMPORT = "import"
    SIGNATURE_EVENT = "signature_event"


class ContactStatus(str, Enum):
    PROSPECT = "prospect"
    ACTIVE = "active"
    ARCHIVED = "archived"


class Contact(TimestampMixin, Base):
    __tablename__ = "contacts"
    __table_args__ = (UniqueConstraint("team_id", "email", name="uq_contacts_team_email"),)

    id: Mapped[Identifier]
    team_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    source: Mapped[ContactSource] = mapped_column(SAEnum(ContactSource), default=ContactSource.MANUAL, nullable=False)
    status: Mapped[ContactStatus] = mapped_column(SAEnum(ContactStatus), default=ContactStatus.PROSPECT, nullable=False)
