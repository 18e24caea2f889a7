from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signing_engine.db.base import Base
from signing_engine.models.mixins import Identifier, TimestampMixin


class SigningMode(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    MIXED = "mixed"


class EnvelopeStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIALLY_SIGNED = "partially_signed"
    COMPLETED = "completed"
    DECLINED = "declined"
    VOIDED = "voided"
    EXPIRED = "expired"


class RecipientRole(str, Enum):
    SIGNER = "signer"
    CC = "cc"
    CERTIFIED_DELIVERY = "certified_delivery"


class RecipientStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"


TERMINAL_ENVELOPE_STATUSES: frozenset[EnvelopeStatus] = frozenset(
    {EnvelopeStatus.COMPLETED, EnvelopeStatus.DECLINED, EnvelopeStatus.VOIDED, EnvelopeStatus.EXPIRED}
)
# Terminal states authored outside the signing path; they gate the authenticator.
CLOSED_ENVELOPE_STATUSES: frozenset[EnvelopeStatus] = frozenset(
    {EnvelopeStatus.DECLINED, EnvelopeStatus.VOIDED, EnvelopeStatus.EXPIRED}
)
UNVIEWED_RECIPIENT_STATUSES: frozenset[RecipientStatus] = frozenset(
    {RecipientStatus.PENDING, RecipientStatus.SENT, RecipientStatus.DELIVERED}
)
FINISHED_RECIPIENT_STATUSES: frozenset[RecipientStatus] = frozenset(
    {RecipientStatus.SIGNED, RecipientStatus.DECLINED}
)
NON_SIGNING_ROLES: frozenset[RecipientRole] = frozenset({RecipientRole.CC, RecipientRole.CERTIFIED_DELIVERY})


class Envelope(TimestampMixin, Base):
    __tablename__ = "envelopes"

    id: Mapped[Identifier]
    team_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_file: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signing_mode: Mapped[SigningMode] = mapped_column(
        SAEnum(SigningMode), default=SigningMode.SEQUENTIAL, nullable=False
    )
    status: Mapped[EnvelopeStatus] = mapped_column(
        SAEnum(EnvelopeStatus), default=EnvelopeStatus.DRAFT, nullable=False, index=True
    )
    email_subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    filed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder_days: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    max_reminders: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    recipients: Mapped[list["EnvelopeRecipient"]] = relationship(
        back_populates="envelope",
        cascade="all,delete-orphan",
        order_by="EnvelopeRecipient.order",
    )
    filings: Mapped[list["DocumentFiling"]] = relationship(back_populates="envelope", cascade="all,delete-orphan")
    events: Mapped[list["EventOutbox"]] = relationship(back_populates="envelope", cascade="all,delete-orphan")

    @property
    def signers(self) -> list["EnvelopeRecipient"]:
        return [recipient for recipient in self.recipients if recipient.role is RecipientRole.SIGNER]


class EnvelopeRecipient(TimestampMixin, Base):
    __tablename__ = "envelope_recipients"

    id: Mapped[Identifier]
    envelope_id: Mapped[str] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[RecipientRole] = mapped_column(SAEnum(RecipientRole), default=RecipientRole.SIGNER, nullable=False)
    order: Mapped[int] = mapped_column("signing_order", Integer, default=1, nullable=False)
    signing_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[RecipientStatus] = mapped_column(
        SAEnum(RecipientStatus), default=RecipientStatus.PENDING, nullable=False
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    signature_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    field_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    consent_record: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    signature_checksum: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    envelope: Mapped["Envelope"] = relationship(back_populates="recipients")
