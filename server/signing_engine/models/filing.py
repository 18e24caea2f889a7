from __future__ import annotations

from enum import Enum

from sqlalchemy import Enum as SAEnum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signing_engine.db.base import Base
from signing_engine.models.mixins import Identifier, TimestampMixin


class FilingDestination(str, Enum):
    ORG_VAULT = "org_vault"
    CONTACT_VAULT = "contact_vault"
    EMAIL = "email"


class DocumentFiling(TimestampMixin, Base):
    __tablename__ = "document_filings"
    __table_args__ = (
        UniqueConstraint(
            "envelope_id",
            "destination_type",
            "destination_key",
            name="uq_document_filings_destination",
        ),
    )

    id: Mapped[Identifier]
    envelope_id: Mapped[str] = mapped_column(ForeignKey("envelopes.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    destination_type: Mapped[FilingDestination] = mapped_column(SAEnum(FilingDestination), nullable=False)
    # Vault path for ORG_VAULT, recipient email otherwise.
    destination_key: Mapped[str] = mapped_column(String(512), nullable=False)
    contact_id: Mapped[str | None] = mapped_column(ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_file: Mapped[str | None] = mapped_column(Text, nullable=True)
    audit_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    filed_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    envelope: Mapped["Envelope"] = relationship(back_populates="filings")
