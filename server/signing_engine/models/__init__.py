from signing_engine.models.audit import AuditLog
from signing_engine.models.contact import Contact, ContactSource, ContactStatus
from signing_engine.models.envelope import (
    CLOSED_ENVELOPE_STATUSES,
    TERMINAL_ENVELOPE_STATUSES,
    Envelope,
    EnvelopeRecipient,
    EnvelopeStatus,
    RecipientRole,
    RecipientStatus,
    SigningMode,
)
from signing_engine.models.event import EventOutbox, EventStatus
from signing_engine.models.filing import DocumentFiling, FilingDestination

__all__ = [
    "AuditLog",
    "CLOSED_ENVELOPE_STATUSES",
    "Contact",
    "ContactSource",
    "ContactStatus",
    "DocumentFiling",
    "Envelope",
    "EnvelopeRecipient",
    "EnvelopeStatus",
    "EventOutbox",
    "EventStatus",
    "FilingDestination",
    "RecipientRole",
    "RecipientStatus",
    "SigningMode",
    "TERMINAL_ENVELOPE_STATUSES",
]
