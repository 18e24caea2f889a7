from signing_engine.services import (
    audit_service,
    background,
    consent,
    contact_service,
    envelope_service,
    envelope_store,
    filing_service,
    outbox_service,
    signing_order,
    signing_session,
    status_report,
)

__all__ = [
    "audit_service",
    "background",
    "consent",
    "contact_service",
    "envelope_service",
    "envelope_store",
    "filing_service",
    "outbox_service",
    "signing_order",
    "signing_session",
    "status_report",
]
