from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signing_engine.core.logging import get_logger
from signing_engine.models.audit import AuditLog

logger = get_logger(__name__)

DOCUMENT_VIEWED = "DOCUMENT_VIEWED"
DOCUMENT_SIGNED = "DOCUMENT_SIGNED"
DOCUMENT_DECLINED = "DOCUMENT_DECLINED"
DOCUMENT_FILED = "DOCUMENT_FILED"
ENVELOPE_CREATED = "ENVELOPE_CREATED"
ENVELOPE_SENT = "ENVELOPE_SENT"
ENVELOPE_VOIDED = "ENVELOPE_VOIDED"
ENVELOPE_EXPIRED = "ENVELOPE_EXPIRED"
ENVELOPE_REMINDER_SENT = "ENVELOPE_REMINDER_SENT"


@dataclass(slots=True)
class AuditEvent:
    event_type: str
    resource_type: str
    resource_id: str | None
    team_id: str | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None


def record_audit_event(session: AsyncSession, event: AuditEvent) -> AuditLog:
    """Stage an audit row inside the caller's transaction."""
    entry = AuditLog(
        event_type=event.event_type,
        team_id=event.team_id,
        user_id=event.user_id,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        details=event.metadata,
        ip_address=event.ip_address,
        user_agent=event.user_agent,
    )
    session.add(entry)
    return entry


class AuditLogger:
    """Writes audit rows in their own transaction, independent of the signing write."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def log_event(self, event: AuditEvent) -> str:
        async with self._session_factory() as session, session.begin():
            entry = record_audit_event(session, event)
            await session.flush()
            entry_id = entry.id
        logger.info(
            "audit.event.recorded",
            event_type=event.event_type,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
        )
        return entry_id
