from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from signing_engine.core.config import get_settings
from signing_engine.core.errors import EnvelopeIntegrityError, EnvelopeStateError, NotFoundError
from signing_engine.core.logging import get_logger
from signing_engine.models.envelope import (
    TERMINAL_ENVELOPE_STATUSES,
    Envelope,
    EnvelopeRecipient,
    EnvelopeStatus,
    RecipientRole,
    SigningMode,
)
from signing_engine.schemas.envelope import EnvelopeCreate
from signing_engine.services import envelope_store
from signing_engine.services.audit_service import (
    ENVELOPE_CREATED,
    ENVELOPE_EXPIRED,
    ENVELOPE_REMINDER_SENT,
    ENVELOPE_SENT,
    ENVELOPE_VOIDED,
    AuditEvent,
    record_audit_event,
)
from signing_engine.services.outbox_service import (
    EVENT_ENVELOPE_EXPIRED,
    EVENT_ENVELOPE_SENT,
    EVENT_ENVELOPE_VOIDED,
    EVENT_RECIPIENT_ACTIVATED,
    EVENT_RECIPIENT_REMINDED,
    enqueue_event,
)
from signing_engine.services.signing_order import group_signers_by_order

logger = get_logger(__name__)

OPEN_ENVELOPE_STATUSES = [status for status in EnvelopeStatus if status not in TERMINAL_ENVELOPE_STATUSES]
REMINDABLE_ENVELOPE_STATUSES = (EnvelopeStatus.SENT, EnvelopeStatus.VIEWED, EnvelopeStatus.PARTIALLY_SIGNED)


def generate_signing_token() -> str:
    return secrets.token_hex(32)


def get_signing_url(signing_token: str) -> str:
    return f"{get_settings().signing_base_url.rstrip('/')}/sign/envelope/{signing_token}"


def _default_signing_mode() -> SigningMode:
    return SigningMode[get_settings().default_signing_mode]


async def create_envelope(
    session: AsyncSession,
    data: EnvelopeCreate,
    *,
    team_id: str,
    created_by_id: str | None,
) -> Envelope:
    if not any(recipient.role is RecipientRole.SIGNER for recipient in data.recipients):
        raise EnvelopeIntegrityError("At least one signer is required")

    envelope = Envelope(
        team_id=team_id,
        created_by_id=created_by_id,
        title=data.title,
        description=data.description,
        source_file=data.source_file,
        source_file_name=data.source_file_name,
        signing_mode=data.signing_mode or _default_signing_mode(),
        status=EnvelopeStatus.DRAFT,
        email_subject=data.email_subject or f"Please sign: {data.title}",
        email_message=data.email_message,
        expires_at=data.expires_at,
        reminder_days=data.reminder_days,
        max_reminders=data.max_reminders,
    )
    for index, recipient in enumerate(data.recipients, start=1):
        envelope.recipients.append(
            EnvelopeRecipient(
                email=str(recipient.email).strip().lower(),
                name=recipient.name,
                role=recipient.role,
                order=recipient.order or index,
                signing_token=generate_signing_token(),
            )
        )
    session.add(envelope)
    await session.flush()

    record_audit_event(
        session,
        AuditEvent(
            event_type=ENVELOPE_CREATED,
            resource_type="Envelope",
            resource_id=envelope.id,
            team_id=team_id,
            user_id=created_by_id,
            metadata={
                "title": envelope.title,
                "signing_mode": envelope.signing_mode.value,
                "signer_count": len(envelope.signers),
                "cc_count": sum(1 for r in envelope.recipients if r.role is RecipientRole.CC),
            },
        ),
    )
    logger.info("envelope.created", envelope_id=envelope.id, team_id=team_id, recipients=len(envelope.recipients))
    return envelope


def first_wave(envelope: Envelope) -> list[EnvelopeRecipient]:
    """Signers notified when the envelope goes out."""
    signers = envelope.signers
    if envelope.signing_mode is SigningMode.PARALLEL:
        return list(signers)
    groups = group_signers_by_order(signers)
    return list(groups[0].members) if groups else []


async def send_envelope(session: AsyncSession, envelope_id: str, *, actor_id: str | None) -> Envelope:
    envelope = await envelope_store.get_envelope(session, envelope_id)
    if envelope is None:
        raise NotFoundError("Envelope not found", envelope_id=envelope_id)
    if not envelope.signers:
        raise EnvelopeIntegrityError("No signers assigned to envelope", envelope_id=envelope_id)

    now = datetime.now(timezone.utc)
    sent = await envelope_store.transition_envelope(
        session,
        envelope_id,
        from_statuses=(EnvelopeStatus.DRAFT,),
        to_status=EnvelopeStatus.SENT,
        sent_at=now,
    )
    if not sent:
        raise EnvelopeStateError(f"Cannot send envelope in {envelope.status.value} status", envelope_id=envelope_id)

    notified: list[str] = []
    for recipient in first_wave(envelope):
        if await envelope_store.activate_recipient(session, recipient.id, now=now):
            notified.append(recipient.email)
            await enqueue_event(
                session,
                envelope_id=envelope_id,
                event_type=EVENT_RECIPIENT_ACTIVATED,
                payload={
                    "envelope_id": envelope_id,
                    "recipient_id": recipient.id,
                    "email": recipient.email,
                    "name": recipient.name,
                    "order": recipient.order,
                    "signing_url": get_signing_url(recipient.signing_token),
                },
            )

    await enqueue_event(
        session,
        envelope_id=envelope_id,
        event_type=EVENT_ENVELOPE_SENT,
        payload={"envelope_id": envelope_id, "recipients_notified": notified},
    )
    record_audit_event(
        session,
        AuditEvent(
            event_type=ENVELOPE_SENT,
            resource_type="Envelope",
            resource_id=envelope_id,
            team_id=envelope.team_id,
            user_id=actor_id,
            metadata={"recipients_notified": notified, "signing_mode": envelope.signing_mode.value},
        ),
    )
    logger.info("envelope.sent", envelope_id=envelope_id, notified=notified)
    return await envelope_store.get_envelope(session, envelope_id)


async def void_envelope(
    session: AsyncSession,
    envelope_id: str,
    *,
    actor_id: str | None,
    reason: str | None = None,
) -> Envelope:
    envelope = await envelope_store.get_envelope(session, envelope_id, with_recipients=False)
    if envelope is None:
        raise NotFoundError("Envelope not found", envelope_id=envelope_id)

    voided = await envelope_store.transition_envelope(
        session,
        envelope_id,
        from_statuses=OPEN_ENVELOPE_STATUSES,
        to_status=EnvelopeStatus.VOIDED,
        voided_at=datetime.now(timezone.utc),
        voided_reason=reason,
    )
    if not voided:
        raise EnvelopeStateError(f"Cannot void envelope in {envelope.status.value} status", envelope_id=envelope_id)

    await enqueue_event(
        session,
        envelope_id=envelope_id,
        event_type=EVENT_ENVELOPE_VOIDED,
        payload={"envelope_id": envelope_id, "reason": reason},
    )
    record_audit_event(
        session,
        AuditEvent(
            event_type=ENVELOPE_VOIDED,
            resource_type="Envelope",
            resource_id=envelope_id,
            team_id=envelope.team_id,
            user_id=actor_id,
            metadata={"reason": reason},
        ),
    )
    logger.info("envelope.voided", envelope_id=envelope_id)
    return await envelope_store.get_envelope(session, envelope_id)


async def send_reminder(
    session: AsyncSession,
    envelope_id: str,
    *,
    actor_id: str | None,
    recipient_id: str | None = None,
) -> list[str]:
    """
    Nudge signers whose turn is open and who have reminders left.

    ``recipient_id`` narrows the reminder to one recipient. Each reminder is
    a conditional increment, so concurrent calls never push a recipient past
    ``max_reminders``. Returns the emails that were reminded.
    """
    envelope = await envelope_store.get_envelope(session, envelope_id)
    if envelope is None:
        raise NotFoundError("Envelope not found", envelope_id=envelope_id)
    if envelope.status not in REMINDABLE_ENVELOPE_STATUSES:
        raise EnvelopeStateError(
            f"Cannot send reminders for envelope in {envelope.status.value} status", envelope_id=envelope_id
        )

    now = datetime.now(timezone.utc)
    reminded: list[str] = []
    for recipient in envelope.signers:
        if recipient_id is not None and recipient.id != recipient_id:
            continue
        if not await envelope_store.record_recipient_reminder(
            session, recipient.id, now=now, max_reminders=envelope.max_reminders
        ):
            continue
        reminded.append(recipient.email)
        await enqueue_event(
            session,
            envelope_id=envelope_id,
            event_type=EVENT_RECIPIENT_REMINDED,
            payload={
                "envelope_id": envelope_id,
                "recipient_id": recipient.id,
                "email": recipient.email,
                "name": recipient.name,
                "signing_url": get_signing_url(recipient.signing_token),
            },
        )

    record_audit_event(
        session,
        AuditEvent(
            event_type=ENVELOPE_REMINDER_SENT,
            resource_type="Envelope",
            resource_id=envelope_id,
            team_id=envelope.team_id,
            user_id=actor_id,
            metadata={"reminded": reminded},
        ),
    )
    logger.info("envelope.reminded", envelope_id=envelope_id, reminded=reminded)
    return reminded


async def expire_overdue_envelopes(session: AsyncSession, *, now: datetime | None = None) -> Sequence[str]:
    """Move every open envelope past its ``expires_at`` to EXPIRED; returns the ids that moved."""
    now = now or datetime.now(timezone.utc)
    expired: list[str] = []
    for envelope_id in await envelope_store.list_overdue_envelope_ids(session, now=now):
        moved = await envelope_store.transition_envelope(
            session,
            envelope_id,
            from_statuses=OPEN_ENVELOPE_STATUSES,
            to_status=EnvelopeStatus.EXPIRED,
        )
        if not moved:
            continue
        expired.append(envelope_id)
        await enqueue_event(
            session,
            envelope_id=envelope_id,
            event_type=EVENT_ENVELOPE_EXPIRED,
            payload={"envelope_id": envelope_id},
        )
        record_audit_event(
            session,
            AuditEvent(event_type=ENVELOPE_EXPIRED, resource_type="Envelope", resource_id=envelope_id),
        )
    if expired:
        logger.info("envelope.expired", count=len(expired))
    return expired
