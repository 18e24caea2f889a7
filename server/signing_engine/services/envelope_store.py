"""
Persistence primitives for envelopes and their recipients.

Every mutation here is a single conditional ``UPDATE`` keyed on the row's
expected prior state; callers judge success by the returned flag and own
the surrounding transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from signing_engine.models.envelope import (
    FINISHED_RECIPIENT_STATUSES,
    TERMINAL_ENVELOPE_STATUSES,
    UNVIEWED_RECIPIENT_STATUSES,
    Envelope,
    EnvelopeRecipient,
    EnvelopeStatus,
    RecipientRole,
    RecipientStatus,
)

REMINDABLE_RECIPIENT_STATUSES = (RecipientStatus.SENT, RecipientStatus.DELIVERED, RecipientStatus.VIEWED)


async def get_recipient_by_token(session: AsyncSession, signing_token: str) -> EnvelopeRecipient | None:
    result = await session.execute(
        select(EnvelopeRecipient)
        .where(EnvelopeRecipient.signing_token == signing_token)
        .options(selectinload(EnvelopeRecipient.envelope))
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_envelope(session: AsyncSession, envelope_id: str, *, with_recipients: bool = True) -> Envelope | None:
    query = select(Envelope).where(Envelope.id == envelope_id).execution_options(populate_existing=True)
    if with_recipients:
        query = query.options(selectinload(Envelope.recipients))
    result = await session.execute(query)
    return result.scalars().first()


async def list_signers(session: AsyncSession, envelope_id: str) -> list[EnvelopeRecipient]:
    """Freshly read SIGNER-role recipients of an envelope, ascending by order."""
    result = await session.execute(
        select(EnvelopeRecipient)
        .where(
            EnvelopeRecipient.envelope_id == envelope_id,
            EnvelopeRecipient.role == RecipientRole.SIGNER,
        )
        .order_by(EnvelopeRecipient.order.asc(), EnvelopeRecipient.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def transition_envelope(
    session: AsyncSession,
    envelope_id: str,
    *,
    from_statuses: Iterable[EnvelopeStatus],
    to_status: EnvelopeStatus,
    **values: Any,
) -> bool:
    result = await session.execute(
        update(Envelope)
        .where(Envelope.id == envelope_id, Envelope.status.in_(list(from_statuses)))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_envelope_viewed(session: AsyncSession, envelope_id: str) -> bool:
    return await transition_envelope(
        session,
        envelope_id,
        from_statuses=(EnvelopeStatus.SENT,),
        to_status=EnvelopeStatus.VIEWED,
    )


async def mark_envelope_completed(session: AsyncSession, envelope_id: str, *, now: datetime) -> bool:
    open_statuses = [status for status in EnvelopeStatus if status not in TERMINAL_ENVELOPE_STATUSES]
    return await transition_envelope(
        session,
        envelope_id,
        from_statuses=open_statuses,
        to_status=EnvelopeStatus.COMPLETED,
        completed_at=now,
    )


async def mark_envelope_partially_signed(session: AsyncSession, envelope_id: str) -> bool:
    return await transition_envelope(
        session,
        envelope_id,
        from_statuses=(EnvelopeStatus.SENT, EnvelopeStatus.VIEWED),
        to_status=EnvelopeStatus.PARTIALLY_SIGNED,
    )


async def mark_envelope_filed(session: AsyncSession, envelope_id: str, *, now: datetime) -> bool:
    result = await session.execute(
        update(Envelope)
        .where(Envelope.id == envelope_id, Envelope.filed_at.is_(None))
        .values(filed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_recipient_viewed(session: AsyncSession, recipient_id: str, *, now: datetime) -> bool:
    # First view wins: an existing viewed_at is never replaced.
    result = await session.execute(
        update(EnvelopeRecipient)
        .where(
            EnvelopeRecipient.id == recipient_id,
            EnvelopeRecipient.status.in_(list(UNVIEWED_RECIPIENT_STATUSES)),
        )
        .values(
            status=RecipientStatus.VIEWED,
            viewed_at=func.coalesce(EnvelopeRecipient.viewed_at, now),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_recipient_signed(
    session: AsyncSession,
    recipient_id: str,
    envelope_id: str,
    *,
    signed_at: datetime,
    ip_address: str | None,
    user_agent: str | None,
    consent_record: dict,
    signature_checksum: dict,
    signature_type: str | None = None,
    signature_image: str | None = None,
    field_values: dict | None = None,
) -> bool:
    envelope_open = (
        select(Envelope.id)
        .where(
            Envelope.id == envelope_id,
            Envelope.status.not_in(list(TERMINAL_ENVELOPE_STATUSES)),
        )
        .exists()
    )
    result = await session.execute(
        update(EnvelopeRecipient)
        .where(
            EnvelopeRecipient.id == recipient_id,
            EnvelopeRecipient.envelope_id == envelope_id,
            EnvelopeRecipient.role == RecipientRole.SIGNER,
            EnvelopeRecipient.status.not_in(list(FINISHED_RECIPIENT_STATUSES)),
            envelope_open,
        )
        .values(
            status=RecipientStatus.SIGNED,
            signed_at=signed_at,
            ip_address=ip_address,
            user_agent=user_agent,
            consent_record=consent_record,
            signature_checksum=signature_checksum,
            signature_type=signature_type,
            signature_image=signature_image,
            field_values=field_values,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_recipient_declined(
    session: AsyncSession,
    recipient_id: str,
    *,
    now: datetime,
    reason: str | None,
    ip_address: str | None,
    user_agent: str | None,
) -> bool:
    result = await session.execute(
        update(EnvelopeRecipient)
        .where(
            EnvelopeRecipient.id == recipient_id,
            EnvelopeRecipient.status.not_in(list(FINISHED_RECIPIENT_STATUSES)),
        )
        .values(
            status=RecipientStatus.DECLINED,
            declined_at=now,
            declined_reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def activate_recipient(session: AsyncSession, recipient_id: str, *, now: datetime) -> bool:
    """Open a recipient's turn exactly once; PENDING recipients move to SENT."""
    result = await session.execute(
        update(EnvelopeRecipient)
        .where(
            EnvelopeRecipient.id == recipient_id,
            EnvelopeRecipient.activated_at.is_(None),
            EnvelopeRecipient.status.not_in(list(FINISHED_RECIPIENT_STATUSES)),
        )
        .values(activated_at=now, sent_at=func.coalesce(EnvelopeRecipient.sent_at, now))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    await session.execute(
        update(EnvelopeRecipient)
        .where(EnvelopeRecipient.id == recipient_id, EnvelopeRecipient.status == RecipientStatus.PENDING)
        .values(status=RecipientStatus.SENT)
        .execution_options(synchronize_session=False)
    )
    return True


async def record_recipient_reminder(
    session: AsyncSession,
    recipient_id: str,
    *,
    now: datetime,
    max_reminders: int,
) -> bool:
    """Count one reminder against a waiting signer while it is still under the cap."""
    result = await session.execute(
        update(EnvelopeRecipient)
        .where(
            EnvelopeRecipient.id == recipient_id,
            EnvelopeRecipient.role == RecipientRole.SIGNER,
            EnvelopeRecipient.status.in_(list(REMINDABLE_RECIPIENT_STATUSES)),
            EnvelopeRecipient.reminder_count < max_reminders,
        )
        .values(reminder_count=EnvelopeRecipient.reminder_count + 1, last_reminder_sent_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_overdue_envelope_ids(session: AsyncSession, *, now: datetime) -> Sequence[str]:
    result = await session.execute(
        select(Envelope.id).where(
            Envelope.expires_at.is_not(None),
            Envelope.expires_at < now,
            Envelope.status.not_in(list(TERMINAL_ENVELOPE_STATUSES)),
        )
    )
    return result.scalars().all()
