"""
Transactional outbox for envelope lifecycle notifications.

Events are staged in the same transaction as the envelope change that
caused them and delivered later by ``dispatch_pending_events``, so a
notification is never sent for a write that rolled back.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from sqlalchemy import Select, and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from signing_engine.core.logging import get_logger
from signing_engine.models.event import EventOutbox, EventStatus

logger = get_logger(__name__)

EVENT_ENVELOPE_SENT = "envelope.sent"
EVENT_RECIPIENT_ACTIVATED = "envelope.recipient.activated"
EVENT_ENVELOPE_COMPLETED = "envelope.completed"
EVENT_ENVELOPE_DECLINED = "envelope.declined"
EVENT_ENVELOPE_VOIDED = "envelope.voided"
EVENT_ENVELOPE_EXPIRED = "envelope.expired"
EVENT_RECIPIENT_REMINDED = "envelope.recipient.reminded"

MAX_DISPATCH_ATTEMPTS = 5
RETRY_BACKOFF_SECONDS = 30
DEFAULT_BATCH_SIZE = 100

EventHandler = Callable[[EventOutbox], Awaitable[object]]


async def enqueue_event(
    session: AsyncSession,
    *,
    envelope_id: str | None,
    event_type: str,
    payload: dict,
    channel: str = "webhook",
    schedule_in_seconds: int = 0,
) -> EventOutbox:
    event = EventOutbox(
        envelope_id=envelope_id,
        event_type=event_type,
        payload=payload,
        channel=channel,
        next_run_at=datetime.now(timezone.utc) + timedelta(seconds=schedule_in_seconds),
    )
    session.add(event)
    await session.flush()
    logger.info("event.outbox.enqueued", event_type=event_type, envelope_id=envelope_id)
    return event


def due_events_query(now: datetime, *, limit: int = DEFAULT_BATCH_SIZE) -> Select[tuple[EventOutbox]]:
    """Pending events plus failed ones with retries left, oldest first."""
    retryable = and_(EventOutbox.status == EventStatus.FAILED, EventOutbox.attempts < MAX_DISPATCH_ATTEMPTS)
    return (
        select(EventOutbox)
        .where(or_(EventOutbox.status == EventStatus.PENDING, retryable), EventOutbox.next_run_at <= now)
        .order_by(EventOutbox.created_at.asc())
        .limit(limit)
    )


def _record_failure(event: EventOutbox, exc: Exception, now: datetime) -> None:
    event.status = EventStatus.FAILED
    event.attempts += 1
    event.last_error = str(exc)
    event.next_run_at = now + timedelta(seconds=RETRY_BACKOFF_SECONDS * event.attempts)
    if event.attempts >= MAX_DISPATCH_ATTEMPTS:
        logger.error("event.outbox.exhausted", event_id=event.id, event_type=event.event_type, error=str(exc))
    else:
        logger.warning("event.outbox.failed", event_id=event.id, attempt=event.attempts, error=str(exc))


async def dispatch_pending_events(
    session: AsyncSession,
    handler: EventHandler | None = None,
    *,
    limit: int = DEFAULT_BATCH_SIZE,
) -> int:
    """
    Deliver due events through ``handler`` and record each outcome.

    Without a handler events are simply marked dispatched (delivery
    disabled). The caller commits. Returns the number delivered.
    """
    now = datetime.now(timezone.utc)
    events = (await session.execute(due_events_query(now, limit=limit))).scalars().all()
    dispatched = 0
    for event in events:
        try:
            if handler is not None:
                await handler(event)
        except Exception as exc:
            _record_failure(event, exc, now)
            continue
        event.status = EventStatus.DISPATCHED
        event.attempts += 1
        event.last_error = None
        event.dispatched_at = now
        dispatched += 1
        logger.info("event.outbox.dispatched", event_type=event.event_type, envelope_id=event.envelope_id)
    return dispatched
