from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from signing_engine.models.event import EventOutbox, EventStatus
from signing_engine.services.outbox_service import MAX_DISPATCH_ATTEMPTS, dispatch_pending_events, enqueue_event


async def _enqueue(session_factory, event_type="envelope.completed", **kwargs):
    async with session_factory() as session, session.begin():
        event = await enqueue_event(
            session, envelope_id=None, event_type=event_type, payload={"envelope_id": "env-1"}, **kwargs
        )
        return event.id


async def _load(session_factory, event_id):
    async with session_factory() as session:
        return await session.get(EventOutbox, event_id)


@pytest.mark.asyncio
async def test_dispatch_hands_pending_events_to_handler(session_factory):
    event_id = await _enqueue(session_factory)
    delivered = []

    async def handler(event):
        delivered.append((event.event_type, event.payload))

    async with session_factory() as session, session.begin():
        count = await dispatch_pending_events(session, handler)

    assert count == 1
    assert delivered == [("envelope.completed", {"envelope_id": "env-1"})]
    event = await _load(session_factory, event_id)
    assert event.status is EventStatus.DISPATCHED
    assert event.attempts == 1
    assert event.dispatched_at is not None

    async with session_factory() as session, session.begin():
        assert await dispatch_pending_events(session, handler) == 0


@pytest.mark.asyncio
async def test_failed_delivery_is_rescheduled(session_factory):
    event_id = await _enqueue(session_factory)

    async def handler(event):
        raise RuntimeError("endpoint returned 503")

    async with session_factory() as session, session.begin():
        count = await dispatch_pending_events(session, handler)

    assert count == 0
    event = await _load(session_factory, event_id)
    assert event.status is EventStatus.FAILED
    assert event.attempts == 1
    assert event.last_error == "endpoint returned 503"
    assert event.next_run_at.replace(tzinfo=timezone.utc) > datetime.now(timezone.utc)


@pytest.mark.asyncio
async def test_scheduled_and_exhausted_events_are_skipped(session_factory):
    await _enqueue(session_factory, schedule_in_seconds=3600)
    exhausted_id = await _enqueue(session_factory, event_type="envelope.voided")
    async with session_factory() as session, session.begin():
        event = await session.get(EventOutbox, exhausted_id)
        event.status = EventStatus.FAILED
        event.attempts = MAX_DISPATCH_ATTEMPTS

    async with session_factory() as session, session.begin():
        assert await dispatch_pending_events(session) == 0
