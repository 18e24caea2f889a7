from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from signing_engine.core.config import clear_settings_cache
from signing_engine.core.errors import EnvelopeIntegrityError, EnvelopeStateError, NotFoundError
from signing_engine.models.envelope import EnvelopeStatus, RecipientRole, RecipientStatus, SigningMode
from signing_engine.models.event import EventOutbox
from signing_engine.schemas.envelope import EnvelopeCreate, RecipientCreate
from signing_engine.services.audit_service import ENVELOPE_CREATED, ENVELOPE_REMINDER_SENT, ENVELOPE_VOIDED
from signing_engine.services.envelope_service import (
    create_envelope,
    expire_overdue_envelopes,
    get_signing_url,
    send_envelope,
    send_reminder,
    void_envelope,
)
from signing_engine.services.outbox_service import (
    EVENT_ENVELOPE_EXPIRED,
    EVENT_ENVELOPE_SENT,
    EVENT_RECIPIENT_ACTIVATED,
    EVENT_RECIPIENT_REMINDED,
)

from conftest import TEAM_ID, USER_ID


async def _events(session_factory, envelope_id, event_type):
    async with session_factory() as session:
        rows = await session.execute(
            select(EventOutbox).where(EventOutbox.envelope_id == envelope_id, EventOutbox.event_type == event_type)
        )
        return list(rows.scalars().all())


class TestCreateEnvelope:
    @pytest.mark.asyncio
    async def test_defaults_are_applied(self, session_factory, fetch_audit_events):
        payload = EnvelopeCreate(
            title="Consulting Agreement",
            recipients=[
                RecipientCreate(email="Ada@Example.com", name="Ada Lovelace"),
                RecipientCreate(email="grace@example.com", name="Grace Hopper"),
            ],
        )
        async with session_factory() as session:
            envelope = await create_envelope(session, payload, team_id=TEAM_ID, created_by_id=USER_ID)
            await session.commit()

        assert envelope.status is EnvelopeStatus.DRAFT
        assert envelope.signing_mode is SigningMode.SEQUENTIAL
        assert envelope.email_subject == "Please sign: Consulting Agreement"
        assert [r.email for r in envelope.recipients] == ["ada@example.com", "grace@example.com"]
        assert [r.order for r in envelope.recipients] == [1, 2]
        assert all(r.status is RecipientStatus.PENDING for r in envelope.recipients)
        assert len({r.signing_token for r in envelope.recipients}) == 2
        assert all(len(r.signing_token) == 64 for r in envelope.recipients)
        created = await fetch_audit_events(ENVELOPE_CREATED)
        assert created[0].details["signer_count"] == 2

    @pytest.mark.asyncio
    async def test_requires_a_signer(self, session_factory):
        payload = EnvelopeCreate(
            title="Board Minutes",
            recipients=[RecipientCreate(email="copy@example.com", name="Copy", role=RecipientRole.CC)],
        )
        async with session_factory() as session:
            with pytest.raises(EnvelopeIntegrityError):
                await create_envelope(session, payload, team_id=TEAM_ID, created_by_id=USER_ID)

    @pytest.mark.asyncio
    async def test_default_mode_follows_settings(self, session_factory, monkeypatch):
        monkeypatch.setenv("DEFAULT_SIGNING_MODE", "parallel")
        clear_settings_cache()
        try:
            payload = EnvelopeCreate(title="Offer Letter", recipients=[RecipientCreate(email="a@example.com", name="A")])
            async with session_factory() as session:
                envelope = await create_envelope(session, payload, team_id=TEAM_ID, created_by_id=USER_ID)
                await session.rollback()
        finally:
            monkeypatch.delenv("DEFAULT_SIGNING_MODE")
            clear_settings_cache()

        assert envelope.signing_mode is SigningMode.PARALLEL


class TestSendEnvelope:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "mode, expected",
        [
            (SigningMode.SEQUENTIAL, {"signer1@example.com", "signer2@example.com"}),
            (SigningMode.MIXED, {"signer1@example.com", "signer2@example.com"}),
            (SigningMode.PARALLEL, {"signer1@example.com", "signer2@example.com", "signer3@example.com"}),
        ],
    )
    async def test_first_wave_is_activated(self, session_factory, make_envelope, fetch_envelope, mode, expected):
        handle = await make_envelope(mode, [1, 1, 2])

        envelope = await fetch_envelope(handle.id)
        activated = {r.email for r in envelope.recipients if r.activated_at is not None}

        assert envelope.status is EnvelopeStatus.SENT
        assert envelope.sent_at is not None
        assert activated == expected
        assert all(r.status is RecipientStatus.SENT for r in envelope.recipients if r.email in expected)
        events = await _events(session_factory, handle.id, EVENT_RECIPIENT_ACTIVATED)
        assert {event.payload["email"] for event in events} == expected
        assert all("/sign/envelope/" in event.payload["signing_url"] for event in events)
        assert len(await _events(session_factory, handle.id, EVENT_ENVELOPE_SENT)) == 1

    @pytest.mark.asyncio
    async def test_cannot_send_twice(self, session_factory, make_envelope):
        handle = await make_envelope(SigningMode.SEQUENTIAL, [1])

        async with session_factory() as session:
            with pytest.raises(EnvelopeStateError):
                await send_envelope(session, handle.id, actor_id=USER_ID)

    @pytest.mark.asyncio
    async def test_unknown_envelope(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await send_envelope(session, "missing-envelope", actor_id=USER_ID)


class TestVoidEnvelope:
    @pytest.mark.asyncio
    async def test_void_records_reason(self, session_factory, make_envelope, fetch_envelope, fetch_audit_events):
        handle = await make_envelope(SigningMode.PARALLEL, [1, 1])

        async with session_factory() as session:
            envelope = await void_envelope(session, handle.id, actor_id=USER_ID, reason="Superseded")
            await session.commit()

        assert envelope.status is EnvelopeStatus.VOIDED
        stored = await fetch_envelope(handle.id)
        assert stored.voided_reason == "Superseded"
        assert stored.voided_at is not None
        assert (await fetch_audit_events(ENVELOPE_VOIDED))[0].user_id == USER_ID

    @pytest.mark.asyncio
    async def test_terminal_envelope_cannot_be_voided(self, session_factory, signing_service, make_envelope):
        handle = await make_envelope(SigningMode.PARALLEL, [1])
        await signing_service.record_signer_completion(handle.signer_tokens[0], ip_address="203.0.113.7")

        async with session_factory() as session:
            with pytest.raises(EnvelopeStateError):
                await void_envelope(session, handle.id, actor_id=USER_ID)


async def _remind(session_factory, envelope_id, recipient_id=None):
    async with session_factory() as session:
        reminded = await send_reminder(session, envelope_id, actor_id=USER_ID, recipient_id=recipient_id)
        await session.commit()
    return reminded


class TestSendReminder:
    @pytest.mark.asyncio
    async def test_only_signers_whose_turn_is_open_are_reminded(
        self, session_factory, make_envelope, fetch_recipient, fetch_audit_events
    ):
        envelope = await make_envelope(SigningMode.SEQUENTIAL, [1, 2], cc=1)

        reminded = await _remind(session_factory, envelope.id)

        assert reminded == ["signer1@example.com"]
        first = await fetch_recipient(envelope.signer_tokens[0])
        assert first.reminder_count == 1
        assert first.last_reminder_sent_at is not None
        waiting = await fetch_recipient(envelope.signer_tokens[1])
        assert waiting.reminder_count == 0
        assert (await fetch_recipient(envelope.cc_tokens[0])).reminder_count == 0
        audit = await fetch_audit_events(ENVELOPE_REMINDER_SENT)
        assert audit[0].details == {"reminded": ["signer1@example.com"]}
        events = await _events(session_factory, envelope.id, EVENT_RECIPIENT_REMINDED)
        assert [event.payload["email"] for event in events] == ["signer1@example.com"]
        assert events[0].payload["signing_url"].endswith(envelope.signer_tokens[0])

    @pytest.mark.asyncio
    async def test_reminders_stop_at_the_cap(self, session_factory, make_envelope, fetch_recipient):
        envelope = await make_envelope(SigningMode.PARALLEL, [1])

        rounds = [await _remind(session_factory, envelope.id) for _ in range(4)]

        assert rounds == [["signer1@example.com"]] * 3 + [[]]
        assert (await fetch_recipient(envelope.signer_tokens[0])).reminder_count == 3

    @pytest.mark.asyncio
    async def test_reminder_can_target_one_recipient(self, session_factory, make_envelope, fetch_recipient):
        envelope = await make_envelope(SigningMode.PARALLEL, [1, 1])
        target = await fetch_recipient(envelope.signer_tokens[1])

        reminded = await _remind(session_factory, envelope.id, recipient_id=target.id)

        assert reminded == ["signer2@example.com"]
        assert (await fetch_recipient(envelope.signer_tokens[0])).reminder_count == 0

    @pytest.mark.asyncio
    async def test_signed_recipients_are_skipped(self, session_factory, signing_service, make_envelope, fetch_envelope):
        envelope = await make_envelope(SigningMode.PARALLEL, [1, 1])
        await signing_service.record_signer_completion(envelope.signer_tokens[0], ip_address="203.0.113.7")
        assert (await fetch_envelope(envelope.id)).status is EnvelopeStatus.PARTIALLY_SIGNED

        assert await _remind(session_factory, envelope.id) == ["signer2@example.com"]

    @pytest.mark.asyncio
    async def test_unsent_envelope_cannot_be_reminded(self, session_factory, make_envelope):
        envelope = await make_envelope(SigningMode.PARALLEL, [1], send=False)

        with pytest.raises(EnvelopeStateError) as excinfo:
            await _remind(session_factory, envelope.id)

        assert excinfo.value.message == "Cannot send reminders for envelope in draft status"

    @pytest.mark.asyncio
    async def test_voided_envelope_cannot_be_reminded(self, session_factory, make_envelope):
        envelope = await make_envelope(SigningMode.PARALLEL, [1])
        async with session_factory() as session:
            await void_envelope(session, envelope.id, actor_id=USER_ID)
            await session.commit()

        with pytest.raises(EnvelopeStateError):
            await _remind(session_factory, envelope.id)

    @pytest.mark.asyncio
    async def test_unknown_envelope(self, session_factory):
        with pytest.raises(NotFoundError):
            await _remind(session_factory, "missing-envelope")


class TestExpireOverdueEnvelopes:
    @pytest.mark.asyncio
    async def test_only_overdue_open_envelopes_expire(self, session_factory, make_envelope, fetch_envelope):
        now = datetime.now(timezone.utc)
        overdue = await make_envelope(SigningMode.PARALLEL, [1], expires_at=now - timedelta(days=1))
        current = await make_envelope(SigningMode.PARALLEL, [1], expires_at=now + timedelta(days=7))
        undated = await make_envelope(SigningMode.PARALLEL, [1])

        async with session_factory() as session:
            expired = await expire_overdue_envelopes(session, now=now)
            await session.commit()

        assert list(expired) == [overdue.id]
        assert (await fetch_envelope(overdue.id)).status is EnvelopeStatus.EXPIRED
        assert (await fetch_envelope(current.id)).status is EnvelopeStatus.SENT
        assert (await fetch_envelope(undated.id)).status is EnvelopeStatus.SENT
        assert len(await _events(session_factory, overdue.id, EVENT_ENVELOPE_EXPIRED)) == 1

        async with session_factory() as session:
            assert list(await expire_overdue_envelopes(session, now=now)) == []


def test_signing_url_uses_public_base(monkeypatch):
    monkeypatch.setenv("SIGNING_BASE_URL", "https://sign.example.com/")
    clear_settings_cache()
    try:
        assert get_signing_url("abc123") == "https://sign.example.com/sign/envelope/abc123"
    finally:
        monkeypatch.delenv("SIGNING_BASE_URL")
        clear_settings_cache()
