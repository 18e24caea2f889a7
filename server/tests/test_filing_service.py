from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from signing_engine.models.contact import Contact, ContactSource
from signing_engine.models.envelope import SigningMode
from signing_engine.models.filing import DocumentFiling, FilingDestination
from signing_engine.services.audit_service import DOCUMENT_FILED
from signing_engine.services.filing_service import (
    LOCK_PREFIX,
    DocumentFilingService,
    compute_manifest_hash,
    signed_file_name,
)

from conftest import TEAM_ID


async def _complete(signing_service, handle):
    for token in handle.signer_tokens:
        await signing_service.record_signer_completion(token, ip_address="203.0.113.7", esign_consent=True)


async def _filing_count(session_factory, envelope_id):
    async with session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(DocumentFiling).where(DocumentFiling.envelope_id == envelope_id)
        )


def _fake_redis(*, lock_acquired: bool) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[lock_acquired, True])
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    redis = MagicMock()
    redis.pipeline.return_value = pipe
    redis.delete = AsyncMock()
    return redis


class TestAutoFileEnvelopeDocument:
    @pytest.mark.asyncio
    async def test_files_to_every_destination(
        self, signing_service, session_factory, make_envelope, fetch_envelope, fetch_audit_events
    ):
        handle = await make_envelope(SigningMode.PARALLEL, [1, 1], cc=1)
        await _complete(signing_service, handle)

        envelope = await fetch_envelope(handle.id)
        assert envelope.filed_at is not None
        async with session_factory() as session:
            filings = list((await session.execute(select(DocumentFiling))).scalars().all())
            contacts = {c.email for c in (await session.execute(select(Contact))).scalars().all()}

        by_type = {}
        for filing in filings:
            by_type.setdefault(filing.destination_type, []).append(filing)
        assert len(by_type[FilingDestination.ORG_VAULT]) == 1
        org = by_type[FilingDestination.ORG_VAULT][0]
        assert org.destination_key.startswith("/Signed Documents/")
        assert org.destination_key.endswith("/mutual-nda_signed.pdf")
        assert org.file_name == "mutual-nda_signed.pdf"
        assert org.audit_hash == compute_manifest_hash(envelope)
        assert {f.destination_key for f in by_type[FilingDestination.CONTACT_VAULT]} == {
            "signer1@example.com",
            "signer2@example.com",
        }
        assert all(f.contact_id for f in by_type[FilingDestination.CONTACT_VAULT])
        assert len(by_type[FilingDestination.EMAIL]) == 3
        assert {"signer1@example.com", "signer2@example.com"} <= contacts
        assert "copy1@example.com" not in contacts
        assert len(await fetch_audit_events(DOCUMENT_FILED)) == 1

    @pytest.mark.asyncio
    async def test_rerun_reuses_existing_filings(self, signing_service, session_factory, make_envelope):
        handle = await make_envelope(SigningMode.PARALLEL, [1])
        await _complete(signing_service, handle)
        before = await _filing_count(session_factory, handle.id)

        result = await DocumentFilingService(session_factory).auto_file_envelope_document(handle.id)

        assert result.errors == []
        assert result.org_vault_filing is not None
        assert await _filing_count(session_factory, handle.id) == before

    @pytest.mark.asyncio
    async def test_open_envelope_is_not_filed(self, session_factory, make_envelope):
        handle = await make_envelope(SigningMode.PARALLEL, [1, 1])

        result = await DocumentFilingService(session_factory).auto_file_envelope_document(handle.id)

        assert result.errors == ["Envelope is sent, not completed"]
        assert result.org_vault_filing is None
        assert await _filing_count(session_factory, handle.id) == 0

    @pytest.mark.asyncio
    async def test_unknown_envelope(self, session_factory):
        result = await DocumentFilingService(session_factory).auto_file_envelope_document("missing-envelope")

        assert result.errors == ["Envelope not found"]

    @pytest.mark.asyncio
    async def test_held_lock_skips_filing(self, session_factory, make_envelope):
        handle = await make_envelope(SigningMode.PARALLEL, [1])
        redis = _fake_redis(lock_acquired=False)

        result = await DocumentFilingService(session_factory, redis_client=redis).auto_file_envelope_document(
            handle.id
        )

        assert result.errors == ["Filing already in progress"]
        redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_is_released_after_filing(self, session_factory, make_envelope):
        handle = await make_envelope(SigningMode.PARALLEL, [1])
        redis = _fake_redis(lock_acquired=True)

        await DocumentFilingService(session_factory, redis_client=redis, lock_ttl_seconds=60).auto_file_envelope_document(
            handle.id
        )

        pipe = redis.pipeline.return_value
        pipe.setnx.assert_called_once_with(f"{LOCK_PREFIX}{handle.id}", 1)
        pipe.expire.assert_called_once_with(f"{LOCK_PREFIX}{handle.id}", 60)
        redis.delete.assert_awaited_once_with(f"{LOCK_PREFIX}{handle.id}")

    @pytest.mark.asyncio
    async def test_contact_inserted_by_signing_task_is_reused(
        self, signing_service, session_factory, make_envelope, fetch_envelope
    ):
        handle = await make_envelope(SigningMode.PARALLEL, [1])
        async with session_factory() as session, session.begin():
            existing = Contact(team_id=TEAM_ID, email="signer1@example.com", source=ContactSource.SIGNATURE_EVENT)
            session.add(existing)
        duplicate = IntegrityError("INSERT INTO contacts", {}, Exception("UNIQUE constraint failed"))

        with patch(
            "signing_engine.services.filing_service.find_or_create_contact", AsyncMock(side_effect=duplicate)
        ):
            result = await signing_service.record_signer_completion(
                handle.signer_tokens[0], ip_address="203.0.113.7", esign_consent=True
            )

        assert result.filing_result.errors == []
        assert [filing.contact_id for filing in result.filing_result.contact_vault_filings] == [existing.id]
        assert (await fetch_envelope(handle.id)).filed_at is not None

    @pytest.mark.asyncio
    async def test_failed_destination_leaves_envelope_unfiled_for_reconcile(
        self, signing_service, make_envelope, fetch_envelope, fetch_audit_events
    ):
        handle = await make_envelope(SigningMode.PARALLEL, [1])

        with patch(
            "signing_engine.services.filing_service.find_or_create_contact",
            AsyncMock(side_effect=RuntimeError("crm unavailable")),
        ):
            result = await signing_service.record_signer_completion(
                handle.signer_tokens[0], ip_address="203.0.113.7", esign_consent=True
            )

        assert result.filing_result.errors == ["Failed to file to contact vault for signer1@example.com"]
        assert (await fetch_envelope(handle.id)).filed_at is None
        assert await fetch_audit_events(DOCUMENT_FILED) == []

        retried = await signing_service.reconcile_envelope(handle.id)

        assert retried.filing_result is not None
        assert retried.filing_result.errors == []
        assert len(retried.filing_result.contact_vault_filings) == 1
        assert (await fetch_envelope(handle.id)).filed_at is not None
        assert len(await fetch_audit_events(DOCUMENT_FILED)) == 1


class TestFilingHelpers:
    @pytest.mark.asyncio
    async def test_signed_file_name_falls_back_to_title(self, make_envelope, fetch_envelope):
        handle = await make_envelope(SigningMode.PARALLEL, [1], source_file_name=None, send=False)

        assert signed_file_name(await fetch_envelope(handle.id)) == "Mutual NDA_signed.pdf"

    @pytest.mark.asyncio
    async def test_manifest_hash_covers_consent(self, signing_service, make_envelope, fetch_envelope):
        handle = await make_envelope(SigningMode.PARALLEL, [1, 1])
        unsigned = compute_manifest_hash(await fetch_envelope(handle.id))
        await signing_service.record_signer_completion(handle.signer_tokens[0], ip_address="203.0.113.7")

        assert compute_manifest_hash(await fetch_envelope(handle.id)) != unsigned
