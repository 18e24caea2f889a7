"""
Auto-filing of fully executed envelopes.

Filing records one org-vault entry, one contact-vault entry per signer and
one email entry per recipient. Each destination is keyed by a unique
constraint, so re-running the filer for the same envelope returns the
existing rows instead of creating duplicates.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signing_engine.core.errors import report_error
from signing_engine.core.logging import get_logger
from signing_engine.models.contact import Contact
from signing_engine.models.envelope import Envelope, EnvelopeStatus, RecipientRole
from signing_engine.models.filing import DocumentFiling, FilingDestination
from signing_engine.services import envelope_store
from signing_engine.services.audit_service import DOCUMENT_FILED, AuditEvent, record_audit_event
from signing_engine.services.contact_service import find_contact, find_or_create_contact

logger = get_logger(__name__)

LOCK_PREFIX = "signing:filing:lock:"
DEFAULT_LOCK_TTL_SECONDS = 3600
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


@dataclass(slots=True)
class FilingRecord:
    id: str
    destination_type: FilingDestination
    destination_key: str
    contact_id: str | None = None


@dataclass(slots=True)
class FilingResult:
    org_vault_filing: FilingRecord | None = None
    contact_vault_filings: list[FilingRecord] = field(default_factory=list)
    email_filings: list[FilingRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    manifest_hash: str | None = None

    def as_dict(self) -> dict[str, Any]:
        def _record(record: FilingRecord) -> dict[str, Any]:
            return {
                "id": record.id,
                "destination_type": record.destination_type.value,
                "destination_key": record.destination_key,
                "contact_id": record.contact_id,
            }

        return {
            "org_vault_filing": _record(self.org_vault_filing) if self.org_vault_filing else None,
            "contact_vault_filings": [_record(item) for item in self.contact_vault_filings],
            "email_filings": [_record(item) for item in self.email_filings],
            "errors": list(self.errors),
            "manifest_hash": self.manifest_hash,
        }


def signed_file_name(envelope: Envelope) -> str:
    base = re.sub(r"\.[^.]+$", "", envelope.source_file_name) if envelope.source_file_name else envelope.title
    return f"{base}_signed.pdf"


def org_vault_path(envelope: Envelope, file_name: str) -> str:
    filed_on = envelope.completed_at or datetime.now(timezone.utc)
    return f"/Signed Documents/{filed_on:%Y-%m}/{_UNSAFE_FILENAME_CHARS.sub('_', file_name)}"


def compute_manifest_hash(envelope: Envelope) -> str:
    """SHA-256 over the envelope, its source document and every signer's consent hash."""
    digest = hashlib.sha256()
    digest.update(envelope.id.encode("utf-8"))
    digest.update((envelope.source_file or "").encode("utf-8"))
    for signer in sorted(envelope.signers, key=lambda item: (item.order, item.email)):
        consent_hash = (signer.consent_record or {}).get("consentHash", "")
        digest.update(f"{signer.email}:{consent_hash}".encode("utf-8"))
    return digest.hexdigest()


async def _filing_contact(session: AsyncSession, team_id: str, email: str, name: str) -> Contact:
    try:
        async with session.begin_nested():
            return await find_or_create_contact(session, team_id, email, name)
    except IntegrityError:
        # The signer's background contact task inserted the same row first.
        contact = await find_contact(session, team_id, email)
        if contact is None:
            raise
        return contact


async def _acquire_filing_lock(redis_client: Optional[Redis], key: str, ttl_seconds: int) -> bool:
    if redis_client is None:
        return True
    async with redis_client.pipeline(transaction=True) as pipe:
        pipe.setnx(key, 1)
        pipe.expire(key, ttl_seconds)
        created, _ = await pipe.execute()
        return bool(created)


class DocumentFilingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: Optional[Redis] = None,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    ):
        self._session_factory = session_factory
        self._redis = redis_client
        self._lock_ttl_seconds = lock_ttl_seconds

    async def auto_file_envelope_document(self, envelope_id: str) -> FilingResult:
        result = FilingResult()
        lock_key = f"{LOCK_PREFIX}{envelope_id}"
        if not await _acquire_filing_lock(self._redis, lock_key, self._lock_ttl_seconds):
            logger.info("filing.lock.skipped", envelope_id=envelope_id)
            result.errors.append("Filing already in progress")
            return result

        try:
            async with self._session_factory() as session, session.begin():
                await self._file(session, envelope_id, result)
        finally:
            if self._redis is not None:
                await self._redis.delete(lock_key)

        logger.info(
            "filing.completed",
            envelope_id=envelope_id,
            contact_filings=len(result.contact_vault_filings),
            email_filings=len(result.email_filings),
            errors=len(result.errors),
        )
        return result

    async def _file(self, session: AsyncSession, envelope_id: str, result: FilingResult) -> None:
        envelope = await envelope_store.get_envelope(session, envelope_id)
        if envelope is None:
            result.errors.append("Envelope not found")
            return
        if envelope.status is not EnvelopeStatus.COMPLETED:
            result.errors.append(f"Envelope is {envelope.status.value}, not completed")
            return

        file_name = signed_file_name(envelope)
        result.manifest_hash = compute_manifest_hash(envelope)
        existing = await self._existing_filings(session, envelope_id)

        async def _file_to(destination: FilingDestination, key: str, contact_id: str | None = None) -> FilingRecord:
            filing = existing.get((destination, key))
            if filing is None:
                async with session.begin_nested():
                    filing = DocumentFiling(
                        envelope_id=envelope.id,
                        team_id=envelope.team_id,
                        destination_type=destination,
                        destination_key=key,
                        contact_id=contact_id,
                        file_name=file_name,
                        source_file=envelope.source_file,
                        audit_hash=result.manifest_hash,
                        filed_by_id=envelope.created_by_id,
                    )
                    session.add(filing)
                    await session.flush()
            return FilingRecord(
                id=filing.id,
                destination_type=destination,
                destination_key=key,
                contact_id=filing.contact_id,
            )

        try:
            result.org_vault_filing = await _file_to(FilingDestination.ORG_VAULT, org_vault_path(envelope, file_name))
        except Exception as exc:
            result.errors.append("Failed to file to org vault")
            report_error(exc, envelope_id=envelope_id, destination=FilingDestination.ORG_VAULT.value)

        for recipient in envelope.recipients:
            if recipient.role is not RecipientRole.SIGNER:
                continue
            try:
                contact = await _filing_contact(session, envelope.team_id, recipient.email, recipient.name)
                result.contact_vault_filings.append(
                    await _file_to(FilingDestination.CONTACT_VAULT, recipient.email, contact.id)
                )
            except Exception as exc:
                result.errors.append(f"Failed to file to contact vault for {recipient.email}")
                report_error(exc, envelope_id=envelope_id, destination=FilingDestination.CONTACT_VAULT.value)

        for recipient in envelope.recipients:
            try:
                result.email_filings.append(await _file_to(FilingDestination.EMAIL, recipient.email))
            except Exception as exc:
                result.errors.append(f"Failed to record email filing for {recipient.email}")
                report_error(exc, envelope_id=envelope_id, destination=FilingDestination.EMAIL.value)

        if result.errors:
            # Leave filed_at unset so reconcile retries the missing destinations.
            logger.warning("filing.incomplete", envelope_id=envelope_id, errors=result.errors)
            return

        if await envelope_store.mark_envelope_filed(session, envelope_id, now=datetime.now(timezone.utc)):
            record_audit_event(
                session,
                AuditEvent(
                    event_type=DOCUMENT_FILED,
                    resource_type="Envelope",
                    resource_id=envelope.id,
                    team_id=envelope.team_id,
                    user_id=envelope.created_by_id,
                    metadata={
                        "file_name": file_name,
                        "manifest_hash": result.manifest_hash,
                        "destinations": len(result.contact_vault_filings) + len(result.email_filings) + 1,
                    },
                ),
            )

    async def _existing_filings(
        self, session: AsyncSession, envelope_id: str
    ) -> dict[tuple[FilingDestination, str], DocumentFiling]:
        rows = await session.execute(select(DocumentFiling).where(DocumentFiling.envelope_id == envelope_id))
        return {(filing.destination_type, filing.destination_key): filing for filing in rows.scalars().all()}
