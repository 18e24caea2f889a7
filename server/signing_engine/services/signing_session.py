"""
Token-based signing sessions.

``SigningSessionService`` is the entry point for everything a signer does
with their one-time token: opening the document (authentication plus the
first-view side effect), completing a signature and declining. Every state
change is a conditional update in the envelope store, so concurrent
requests for the same recipient or envelope resolve to a single winner.

Audit logging and CRM contact creation run on the background task runner
and never block or fail the signing path. Auto-filing runs inline once an
envelope completes, but its failure is reported rather than raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signing_engine.core.errors import NotFoundError, SigningNotAllowedError, report_error
from signing_engine.core.logging import bind_signing_context, get_logger
from signing_engine.models.envelope import (
    CLOSED_ENVELOPE_STATUSES,
    NON_SIGNING_ROLES,
    TERMINAL_ENVELOPE_STATUSES,
    UNVIEWED_RECIPIENT_STATUSES,
    Envelope,
    EnvelopeRecipient,
    EnvelopeStatus,
    RecipientRole,
    RecipientStatus,
    SigningMode,
)
from signing_engine.services import envelope_store
from signing_engine.services.audit_service import (
    DOCUMENT_DECLINED,
    DOCUMENT_SIGNED,
    DOCUMENT_VIEWED,
    AuditEvent,
    AuditLogger,
)
from signing_engine.services.background import BackgroundTaskRunner
from signing_engine.services.consent import build_consent_record
from signing_engine.services.contact_service import ContactService
from signing_engine.services.filing_service import DocumentFilingService, FilingResult
from signing_engine.services.outbox_service import (
    EVENT_ENVELOPE_COMPLETED,
    EVENT_ENVELOPE_DECLINED,
    enqueue_event,
)
from signing_engine.services.signing_order import (
    AdvancementOutcome,
    advance_signing_order,
    evaluate_signing_eligibility,
)
from signing_engine.services.status_report import SigningStatusReport, build_status_report

logger = get_logger(__name__)

INVALID_TOKEN_REASON = "Invalid signing token"
ALREADY_SIGNED_REASON = "You have already signed this document"
ALREADY_DECLINED_REASON = "You have declined to sign this document"
NON_SIGNER_REASON = "This recipient does not need to sign"
NOT_SENT_REASON = "This envelope has not been sent"


def closed_envelope_reason(status: EnvelopeStatus) -> str:
    return f"This envelope has been {status.value}"


@dataclass(slots=True)
class EnvelopeSummary:
    id: str
    title: str
    status: EnvelopeStatus
    signing_mode: SigningMode
    source_file: str | None = None
    source_file_name: str | None = None
    email_subject: str | None = None


@dataclass(slots=True)
class SignerSession:
    recipient_id: str
    envelope_id: str
    team_id: str
    email: str
    name: str
    role: RecipientRole
    status: RecipientStatus
    order: int
    signing_mode: SigningMode
    envelope: EnvelopeSummary
    can_sign: bool
    reason: str | None = None
    is_waiting: bool = False


@dataclass(slots=True)
class CompletionResult:
    success: bool
    is_envelope_complete: bool
    next_recipients: list[str] = field(default_factory=list)
    filing_result: FilingResult | None = None


@dataclass(slots=True)
class DeclineResult:
    success: bool
    envelope_status: EnvelopeStatus


def _build_session(
    recipient: EnvelopeRecipient,
    envelope: Envelope,
    *,
    can_sign: bool,
    reason: str | None = None,
    is_waiting: bool = False,
) -> SignerSession:
    return SignerSession(
        recipient_id=recipient.id,
        envelope_id=envelope.id,
        team_id=envelope.team_id,
        email=recipient.email,
        name=recipient.name,
        role=recipient.role,
        status=recipient.status,
        order=recipient.order,
        signing_mode=envelope.signing_mode,
        envelope=EnvelopeSummary(
            id=envelope.id,
            title=envelope.title,
            status=envelope.status,
            signing_mode=envelope.signing_mode,
            source_file=envelope.source_file,
            source_file_name=envelope.source_file_name,
            email_subject=envelope.email_subject,
        ),
        can_sign=can_sign,
        reason=reason,
        is_waiting=is_waiting,
    )


def _short_circuit_reason(recipient: EnvelopeRecipient, envelope: Envelope) -> str | None:
    """Reasons that end authentication before ordering is considered, in precedence order."""
    if envelope.status in CLOSED_ENVELOPE_STATUSES:
        return closed_envelope_reason(envelope.status)
    if envelope.status is EnvelopeStatus.DRAFT:
        return NOT_SENT_REASON
    if recipient.status is RecipientStatus.SIGNED:
        return ALREADY_SIGNED_REASON
    if recipient.status is RecipientStatus.DECLINED:
        return ALREADY_DECLINED_REASON
    if recipient.role in NON_SIGNING_ROLES:
        return NON_SIGNER_REASON
    return None


class SigningSessionService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        audit_logger: Optional[AuditLogger] = None,
        contact_creator: Optional[ContactService] = None,
        document_filer: Optional[DocumentFilingService] = None,
        task_runner: Optional[BackgroundTaskRunner] = None,
    ):
        self._session_factory = session_factory
        self._audit_logger = audit_logger or AuditLogger(session_factory)
        self._contacts = contact_creator or ContactService(session_factory)
        self._filer = document_filer or DocumentFilingService(session_factory)
        self._runner = task_runner or BackgroundTaskRunner()

    @property
    def task_runner(self) -> BackgroundTaskRunner:
        return self._runner

    async def authenticate_signer(self, signing_token: str) -> SignerSession:
        """
        Resolve a signing token into a session with a ``can_sign`` verdict.

        The first access by a pending recipient marks them VIEWED (and the
        envelope VIEWED if it was still SENT), even when ordering makes them
        wait. Raises :class:`NotFoundError` for an unknown token.
        """
        async with self._session_factory() as session, session.begin():
            signer, first_view = await self._authenticate(session, signing_token, mark_viewed=True)

        if first_view:
            self._spawn_audit(
                AuditEvent(
                    event_type=DOCUMENT_VIEWED,
                    resource_type="Envelope",
                    resource_id=signer.envelope_id,
                    team_id=signer.team_id,
                    metadata={"recipient_email": signer.email, "order": signer.order},
                ),
                envelope_id=signer.envelope_id,
            )
        return signer

    async def record_signer_completion(
        self,
        signing_token: str,
        *,
        ip_address: str | None,
        user_agent: str | None = None,
        signature_image: str | None = None,
        signature_type: str | None = None,
        field_values: dict[str, Any] | None = None,
        esign_consent: bool = False,
    ) -> CompletionResult:
        signer = await self.authenticate_signer(signing_token)
        bind_signing_context(envelope_id=signer.envelope_id, recipient_id=signer.recipient_id)
        if not signer.can_sign:
            raise SigningNotAllowedError(
                signer.reason or "Cannot sign at this time",
                envelope_id=signer.envelope_id,
                recipient_id=signer.recipient_id,
            )

        signed_at = datetime.now(timezone.utc)
        consent = build_consent_record(
            email=signer.email,
            signed_at=signed_at,
            ip_address=ip_address,
            user_agent=user_agent,
            esign_consent=esign_consent,
            signature_type=signature_type,
        )
        async with self._session_factory() as session, session.begin():
            signed = await envelope_store.mark_recipient_signed(
                session,
                signer.recipient_id,
                signer.envelope_id,
                signed_at=signed_at,
                ip_address=ip_address,
                user_agent=user_agent,
                consent_record=consent.as_dict(),
                signature_checksum=consent.signature_checksum(),
                signature_type=signature_type,
                signature_image=signature_image,
                field_values=field_values,
            )
        if not signed:
            raise await self._lost_signing_race(signing_token, signer)

        logger.info(
            "signing.recipient.signed",
            envelope_id=signer.envelope_id,
            recipient_id=signer.recipient_id,
            order=signer.order,
            consent_hash=consent.consent_hash,
        )
        self._spawn_audit(
            AuditEvent(
                event_type=DOCUMENT_SIGNED,
                resource_type="Envelope",
                resource_id=signer.envelope_id,
                team_id=signer.team_id,
                metadata={
                    "recipient_email": signer.email,
                    "signature_type": signature_type,
                    "signing_mode": signer.signing_mode.value,
                    "order": signer.order,
                    "consent_hash": consent.consent_hash,
                },
                ip_address=ip_address,
                user_agent=user_agent,
            ),
            envelope_id=signer.envelope_id,
        )
        self._runner.spawn(
            self._contacts.auto_create_contact_for_signer(signer.team_id, signer.email, signer.name),
            name="contact.auto_create",
            envelope_id=signer.envelope_id,
        )

        try:
            outcome = await self._advance(signer.envelope_id)
        except Exception as exc:
            # The signature is committed; reconcile_envelope() finishes the advancement later.
            report_error(exc, envelope_id=signer.envelope_id, operation="signing.advance")
            return CompletionResult(success=True, is_envelope_complete=False)

        filing_result = await self._file(signer.envelope_id) if outcome.is_complete else None
        return CompletionResult(
            success=True,
            is_envelope_complete=outcome.is_complete,
            next_recipients=outcome.next_recipients,
            filing_result=filing_result,
        )

    async def record_signer_decline(
        self,
        signing_token: str,
        *,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> DeclineResult:
        """Decline on behalf of the token bearer; the whole envelope becomes DECLINED."""
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session, session.begin():
            recipient = await envelope_store.get_recipient_by_token(session, signing_token)
            if recipient is None:
                raise NotFoundError(INVALID_TOKEN_REASON)
            envelope = recipient.envelope
            blocked = self._decline_blocked_reason(recipient, envelope)
            if blocked is not None:
                raise SigningNotAllowedError(blocked, envelope_id=envelope.id, recipient_id=recipient.id)

            declined = await envelope_store.mark_recipient_declined(
                session,
                recipient.id,
                now=now,
                reason=reason,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            envelope_declined = declined and await envelope_store.transition_envelope(
                session,
                envelope.id,
                from_statuses=[status for status in EnvelopeStatus if status not in TERMINAL_ENVELOPE_STATUSES],
                to_status=EnvelopeStatus.DECLINED,
                declined_at=now,
                declined_by=recipient.email,
            )
            if not envelope_declined:
                # Raising rolls back the recipient update together with the envelope one.
                raise SigningNotAllowedError(
                    "This envelope can no longer be declined",
                    envelope_id=envelope.id,
                    recipient_id=recipient.id,
                )
            await enqueue_event(
                session,
                envelope_id=envelope.id,
                event_type=EVENT_ENVELOPE_DECLINED,
                payload={"envelope_id": envelope.id, "declined_by": recipient.email, "reason": reason},
            )
            team_id, envelope_id, email = envelope.team_id, envelope.id, recipient.email

        logger.info("signing.recipient.declined", envelope_id=envelope_id, recipient_email=email)
        self._spawn_audit(
            AuditEvent(
                event_type=DOCUMENT_DECLINED,
                resource_type="Envelope",
                resource_id=envelope_id,
                team_id=team_id,
                metadata={"recipient_email": email, "reason": reason},
                ip_address=ip_address,
                user_agent=user_agent,
            ),
            envelope_id=envelope_id,
        )
        return DeclineResult(success=True, envelope_status=EnvelopeStatus.DECLINED)

    async def get_signing_status(self, envelope_id: str, *, team_id: str | None = None) -> SigningStatusReport:
        async with self._session_factory() as session:
            envelope = await envelope_store.get_envelope(session, envelope_id, with_recipients=False)
            if envelope is None or (team_id is not None and envelope.team_id != team_id):
                raise NotFoundError("Envelope not found", envelope_id=envelope_id)
            signers = await envelope_store.list_signers(session, envelope_id)
        return build_status_report(envelope.signing_mode, signers)

    async def reconcile_envelope(self, envelope_id: str) -> CompletionResult:
        """
        Re-run order advancement and filing for an envelope.

        Safe to call any number of times: completion is a conditional
        transition and filing reuses existing destination rows. Picks up
        envelopes whose advancement failed after a signature committed and
        completed envelopes that were never filed.
        """
        outcome = await self._advance(envelope_id)
        needs_filing = outcome.is_complete
        if not needs_filing:
            async with self._session_factory() as session:
                envelope = await envelope_store.get_envelope(session, envelope_id, with_recipients=False)
            needs_filing = (
                envelope is not None and envelope.status is EnvelopeStatus.COMPLETED and envelope.filed_at is None
            )
        filing_result = await self._file(envelope_id) if needs_filing else None
        return CompletionResult(
            success=True,
            is_envelope_complete=outcome.is_complete,
            next_recipients=outcome.next_recipients,
            filing_result=filing_result,
        )

    async def _authenticate(
        self,
        session: AsyncSession,
        signing_token: str,
        *,
        mark_viewed: bool,
    ) -> tuple[SignerSession, bool]:
        recipient = await envelope_store.get_recipient_by_token(session, signing_token)
        if recipient is None:
            raise NotFoundError(INVALID_TOKEN_REASON)
        envelope = recipient.envelope

        reason = _short_circuit_reason(recipient, envelope)
        if reason is not None:
            return _build_session(recipient, envelope, can_sign=False, reason=reason), False

        # Ordering is always judged against a fresh read of every signer.
        signers = await envelope_store.list_signers(session, envelope.id)
        eligibility = evaluate_signing_eligibility(recipient, signers, envelope.signing_mode)

        first_view = False
        if mark_viewed and recipient.status in UNVIEWED_RECIPIENT_STATUSES:
            first_view = await envelope_store.mark_recipient_viewed(
                session, recipient.id, now=datetime.now(timezone.utc)
            )
            if first_view:
                await envelope_store.mark_envelope_viewed(session, envelope.id)
                await session.refresh(recipient)
                await session.refresh(envelope)
                logger.info("signing.recipient.viewed", envelope_id=envelope.id, recipient_id=recipient.id)

        signer = _build_session(
            recipient,
            envelope,
            can_sign=eligibility.eligible,
            reason=eligibility.reason,
            is_waiting=not eligibility.eligible,
        )
        return signer, first_view

    async def _lost_signing_race(self, signing_token: str, signer: SignerSession) -> SigningNotAllowedError:
        async with self._session_factory() as session:
            fresh, _ = await self._authenticate(session, signing_token, mark_viewed=False)
        reason = fresh.reason if not fresh.can_sign and fresh.reason else ALREADY_SIGNED_REASON
        logger.info("signing.recipient.sign_conflict", envelope_id=signer.envelope_id, reason=reason)
        return SigningNotAllowedError(reason, envelope_id=signer.envelope_id, recipient_id=signer.recipient_id)

    @staticmethod
    def _decline_blocked_reason(recipient: EnvelopeRecipient, envelope: Envelope) -> str | None:
        # A waiting signer may still decline; a completed envelope may not.
        if envelope.status is EnvelopeStatus.COMPLETED:
            return closed_envelope_reason(envelope.status)
        return _short_circuit_reason(recipient, envelope)

    async def _advance(self, envelope_id: str) -> AdvancementOutcome:
        async with self._session_factory() as session, session.begin():
            outcome = await advance_signing_order(session, envelope_id)
            if outcome.is_complete:
                await enqueue_event(
                    session,
                    envelope_id=envelope_id,
                    event_type=EVENT_ENVELOPE_COMPLETED,
                    payload={"envelope_id": envelope_id},
                )
        return outcome

    async def _file(self, envelope_id: str) -> FilingResult | None:
        try:
            return await self._filer.auto_file_envelope_document(envelope_id)
        except Exception as exc:
            report_error(exc, envelope_id=envelope_id, operation="filing.auto_file")
            return None

    def _spawn_audit(self, event: AuditEvent, **context: Any) -> None:
        self._runner.spawn(self._audit_logger.log_event(event), name="audit.log_event", **context)
