from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import groupby
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from signing_engine.core.errors import EnvelopeIntegrityError, NotFoundError
from signing_engine.core.logging import get_logger
from signing_engine.models.envelope import EnvelopeRecipient, RecipientRole, RecipientStatus, SigningMode
from signing_engine.services import envelope_store
from signing_engine.services.outbox_service import EVENT_RECIPIENT_ACTIVATED, enqueue_event

logger = get_logger(__name__)

WAITING_REASON = "Waiting for other signers to complete first"
ORDERED_MODES: frozenset[SigningMode] = frozenset({SigningMode.SEQUENTIAL, SigningMode.MIXED})


@dataclass(slots=True)
class EligibilityResult:
    eligible: bool
    reason: str | None = None


@dataclass(slots=True)
class OrderGroup:
    order: int
    members: list[EnvelopeRecipient] = field(default_factory=list)

    @property
    def is_signed(self) -> bool:
        return all(member.status is RecipientStatus.SIGNED for member in self.members)


@dataclass(slots=True)
class AdvancementPlan:
    is_complete: bool
    current_group: OrderGroup | None = None
    activatable: list[EnvelopeRecipient] = field(default_factory=list)


@dataclass(slots=True)
class AdvancementOutcome:
    is_complete: bool
    next_recipients: list[str] = field(default_factory=list)


def signing_participants(recipients: Sequence[EnvelopeRecipient]) -> list[EnvelopeRecipient]:
    return [recipient for recipient in recipients if recipient.role is RecipientRole.SIGNER]


def group_signers_by_order(signers: Sequence[EnvelopeRecipient]) -> list[OrderGroup]:
    ordered = sorted(signing_participants(signers), key=lambda signer: signer.order)
    return [OrderGroup(order=order, members=list(members)) for order, members in groupby(ordered, key=lambda s: s.order)]


def find_current_group(groups: Sequence[OrderGroup]) -> OrderGroup | None:
    """Lowest-order group that still has an unsigned member."""
    return next((group for group in groups if not group.is_signed), None)


def evaluate_signing_eligibility(
    target: EnvelopeRecipient,
    signers: Sequence[EnvelopeRecipient],
    mode: SigningMode,
) -> EligibilityResult:
    if mode is SigningMode.PARALLEL:
        return EligibilityResult(eligible=True)

    prior = [signer for signer in signing_participants(signers) if signer.order < target.order]
    if all(signer.status is RecipientStatus.SIGNED for signer in prior):
        return EligibilityResult(eligible=True)
    return EligibilityResult(eligible=False, reason=WAITING_REASON)


def plan_advancement(signers: Sequence[EnvelopeRecipient], mode: SigningMode) -> AdvancementPlan:
    groups = group_signers_by_order(signers)
    if not groups:
        raise EnvelopeIntegrityError("Envelope has no signers")

    current = find_current_group(groups)
    if current is None:
        return AdvancementPlan(is_complete=True)
    if mode not in ORDERED_MODES:
        return AdvancementPlan(is_complete=False, current_group=current)

    activatable = [
        member
        for member in current.members
        if member.activated_at is None and member.status not in (RecipientStatus.SIGNED, RecipientStatus.DECLINED)
    ]
    return AdvancementPlan(is_complete=False, current_group=current, activatable=activatable)


async def advance_signing_order(
    session: AsyncSession,
    envelope_id: str,
    *,
    now: datetime | None = None,
) -> AdvancementOutcome:
    """
    Recompute envelope progress from freshly read recipient rows.

    Completion is a conditional envelope transition, so when several signers
    finish together only one caller observes ``is_complete=True``. Likewise a
    recipient is reported in ``next_recipients`` only by the caller whose
    activation update applied.
    """
    now = now or datetime.now(timezone.utc)
    envelope = await envelope_store.get_envelope(session, envelope_id, with_recipients=False)
    if envelope is None:
        raise NotFoundError("Envelope not found", envelope_id=envelope_id)

    signers = await envelope_store.list_signers(session, envelope_id)
    plan = plan_advancement(signers, envelope.signing_mode)

    if plan.is_complete:
        completed = await envelope_store.mark_envelope_completed(session, envelope_id, now=now)
        if completed:
            logger.info("signing.envelope.completed", envelope_id=envelope_id, signers=len(signers))
        else:
            logger.info("signing.envelope.completion_observed", envelope_id=envelope_id)
        return AdvancementOutcome(is_complete=completed)

    if any(signer.status is RecipientStatus.SIGNED for signer in signers):
        await envelope_store.mark_envelope_partially_signed(session, envelope_id)

    next_recipients: list[str] = []
    for recipient in plan.activatable:
        if await envelope_store.activate_recipient(session, recipient.id, now=now):
            next_recipients.append(recipient.email)
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
                },
            )

    if next_recipients:
        logger.info(
            "signing.order.advanced",
            envelope_id=envelope_id,
            order=plan.current_group.order if plan.current_group else None,
            recipients=next_recipients,
        )
    return AdvancementOutcome(is_complete=False, next_recipients=next_recipients)
