from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from signing_engine.models.envelope import EnvelopeRecipient, RecipientStatus, SigningMode
from signing_engine.services.signing_order import find_current_group, group_signers_by_order, signing_participants


@dataclass(slots=True)
class GroupMember:
    email: str
    name: str
    status: RecipientStatus
    order: int


@dataclass(slots=True)
class WaitingGroup:
    order: int
    recipients: list[GroupMember] = field(default_factory=list)


@dataclass(slots=True)
class SigningStatusReport:
    mode: SigningMode
    total_signers: int
    signed_count: int
    current_group: list[GroupMember] = field(default_factory=list)
    waiting_groups: list[WaitingGroup] = field(default_factory=list)
    is_complete: bool = False


def _member(recipient: EnvelopeRecipient) -> GroupMember:
    return GroupMember(email=recipient.email, name=recipient.name, status=recipient.status, order=recipient.order)


def build_status_report(mode: SigningMode, recipients: Sequence[EnvelopeRecipient]) -> SigningStatusReport:
    """Progress view over the signers; CC and certified-delivery parties are ignored."""
    signers = signing_participants(recipients)
    signed_count = sum(1 for signer in signers if signer.status is RecipientStatus.SIGNED)
    report = SigningStatusReport(
        mode=mode,
        total_signers=len(signers),
        signed_count=signed_count,
        is_complete=signed_count == len(signers),
    )

    if mode is SigningMode.PARALLEL:
        report.current_group = [_member(signer) for signer in sorted(signers, key=lambda s: s.order)]
        return report

    groups = group_signers_by_order(signers)
    current = find_current_group(groups)
    if current is None:
        return report

    report.current_group = [_member(member) for member in current.members]
    report.waiting_groups = [
        WaitingGroup(order=group.order, recipients=[_member(member) for member in group.members])
        for group in groups
        if group.order > current.order
    ]
    return report
