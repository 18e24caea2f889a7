from typing import Any, Dict, List, Optional

from pydantic import Field

from signing_engine.models.envelope import EnvelopeStatus, RecipientRole, RecipientStatus, SigningMode
from signing_engine.schemas.common import ORMModel


class SignatureSubmission(ORMModel):
    signature_image: str | None = None
    signature_type: str | None = Field(default=None, pattern="^(draw|type|upload)$")
    field_values: Dict[str, Any] | None = None
    esign_consent: bool = False


class DeclineSubmission(ORMModel):
    reason: str | None = Field(default=None, max_length=1000)


class EnvelopeSummaryRead(ORMModel):
    id: str
    title: str
    status: EnvelopeStatus
    signing_mode: SigningMode
    source_file: str | None = None
    source_file_name: str | None = None
    email_subject: str | None = None


class SignerSessionRead(ORMModel):
    recipient_id: str
    envelope_id: str
    email: str
    name: str
    role: RecipientRole
    status: RecipientStatus
    order: int
    can_sign: bool
    reason: str | None = None
    is_waiting: bool = False
    envelope: EnvelopeSummaryRead


class CompletionResultRead(ORMModel):
    success: bool
    is_envelope_complete: bool
    next_recipients: List[str] = Field(default_factory=list)
    filing_result: Optional[Dict[str, Any]] = None


class DeclineResultRead(ORMModel):
    success: bool
    envelope_status: EnvelopeStatus


class GroupMemberRead(ORMModel):
    email: str
    name: str
    status: RecipientStatus
    order: int


class WaitingGroupRead(ORMModel):
    order: int
    recipients: List[GroupMemberRead] = Field(default_factory=list)


class SigningStatusRead(ORMModel):
    mode: SigningMode
    total_signers: int
    signed_count: int
    current_group: List[GroupMemberRead] = Field(default_factory=list)
    waiting_groups: List[WaitingGroupRead] = Field(default_factory=list)
    is_complete: bool
