from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field

from signing_engine.models.envelope import EnvelopeStatus, RecipientRole, RecipientStatus, SigningMode
from signing_engine.schemas.common import ORMModel, Timestamped


class RecipientCreate(ORMModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    role: RecipientRole = RecipientRole.SIGNER
    order: int | None = Field(default=None, ge=1)


class EnvelopeCreate(ORMModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    source_file: str | None = None
    source_file_name: str | None = Field(default=None, max_length=255)
    signing_mode: SigningMode | None = None
    email_subject: str | None = Field(default=None, max_length=255)
    email_message: str | None = None
    expires_at: Optional[datetime] = None
    reminder_days: int = Field(default=3, ge=1)
    max_reminders: int = Field(default=3, ge=0)
    recipients: List[RecipientCreate] = Field(min_length=1)


class RecipientRead(Timestamped):
    id: str
    email: str
    name: str
    role: RecipientRole
    order: int
    status: RecipientStatus
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    declined_reason: str | None = None
    reminder_count: int = 0
    last_reminder_sent_at: Optional[datetime] = None


class EnvelopeRead(Timestamped):
    id: str
    team_id: str
    title: str
    description: str | None = None
    source_file: str | None = None
    source_file_name: str | None = None
    signing_mode: SigningMode
    status: EnvelopeStatus
    email_subject: str | None = None
    expires_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    voided_reason: str | None = None
    declined_at: Optional[datetime] = None
    declined_by: str | None = None
    reminder_days: int = 3
    max_reminders: int = 3
    recipients: List[RecipientRead] = Field(default_factory=list)


class EnvelopeVoid(ORMModel):
    reason: str = Field(min_length=1, max_length=1000)


class EnvelopeRemind(ORMModel):
    recipient_id: str | None = None


class ReminderResultRead(ORMModel):
    reminded: List[str] = Field(default_factory=list)
