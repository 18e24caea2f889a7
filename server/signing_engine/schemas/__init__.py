from signing_engine.schemas.envelope import (
    EnvelopeCreate,
    EnvelopeRead,
    EnvelopeRemind,
    EnvelopeVoid,
    RecipientCreate,
    RecipientRead,
    ReminderResultRead,
)
from signing_engine.schemas.signing import (
    CompletionResultRead,
    DeclineResultRead,
    DeclineSubmission,
    SignatureSubmission,
    SignerSessionRead,
    SigningStatusRead,
)

__all__ = [
    "CompletionResultRead",
    "DeclineResultRead",
    "DeclineSubmission",
    "EnvelopeCreate",
    "EnvelopeRead",
    "EnvelopeRemind",
    "EnvelopeVoid",
    "RecipientCreate",
    "RecipientRead",
    "ReminderResultRead",
    "SignatureSubmission",
    "SignerSessionRead",
    "SigningStatusRead",
]
