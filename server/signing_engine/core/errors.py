"""
Signing engine errors and the error-reporting sink.

Eligibility problems are normally returned as a ``can_sign``/``reason``
verdict; the exceptions below are raised only where the caller cannot
continue (unknown token, lost race, wrong envelope state).
"""

from typing import Any, Optional

from signing_engine.core.logging import get_logger

logger = get_logger(__name__)


class SigningEngineError(Exception):
    """Base class for signing engine failures."""

    def __init__(
        self,
        message: str,
        envelope_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.envelope_id = envelope_id
        self.recipient_id = recipient_id


class NotFoundError(SigningEngineError):
    """Unknown signing token or envelope."""


class SigningNotAllowedError(SigningEngineError):
    """The bearer of a token may not perform the requested signing action."""

    @property
    def reason(self) -> str:
        return self.message


class EnvelopeStateError(SigningEngineError):
    """Envelope-level command issued against an envelope in the wrong status."""


class EnvelopeIntegrityError(SigningEngineError):
    """Persisted envelope data violates an invariant (e.g. no signers)."""


def report_error(exc: BaseException, **context: Any) -> None:
    """Funnel a swallowed downstream failure to the error channel."""
    logger.error(
        "error.reported",
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=exc,
        **context,
    )
