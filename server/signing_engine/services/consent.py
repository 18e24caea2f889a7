"""
ESIGN/UETA consent records.

The consent hash is a SHA-256 commitment over the canonical JSON form of
``{email, timestamp, ipAddress, userAgent, esignConsent}``. It is a
tamper-evidence anchor, not a secret: anyone holding the stored record can
recompute it with :func:`verify_consent_record`.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

CONSENT_RECORD_VERSION = "1.0"
ESIGN_CONSENT_TEXT = (
    "I agree to use electronic records and signatures, and I understand that my electronic "
    "signature on this document is the legal equivalent of my handwritten signature."
)


def format_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def canonical_consent_payload(
    *,
    email: str,
    timestamp: str,
    ip_address: str | None,
    user_agent: str | None,
    esign_consent: bool,
) -> str:
    return json.dumps(
        {
            "email": email,
            "timestamp": timestamp,
            "ipAddress": ip_address,
            "userAgent": user_agent,
            "esignConsent": bool(esign_consent),
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_consent_hash(
    *,
    email: str,
    timestamp: str,
    ip_address: str | None,
    user_agent: str | None,
    esign_consent: bool,
) -> str:
    payload = canonical_consent_payload(
        email=email,
        timestamp=timestamp,
        ip_address=ip_address,
        user_agent=user_agent,
        esign_consent=esign_consent,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class ConsentRecord:
    email: str
    timestamp: str
    ip_address: str | None
    user_agent: str | None
    esign_consent: bool
    consent_hash: str
    signature_type: str | None = None
    version: str = CONSENT_RECORD_VERSION

    def as_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "timestamp": self.timestamp,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "esignConsent": self.esign_consent,
            "consentHash": self.consent_hash,
            "signatureType": self.signature_type,
            "version": self.version,
        }

    def signature_checksum(self) -> dict[str, str]:
        return {"documentHash": self.consent_hash, "signedAt": self.timestamp}


def build_consent_record(
    *,
    email: str,
    signed_at: datetime,
    ip_address: str | None,
    user_agent: str | None,
    esign_consent: bool,
    signature_type: str | None = None,
) -> ConsentRecord:
    timestamp = format_timestamp(signed_at)
    consent_hash = compute_consent_hash(
        email=email,
        timestamp=timestamp,
        ip_address=ip_address,
        user_agent=user_agent,
        esign_consent=esign_consent,
    )
    return ConsentRecord(
        email=email,
        timestamp=timestamp,
        ip_address=ip_address,
        user_agent=user_agent,
        esign_consent=bool(esign_consent),
        consent_hash=consent_hash,
        signature_type=signature_type,
    )


def verify_consent_record(record: dict[str, Any]) -> bool:
    expected = compute_consent_hash(
        email=record.get("email", ""),
        timestamp=record.get("timestamp", ""),
        ip_address=record.get("ipAddress"),
        user_agent=record.get("userAgent"),
        esign_consent=bool(record.get("esignConsent")),
    )
    return hmac.compare_digest(expected, str(record.get("consentHash", "")))
