"""
Webhook delivery of outbox events

Signs each event body with HMAC SHA-256 and posts it with retry.
"""

from .base import SIGNATURE_HEADER, WebhookError, WebhookNotifier, WebhookResult, sign_payload, verify_signature

__all__ = [
    "SIGNATURE_HEADER",
    "WebhookError",
    "WebhookNotifier",
    "WebhookResult",
    "sign_payload",
    "verify_signature",
]
