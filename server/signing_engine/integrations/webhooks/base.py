"""
Webhook notifier for outbox events

Delivers envelope lifecycle events (recipient activated, completed,
declined, voided, expired) to a configured endpoint. Instances are
callable so they can be handed straight to ``dispatch_pending_events``.
"""

import asyncio
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiohttp import ClientSession, ClientTimeout

from signing_engine.core.config import Settings, get_settings
from signing_engine.core.logging import get_logger
from signing_engine.models.event import EventOutbox

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


@dataclass
class WebhookResult:
    """Result of a delivered webhook."""
    success: bool
    event_type: str
    webhook_url: str
    status_code: int
    attempt_number: int = 1
    envelope_id: Optional[str] = None
    response_data: Optional[Dict[str, Any]] = None


class WebhookError(Exception):
    """Webhook delivery failures."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        webhook_url: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.error_message = message
        self.error_code = error_code
        self.status_code = status_code
        self.webhook_url = webhook_url
        self.payload = payload


def serialize_payload(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str).encode("utf-8")


def parse_response(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """
    Check an ``X-Webhook-Signature`` value against the raw request body.

    Args:
        secret: Shared signing secret
        body: Raw body bytes exactly as received
        signature: Hex digest from the header

    Returns:
        True if the signature matches
    """
    return hmac.compare_digest(sign_payload(secret, body), signature or "")


class WebhookNotifier:
    """Posts outbox events to a webhook endpoint with exponential backoff."""

    def __init__(
        self,
        webhook_url: str,
        *,
        signature_secret: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: int = 30,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 5,
        source: str = "signing_engine",
    ):
        self.webhook_url = webhook_url
        self.signature_secret = signature_secret
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.source = source

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Optional["WebhookNotifier"]:
        """Build a notifier from configuration, or None when delivery is disabled."""
        settings = settings or get_settings()
        if not settings.webhook_enabled or not settings.webhook_url:
            return None
        return cls(
            settings.webhook_url,
            signature_secret=settings.webhook_signature_secret,
            api_key=settings.webhook_api_key,
            timeout_seconds=settings.webhook_timeout_seconds,
            retry_attempts=settings.webhook_retry_attempts,
            retry_delay_seconds=settings.webhook_retry_delay_seconds,
        )

    async def __call__(self, event: EventOutbox) -> WebhookResult:
        return await self.send_event(event.event_type, event.payload, event_id=event.id)

    def build_headers(self, body: bytes) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "SigningEngine/1.0",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.signature_secret:
            headers[SIGNATURE_HEADER] = sign_payload(self.signature_secret, body)
        return headers

    async def send_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        event_id: Optional[str] = None,
    ) -> WebhookResult:
        """
        Send one event.

        Raises:
            WebhookError: If every attempt fails
        """
        payload = {
            "event": event_type,
            "event_id": event_id,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": self.source,
        }
        # The signature covers the exact bytes on the wire.
        body = serialize_payload(payload)
        headers = self.build_headers(body)

        for attempt in range(self.retry_attempts):
            try:
                async with ClientSession(timeout=ClientTimeout(total=self.timeout_seconds)) as session:
                    async with session.post(self.webhook_url, data=body, headers=headers) as response:
                        response_text = await response.text()
                        if 200 <= response.status < 300:
                            response_data = parse_response(response_text)
                            logger.info(
                                "webhook.delivered",
                                event_type=event_type,
                                status_code=response.status,
                                attempt=attempt + 1,
                            )
                            return WebhookResult(
                                success=True,
                                event_type=event_type,
                                webhook_url=self.webhook_url,
                                status_code=response.status,
                                attempt_number=attempt + 1,
                                envelope_id=data.get("envelope_id"),
                                response_data=response_data,
                            )
                        raise WebhookError(
                            message=f"HTTP {response.status}: {response_text}",
                            error_code=f"http_{response.status}",
                            status_code=response.status,
                            webhook_url=self.webhook_url,
                            payload=payload,
                        )
            except Exception as exc:
                logger.warning("webhook.attempt_failed", event_type=event_type, attempt=attempt + 1, error=str(exc))
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(self.retry_delay_seconds * (2 ** attempt))
                    continue
                raise WebhookError(
                    message=f"Failed to send webhook after {self.retry_attempts} attempts: {exc}",
                    error_code="webhook_send_failed",
                    status_code=getattr(exc, "status_code", None),
                    webhook_url=self.webhook_url,
                    payload=payload,
                ) from exc
        raise WebhookError("No delivery attempts were made", webhook_url=self.webhook_url)
