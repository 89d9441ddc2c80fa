"""Webhook delivery with HMAC-SHA256 signing.

Used for two things: notifying registered subscribers of spec events, and
handing PR requests to the source-control collaborator.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from assure.models.events import WebhookEnvelope
from assure.services.id_generator import generate_id

from .webhook_config import WebhookRegistry, WebhookSubscription, webhook_registry

logger = logging.getLogger(__name__)

SOURCE_SYSTEM = "assure-spec-patcher"
MAX_ATTEMPTS = 3


@dataclass
class DeliveryResult:
    url: str
    status: int | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _sign_payload(body: bytes, secret: str) -> str:
    """Compute HMAC-SHA256 signature over the raw JSON body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_envelope(event_type: str, payload: dict, source_system: str = SOURCE_SYSTEM) -> WebhookEnvelope:
    """Build a webhook envelope (unsigned). Signature is added per-subscriber."""
    return WebhookEnvelope(
        event_type=event_type,
        event_id=generate_id("evt_"),
        occurred_at=datetime.now(timezone.utc),
        source_system=source_system,
        payload=payload,
    )


async def emit_event(
    event_type: str,
    payload: dict,
    registry: WebhookRegistry | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[DeliveryResult]:
    """Deliver an event to every matching subscriber. Returns one result per subscriber."""
    subscribers = (registry or webhook_registry).get_subscribers(event_type)
    if not subscribers:
        return []

    envelope = build_envelope(event_type, payload)
    return [await deliver(envelope, sub, client=client) for sub in subscribers]


async def deliver(
    envelope: WebhookEnvelope,
    sub: WebhookSubscription,
    client: httpx.AsyncClient | None = None,
) -> DeliveryResult:
    """Deliver a signed webhook to a single subscriber with retry on 5xx and transport errors."""
    body_dict = envelope.model_dump(mode="json", exclude={"signature"})
    body_bytes = json.dumps(body_dict, separators=(",", ":")).encode("utf-8")
    signature = _sign_payload(body_bytes, sub.secret)
    body_dict["signature"] = signature

    signed_body = json.dumps(body_dict, separators=(",", ":")).encode("utf-8")

    headers = {
        "Content-Type": "application/json",
        "X-Assure-Signature": signature,
        "X-Assure-Event": envelope.event_type,
    }

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=10.0)
    try:
        for attempt in range(MAX_ATTEMPTS):
            last = attempt == MAX_ATTEMPTS - 1
            try:
                resp = await http.post(sub.url, content=signed_body, headers=headers)
            except httpx.HTTPError as exc:
                if not last:
                    continue
                logger.warning("Webhook delivery failed to %s: %s", sub.url, exc)
                return DeliveryResult(sub.url, None, str(exc))

            if resp.status_code < 300:
                return DeliveryResult(sub.url, resp.status_code)
            if resp.status_code >= 500 and not last:
                continue
            logger.warning("Webhook %s rejected by %s: HTTP %d", envelope.event_type, sub.url, resp.status_code)
            return DeliveryResult(sub.url, resp.status_code, f"HTTP {resp.status_code}")
    finally:
        if owns_client:
            await http.aclose()

    return DeliveryResult(sub.url, None, "max retries exceeded")
