"""Inbound webhook verification, deduplication and dispatch.

Order of checks:

    signature   base64(HMAC-SHA256(notification_url + raw_body, key))   -> 401
    JSON body   must decode to an object                                -> 400
    event_id    seen within the TTL                                     -> 200, skipped
    dispatch    by exact event type; sync failures                      -> 500

The event id is marked processed before dispatch. A failure after that point
leaves it marked, so a redelivery of that event within the TTL is skipped.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from square_sync.config import GatewayConfig
from square_sync.errors import SquareSyncError
from square_sync.services.dedup import DedupCache
from square_sync.services.sync_engine import SyncEngine, SyncResult

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-square-signature"


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    body: str = "OK"
    result: SyncResult | None = field(default=None, compare=False)


@dataclass(frozen=True)
class WebhookEvent:
    """Decoded envelope: {event_id, type, data: {object: {...}}}."""

    type: str
    event_id: str | None = None
    object: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebhookEvent:
        envelope = data.get("data")
        obj = envelope.get("object") if isinstance(envelope, dict) else None
        return cls(
            type=str(data.get("type") or ""),
            event_id=str(data["event_id"]) if data.get("event_id") else None,
            object=obj if isinstance(obj, dict) else {},
        )

    @staticmethod
    def is_well_formed(data: dict[str, Any]) -> bool:
        """type is a string, and data and data.object are objects when present."""
        if not isinstance(data.get("type") or "", str):
            return False
        envelope = data.get("data")
        if envelope is None:
            return True
        if not isinstance(envelope, dict):
            return False
        return isinstance(envelope.get("object", {}), (dict, type(None)))

    def part(self, name: str) -> dict[str, Any]:
        value = self.object.get(name)
        return value if isinstance(value, dict) else {}


def compute_signature(notification_url: str, raw_body: bytes, key: str) -> str:
    digest = hmac.new(
        key.encode("utf-8"),
        notification_url.encode("utf-8") + raw_body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    raw_body: bytes,
    provided: str | None,
    notification_url: str,
    key: str | None,
) -> bool:
    """Constant-time check of the provided signature. No key always fails."""
    if not key or not provided:
        return False
    expected = compute_signature(notification_url, raw_body, key)
    return hmac.compare_digest(expected.encode("ascii"), provided.strip().encode("utf-8"))


class WebhookReceiver:
    """Turns a raw webhook delivery into sync operations."""

    def __init__(
        self,
        engine: SyncEngine,
        dedup: DedupCache | None = None,
        config_provider: Callable[[], GatewayConfig] = GatewayConfig.from_env,
    ):
        self.engine = engine
        self.dedup = dedup or DedupCache()
        self._config_provider = config_provider
        self._handlers: dict[str, Callable[[WebhookEvent], SyncResult | None]] = {
            "payment.created": self._on_payment,
            "payment.updated": self._on_payment,
            "payment.refunded": self._on_refund,
            "refund.created": self._on_refund,
            "refund.updated": self._on_refund,
            "subscription.created": self._on_subscription,
            "subscription.updated": self._on_subscription,
            "subscription.canceled": self._on_subscription_cancelled,
            "subscription.deleted": self._on_subscription_cancelled,
            "invoice.paid": self._on_invoice_paid,
            "invoice.payment_made": self._on_invoice_paid,
            "invoice.payment_failed": self._on_invoice_failed,
        }

    @property
    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    def handle(self, raw_body: bytes | str, headers: Mapping[str, str]) -> WebhookResponse:
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        normalized = {k.lower(): v for k, v in headers.items()}
        config = self._config_provider()

        if not config.webhook_signature_key:
            logger.warning("Webhook rejected: no signature key configured (%s)", config.mode_label)
            return WebhookResponse(401, "Invalid signature")
        provided = normalized.get(SIGNATURE_HEADER)
        if not provided:
            logger.warning("Webhook rejected: signature header missing. Headers: %s", sorted(normalized))
            return WebhookResponse(401, "Invalid signature")
        if not verify_signature(raw_body, provided, config.notification_url, config.webhook_signature_key):
            logger.warning("Webhook rejected: signature mismatch for url %s", config.notification_url)
            return WebhookResponse(401, "Invalid signature")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or not payload:
            logger.warning("Webhook rejected: body is not a JSON object")
            return WebhookResponse(400, "Invalid JSON")
        if not WebhookEvent.is_well_formed(payload):
            logger.warning("Webhook rejected: malformed event envelope")
            return WebhookResponse(400, "Invalid event")

        event = WebhookEvent.from_dict(payload)
        if event.event_id and not self.dedup.add(event.event_id):
            logger.info("Webhook event %s already processed; skipped", event.event_id)
            return WebhookResponse(200, "OK")

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("Webhook event type %r not handled", event.type)
            return WebhookResponse(200, "OK")

        logger.info("Webhook event %s (%s) received", event.event_id, event.type)
        try:
            result = handler(event)
        except SquareSyncError as e:
            logger.error("Webhook event %s (%s) failed: %s", event.event_id, event.type, e)
            return WebhookResponse(500, "Processing error")
        return WebhookResponse(200, "OK", result)

    # =========================================================================
    # Handlers
    # =========================================================================

    def _on_payment(self, event: WebhookEvent) -> SyncResult:
        return self.engine.sync_payment(event.part("payment"))

    def _on_refund(self, event: WebhookEvent) -> SyncResult:
        return self.engine.sync_refund(event.part("refund"))

    def _on_subscription(self, event: WebhookEvent) -> SyncResult | None:
        subscription_id = event.part("subscription").get("id")
        if not subscription_id:
            logger.info("Webhook %s without subscription id", event.type)
            return None
        # Fetch the current state rather than trusting the event snapshot.
        return self.engine.sync_subscription_status(subscription_id)

    def _on_subscription_cancelled(self, event: WebhookEvent) -> SyncResult | None:
        subscription_id = event.part("subscription").get("id")
        if not subscription_id:
            logger.info("Webhook %s without subscription id", event.type)
            return None
        return self.engine.cancel_subscription_locally(subscription_id)

    def _on_invoice_paid(self, event: WebhookEvent) -> SyncResult:
        return self.engine.sync_invoice_payment(event.part("invoice"))

    def _on_invoice_failed(self, event: WebhookEvent) -> None:
        invoice = event.part("invoice")
        logger.warning(
            "Invoice %s payment failed (subscription %s)",
            invoice.get("id"),
            invoice.get("subscription_id"),
        )
        return None
