"""
Subscription webhook boundary.

The payment provider signs each delivery with HMAC-SHA256 over the raw
request body. Nothing in the payload is trusted until the signature checks
out; comparison is constant-time.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any

from blockflow.logging import get_logger
from blockflow.models import Subscription
from blockflow.store.base import GraphStore

logger = get_logger("webhooks")

SIGNATURE_HEADER = "polar-signature"

UPSERT_EVENTS = frozenset({"subscription.created", "subscription.updated"})
CANCEL_EVENTS = frozenset({"subscription.canceled", "subscription.revoked"})


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of ``raw_body``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: str | None, raw_body: bytes, signature: str | None) -> bool:
    """
    Check a webhook signature.

    Accepts ``sha256=<hex>`` or bare hex. An empty secret or signature
    never verifies.
    """
    if not secret or not signature:
        return False
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(provided.lower().encode("ascii", "replace"), expected.encode("ascii"))


@dataclass
class WebhookResult:
    status_code: int
    body: dict[str, Any] = field(default_factory=lambda: {"received": True})


class SubscriptionWebhookHandler:
    """Applies verified subscription events to the store."""

    def __init__(self, store: GraphStore, secret: str | None) -> None:
        self.store = store
        self._secret = secret

    def handle(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        if not verify_signature(self._secret, raw_body, signature):
            logger.warning("Rejected webhook delivery: invalid signature")
            return WebhookResult(401, {"error": "Invalid signature"})

        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return WebhookResult(400, {"error": "Invalid JSON"})
        if not isinstance(event, dict):
            return WebhookResult(400, {"error": "Invalid JSON"})

        event_type = event.get("type")
        data = event.get("data") or {}
        sub_id = data.get("id") if isinstance(data, dict) else None
        logger.info("Webhook event: %s", event_type)

        if event_type in UPSERT_EVENTS:
            if not sub_id:
                return WebhookResult(400, {"error": "Missing subscription id"})
            subscription = self._subscription_from(data)
            if subscription is None:
                return WebhookResult(400, {"error": "Missing user_id"})
            self.store.upsert_subscription(subscription)
        elif event_type in CANCEL_EVENTS:
            if not sub_id:
                return WebhookResult(400, {"error": "Missing subscription id"})
            if not self.store.update_subscription_status(sub_id, "canceled"):
                logger.info("Cancel for unknown subscription %s ignored", sub_id)
        else:
            logger.debug("Unhandled webhook event: %s", event_type)

        return WebhookResult(200)

    def _subscription_from(self, data: dict[str, Any]) -> Subscription | None:
        existing = self.store.get_subscription(data["id"])
        metadata = data.get("metadata") or {}
        user_id = metadata.get("user_id") or (existing.user_id if existing else None)
        if not user_id:
            return None
        product = data.get("product") or {}
        plan = (product.get("name") or "").lower() or (existing.plan if existing else "") or "pro"
        return Subscription(
            provider_subscription_id=data["id"],
            user_id=user_id,
            customer_id=data.get("customer_id"),
            plan=plan,
            status=data.get("status") or "active",
            current_period_end=data.get("current_period_end"),
        )
