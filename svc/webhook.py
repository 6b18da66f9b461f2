# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

"""Stripe webhook handling independent of the HTTP framework.

A delivery moves through three states: the raw bytes are verified against the
``stripe-signature`` header, the verified bytes are parsed into an event, and
the event is reconciled into a decision that picks the response. Only a
``Fail`` answers with a 5xx, which is what makes Stripe retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import stripe

from database.crud import SubscriberWriter, WriteResult
from svc.errors import AuthenticationError, MalformedEventError, StoreWriteError
from svc.events import PaymentEvent, parse_event
from svc.reconciler import Decision, Fail, Reconciler, Skip
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    body: Dict[str, Any]
    decision: Optional[Decision] = field(default=None, compare=False)


def _received(note: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"received": True}
    if note:
        body["note"] = note
    return body


class WebhookHandler:
    def __init__(
        self,
        *,
        webhook_secret: Optional[str],
        reconciler: Reconciler,
        writer: SubscriberWriter,
        tolerance_seconds: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.reconciler = reconciler
        self.writer = writer
        self.tolerance_seconds = tolerance_seconds

    def verify(self, raw_body: bytes, signature: Optional[str]) -> None:
        """Check the signature against the exact bytes Stripe sent."""
        if not signature:
            raise AuthenticationError("Missing Stripe signature header.")
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AuthenticationError("Webhook body is not UTF-8.") from exc
        try:
            stripe.WebhookSignature.verify_header(payload, signature, self.webhook_secret, self.tolerance_seconds)
        except stripe.SignatureVerificationError as exc:
            raise AuthenticationError(f"Invalid Stripe webhook signature: {exc}") from exc

    def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        if not self.webhook_secret:
            logger.error("Stripe webhook secret is not configured")
            return WebhookResult(500, {"error": "Stripe webhook secret is not configured."})

        try:
            self.verify(raw_body, signature)
        except AuthenticationError as exc:
            logger.warning("Rejected Stripe webhook: %s", exc)
            return WebhookResult(400, {"error": str(exc)})

        try:
            event = parse_event(raw_body)
        except MalformedEventError as exc:
            logger.warning("Rejected malformed Stripe webhook: %s", exc)
            return WebhookResult(400, {"error": str(exc)})

        logger.info("Received Stripe webhook event %s (%s)", event.id, event.type)
        try:
            decision = self.reconciler.reconcile(event)
            return self._respond(event, decision)
        except Exception as exc:
            logger.error("Unexpected error handling Stripe event %s: %s", event.id, exc, exc_info=True)
            return WebhookResult(500, {"error": "Internal webhook error"}, Fail(error=exc))

    def _respond(self, event: PaymentEvent, decision: Decision) -> WebhookResult:
        if isinstance(decision, Skip):
            logger.warning(
                "Skipping Stripe event %s (%s): %s [%s]",
                event.id,
                event.type,
                decision.reason,
                decision.detail,
            )
            return WebhookResult(200, _received(decision.reason), decision)

        if isinstance(decision, Fail):
            logger.error("Failed to reconcile Stripe event %s: %s", event.id, decision.error, exc_info=decision.error)
            return WebhookResult(500, {"error": "Internal webhook error"}, decision)

        try:
            result = self.writer.apply(decision.email, decision.plan, decision.usage_limit)
        except StoreWriteError as exc:
            logger.error("Store write failed for Stripe event %s: %s", event.id, exc, exc_info=True)
            return WebhookResult(500, {"error": "Subscriber update failed"}, Fail(error=exc))

        if result is WriteResult.NOT_FOUND:
            return WebhookResult(200, _received("no subscriber record"), Skip(reason="no subscriber record", detail=decision.email))

        logger.info(
            "Applied Stripe event %s: %s -> %s (limit %s)",
            event.id,
            decision.email,
            decision.plan.value,
            decision.usage_limit,
        )
        return WebhookResult(200, _received(), decision)
