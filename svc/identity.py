# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

from typing import Optional

from svc.events import NormalizedEvent
from svc.processor import PaymentProcessor
from utils.logger import get_logger

logger = get_logger(__name__)


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Canonical form of the subscriber key: trimmed and lower-cased.

    Every write path, including the admin override, goes through here.
    """
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def resolve_identity(event: NormalizedEvent, processor: PaymentProcessor) -> Optional[str]:
    """Determine the subscriber email for an event.

    Order: the email captured on the event object, then the alternate email
    field, then the on-file email of the referenced customer. Returns ``None``
    when nothing yields an email; processor failures propagate as
    ``UpstreamFetchError``.
    """
    for candidate in (event.maybe_email, event.maybe_alt_email):
        email = normalize_email(candidate)
        if email:
            return email

    if not event.maybe_customer_ref:
        return None

    logger.info(
        "Event %s carries no email; looking up customer %s",
        event.event_id,
        event.maybe_customer_ref,
    )
    return normalize_email(processor.get_customer_email(event.maybe_customer_ref))
