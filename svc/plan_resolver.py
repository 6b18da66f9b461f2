# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

from svc.events import LineItemTokens, NormalizedEvent
from svc.processor import PaymentProcessor

ABSENT = LineItemTokens()


def resolve_plan_token(event: NormalizedEvent, processor: PaymentProcessor) -> LineItemTokens:
    """Return the (price, product) tokens the event pays for.

    Embedded line items are used as-is. Otherwise the referenced subscription
    is fetched and its first line item read. Both tokens are absent when the
    event has neither, or when the subscription has no line items.
    """
    if event.maybe_line_item is not None and not event.maybe_line_item.is_empty:
        return event.maybe_line_item

    if not event.maybe_subscription_ref:
        return ABSENT

    tokens = processor.get_subscription_tokens(event.maybe_subscription_ref)
    if tokens is None:
        return ABSENT
    return tokens
