# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from svc.errors import PlanMappingError, UnresolvableEvent, UpstreamFetchError
from svc.events import LineItemTokens, PaymentEvent, normalize_event
from svc.identity import resolve_identity
from svc.plan_resolver import resolve_plan_token
from svc.processor import PaymentProcessor
from utils.logger import get_logger
from utils.plans import Plan, PlanMappingEntry, PlanMappingTable

logger = get_logger(__name__)

SKIP_IGNORED_EVENT_TYPE = "ignored event type"
SKIP_NO_EMAIL = "no resolvable email"
SKIP_NO_PLAN_TOKEN = "no resolvable plan token"
SKIP_UNMAPPED_TOKEN = "unmapped plan token"
SKIP_INACTIVE_SUBSCRIPTION = "inactive subscription"

# Lifecycle events for any other status describe a subscription nobody has paid for.
ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})


@dataclass(frozen=True)
class Apply:
    email: str
    plan: Plan
    usage_limit: str


@dataclass(frozen=True)
class Skip:
    reason: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class Fail:
    error: Exception


Decision = Union[Apply, Skip, Fail]


class Reconciler:
    """Turns a verified Stripe event into an ``Apply``, ``Skip`` or ``Fail``.

    Missing or unmappable data is a ``Skip``: the event is acknowledged and
    Stripe stops retrying it. Only processor failures and an unusable mapping
    table produce ``Fail``.
    """

    def __init__(self, mapping: PlanMappingTable, processor: PaymentProcessor) -> None:
        self.mapping = mapping
        self.processor = processor

    def reconcile(self, event: PaymentEvent) -> Decision:
        try:
            return self._reconcile(event)
        except UnresolvableEvent as exc:
            return Skip(reason=exc.reason, detail=None if exc.detail is None else str(exc.detail))
        except (UpstreamFetchError, PlanMappingError) as exc:
            return Fail(error=exc)

    def _reconcile(self, event: PaymentEvent) -> Decision:
        normalized = normalize_event(event)
        if normalized is None:
            raise UnresolvableEvent(SKIP_IGNORED_EVENT_TYPE, event.type)

        status = normalized.subscription_status
        if status is not None and status not in ACTIVE_SUBSCRIPTION_STATUSES:
            raise UnresolvableEvent(SKIP_INACTIVE_SUBSCRIPTION, f"{normalized.maybe_subscription_ref}: {status}")

        email = resolve_identity(normalized, self.processor)
        if not email:
            raise UnresolvableEvent(SKIP_NO_EMAIL, event.id)

        tokens = resolve_plan_token(normalized, self.processor)
        if tokens.is_empty:
            raise UnresolvableEvent(SKIP_NO_PLAN_TOKEN, event.id)

        entry = self._match(tokens)
        return Apply(email=email, plan=entry.plan, usage_limit=entry.usage_limit)

    def _match(self, tokens: LineItemTokens) -> PlanMappingEntry:
        if self.mapping.duplicate_tokens:
            raise PlanMappingError(
                "Plan mapping assigns the same token to several plans: "
                + ", ".join(self.mapping.duplicate_tokens)
            )

        price_entry = self.mapping.lookup(tokens.price)
        product_entry = self.mapping.lookup(tokens.product)
        if price_entry is not None and product_entry is not None and price_entry.plan != product_entry.plan:
            logger.warning(
                "Price %s maps to %s but product %s maps to %s; using the price mapping",
                tokens.price,
                price_entry.plan.value,
                tokens.product,
                product_entry.plan.value,
            )

        entry = price_entry or product_entry
        if entry is not None:
            return entry

        unmapped = tokens.price or tokens.product
        if not self.mapping.is_complete:
            missing = ", ".join(plan.value for plan in self.mapping.missing_plans)
            raise PlanMappingError(f"Token {unmapped} is unmapped and plan mapping is missing: {missing}")
        raise UnresolvableEvent(SKIP_UNMAPPED_TOKEN, f"price={tokens.price} product={tokens.product}")
