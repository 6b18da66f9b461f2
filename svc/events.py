# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

"""Inbound Stripe event envelope and per-kind normalization.

Stripe delivers several differently-shaped objects that all describe the same
fact for our purposes: an email, a customer, a subscription and the price the
customer is paying. Each adapter below projects one object shape into a
``NormalizedEvent`` so that the resolvers only ever deal with one shape.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from svc.errors import MalformedEventError


class EventType(str, Enum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAID = "invoice.paid"


class EventData(BaseModel):
    object_: Dict[str, Any] = Field(alias="object")

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class PaymentEvent(BaseModel):
    id: str
    type: str
    data: EventData
    livemode: bool = False
    created: Optional[int] = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def event_type(self) -> Optional[EventType]:
        try:
            return EventType(self.type)
        except ValueError:
            return None

    @property
    def data_object(self) -> Dict[str, Any]:
        return self.data.object_


@dataclass(frozen=True)
class LineItemTokens:
    price: Optional[str] = None
    product: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.price and not self.product


@dataclass(frozen=True)
class NormalizedEvent:
    event_id: str
    event_type: EventType
    maybe_email: Optional[str] = None
    maybe_alt_email: Optional[str] = None
    maybe_customer_ref: Optional[str] = None
    maybe_subscription_ref: Optional[str] = None
    maybe_line_item: Optional[LineItemTokens] = None
    mode: Optional[str] = None
    subscription_status: Optional[str] = None


def parse_event(raw_body: bytes) -> PaymentEvent:
    """Deserialize verified webhook bytes into a ``PaymentEvent``."""
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(f"Webhook body is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedEventError("Webhook body must be a JSON object.")

    try:
        return PaymentEvent.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEventError(f"Webhook body is not a Stripe event: {exc.error_count()} invalid field(s)") from exc


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return None


def _coerce_id(value: Any) -> Optional[str]:
    """Expanded Stripe references arrive as objects, collapsed ones as ids."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        potential_id = value.get("id")
        if isinstance(potential_id, str) and potential_id:
            return potential_id
    return None


def _clean_email(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first_item(collection: Any) -> Optional[Dict[str, Any]]:
    data = _get(collection, "data")
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return None


def tokens_from_price(price: Any) -> LineItemTokens:
    if isinstance(price, str):
        return LineItemTokens(price=price or None)
    return LineItemTokens(price=_coerce_id(price), product=_coerce_id(_get(price, "product")))


def tokens_from_subscription(subscription: Any) -> Optional[LineItemTokens]:
    """Read the first line item's price/product from a subscription object.

    Only the first item is considered; multi-item subscriptions are not
    supported.
    """
    item = _first_item(_get(subscription, "items"))
    if item is None:
        return None
    tokens = tokens_from_price(item.get("price"))
    return None if tokens.is_empty else tokens


def _tokens_from_invoice_line(line: Dict[str, Any]) -> LineItemTokens:
    tokens = tokens_from_price(line.get("price"))
    if not tokens.is_empty:
        return tokens
    # Newer API versions moved the price under pricing.price_details.
    price_details = _get(_get(line, "pricing"), "price_details")
    return LineItemTokens(
        price=_coerce_id(_get(price_details, "price")),
        product=_coerce_id(_get(price_details, "product")),
    )


def _invoice_subscription_ref(invoice: Dict[str, Any]) -> Optional[str]:
    direct = _coerce_id(invoice.get("subscription"))
    if direct:
        return direct
    details = _get(_get(invoice, "parent"), "subscription_details")
    return _coerce_id(_get(details, "subscription"))


def _normalize_checkout_session(event: PaymentEvent) -> NormalizedEvent:
    session = event.data_object
    mode = session.get("mode")
    subscription = session.get("subscription")

    line_item = None
    if isinstance(subscription, dict):
        line_item = tokens_from_subscription(subscription)

    return NormalizedEvent(
        event_id=event.id,
        event_type=EventType.CHECKOUT_SESSION_COMPLETED,
        maybe_email=_clean_email(_get(session.get("customer_details"), "email")),
        maybe_alt_email=_clean_email(session.get("customer_email")),
        maybe_customer_ref=_coerce_id(session.get("customer")),
        maybe_subscription_ref=_coerce_id(subscription) if mode == "subscription" else None,
        maybe_line_item=line_item if mode == "subscription" else None,
        mode=mode,
    )


def _normalize_subscription(event: PaymentEvent) -> NormalizedEvent:
    subscription = event.data_object
    customer = subscription.get("customer")
    return NormalizedEvent(
        event_id=event.id,
        event_type=EventType(event.type),
        maybe_email=_clean_email(_get(customer, "email")),
        maybe_customer_ref=_coerce_id(customer),
        maybe_subscription_ref=_coerce_id(subscription.get("id")),
        maybe_line_item=tokens_from_subscription(subscription),
        mode="subscription",
        subscription_status=subscription.get("status"),
    )


def _normalize_invoice(event: PaymentEvent) -> NormalizedEvent:
    invoice = event.data_object
    line = _first_item(invoice.get("lines"))
    line_item = None
    if line is not None:
        tokens = _tokens_from_invoice_line(line)
        line_item = None if tokens.is_empty else tokens

    return NormalizedEvent(
        event_id=event.id,
        event_type=EventType(event.type),
        maybe_email=_clean_email(invoice.get("customer_email")),
        maybe_alt_email=_clean_email(_get(invoice.get("customer"), "email")),
        maybe_customer_ref=_coerce_id(invoice.get("customer")),
        maybe_subscription_ref=_invoice_subscription_ref(invoice),
        maybe_line_item=line_item,
        mode="subscription",
    )


_ADAPTERS: Dict[EventType, Callable[[PaymentEvent], NormalizedEvent]] = {
    EventType.CHECKOUT_SESSION_COMPLETED: _normalize_checkout_session,
    EventType.SUBSCRIPTION_CREATED: _normalize_subscription,
    EventType.SUBSCRIPTION_UPDATED: _normalize_subscription,
    EventType.INVOICE_PAYMENT_SUCCEEDED: _normalize_invoice,
    EventType.INVOICE_PAID: _normalize_invoice,
}


def normalize_event(event: PaymentEvent) -> Optional[NormalizedEvent]:
    """Project an event into the common shape, or ``None`` for ignored kinds."""
    event_type = event.event_type
    if event_type is None:
        return None
    return _ADAPTERS[event_type](event)
