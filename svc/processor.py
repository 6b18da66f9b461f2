# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import stripe

from svc.errors import UpstreamFetchError
from svc.events import LineItemTokens, tokens_from_subscription
from utils.logger import get_logger

logger = get_logger(__name__)

PRICE_PREFIX = "price_"
PRODUCT_PREFIX = "prod_"


class PaymentProcessor(Protocol):
    """Facts the reconciler needs from the payment processor."""

    def get_customer_email(self, customer_id: str) -> Optional[str]:
        """Return the on-file email, or ``None`` for deleted/email-less customers."""

    def get_subscription_tokens(self, subscription_id: str) -> Optional[LineItemTokens]:
        """Return the first line item's price/product, or ``None`` when it has none."""


class CheckoutProcessor(PaymentProcessor, Protocol):
    """Hosted Checkout operations used by the redirect routes."""

    def resolve_checkout_price(self, token: str) -> str:
        ...

    def create_checkout_url(self, price_id: str, *, success_url: str, cancel_url: str) -> str:
        ...


def _stripe_to_dict(obj: Any) -> Dict[str, Any]:
    """Convert Stripe objects to plain dicts for safer access."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj

    for method_name in ("to_dict_recursive", "to_dict"):
        converter = getattr(obj, method_name, None)
        if callable(converter):
            result = converter()
            if isinstance(result, dict):
                return result

    try:
        return dict(obj)
    except (TypeError, ValueError):
        return {}


class StripeProcessor:
    """``PaymentProcessor`` backed by the Stripe API."""

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._api_key = api_key

    def _request_options(self) -> Dict[str, Any]:
        return {"api_key": self._api_key} if self._api_key else {}

    def get_customer_email(self, customer_id: str) -> Optional[str]:
        try:
            customer = stripe.Customer.retrieve(customer_id, **self._request_options())
        except stripe.StripeError as exc:
            logger.error("Unable to retrieve Stripe customer %s: %s", customer_id, exc)
            raise UpstreamFetchError(f"Failed to retrieve customer {customer_id}") from exc

        customer_data = _stripe_to_dict(customer)
        if customer_data.get("deleted"):
            logger.info("Stripe customer %s is deleted; ignoring on-file email", customer_id)
            return None
        email = customer_data.get("email")
        return email if isinstance(email, str) and email.strip() else None

    def get_subscription_tokens(self, subscription_id: str) -> Optional[LineItemTokens]:
        try:
            subscription = stripe.Subscription.retrieve(
                subscription_id,
                expand=["items.data.price.product"],
                **self._request_options(),
            )
        except stripe.StripeError as exc:
            logger.error("Unable to retrieve Stripe subscription %s: %s", subscription_id, exc)
            raise UpstreamFetchError(f"Failed to retrieve subscription {subscription_id}") from exc

        tokens = tokens_from_subscription(_stripe_to_dict(subscription))
        if tokens is None:
            logger.warning("Stripe subscription %s has no line items", subscription_id)
        return tokens

    def resolve_checkout_price(self, token: str) -> str:
        """Turn a configured plan token into a price usable for Checkout.

        Product tokens resolve to the product's active monthly recurring price.
        """
        if token.startswith(PRICE_PREFIX):
            return token
        if not token.startswith(PRODUCT_PREFIX):
            raise ValueError(f"Invalid plan token '{token}' (must start with {PRICE_PREFIX} or {PRODUCT_PREFIX})")

        try:
            prices = stripe.Price.list(product=token, active=True, limit=20, **self._request_options())
        except stripe.StripeError as exc:
            logger.error("Unable to list Stripe prices for product %s: %s", token, exc)
            raise UpstreamFetchError(f"Failed to list prices for product {token}") from exc

        for price in _stripe_to_dict(prices).get("data") or []:
            price_data = _stripe_to_dict(price)
            recurring = _stripe_to_dict(price_data.get("recurring"))
            if recurring.get("interval") == "month" and price_data.get("id"):
                return price_data["id"]
        raise ValueError(f"No active monthly price for product {token}")

    def create_checkout_url(self, price_id: str, *, success_url: str, cancel_url: str) -> str:
        try:
            session = stripe.checkout.Session.create(
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                allow_promotion_codes=True,
                billing_address_collection="auto",
                **self._request_options(),
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session creation failed for price %s: %s", price_id, exc)
            raise UpstreamFetchError("Unable to initiate checkout session with Stripe.") from exc

        url = _stripe_to_dict(session).get("url") or getattr(session, "url", None)
        if not url:
            raise UpstreamFetchError("Stripe checkout session has no redirect URL.")
        logger.info("Created Stripe checkout session for price %s", price_id)
        return url
