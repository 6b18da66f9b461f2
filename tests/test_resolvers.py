from __future__ import annotations

import pytest

from svc.errors import UpstreamFetchError
from svc.events import EventType, LineItemTokens, NormalizedEvent
from svc.identity import normalize_email, resolve_identity
from svc.plan_resolver import resolve_plan_token


def _event(**overrides) -> NormalizedEvent:
    fields = {"event_id": "evt_1", "event_type": EventType.CHECKOUT_SESSION_COMPLETED}
    fields.update(overrides)
    return NormalizedEvent(**fields)


def test_normalize_email_trims_and_lowercases():
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


def test_primary_email_wins(processor):
    event = _event(maybe_email="First@X.com", maybe_alt_email="second@x.com", maybe_customer_ref="cus_1")

    assert resolve_identity(event, processor) == "first@x.com"
    assert processor.calls == []


def test_alternate_email_used_when_primary_missing(processor):
    event = _event(maybe_alt_email="Second@X.com", maybe_customer_ref="cus_1")

    assert resolve_identity(event, processor) == "second@x.com"
    assert processor.calls == []


def test_customer_lookup_is_last_resort(processor):
    processor.customers["cus_1"] = {"email": "OnFile@X.com"}

    assert resolve_identity(_event(maybe_customer_ref="cus_1"), processor) == "onfile@x.com"
    assert processor.calls == [("customer", "cus_1")]


def test_deleted_customer_is_absent(processor):
    processor.customers["cus_1"] = {"email": "gone@x.com", "deleted": True}

    assert resolve_identity(_event(maybe_customer_ref="cus_1"), processor) is None


def test_no_email_and_no_customer_is_absent(processor):
    assert resolve_identity(_event(), processor) is None
    assert processor.calls == []


def test_customer_lookup_failure_propagates(processor):
    processor.fail_lookups = True

    with pytest.raises(UpstreamFetchError):
        resolve_identity(_event(maybe_customer_ref="cus_1"), processor)


def test_embedded_line_item_needs_no_fetch(processor):
    tokens = LineItemTokens(price="price_pro", product="prod_pro")
    event = _event(maybe_subscription_ref="sub_basic", maybe_line_item=tokens)

    assert resolve_plan_token(event, processor) == tokens
    assert processor.calls == []


def test_subscription_is_fetched_when_not_embedded(processor):
    event = _event(maybe_subscription_ref="sub_elite")

    assert resolve_plan_token(event, processor) == LineItemTokens(price="price_elite", product="prod_elite")
    assert processor.calls == [("subscription", "sub_elite")]


def test_subscription_without_items_yields_absent_tokens(processor):
    tokens = resolve_plan_token(_event(maybe_subscription_ref="sub_empty"), processor)

    assert tokens.price is None and tokens.product is None


def test_no_subscription_reference_yields_absent_tokens(processor):
    assert resolve_plan_token(_event(), processor).is_empty
    assert processor.calls == []
