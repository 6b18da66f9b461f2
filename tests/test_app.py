from __future__ import annotations

import dataclasses

from fastapi.testclient import TestClient
from sqlalchemy import text

from conftest import ADMIN_SECRET
from database.crud import get_subscriber
from database.session import build_engine, db_session
from main import create_app
from utils.config import DEFAULT_CANCEL_URL


def test_health_reports_configuration(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "stripe_configured": True,
        "webhook_configured": True,
        "plan_mapping_valid": True,
        "missing_plans": [],
        "create_if_missing": True,
    }


def test_checkout_redirects_to_hosted_page(client, processor, settings):
    response = client.get("/api/checkout/pro", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "https://checkout.stripe.test/c/price_pro"
    assert ("checkout", "price_pro", settings.success_url, settings.cancel_url) in processor.calls


def test_checkout_unknown_plan_goes_to_cancel_url(client, processor):
    response = client.get("/api/checkout/platinum", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == DEFAULT_CANCEL_URL
    assert processor.calls == []


def test_checkout_resolves_product_tokens(settings, processor, engine):
    processor.product_prices["prod_elite"] = "price_elite_monthly"
    app = create_app(dataclasses.replace(settings, price_elite="prod_elite"), processor=processor, engine=engine)

    with TestClient(app) as client:
        response = client.get("/api/checkout/Elite", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"].endswith("/price_elite_monthly")


def test_checkout_processor_failure_is_bad_gateway(client, processor):
    processor.fail_checkout = True

    response = client.get("/api/checkout/basic", follow_redirects=False)

    assert response.status_code == 502


def test_checkout_without_stripe_key_is_server_error(settings, processor, engine):
    app = create_app(dataclasses.replace(settings, stripe_secret_key=None), processor=processor, engine=engine)

    with TestClient(app) as client:
        response = client.get("/api/checkout/basic", follow_redirects=False)

    assert response.status_code == 500
    assert response.json() == {"error": "Missing STRIPE_SECRET_KEY"}


def test_create_checkout_session_rejects_unknown_plan(client):
    response = client.get("/api/create-checkout-session", params={"plan": "gold"}, follow_redirects=False)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid plan"}


def test_create_checkout_session_redirects(client):
    response = client.get("/api/create-checkout-session", params={"plan": "basic"}, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"].endswith("/price_basic")


def test_admin_override_requires_secret(client, session_factory, subscribers):
    response = client.get("/api/admin-set-plan", params={"email": "a@x.com", "plan": "pro"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    with db_session(session_factory) as db:
        assert get_subscriber(db, subscribers, "a@x.com") is None


def test_admin_override_rejects_wrong_secret(client):
    response = client.get(
        "/api/admin-set-plan",
        params={"email": "a@x.com", "plan": "pro"},
        headers={"x-admin-secret": "nope"},
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_admin_override_upserts_normalized_email(client, session_factory, subscribers):
    response = client.get(
        "/api/admin-set-plan",
        params={"email": "  Support@X.com ", "plan": "ELITE", "secret": ADMIN_SECRET},
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "email": "support@x.com", "plan": "Elite", "usage_limit": "unlimited"}
    with db_session(session_factory) as db:
        assert get_subscriber(db, subscribers, "support@x.com").usage_limit == "unlimited"


def test_admin_override_accepts_json_body(client, session_factory, subscribers):
    response = client.post(
        "/api/admin-set-plan",
        json={"email": "b@x.com", "plan": "basic"},
        headers={"x-admin-secret": ADMIN_SECRET},
    )

    assert response.status_code == 200
    with db_session(session_factory) as db:
        assert get_subscriber(db, subscribers, "b@x.com").plan == "Basic"


def test_admin_override_validates_input(client):
    response = client.get(
        "/api/admin-set-plan",
        params={"email": "a@x.com", "plan": "gold"},
        headers={"x-admin-secret": ADMIN_SECRET},
    )

    assert response.status_code == 400
    assert response.json()["error"].startswith("Usage:")


def test_admin_override_update_only_needs_existing_row(settings, processor, engine):
    app = create_app(dataclasses.replace(settings, create_if_missing=False), processor=processor, engine=engine)

    with TestClient(app) as client:
        response = client.get(
            "/api/admin-set-plan",
            params={"email": "ghost@x.com", "plan": "pro"},
            headers={"x-admin-secret": ADMIN_SECRET},
        )

    assert response.status_code == 404
    assert response.json()["ok"] is False


def test_app_builds_subscriber_table_from_given_settings(settings, processor):
    renamed = dataclasses.replace(
        settings,
        users_table="subscribers",
        email_column="contact_email",
        plan_column="tier",
        usage_limit_column="quota",
    )
    engine = build_engine("sqlite://")
    app = create_app(renamed, processor=processor, engine=engine)

    with TestClient(app) as client:
        response = client.get(
            "/api/admin-set-plan",
            params={"email": "c@x.com", "plan": "pro"},
            headers={"x-admin-secret": ADMIN_SECRET},
        )

    assert response.status_code == 200
    assert app.state.subscribers.name == "subscribers"
    with engine.connect() as conn:
        rows = conn.execute(text("SELECT contact_email, tier, quota FROM subscribers")).all()
    assert [tuple(row) for row in rows] == [("c@x.com", "Pro", "30")]
    engine.dispose()


def test_unknown_route_uses_error_body(client):
    response = client.get("/api/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
