# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from typing import Any, Dict, Optional

import stripe
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from database.crud import SubscriberWriter, WriteResult
from database.models import SubscriberTable
from database.session import build_engine, build_session_factory
from svc.errors import StoreWriteError, UpstreamFetchError
from svc.identity import normalize_email
from svc.processor import CheckoutProcessor, StripeProcessor
from svc.reconciler import Reconciler
from svc.webhook import WebhookHandler
from utils.auth import AdminAuth, AdminContext
from utils.config import Settings, load_settings
from utils.logger import setup_logger
from utils.plans import PLAN_LIMITS, Plan, build_plan_mapping, get_plan, plan_tokens

logger = setup_logger()

ADMIN_USAGE = "Usage: /api/admin-set-plan?email=USER@MAIL.com&plan=basic|pro|elite"


class AdminSetPlanRequest(BaseModel):
    email: Optional[str] = None
    plan: Optional[str] = None


class AdminSetPlanResponse(BaseModel):
    ok: bool
    email: str
    plan: str
    usage_limit: str


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"error": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def create_app(
    settings: Optional[Settings] = None,
    *,
    processor: Optional[CheckoutProcessor] = None,
    engine: Optional[Engine] = None,
) -> FastAPI:
    """Wire settings, Stripe, the store and the reconciler into an app.

    Tests pass their own processor and engine; production builds both from
    the environment.
    """
    settings = settings or load_settings()
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key

    processor = processor or StripeProcessor(settings.stripe_secret_key)
    engine = engine or build_engine(settings.database_url)
    mapping = build_plan_mapping(settings)
    subscribers = SubscriberTable.from_settings(settings)
    writer = SubscriberWriter(
        build_session_factory(engine),
        subscribers,
        create_if_missing=settings.create_if_missing,
    )
    webhook_handler = WebhookHandler(
        webhook_secret=settings.stripe_webhook_secret,
        reconciler=Reconciler(mapping, processor),
        writer=writer,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )
    require_admin = AdminAuth(settings.admin_secret)

    if not mapping.is_valid:
        logger.error(
            "Plan mapping is incomplete (missing: %s, duplicated: %s); affected events will fail",
            ", ".join(plan.value for plan in mapping.missing_plans) or "none",
            ", ".join(mapping.duplicate_tokens) or "none",
        )

    app = FastAPI(title="plan-sync", version="0.1.0")
    app.state.settings = settings
    app.state.subscribers = subscribers
    app.state.writer = writer
    app.state.webhook_handler = webhook_handler

    @app.on_event("startup")
    def on_startup() -> None:
        subscribers.create(engine)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = _error(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.get("/api/health")
    async def health_check() -> Dict[str, Any]:
        return {
            "status": "ok",
            "stripe_configured": bool(settings.stripe_secret_key),
            "webhook_configured": bool(settings.stripe_webhook_secret),
            "plan_mapping_valid": mapping.is_valid,
            "missing_plans": [plan.value for plan in mapping.missing_plans],
            "create_if_missing": writer.create_if_missing,
        }

    @app.post("/api/stripe-webhook")
    async def stripe_webhook(request: Request) -> JSONResponse:
        # Signature checks need the untouched bytes, never a re-serialized body.
        payload = await request.body()
        signature = request.headers.get("stripe-signature")
        result = await run_in_threadpool(webhook_handler.handle, payload, signature)
        return JSONResponse(status_code=result.status_code, content=result.body)

    def _start_checkout(plan: Plan) -> Any:
        token = plan_tokens(settings)[plan]
        if not token:
            return None
        try:
            price_id = processor.resolve_checkout_price(token)
            checkout_url = processor.create_checkout_url(
                price_id,
                success_url=settings.success_url,
                cancel_url=settings.cancel_url,
            )
        except ValueError as exc:
            logger.error("Cannot start checkout for %s: %s", plan.value, exc)
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
        except UpstreamFetchError as exc:
            return _error(status.HTTP_502_BAD_GATEWAY, str(exc))
        return RedirectResponse(checkout_url, status_code=status.HTTP_303_SEE_OTHER)

    @app.get("/api/checkout/{plan_key}")
    def checkout_redirect(plan_key: str) -> Any:
        if not settings.stripe_secret_key:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Missing STRIPE_SECRET_KEY")

        try:
            plan = get_plan(plan_key)
        except ValueError:
            logger.warning("Checkout requested for unknown plan %r", plan_key)
            return RedirectResponse(settings.cancel_url, status_code=status.HTTP_302_FOUND)

        response = _start_checkout(plan)
        if response is None:
            logger.warning("No Stripe token configured for plan %s", plan.value)
            return RedirectResponse(settings.cancel_url, status_code=status.HTTP_302_FOUND)
        return response

    @app.get("/api/create-checkout-session")
    def create_checkout_session(plan_key: str = Query("", alias="plan")) -> Any:
        if not settings.stripe_secret_key:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Missing STRIPE_SECRET_KEY")

        try:
            plan = get_plan(plan_key)
        except ValueError:
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid plan")

        response = _start_checkout(plan)
        if response is None:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"No Stripe token configured for plan {plan.value}")
        return response

    def _set_plan(raw_email: Optional[str], raw_plan: Optional[str], admin: AdminContext) -> Any:
        email = normalize_email(raw_email)
        try:
            plan = get_plan(raw_plan)
        except ValueError:
            plan = None
        if not email or plan is None:
            return _error(status.HTTP_400_BAD_REQUEST, ADMIN_USAGE)

        usage_limit = PLAN_LIMITS[plan]
        try:
            result = writer.apply(email, plan, usage_limit)
        except StoreWriteError as exc:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), ok=False)

        if result is WriteResult.NOT_FOUND:
            return _error(status.HTTP_404_NOT_FOUND, f"No subscriber record for {email}", ok=False)

        logger.info("Admin override (%s secret) set %s to %s", admin.secret_source, email, plan.value)
        return AdminSetPlanResponse(ok=True, email=email, plan=plan.value, usage_limit=usage_limit)

    @app.get("/api/admin-set-plan")
    def admin_set_plan(
        email: Optional[str] = Query(None),
        plan: Optional[str] = Query(None),
        admin: AdminContext = Depends(require_admin),
    ) -> Any:
        return _set_plan(email, plan, admin)

    @app.post("/api/admin-set-plan")
    def admin_set_plan_json(
        payload: Optional[AdminSetPlanRequest] = None,
        admin: AdminContext = Depends(require_admin),
    ) -> Any:
        payload = payload or AdminSetPlanRequest()
        return _set_plan(payload.email, payload.plan, admin)

    return app


app = create_app()
