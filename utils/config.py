from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_SUCCESS_URL = "https://landlogiq.com/dashboard"
DEFAULT_CANCEL_URL = "https://landlogiq.com/pricing"
DEFAULT_DATABASE_URL = "sqlite:///./plan_sync.db"
DEFAULT_WEBHOOK_TOLERANCE = 300

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    webhook_tolerance_seconds: int = DEFAULT_WEBHOOK_TOLERANCE
    price_basic: Optional[str] = None
    price_pro: Optional[str] = None
    price_elite: Optional[str] = None
    success_url: str = DEFAULT_SUCCESS_URL
    cancel_url: str = DEFAULT_CANCEL_URL
    admin_secret: Optional[str] = None
    database_url: str = DEFAULT_DATABASE_URL
    users_table: str = "users"
    email_column: str = "email"
    plan_column: str = "plan"
    usage_limit_column: str = "daily_comp_limit"
    create_if_missing: bool = True


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_tolerance(raw_value: Optional[str]) -> int:
    if not raw_value:
        return DEFAULT_WEBHOOK_TOLERANCE
    try:
        parsed = int(raw_value)
    except ValueError:
        return DEFAULT_WEBHOOK_TOLERANCE
    return max(parsed, 1)


def _parse_bool(raw_value: Optional[str], default: bool) -> bool:
    if raw_value is None:
        return default
    lowered = raw_value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return default


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the process environment (or an explicit mapping)."""
    if environ is None:
        load_dotenv()
        env: Mapping[str, str] = os.environ
    else:
        env = environ

    return Settings(
        stripe_secret_key=_clean(env.get("STRIPE_SECRET_KEY")),
        stripe_webhook_secret=_clean(env.get("STRIPE_WEBHOOK_SECRET")),
        webhook_tolerance_seconds=_parse_tolerance(env.get("STRIPE_WEBHOOK_TOLERANCE")),
        price_basic=_clean(env.get("PRICE_BASIC")),
        price_pro=_clean(env.get("PRICE_PRO")),
        price_elite=_clean(env.get("PRICE_ELITE")),
        success_url=_clean(env.get("SUCCESS_URL")) or DEFAULT_SUCCESS_URL,
        cancel_url=_clean(env.get("CANCEL_URL")) or DEFAULT_CANCEL_URL,
        admin_secret=_clean(env.get("ADMIN_PLAN_SECRET")),
        database_url=_clean(env.get("DATABASE_URL")) or DEFAULT_DATABASE_URL,
        users_table=_clean(env.get("SUPABASE_USERS_TABLE")) or "users",
        email_column=_clean(env.get("SUPABASE_EMAIL_COLUMN")) or "email",
        plan_column=_clean(env.get("SUBSCRIBER_PLAN_COLUMN")) or "plan",
        usage_limit_column=_clean(env.get("SUBSCRIBER_LIMIT_COLUMN")) or "daily_comp_limit",
        create_if_missing=_parse_bool(env.get("CREATE_IF_MISSING"), True),
    )
