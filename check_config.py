#!/usr/bin/env python3
"""
Diagnostic script to verify Stripe, plan and store configuration.
Run this before deploying to check that the environment is complete.

Usage:
    python check_config.py
"""

import os
import sys
from typing import List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from utils.config import load_settings
from utils.plans import build_plan_mapping

REQUIRED_VARS = [
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "PRICE_BASIC",
    "PRICE_PRO",
    "PRICE_ELITE",
]
OPTIONAL_VARS = [
    "STRIPE_WEBHOOK_TOLERANCE",
    "SUCCESS_URL",
    "CANCEL_URL",
    "ADMIN_PLAN_SECRET",
    "DATABASE_URL",
    "SUPABASE_USERS_TABLE",
    "SUPABASE_EMAIL_COLUMN",
    "SUBSCRIBER_PLAN_COLUMN",
    "SUBSCRIBER_LIMIT_COLUMN",
    "CREATE_IF_MISSING",
    "LOG_LEVEL",
]


def check_env_var(name: str, required: bool = True, environ: Optional[Mapping[str, str]] = None) -> Tuple[bool, str]:
    """Check if environment variable is set and return status."""
    env = os.environ if environ is None else environ
    value = env.get(name)
    if value:
        # Mask sensitive values
        if "KEY" in name or "SECRET" in name or "DATABASE_URL" in name:
            masked = value[:8] + "..." if len(value) > 8 else "***"
            return True, f"✓ {name}: {masked}"
        return True, f"✓ {name}: {value}"
    status = "✗" if required else "○"
    return False, f"{status} {name}: NOT SET"


def collect_issues(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    env = os.environ if environ is None else environ
    issues: List[str] = []

    for var in REQUIRED_VARS:
        ok, msg = check_env_var(var, required=True, environ=env)
        print(msg)
        if not ok:
            issues.append(f"Missing required variable: {var}")

    for var in OPTIONAL_VARS:
        _, msg = check_env_var(var, required=False, environ=env)
        print(msg)

    mapping = build_plan_mapping(load_settings(env))
    for token in mapping.duplicate_tokens:
        issues.append(f"Plan token {token} is configured for more than one plan")
    for token in mapping.entries:
        if not token.startswith(("price_", "prod_")):
            issues.append(f"Plan token {token} should start with price_ or prod_")

    return issues


def main() -> None:
    load_dotenv()
    print("=" * 60)
    print("Plan Sync Configuration Check")
    print("=" * 60)
    print()

    issues = collect_issues()
    print()

    print("=" * 60)
    if issues:
        print("⚠ ISSUES FOUND:")
        for issue in issues:
            print(f"  - {issue}")
        print()
        print("Please fix these issues before deploying.")
        sys.exit(1)

    print("✓ Configuration looks good!")
    print()
    print("Next steps:")
    print("  1. For local development: uvicorn main:app --reload")
    print("  2. Point the Stripe webhook at /api/stripe-webhook")
    print("  3. Check health endpoint: /api/health")
    sys.exit(0)


if __name__ == "__main__":
    main()
