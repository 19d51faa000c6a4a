#!/usr/bin/env python3
"""
Diagnostic script to verify billing, auth and delivery configuration.
Run this to check if your environment variables are properly set.

Usage:
    python check_config.py
"""

import os
import sys
from typing import List, Tuple

from dotenv import load_dotenv

from utils.config import DEFAULT_RATE_LIMITS, Settings


def check_env_var(name: str, required: bool = True) -> Tuple[bool, str]:
    """Check if environment variable is set and return status."""
    value = os.getenv(name)
    if value:
        # Mask sensitive values
        if "KEY" in name or "SECRET" in name:
            masked = value[:8] + "..." if len(value) > 8 else "***"
            return True, f"✓ {name}: {masked}"
        return True, f"✓ {name}: {value}"
    status = "✗" if required else "○"
    return False, f"{status} {name}: NOT SET"


def _section(title: str) -> None:
    print(f"{title}:")
    print("-" * 40)


def main() -> None:
    if load_dotenv():
        print("✓ Loaded .env file\n")

    print("=" * 60)
    print("Billing Core Configuration Check")
    print("=" * 60)
    print()

    issues: List[str] = []

    _section("Authentication")
    secret_ok, msg = check_env_var("AUTH_JWT_SECRET", required=False)
    print(msg)
    jwks_ok, msg = check_env_var("AUTH_JWKS_URL", required=False)
    print(msg)
    for var in ["AUTH_JWT_AUDIENCE", "AUTH_ISSUER"]:
        print(check_env_var(var, required=False)[1])
    if not (secret_ok or jwks_ok):
        issues.append("Set AUTH_JWT_SECRET or AUTH_JWKS_URL to verify bearer tokens")
    jwks_url = os.getenv("AUTH_JWKS_URL")
    if jwks_url and not jwks_url.startswith("https://"):
        print("  ⚠ AUTH_JWKS_URL should be an https:// URL")
        issues.append("AUTH_JWKS_URL is not served over https")
    print()

    _section("Database")
    ok, msg = check_env_var("DATABASE_URL", required=False)
    print(msg)
    if not ok:
        print("  ℹ Using default SQLite database")
    print()

    _section("Stripe")
    for var in ["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"]:
        ok, msg = check_env_var(var, required=True)
        print(msg)
        if not ok:
            issues.append(f"Missing required variable: {var}")
    webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if webhook_secret and not webhook_secret.startswith("whsec_"):
        print("  ⚠ STRIPE_WEBHOOK_SECRET usually starts with 'whsec_'")
    print(check_env_var("STRIPE_TRIAL_DAYS", required=False)[1])
    ok, msg = check_env_var("FRONTEND_BASE_URL", required=False)
    print(msg)
    if not ok:
        print("  ℹ Using default: http://localhost:3000")
    print()

    _section("Email and storage")
    for var in ["RESEND_API_KEY", "MAIL_FROM", "STORAGE_URL", "STORAGE_SERVICE_KEY", "STORAGE_BUCKET"]:
        print(check_env_var(var, required=False)[1])
    settings = Settings.from_env()
    if not settings.mailer_configured:
        print("  ℹ Trial reminders and review emails will answer 500")
    if not settings.storage_configured:
        print("  ℹ Uploads will answer 500 and review files will have no signed URLs")
    print()

    _section("Rate limits (per window)")
    print(f"  window: {settings.rate_limit('review_fetch').window_seconds}s")
    for name in DEFAULT_RATE_LIMITS:
        rule = settings.rate_limit(name)
        print(f"  {rule.bucket}: {rule.max_requests}")
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
    print("  1. Create the schema: python -m database.initialize")
    print("  2. For local development: uvicorn main:app --reload")
    print("  3. Check health endpoint: /api/health")
    sys.exit(0)


if __name__ == "__main__":
    main()
