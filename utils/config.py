from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_MAX_UPLOAD_BYTES = 2 * 1024 * 1024


@dataclass(frozen=True)
class RateLimitRule:
    bucket: str
    max_requests: int
    window_seconds: int = DEFAULT_WINDOW_SECONDS


# Budgets per bucket; every value can be overridden with RATE_LIMIT_<NAME>_MAX.
DEFAULT_RATE_LIMITS: Dict[str, RateLimitRule] = {
    "review_fetch": RateLimitRule(bucket="get-review", max_requests=100),
    "invoice_email": RateLimitRule(bucket="send-invoice", max_requests=50),
    "review_request_email": RateLimitRule(bucket="send-review-request", max_requests=30),
    "review_comment": RateLimitRule(bucket="comment", max_requests=20),
    "review_status": RateLimitRule(bucket="status", max_requests=5),
    "file_upload": RateLimitRule(bucket="upload", max_requests=20),
}


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _int_env(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = _clean(env.get(name))
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return max(parsed, minimum)


def _load_rate_limits(env: Mapping[str, str]) -> Dict[str, RateLimitRule]:
    window = _int_env(env, "RATE_LIMIT_WINDOW_SECONDS", DEFAULT_WINDOW_SECONDS)
    rules: Dict[str, RateLimitRule] = {}
    for name, rule in DEFAULT_RATE_LIMITS.items():
        max_requests = _int_env(env, f"RATE_LIMIT_{name.upper()}_MAX", rule.max_requests)
        rules[name] = RateLimitRule(bucket=rule.bucket, max_requests=max_requests, window_seconds=window)
    return rules


@dataclass(frozen=True)
class Settings:
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_trial_days: int = 15
    frontend_base_url: str = "http://localhost:3000"
    auth_jwt_secret: Optional[str] = None
    auth_jwt_audience: Optional[str] = "authenticated"
    auth_jwks_url: Optional[str] = None
    auth_issuer: Optional[str] = None
    resend_api_key: Optional[str] = None
    mail_from: str = "FreelanceFlow <onboarding@resend.dev>"
    storage_url: Optional[str] = None
    storage_service_key: Optional[str] = None
    storage_bucket: str = "review-files"
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    rate_limits: Dict[str, RateLimitRule] = field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def auth_configured(self) -> bool:
        return bool(self.auth_jwt_secret or self.auth_jwks_url)

    @property
    def mailer_configured(self) -> bool:
        return bool(self.resend_api_key)

    @property
    def storage_configured(self) -> bool:
        return bool(self.storage_url and self.storage_service_key)

    def rate_limit(self, name: str) -> RateLimitRule:
        return self.rate_limits[name]

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        if env is None:
            load_dotenv()
            env = os.environ
        return cls(
            stripe_secret_key=_clean(env.get("STRIPE_SECRET_KEY")),
            stripe_webhook_secret=_clean(env.get("STRIPE_WEBHOOK_SECRET")),
            stripe_trial_days=_int_env(env, "STRIPE_TRIAL_DAYS", 15, minimum=0),
            frontend_base_url=(_clean(env.get("FRONTEND_BASE_URL")) or "http://localhost:3000").rstrip("/"),
            auth_jwt_secret=_clean(env.get("AUTH_JWT_SECRET")),
            auth_jwt_audience=_clean(env.get("AUTH_JWT_AUDIENCE")) or "authenticated",
            auth_jwks_url=_clean(env.get("AUTH_JWKS_URL")),
            auth_issuer=_clean(env.get("AUTH_ISSUER")),
            resend_api_key=_clean(env.get("RESEND_API_KEY")),
            mail_from=_clean(env.get("MAIL_FROM")) or "FreelanceFlow <onboarding@resend.dev>",
            storage_url=(_clean(env.get("STORAGE_URL")) or "").rstrip("/") or None,
            storage_service_key=_clean(env.get("STORAGE_SERVICE_KEY")),
            storage_bucket=_clean(env.get("STORAGE_BUCKET")) or "review-files",
            max_upload_bytes=_int_env(env, "MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
            rate_limits=_load_rate_limits(env),
        )
