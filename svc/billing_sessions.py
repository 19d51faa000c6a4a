# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

from typing import Optional, Protocol
from urllib.parse import urlsplit

from sqlalchemy.orm import Session

from database.crud import get_profile
from database.models import Profile
from svc.reconciler import SubscriptionReconciler
from svc.webhook_verifier import StripeCheckoutSession
from utils.errors import CheckoutIncomplete, Forbidden, NoBillingAccount, ValidationFailed
from utils.logger import get_logger

logger = get_logger("billing_sessions")

SUBSCRIPTION_SETTINGS_PATH = "/settings/subscription"


class HostedFlowProvider(Protocol):
    def create_checkout_session(
        self,
        *,
        user_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> str: ...

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str: ...

    def retrieve_checkout_session(self, session_id: str) -> StripeCheckoutSession: ...


def resolve_base_url(origin: Optional[str], referer: Optional[str], fallback: str) -> str:
    """Pick the browser origin to send the user back to after a hosted flow."""
    if origin and origin != "null":
        return origin.rstrip("/")
    if referer:
        parts = urlsplit(referer)
        if parts.scheme and parts.netloc:
            return f"{parts.scheme}://{parts.netloc}"
    return fallback.rstrip("/")


class CheckoutSessionIssuer:
    def __init__(self, provider: HostedFlowProvider) -> None:
        self._provider = provider

    def issue(
        self,
        db: Session,
        *,
        user_id: str,
        price_id: Optional[str],
        base_url: str,
        email: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> str:
        if not price_id or not isinstance(price_id, str):
            raise ValidationFailed("Missing priceId")

        profile = get_profile(db, user_id)
        customer_email = (profile.email if profile else None) or email
        settings_url = f"{base_url}{SUBSCRIPTION_SETTINGS_PATH}"

        return self._provider.create_checkout_session(
            user_id=user_id,
            price_id=price_id,
            success_url=success_url or f"{settings_url}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url or settings_url,
            customer_email=customer_email,
        )


class PortalSessionIssuer:
    def __init__(self, provider: HostedFlowProvider) -> None:
        self._provider = provider

    def issue(self, db: Session, *, user_id: str, base_url: str, return_url: Optional[str] = None) -> str:
        profile = get_profile(db, user_id)
        customer_id = profile.stripe_customer_id if profile else None
        if not customer_id:
            raise NoBillingAccount()
        return self._provider.create_portal_session(
            customer_id=customer_id,
            return_url=return_url or f"{base_url}{SUBSCRIPTION_SETTINGS_PATH}",
        )


class PostCheckoutFallbackSync:
    """Re-derives billing state from a checkout session when the browser returns
    before the webhook has been delivered. Safe to call any number of times."""

    def __init__(self, provider: HostedFlowProvider, reconciler: SubscriptionReconciler) -> None:
        self._provider = provider
        self._reconciler = reconciler

    def sync(self, db: Session, *, user_id: str, session_id: str) -> Profile:
        session = self._provider.retrieve_checkout_session(session_id)

        if session.has_conflicting_references or session.user_reference != user_id:
            logger.warning("Checkout session %s requested by non-owner %s", session_id, user_id)
            raise Forbidden("Session does not match user")
        if not session.is_complete:
            raise CheckoutIncomplete()

        return self._reconciler.apply_checkout_completed(db, user_id, session)
