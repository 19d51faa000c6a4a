# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

from typing import Any, Dict, Optional

import stripe

from svc.webhook_verifier import StripeCheckoutSession, StripeSubscription
from utils.config import Settings
from utils.errors import Misconfigured, UpstreamFailure, ValidationFailed
from utils.logger import get_logger

logger = get_logger("billing_provider")


def _stripe_to_dict(obj: Any) -> Dict[str, Any]:
    """Convert Stripe objects to plain dicts for safer access."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj

    for method_name in ("to_dict_recursive", "to_dict"):
        method = getattr(obj, method_name, None)
        if callable(method):
            result = method()
            if isinstance(result, dict):
                return result

    return dict(obj)


class StripeBillingProvider:
    """Thin wrapper over the Stripe SDK bound to one secret key.

    The key is passed on every request rather than assigned to ``stripe.api_key``
    so that several providers (or a test fake) can coexist in one process.
    """

    def __init__(self, api_key: Optional[str], trial_days: int = 15) -> None:
        self._api_key = api_key
        self.trial_days = trial_days

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeBillingProvider":
        return cls(settings.stripe_secret_key, trial_days=settings.stripe_trial_days)

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _require_key(self) -> str:
        if not self._api_key:
            raise Misconfigured("Stripe not configured")
        return self._api_key

    def create_checkout_session(
        self,
        *,
        user_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> str:
        api_key = self._require_key()
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "subscription_data": {"metadata": {"user_id": user_id}},
            "client_reference_id": user_id,
            "metadata": {"user_id": user_id},
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if self.trial_days > 0:
            params["subscription_data"]["trial_period_days"] = self.trial_days
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=api_key, **params)
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session creation failed for user %s: %s", user_id, exc)
            raise UpstreamFailure("Unable to initiate checkout session with Stripe.") from exc
        logger.info("Created Stripe checkout session %s for user %s", session.id, user_id)
        return session.url or ""

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        api_key = self._require_key()
        try:
            session = stripe.billing_portal.Session.create(
                api_key=api_key, customer=customer_id, return_url=return_url
            )
        except stripe.StripeError as exc:
            logger.error("Stripe portal session creation failed for customer %s: %s", customer_id, exc)
            raise UpstreamFailure("Unable to open the billing portal.") from exc
        return session.url or ""

    def retrieve_checkout_session(self, session_id: str) -> StripeCheckoutSession:
        api_key = self._require_key()
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=api_key)
        except stripe.InvalidRequestError as exc:
            logger.warning("Stripe rejected checkout session id %s: %s", session_id, exc)
            raise ValidationFailed("Invalid session_id") from exc
        except stripe.StripeError as exc:
            logger.error("Failed to retrieve Stripe session %s: %s", session_id, exc)
            raise UpstreamFailure("Unable to retrieve checkout session from Stripe.") from exc
        return StripeCheckoutSession.model_validate(_stripe_to_dict(session))

    def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        api_key = self._require_key()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=api_key)
        except stripe.StripeError as exc:
            logger.error("Failed to retrieve Stripe subscription %s: %s", subscription_id, exc)
            raise UpstreamFailure("Unable to retrieve subscription from Stripe.") from exc
        return StripeSubscription.model_validate(_stripe_to_dict(subscription))
