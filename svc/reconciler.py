# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from database.crud import get_or_create_profile, get_profile, get_profile_by_customer
from database.models import Profile
from svc.webhook_verifier import (
    CheckoutCompleted,
    StripeCheckoutSession,
    StripeSubscription,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
    WebhookEvent,
)
from utils.errors import Forbidden, NotFound
from utils.logger import get_logger
from utils.payments import PlanType, SubscriptionStatus, map_subscription_status, plan_from_interval

logger = get_logger("reconciler")


class SubscriptionSource(Protocol):
    def retrieve_subscription(self, subscription_id: str) -> StripeSubscription: ...


class SubscriptionReconciler:
    """Applies Stripe subscription lifecycle facts to local profiles.

    Every write recomputes the target state from what Stripe reports, so the
    webhook and the post-checkout sync can both run for the same session and
    still converge on one record.
    """

    def __init__(self, provider: SubscriptionSource) -> None:
        self._provider = provider

    def handle_event(self, db: Session, event: WebhookEvent) -> Optional[Profile]:
        if isinstance(event, CheckoutCompleted):
            user_id = event.session.user_reference
            if not user_id:
                logger.warning("checkout.session.completed %s carries no user reference", event.session.id)
                return None
            return self.apply_checkout_completed(db, user_id, event.session, event_at=event.created)
        if isinstance(event, SubscriptionUpdated):
            return self.apply_subscription_updated(db, event.subscription, event_at=event.created)
        if isinstance(event, SubscriptionDeleted):
            return self.apply_subscription_deleted(db, event.subscription, event_at=event.created)
        if isinstance(event, UnhandledEvent):
            logger.debug("Ignoring Stripe event %s of type %s", event.event_id, event.type)
        return None

    def apply_checkout_completed(
        self,
        db: Session,
        user_id: str,
        session: StripeCheckoutSession,
        *,
        event_at: Optional[datetime] = None,
    ) -> Profile:
        if session.has_conflicting_references or session.user_reference != user_id:
            logger.error("Checkout session %s does not belong to user %s", session.id, user_id)
            raise Forbidden("Session does not match user")

        subscription: Optional[StripeSubscription] = None
        if session.subscription:
            subscription = self._provider.retrieve_subscription(session.subscription)

        profile = get_or_create_profile(db, user_id)
        profile.onboarding_completed = True
        if session.customer:
            profile.stripe_customer_id = session.customer

        if subscription is not None:
            profile.subscription_status = map_subscription_status(subscription.status).value
            profile.plan_type = plan_from_interval(subscription.interval).value
            profile.stripe_subscription_id = subscription.id
            profile.trial_start_date = subscription.trial_start_at
            profile.trial_end_date = subscription.trial_end_at
            if event_at is not None and (
                profile.subscription_event_at is None or event_at > profile.subscription_event_at
            ):
                profile.subscription_event_at = event_at
        else:
            # One-time setup without a subscription object.
            profile.subscription_status = SubscriptionStatus.ACTIVE.value
            profile.plan_type = profile.plan_type or PlanType.MONTHLY.value

        db.commit()
        logger.info(
            "Applied checkout session %s for user %s: status=%s plan=%s",
            session.id,
            user_id,
            profile.subscription_status,
            profile.plan_type,
        )
        return profile

    def apply_subscription_updated(
        self, db: Session, subscription: StripeSubscription, *, event_at: Optional[datetime] = None
    ) -> Optional[Profile]:
        profile = self._profile_for(db, subscription, event_at)
        if profile is None:
            return None

        profile.subscription_status = map_subscription_status(subscription.status).value
        if subscription.interval:
            profile.plan_type = plan_from_interval(subscription.interval).value
        if subscription.trial_end_supplied:
            profile.trial_end_date = subscription.trial_end_at
        if subscription.trial_start_at is not None:
            profile.trial_start_date = subscription.trial_start_at
        if event_at is not None:
            profile.subscription_event_at = event_at

        db.commit()
        logger.info(
            "Subscription %s updated for user %s: status=%s",
            subscription.id,
            profile.user_id,
            profile.subscription_status,
        )
        return profile

    def apply_subscription_deleted(
        self, db: Session, subscription: StripeSubscription, *, event_at: Optional[datetime] = None
    ) -> Optional[Profile]:
        profile = self._profile_for(db, subscription, event_at)
        if profile is None:
            return None

        profile.subscription_status = SubscriptionStatus.CANCELED.value
        profile.stripe_subscription_id = None
        if event_at is not None:
            profile.subscription_event_at = event_at

        db.commit()
        logger.info("Subscription %s deleted for user %s", subscription.id, profile.user_id)
        return profile

    def reset(self, db: Session, user_id: str) -> Profile:
        """Manual support escape hatch: back to trial with no Stripe linkage."""
        profile = get_profile(db, user_id)
        if profile is None:
            raise NotFound(f"No profile for user {user_id}")
        profile.subscription_status = SubscriptionStatus.TRIAL.value
        profile.plan_type = None
        profile.stripe_customer_id = None
        profile.stripe_subscription_id = None
        profile.subscription_event_at = None
        db.commit()
        logger.warning("Billing state reset for user %s", user_id)
        return profile

    @staticmethod
    def _profile_for(
        db: Session, subscription: StripeSubscription, event_at: Optional[datetime]
    ) -> Optional[Profile]:
        if not subscription.customer:
            logger.info("Subscription %s has no customer; nothing to apply", subscription.id)
            return None
        profile = get_profile_by_customer(db, subscription.customer)
        if profile is None:
            logger.info("No profile linked to customer %s; skipping", subscription.customer)
            return None
        last_applied = profile.subscription_event_at
        if event_at is not None and last_applied is not None and event_at < last_applied:
            logger.warning(
                "Skipping out-of-order event for subscription %s (event %s older than %s)",
                subscription.id,
                event_at.isoformat(),
                last_applied.isoformat(),
            )
            return None
        if profile.stripe_subscription_id and profile.stripe_subscription_id != subscription.id:
            logger.warning(
                "Skipping event for subscription %s; user %s is linked to %s",
                subscription.id,
                profile.user_id,
                profile.stripe_subscription_id,
            )
            return None
        return profile
