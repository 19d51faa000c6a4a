# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

import stripe
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from utils.errors import InvalidSignature, MalformedPayload
from utils.logger import get_logger
from utils.payments import from_unix

logger = get_logger("webhooks")

SIGNATURE_TOLERANCE_SECONDS = 300

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def coerce_stripe_id(value: Any) -> Optional[str]:
    """Stripe references arrive either as plain ids or as expanded objects."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        potential_id = value.get("id")
        return potential_id if isinstance(potential_id, str) else None
    potential_id = getattr(value, "id", None)
    if isinstance(potential_id, str):
        return potential_id
    return str(value)


class StripeSubscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    customer: Optional[str] = None
    status: Optional[str] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    interval: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        flat: Dict[str, Any] = {
            key: data[key] for key in ("id", "status", "trial_start", "trial_end") if key in data
        }
        flat["customer"] = coerce_stripe_id(data.get("customer"))
        items = (data.get("items") or {}).get("data") or []
        if items:
            price = (items[0] or {}).get("price") or {}
            recurring = price.get("recurring") or {}
            if recurring.get("interval"):
                flat["interval"] = recurring["interval"]
        return flat

    @property
    def trial_end_supplied(self) -> bool:
        return "trial_end" in self.model_fields_set

    @property
    def trial_start_at(self) -> Optional[datetime]:
        return from_unix(self.trial_start)

    @property
    def trial_end_at(self) -> Optional[datetime]:
        return from_unix(self.trial_end)


class StripeCheckoutSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    client_reference_id: Optional[str] = None
    metadata: Dict[str, str] = {}
    customer: Optional[str] = None
    subscription: Optional[str] = None
    status: Optional[str] = None
    mode: Optional[str] = None

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def _reference_id(cls, value: Any) -> Optional[str]:
        return coerce_stripe_id(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Dict[str, str]:
        if not value:
            return {}
        return {str(key): str(item) for key, item in dict(value).items() if item is not None}

    @property
    def is_complete(self) -> bool:
        return self.status == "complete"

    @property
    def user_reference(self) -> Optional[str]:
        return self.client_reference_id or self.metadata.get("user_id")

    @property
    def has_conflicting_references(self) -> bool:
        metadata_user = self.metadata.get("user_id")
        return bool(self.client_reference_id and metadata_user and self.client_reference_id != metadata_user)


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    created: Optional[datetime]
    session: StripeCheckoutSession


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    created: Optional[datetime]
    subscription: StripeSubscription


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    created: Optional[datetime]
    subscription: StripeSubscription


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    type: str


WebhookEvent = Union[CheckoutCompleted, SubscriptionUpdated, SubscriptionDeleted, UnhandledEvent]


def parse_event(data: Any) -> WebhookEvent:
    """Decode a Stripe event envelope into one of the handled event kinds."""
    if not isinstance(data, dict):
        raise MalformedPayload("Webhook payload is not an event object.")
    event_id = data.get("id")
    event_type = data.get("type")
    if not isinstance(event_id, str) or not isinstance(event_type, str):
        raise MalformedPayload("Webhook payload is missing id or type.")

    envelope = data.get("data")
    obj = envelope.get("object") if isinstance(envelope, dict) else None
    created = from_unix(data.get("created"))

    try:
        if event_type == CHECKOUT_COMPLETED:
            return CheckoutCompleted(event_id, created, StripeCheckoutSession.model_validate(obj))
        if event_type == SUBSCRIPTION_UPDATED:
            return SubscriptionUpdated(event_id, created, StripeSubscription.model_validate(obj))
        if event_type == SUBSCRIPTION_DELETED:
            return SubscriptionDeleted(event_id, created, StripeSubscription.model_validate(obj))
    except ValidationError as exc:
        raise MalformedPayload(f"Unexpected {event_type} payload.") from exc

    return UnhandledEvent(event_id, event_type)


def verify_event(raw_body: bytes, signature_header: Optional[str], secret: str) -> WebhookEvent:
    """Check the Stripe signature over the raw request body, then decode the event.

    Only the exact bytes received may be verified; a body that has already been
    parsed and re-serialised is refused outright.
    """
    if not isinstance(raw_body, (bytes, bytearray)):
        raise TypeError("Webhook verification requires the raw request body as bytes.")
    if not signature_header:
        raise InvalidSignature("Missing stripe-signature header.")

    try:
        payload = bytes(raw_body).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidSignature("Webhook body is not valid UTF-8.") from exc

    try:
        stripe.WebhookSignature.verify_header(
            payload, signature_header, secret, tolerance=SIGNATURE_TOLERANCE_SECONDS
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        raise InvalidSignature() from exc

    try:
        data = json.loads(payload)
    except ValueError as exc:
        raise MalformedPayload() from exc

    return parse_event(data)
