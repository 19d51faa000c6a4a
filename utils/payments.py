from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class PlanType(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIAL,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
}


def map_subscription_status(provider_status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status onto the local status; unknown values cancel."""
    return _STATUS_MAP.get(provider_status or "", SubscriptionStatus.CANCELED)


def plan_from_interval(interval: Optional[str]) -> PlanType:
    return PlanType.ANNUAL if interval == "year" else PlanType.MONTHLY


def from_unix(value: Any) -> Optional[datetime]:
    """Convert a Stripe epoch timestamp to naive UTC, or None when absent."""
    if value is None or value == "":
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
