# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from database.crud import list_trial_profiles
from utils.errors import Misconfigured, UpstreamFailure
from utils.logger import get_logger
from utils.mailer import ResendMailer

logger = get_logger("trial_reminders")

REMINDER_DAYS = (5, 1)


@dataclass(frozen=True)
class Reminder:
    email: str
    name: str
    days_left: int


def days_until(end: datetime, now: datetime) -> int:
    """Whole calendar days between two instants, both truncated to midnight."""
    end_day = end.replace(hour=0, minute=0, second=0, microsecond=0)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return math.ceil((end_day - today).total_seconds() / 86400)


def _subject(days_left: int) -> str:
    if days_left == 1:
        return "Your FreelanceFlow trial ends tomorrow"
    return f"Your FreelanceFlow trial ends in {days_left} days"


def _body(reminder: Reminder, manage_url: str) -> str:
    if reminder.days_left == 1:
        return (
            f"Hi {reminder.name},\n\n"
            "Your free trial ends tomorrow. Your card will be charged automatically to continue your subscription.\n\n"
            f"To cancel or update payment: {manage_url}\n\n"
            "Thanks,\nThe FreelanceFlow team"
        )
    return (
        f"Hi {reminder.name},\n\n"
        f"Your free trial ends in {reminder.days_left} days. You'll keep full access until then, "
        "and we'll charge your card on the trial end date unless you cancel.\n\n"
        f"Manage your subscription: {manage_url}\n\n"
        "Thanks,\nThe FreelanceFlow team"
    )


def collect_reminders(db: Session, now: datetime) -> List[Reminder]:
    reminders: List[Reminder] = []
    for profile in list_trial_profiles(db):
        if not profile.trial_end_date or not profile.email:
            continue
        days_left = days_until(profile.trial_end_date, now)
        if days_left in REMINDER_DAYS:
            reminders.append(Reminder(email=profile.email, name=profile.full_name or "there", days_left=days_left))
    return reminders


def send_trial_reminders(
    db: Session, mailer: ResendMailer, *, base_url: str, now: Optional[datetime] = None
) -> Dict[str, int]:
    if not mailer.configured:
        raise Misconfigured("RESEND_API_KEY not set")

    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    reminders = collect_reminders(db, now)
    manage_url = f"{base_url}/settings/subscription"

    sent = 0
    for reminder in reminders:
        try:
            mailer.send(to=reminder.email, subject=_subject(reminder.days_left), text=_body(reminder, manage_url))
        except UpstreamFailure as exc:
            logger.error("Trial reminder send error for %s: %s", reminder.email, exc)
            continue
        sent += 1

    logger.info("Trial reminders sent: %d of %d", sent, len(reminders))
    return {"sent": sent, "total": len(reminders)}
