#!/usr/bin/env python3
"""
Support tooling for account billing records.

Usage:
    python billing_admin.py reset <user_id>
    python billing_admin.py show <user_id>
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from database.crud import get_profile
from database.session import db_session
from svc.billing_provider import StripeBillingProvider
from svc.reconciler import SubscriptionReconciler
from utils.config import Settings
from utils.errors import NotFound
from utils.logger import setup_logger

logger = setup_logger()


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect or reset a user's billing state.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reset = subparsers.add_parser(
        "reset",
        help="Return the account to trial and drop its Stripe customer and subscription references.",
    )
    reset.add_argument("user_id")

    show = subparsers.add_parser("show", help="Print the billing columns of one account.")
    show.add_argument("user_id")
    return parser.parse_args(argv)


def reset_billing(user_id: str, settings: Optional[Settings] = None) -> None:
    settings = settings or Settings.from_env()
    reconciler = SubscriptionReconciler(StripeBillingProvider.from_settings(settings))
    with db_session() as db:
        reconciler.reset(db, user_id)


def show_billing(user_id: str) -> None:
    with db_session() as db:
        profile = get_profile(db, user_id)
        if profile is None:
            raise NotFound(f"No profile for user {user_id}")
        for column in (
            "subscription_status",
            "plan_type",
            "stripe_customer_id",
            "stripe_subscription_id",
            "trial_start_date",
            "trial_end_date",
            "onboarding_completed",
        ):
            print(f"{column}: {getattr(profile, column)}")


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        if args.command == "reset":
            reset_billing(args.user_id)
            print(f"Billing state reset for {args.user_id}")
        else:
            show_billing(args.user_id)
    except NotFound as exc:
        logger.error(exc.message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
