from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Profile, ReviewComment, ReviewFile, ReviewRecipient, ReviewRequest


def get_profile(db: Session, user_id: str) -> Optional[Profile]:
    return db.execute(select(Profile).where(Profile.user_id == user_id)).scalar_one_or_none()


def get_or_create_profile(db: Session, user_id: str, email: Optional[str] = None) -> Profile:
    profile = get_profile(db, user_id)
    if profile is None:
        profile = Profile(user_id=user_id, email=email)
        db.add(profile)
        db.flush()
    elif email and not profile.email:
        profile.email = email
    return profile


def get_profile_by_customer(db: Session, customer_id: str) -> Optional[Profile]:
    return db.execute(
        select(Profile).where(Profile.stripe_customer_id == customer_id)
    ).scalar_one_or_none()


def list_trial_profiles(db: Session) -> List[Profile]:
    return list(
        db.execute(
            select(Profile)
            .where(Profile.subscription_status == "trial")
            .where(Profile.trial_end_date.is_not(None))
        ).scalars()
    )


def get_review_by_token(db: Session, share_token: str) -> Optional[ReviewRequest]:
    return db.execute(
        select(ReviewRequest).where(ReviewRequest.share_token == share_token)
    ).scalar_one_or_none()


def get_owned_review(db: Session, review_request_id: str, user_id: str) -> Optional[ReviewRequest]:
    return db.execute(
        select(ReviewRequest)
        .where(ReviewRequest.id == review_request_id)
        .where(ReviewRequest.user_id == user_id)
    ).scalar_one_or_none()


def get_review_file(db: Session, review_request_id: str, file_id: str) -> Optional[ReviewFile]:
    return db.execute(
        select(ReviewFile)
        .where(ReviewFile.id == file_id)
        .where(ReviewFile.review_request_id == review_request_id)
    ).scalar_one_or_none()


def list_review_files(db: Session, review_request_id: str) -> List[ReviewFile]:
    return list(
        db.execute(
            select(ReviewFile)
            .where(ReviewFile.review_request_id == review_request_id)
            .order_by(ReviewFile.created_at)
        ).scalars()
    )


def list_review_comments(db: Session, review_request_id: str) -> List[ReviewComment]:
    return list(
        db.execute(
            select(ReviewComment)
            .where(ReviewComment.review_request_id == review_request_id)
            .order_by(ReviewComment.created_at)
        ).scalars()
    )


def list_recipient_emails(db: Session, review_request_id: str) -> List[str]:
    rows = db.execute(
        select(ReviewRecipient.email).where(ReviewRecipient.review_request_id == review_request_id)
    ).scalars()
    return [email for email in rows if email]
