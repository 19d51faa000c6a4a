# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

import html
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from database.crud import (
    get_owned_review,
    get_review_by_token,
    get_review_file,
    list_recipient_emails,
    list_review_comments,
    list_review_files,
)
from database.models import ReviewComment, ReviewFile, ReviewRequest
from svc.rate_limiter import RateLimitDecision, RateLimiter
from utils.cleaner import clean_str, is_valid_email, normalize_email
from utils.config import Settings
from utils.errors import NotFound, ValidationFailed
from utils.logger import get_logger
from utils.mailer import ResendMailer
from utils.storage import ObjectStorage

logger = get_logger("reviews")

MAX_COMMENT_LENGTH = 2000
MAX_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 255
MAX_TOKEN_LENGTH = 128
SIGNED_URL_TTL_SECONDS = 3600
REVIEW_DECISIONS = ("approved", "rejected")
INVALID_LINK_MESSAGE = "Invalid or expired review link"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_request(request: ReviewRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "title": request.title,
        "description": request.description,
        "version": request.version,
        "status": request.status,
        "due_date": _iso(request.due_date),
    }


def serialize_file(record: ReviewFile, file_url: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": record.id,
        "review_request_id": record.review_request_id,
        "file_url": file_url,
        "file_name": record.file_name,
        "file_type": record.file_type,
        "file_size": record.file_size,
        "created_at": _iso(record.created_at),
    }


def serialize_comment(comment: ReviewComment) -> Dict[str, Any]:
    return {
        "id": comment.id,
        "review_request_id": comment.review_request_id,
        "review_file_id": comment.review_file_id,
        "content": comment.content,
        "commenter_name": comment.commenter_name,
        "commenter_email": comment.commenter_email,
        "x_position": comment.x_position,
        "y_position": comment.y_position,
        "created_at": _iso(comment.created_at),
    }


def _require_token(token: Any) -> str:
    if not token or not isinstance(token, str):
        raise ValidationFailed("Token is required")
    if len(token) > MAX_TOKEN_LENGTH:
        raise ValidationFailed("Invalid token")
    return token


def _validate_commenter(name: Any, email: Any, *, check_lengths: bool) -> Tuple[str, str]:
    clean_name = clean_str(name) if isinstance(name, str) else None
    if not clean_name:
        raise ValidationFailed("Name is required")
    if check_lengths and len(name) > MAX_NAME_LENGTH:
        raise ValidationFailed(f"Name must be less than {MAX_NAME_LENGTH} characters")
    if not is_valid_email(email):
        raise ValidationFailed("Valid email is required")
    if check_lengths and len(email) > MAX_EMAIL_LENGTH:
        raise ValidationFailed(f"Email must be less than {MAX_EMAIL_LENGTH} characters")
    return name.strip(), normalize_email(email)


def _optional_position(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationFailed("Position must be a number")
    return float(value)


class ReviewService:
    """Public share-link operations plus the owner's review-request email."""

    def __init__(
        self,
        settings: Settings,
        limiter: RateLimiter,
        storage: ObjectStorage,
        mailer: ResendMailer,
    ) -> None:
        self._settings = settings
        self._limiter = limiter
        self._storage = storage
        self._mailer = mailer

    def fetch(self, db: Session, payload: Dict[str, Any]) -> Tuple[Dict[str, Any], RateLimitDecision]:
        token = _require_token(payload.get("token"))
        decision = self._limiter.enforce(
            self._settings.rate_limit("review_fetch"), token, "Rate limit exceeded. Try again later."
        )

        request = get_review_by_token(db, token)
        if request is None:
            raise NotFound("Review not found")

        files = []
        for record in list_review_files(db, request.id):
            signed_url = None
            if self._storage.configured:
                signed_url = self._storage.create_signed_url(record.storage_path, SIGNED_URL_TTL_SECONDS)
            files.append(serialize_file(record, signed_url))

        comments = [serialize_comment(comment) for comment in list_review_comments(db, request.id)]
        return {"request": serialize_request(request), "files": files, "comments": comments}, decision

    def add_comment(self, db: Session, payload: Dict[str, Any]) -> Tuple[Dict[str, Any], RateLimitDecision]:
        token = _require_token(payload.get("token"))
        content = payload.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ValidationFailed("Comment content is required")
        if len(content) > MAX_COMMENT_LENGTH:
            raise ValidationFailed(f"Comment must be less than {MAX_COMMENT_LENGTH} characters")
        name, email = _validate_commenter(
            payload.get("commenter_name"), payload.get("commenter_email"), check_lengths=True
        )
        x_position = _optional_position(payload.get("x_position"))
        y_position = _optional_position(payload.get("y_position"))

        decision = self._limiter.enforce(self._settings.rate_limit("review_comment"), f"{email}:{token}")

        request = get_review_by_token(db, token)
        if request is None:
            logger.info("Comment attempted with unknown share token")
            raise NotFound(INVALID_LINK_MESSAGE)

        review_file_id = payload.get("review_file_id") or None
        if review_file_id is not None:
            if not isinstance(review_file_id, str) or get_review_file(db, request.id, review_file_id) is None:
                raise ValidationFailed("Invalid file reference")

        comment = ReviewComment(
            review_request_id=request.id,
            review_file_id=review_file_id,
            content=content.strip(),
            commenter_name=name,
            commenter_email=email,
            x_position=x_position,
            y_position=y_position,
        )
        db.add(comment)
        if request.status == "pending":
            request.status = "commented"
        db.commit()

        logger.info("Comment added to review %s by %s", request.id, email)
        return {"success": True, "comment": serialize_comment(comment)}, decision

    def change_status(self, db: Session, payload: Dict[str, Any]) -> Tuple[Dict[str, Any], RateLimitDecision]:
        token = _require_token(payload.get("token"))
        new_status = payload.get("status")
        if new_status not in REVIEW_DECISIONS:
            raise ValidationFailed("Status must be 'approved' or 'rejected'")
        name, email = _validate_commenter(
            payload.get("commenter_name"), payload.get("commenter_email"), check_lengths=False
        )

        decision = self._limiter.enforce(self._settings.rate_limit("review_status"), f"{email}:{token}")

        request = get_review_by_token(db, token)
        if request is None:
            raise NotFound(INVALID_LINK_MESSAGE)

        request.status = new_status
        files = list_review_files(db, request.id)
        if files:
            db.add(
                ReviewComment(
                    review_request_id=request.id,
                    review_file_id=files[0].id,
                    content="Approved this review" if new_status == "approved" else "Rejected this review",
                    commenter_name=name,
                    commenter_email=email,
                )
            )
        db.commit()

        logger.info("Review %s %s by %s", request.id, new_status, email)
        return {"success": True, "status": new_status}, decision

    def send_request_email(
        self, db: Session, *, user_id: str, review_request_id: Any, base_url: str
    ) -> Tuple[Dict[str, Any], RateLimitDecision]:
        if not review_request_id or not isinstance(review_request_id, str):
            raise ValidationFailed("Missing reviewRequestId")

        decision = self._limiter.enforce(
            self._settings.rate_limit("review_request_email"), user_id, "Rate limit exceeded. Try again later."
        )

        request = get_owned_review(db, review_request_id, user_id)
        if request is None:
            raise NotFound("Review request not found")

        recipients = list_recipient_emails(db, request.id)
        if not recipients:
            raise ValidationFailed("No recipients for this review request")

        review_url = f"{base_url}/review/{request.share_token}"
        message_id = self._mailer.send(
            to=recipients,
            subject=f"Review request: {request.title} (v{request.version})",
            html=_review_email_html(request, review_url),
        )

        request.sent_at = datetime.utcnow()
        db.commit()
        logger.info("Review request %s sent to %d recipient(s)", request.id, len(recipients))
        return {"success": True, "messageId": message_id}, decision


def _review_email_html(request: ReviewRequest, review_url: str) -> str:
    safe_title = html.escape(request.title or "")
    safe_url = html.escape(review_url)
    due_text = ""
    if request.due_date:
        due_text = (
            f'<p style="color: #666;">Please review by '
            f"<strong>{request.due_date.strftime('%B %d, %Y')}</strong>.</p>"
        )
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #9B63E9;">Review request: {safe_title}</h2>'
        f'<p style="color: #333;">You\'ve been asked to review <strong>{safe_title}</strong> '
        f"(v{html.escape(request.version or '')}).</p>"
        f"{due_text}"
        '<p style="margin: 24px 0;">'
        f'<a href="{safe_url}" style="display: inline-block; background: #9B63E9; color: white; '
        'padding: 12px 24px; text-decoration: none; border-radius: 8px;">Open review</a></p>'
        f'<p style="color: #999; font-size: 12px;">Or copy this link: {safe_url}</p>'
        "</div>"
    )
