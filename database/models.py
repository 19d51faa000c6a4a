from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .session import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    """Per-user account record; the billing columns are written only by the reconciler."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    plan_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True, index=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    trial_start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    trial_end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    subscription_event_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class RateLimitCounter(Base):
    __tablename__ = "rate_limits"
    __table_args__ = (UniqueConstraint("key", "window_start", name="uq_rate_limits_key_window"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    key: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class ReviewRequest(Base):
    __tablename__ = "review_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str] = mapped_column(String(32), nullable=False, default="1")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    share_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    files: Mapped[list["ReviewFile"]] = relationship(
        "ReviewFile", back_populates="review_request", cascade="all, delete-orphan"
    )
    comments: Mapped[list["ReviewComment"]] = relationship(
        "ReviewComment", back_populates="review_request", cascade="all, delete-orphan"
    )
    recipients: Mapped[list["ReviewRecipient"]] = relationship(
        "ReviewRecipient", back_populates="review_request", cascade="all, delete-orphan"
    )


class ReviewFile(Base):
    __tablename__ = "review_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    review_request_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("review_requests.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    review_request: Mapped["ReviewRequest"] = relationship("ReviewRequest", back_populates="files")


class ReviewComment(Base):
    __tablename__ = "review_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    review_request_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("review_requests.id"), nullable=False, index=True
    )
    review_file_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("review_files.id"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    commenter_name: Mapped[str] = mapped_column(String(100), nullable=False)
    commenter_email: Mapped[str] = mapped_column(String(255), nullable=False)
    x_position: Mapped[float | None] = mapped_column(Float, nullable=True)
    y_position: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    review_request: Mapped["ReviewRequest"] = relationship("ReviewRequest", back_populates="comments")


class ReviewRecipient(Base):
    __tablename__ = "review_recipients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    review_request_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("review_requests.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)

    review_request: Mapped["ReviewRequest"] = relationship("ReviewRequest", back_populates="recipients")
