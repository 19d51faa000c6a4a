# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database.models import RateLimitCounter
from utils.config import RateLimitRule
from utils.errors import RateLimited, UpstreamFailure
from utils.logger import get_logger

logger = get_logger("rate_limiter")


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int

    def headers(self) -> Dict[str, str]:
        headers = {"X-RateLimit-Remaining": str(self.remaining)}
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def window_start_for(now: float, window_seconds: int) -> datetime:
    """Truncate ``now`` (epoch seconds) to the start of its fixed window, as naive UTC."""
    start = int(now // window_seconds) * window_seconds
    return datetime.fromtimestamp(start, tz=timezone.utc).replace(tzinfo=None)


class RateLimiter:
    """Fixed-window request budget shared through the ``rate_limits`` table.

    Each check runs in its own short transaction so a caller's unit of work is
    never committed or rolled back on its behalf. The increment is a single
    conditional UPDATE with the ceiling in its WHERE clause, so concurrent
    callers cannot push a window past ``max_requests``.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], float] = time.time) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def allow(self, key: str, window_seconds: int, max_requests: int) -> RateLimitDecision:
        start = window_start_for(self._clock(), window_seconds)
        session: Session = self._session_factory()
        try:
            count = self._increment(session, key, start, max_requests)
            if count is None and not self._window_exists(session, key, start):
                count = self._insert(session, key, start)
                if count is None:
                    # Another caller opened the window first; fall back to its row.
                    count = self._increment(session, key, start, max_requests)
            if count is None:
                session.rollback()
                return RateLimitDecision(allowed=False, remaining=0, retry_after=window_seconds)
            session.commit()
            return RateLimitDecision(
                allowed=True, remaining=max(max_requests - count, 0), retry_after=window_seconds
            )
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Rate limit bookkeeping failed for %s: %s", key, exc)
            raise UpstreamFailure("Service temporarily unavailable.", status_code=503) from exc
        finally:
            session.close()

    def enforce(self, rule: RateLimitRule, identity: str, message: Optional[str] = None) -> RateLimitDecision:
        """Consume one unit of ``rule`` for ``identity`` or raise ``RateLimited``."""
        key = f"{rule.bucket}:{identity}"
        decision = self.allow(key, rule.window_seconds, rule.max_requests)
        if not decision.allowed:
            logger.info("Rate limit exceeded for %s", rule.bucket)
            raise RateLimited(message, headers=decision.headers())
        return decision

    @staticmethod
    def _increment(session: Session, key: str, start: datetime, max_requests: int) -> Optional[int]:
        stmt = (
            update(RateLimitCounter)
            .where(RateLimitCounter.key == key)
            .where(RateLimitCounter.window_start >= start)
            .where(RateLimitCounter.count < max_requests)
            .values(count=RateLimitCounter.count + 1)
            .returning(RateLimitCounter.count)
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _window_exists(session: Session, key: str, start: datetime) -> bool:
        row = session.execute(
            select(RateLimitCounter.id)
            .where(RateLimitCounter.key == key)
            .where(RateLimitCounter.window_start >= start)
            .limit(1)
        ).first()
        return row is not None

    @staticmethod
    def _insert(session: Session, key: str, start: datetime) -> Optional[int]:
        session.add(RateLimitCounter(key=key, count=1, window_start=start))
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            return None
        return 1
