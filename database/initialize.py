from __future__ import annotations

import argparse
import time
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

# Registers profiles, rate_limits and the review tables on the metadata.
from database import models  # noqa: F401
from database.models import RateLimitCounter
from database.session import Base, db_session, engine
from svc.rate_limiter import window_start_for
from utils.config import DEFAULT_WINDOW_SECONDS
from utils.logger import setup_logger

logger = setup_logger()


def init_database(*, drop_existing: bool = False) -> None:
    """Create the billing and review schema on the configured engine."""
    try:
        if drop_existing:
            logger.warning("Dropping existing tables before re-creating schema.")
            Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as exc:
        logger.exception("Failed to initialise database schema: %s", exc)
        raise
    else:
        logger.info("Database schema initialised successfully.")


def prune_rate_limits(*, window_seconds: int = DEFAULT_WINDOW_SECONDS, now: Optional[float] = None) -> int:
    """Delete counters from windows that closed before the current one."""
    cutoff = window_start_for(time.time() if now is None else now, window_seconds)
    with db_session() as session:
        result = session.execute(delete(RateLimitCounter).where(RateLimitCounter.window_start < cutoff))
        removed = result.rowcount or 0
    logger.info("Pruned %d expired rate-limit counter(s) older than %s", removed, cutoff.isoformat())
    return removed


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Initialise the database schema for the billing service."
    )
    parser.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating the schema.",
    )
    parser.add_argument(
        "--prune-rate-limits",
        action="store_true",
        help="Delete rate-limit counters from windows that have already closed.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)
    init_database(drop_existing=args.drop_existing)
    if args.prune_rate_limits:
        prune_rate_limits()


if __name__ == "__main__":
    main()
