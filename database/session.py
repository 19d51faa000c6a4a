import os
from contextlib import contextmanager
from typing import Any, Dict, Generator, Mapping, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///./freelance_billing.db"
# Seconds a SQLite writer waits on the file lock; rate-limit counters take short write locks per request.
DEFAULT_SQLITE_BUSY_TIMEOUT = 30.0


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def resolve_database_url(
    raw_url: Optional[str], *, sqlite_busy_timeout: float = DEFAULT_SQLITE_BUSY_TIMEOUT
) -> Tuple[URL, Dict[str, Any]]:
    """Turn a DATABASE_URL into a SQLAlchemy URL plus driver connect args.

    SQLite connections are shared across request threads and wait on the
    write lock instead of failing at once. Postgres URLs (including the short
    ``postgres://`` scheme) are pinned to the psycopg driver and get
    ``sslmode=require`` unless the URL already chooses a mode.
    """
    url = make_url((raw_url or "").strip() or DEFAULT_DATABASE_URL)

    if url.get_backend_name() == "sqlite":
        return url, {"check_same_thread": False, "timeout": sqlite_busy_timeout}

    if url.drivername in {"postgres", "postgresql", "postgresql+psycopg2"}:
        url = url.set(drivername="postgresql+psycopg")

    if url.get_backend_name() == "postgresql" and "sslmode" not in url.query:
        url = url.update_query_dict({"sslmode": "require"})

    return url, {}


def engine_options(env: Mapping[str, str]) -> Dict[str, Any]:
    """Engine keyword arguments taken from SQL_ECHO and DB_POOL_SIZE."""
    options: Dict[str, Any] = {"pool_pre_ping": True}
    if env.get("SQL_ECHO", "").strip().lower() in {"1", "true", "yes"}:
        options["echo"] = True
    pool_size = env.get("DB_POOL_SIZE", "").strip()
    if pool_size.isdigit() and int(pool_size) > 0:
        options["pool_size"] = int(pool_size)
    return options


def build_engine(env: Optional[Mapping[str, str]] = None) -> Engine:
    env = os.environ if env is None else env
    url, connect_args = resolve_database_url(
        env.get("DATABASE_URL"),
        sqlite_busy_timeout=_env_float(env, "SQLITE_BUSY_TIMEOUT", DEFAULT_SQLITE_BUSY_TIMEOUT),
    )
    return create_engine(url, connect_args=connect_args, **engine_options(env))


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """Unit of work for CLI scripts: commit on success, roll back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
