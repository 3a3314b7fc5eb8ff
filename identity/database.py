import os
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker


def _build_database_url() -> str:
    raw_url = os.getenv("DATABASE_URL", "")
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


def _build_engine(url: str):
    if url.startswith("sqlite"):
        # Requests run on threadpool workers; SQLite connections are shared across them.
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(url or "sqlite://", pool_pre_ping=True)


DATABASE_URL = _build_database_url()
engine = _build_engine(DATABASE_URL)
SessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
)
Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands timestamps back naive; everything is stored in UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def init_db() -> None:
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not configured")
    from identity.models import account as _account  # noqa: F401
    from identity.models import email_token as _email_token  # noqa: F401
    from identity.models import password_history as _password_history  # noqa: F401
    from identity.models import phone_otp as _phone_otp  # noqa: F401
    from identity.models import session as _session  # noqa: F401

    Base.metadata.create_all(bind=engine)


def ping() -> bool:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return True


@contextmanager
def session_scope():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def use_session(session: Session | None = None):
    """Join the caller's transaction when one is given, otherwise open a new one."""
    if session is not None:
        yield session
        return
    with session_scope() as owned:
        yield owned
