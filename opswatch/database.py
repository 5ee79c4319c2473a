"""Database setup and session management."""
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from opswatch.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


# SQLite needs check_same_thread=False
connect_args = {} if "sqlite" not in settings.database_url else {"check_same_thread": False}
engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency for DB sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables."""
    # Import models so every table is registered on Base.metadata
    import opswatch.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
