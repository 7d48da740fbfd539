"""Database bootstrap helpers for the payout service."""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from vendorpay.common.config import settings


def make_session_factory(engine) -> sessionmaker:
    """Build a session factory bound to `engine`.

    `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
    """

    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


# Single SQLAlchemy engine per process.
engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = make_session_factory(engine)

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass
