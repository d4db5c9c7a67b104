"""
SQLAlchemy declarative base, mixins and engine helpers.

Every job, queue item and document lives in one relational store so that
workers in separate processes share state only through it.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all citecheck tables."""

    pass


class UUIDMixin:
    """
    Mixin providing a string UUID primary key.

    Stored as a 36-character string so the same schema runs on SQLite
    and PostgreSQL.
    """

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        nullable=False,
    )


class TimestampMixin:
    """
    Mixin providing created_at / updated_at (UTC).

    Queue code sets updated_at explicitly on every state transition, since
    stuck-item recovery depends on it.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections are shared across worker threads; in-memory SQLite
    uses a single static connection so every session sees the same data.

    Args:
        database_url: SQLAlchemy URL
        echo: Echo SQL statements

    Returns:
        Engine
    """
    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **options)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory with explicit transaction control."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    # Register models on Base.metadata
    from citecheck.jobs import orm  # noqa: F401

    Base.metadata.create_all(engine)
