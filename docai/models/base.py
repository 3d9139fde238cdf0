"""
Base model classes for DocAI.

Provides the SQLAlchemy declarative base, the timestamp mixin shared by
jobs and quota records, and the clock used for explicit timestamps.
"""
from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def utcnow() -> datetime:
    """Timezone-aware current time for application-set timestamps."""
    return datetime.now(timezone.utc)


class TimestampMixin:
    """
    Mixin that adds created_at and updated_at timestamps to models.

    created_at is set by the database on insert; updated_at is refreshed on
    every UPDATE issued through SQLAlchemy, including bulk conditional ones.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
