"""
Declarative base, ULID keys and timestamp columns shared by every model.
"""
from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from ulid import ULID


def generate_ulid() -> str:
    """26-character, time-sortable primary key."""
    return str(ULID())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Base class for all models.

    Usage:
        class Team(Base, TimestampMixin):
            __tablename__ = "teams"

            id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
            name: Mapped[str] = mapped_column(String(255))
    """
    pass


class TimestampMixin:
    """
    created_at / updated_at stamped in Python with microsecond precision.

    Assignments are picked by most recent updated_at, which second-resolution
    server defaults on SQLite cannot order.
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
