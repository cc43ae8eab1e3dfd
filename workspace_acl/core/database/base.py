"""
Declarative base and the mixins every table shares.
"""
from datetime import datetime
from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from ulid import ULID


def generate_ulid() -> str:
    """26-character, lexicographically time-ordered identifier."""
    return str(ULID())


class Base(DeclarativeBase):
    """Metadata root; register_models() imports every subclass before create_all."""


class ULIDPrimaryKeyMixin:
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)


class TimestampMixin:
    """
    Database-side created_at / updated_at.

    Both are server defaults, so they are expired after a flush; refresh the
    instance before reading them inside an async session.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
