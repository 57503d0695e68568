"""SQLAlchemy declarative base with common mixins."""
import time

from sqlalchemy import Float
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class EpochTimestampMixin:
    """
    Mixin that adds created_at and updated_at columns as Unix epoch seconds.

    The bookmark table predates this service and stores timestamps as floats rather
    than TIMESTAMP WITH TIME ZONE. Values are assigned by the backend at write time,
    never by the client.
    """

    created_at: Mapped[float] = mapped_column(Float, default=time.time, nullable=False)
    updated_at: Mapped[float] = mapped_column(
        Float,
        default=time.time,
        nullable=False,
    )
