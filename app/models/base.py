"""
Declarative base & shared mixins for all models.

- `UUIDPrimaryKeyMixin`: UUID `id` generated client-side via `uuid4`.
- `TimestampMixin`: `created_at` / `updated_at` for mutable aggregates.
- `CreatedAtMixin`: `created_at` only, for append-only logs that are
  never updated after insert.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.core.clock import utcnow


class Base(DeclarativeBase):
    """SQLAlchemy declarative base; all models inherit from this."""
    pass


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
