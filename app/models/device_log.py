"""
Device ledger model.

Append-only: one row per login, never updated.  The location columns are
filled at insert time (or left NULL when no lookup was made).  Rows are
only ever removed by the retention purge.
"""

import uuid

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class DeviceLog(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    __tablename__ = "device_logs"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False)

    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    region: Mapped[str | None] = mapped_column(String(128), nullable=True)
    isp: Mapped[str | None] = mapped_column(String(256), nullable=True)

    __table_args__ = (
        # Velocity counts & history are always (user_id, created_at) range scans
        Index("ix_device_logs_user_created", "user_id", "created_at"),
        Index("ix_device_logs_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DeviceLog user={self.user_id} fp={self.fingerprint}>"
