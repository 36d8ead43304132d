"""
User session model: the active-session table.

One row per issued session token.  Rows are hard-deleted on logout,
enforcement termination or lockout; expired rows are simply ignored by
every read (`expires_at > now`).
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.models.base import Base, UUIDPrimaryKeyMixin


class UserSession(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "user_sessions"

    token: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_user_sessions_user_expires", "user_id", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<UserSession user={self.user_id} ip={self.ip_address}>"
