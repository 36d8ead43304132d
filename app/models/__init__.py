"""
Models package: import every model so SQLAlchemy's Base.metadata
knows about all tables (needed by Alembic and the test fixtures).
"""

from app.models.base import Base, CreatedAtMixin, TimestampMixin, UUIDPrimaryKeyMixin
from app.models.user import User, UserRole, UserStatus
from app.models.session import UserSession
from app.models.device_log import DeviceLog
from app.models.security_event import SecurityEvent, SecurityEventType

__all__ = [
    "Base",
    "CreatedAtMixin",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "User",
    "UserRole",
    "UserStatus",
    "UserSession",
    "DeviceLog",
    "SecurityEvent",
    "SecurityEventType",
]
