"""
Pydantic schemas for request / response serialization.

Kept in a single file.  Schemas are deliberately decoupled from the
SQLAlchemy models so the API surface can evolve independently of the
DB layer.

The audit metadata section defines one schema per security event type;
`EventMetadata` is the discriminated union stored in
`security_events.metadata`, so audit consumers can rely on a documented
shape per event type.
"""

import uuid
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from app.models.security_event import SecurityEventType


# ── Auth ─────────────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: uuid.UUID
    terminated_sessions: int = 0


# ── Sessions ─────────────────────────────────────────────────────────
class SessionOut(BaseModel):
    id: uuid.UUID
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime
    expires_at: datetime
    is_current: bool = False

    model_config = {"from_attributes": True}


# ── Lockout / gate ───────────────────────────────────────────────────
class LockAccountRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=512)
    hours: int = Field(gt=0)


class SecurityStatus(BaseModel):
    locked: bool
    lock_until: datetime | None = None
    lock_reason: str | None = None
    devices_used_today: int = 0
    max_devices_allowed: int
    status_known: bool = True


class LockedResponse(BaseModel):
    """Body of a 423 response; shown on the client's "account locked" page."""

    locked: bool = True
    lock_reason: str
    lock_until: datetime
    remaining_seconds: int


# ── Device ledger / geolocation ──────────────────────────────────────
class GeoLocation(BaseModel):
    country: str
    city: str
    region: str
    isp: str


LOCAL_LOCATION = GeoLocation(country="Local", city="Local", region="Local", isp="Local Network")
UNKNOWN_LOCATION = GeoLocation(country="Unknown", city="Unknown", region="Unknown", isp="Unknown")


class DeviceLogOut(BaseModel):
    id: uuid.UUID
    fingerprint: str
    ip_address: str
    user_agent: str
    country: str | None = None
    city: str | None = None
    region: str | None = None
    isp: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Audit metadata (one schema per event type) ───────────────────────
class LoginMetadata(BaseModel):
    kind: Literal["login"] = "login"
    session_id: uuid.UUID
    fingerprint: str


class LogoutMetadata(BaseModel):
    kind: Literal["logout"] = "logout"
    session_id: uuid.UUID


class SessionTerminatedMetadata(BaseModel):
    kind: Literal["session_terminated"] = "session_terminated"
    terminated_session_id: uuid.UUID
    reason: Literal["new_device_login", "manual", "admin"]
    new_device_fingerprint: str | None = None
    new_ip_address: str | None = None


class DeviceLimitExceededMetadata(BaseModel):
    kind: Literal["device_limit_exceeded"] = "device_limit_exceeded"
    device_count: int
    max_devices: int
    lock_until: datetime
    sessions_removed: int
    fingerprint: str | None = None


class SuspiciousActivityMetadata(BaseModel):
    kind: Literal["suspicious_activity"] = "suspicious_activity"
    signal: str
    distinct_devices: int
    window_minutes: int
    fingerprint: str | None = None


class AccountLockMetadata(BaseModel):
    kind: Literal["account_lock"] = "account_lock"
    action: Literal["lock", "unlock"]
    lock_until: datetime | None = None
    reason: str | None = None
    actor_id: uuid.UUID | None = None


class EmailMetadata(BaseModel):
    kind: Literal["email"] = "email"
    email: str | None = None


class PasswordChangedMetadata(BaseModel):
    kind: Literal["password_changed"] = "password_changed"
    sessions_revoked: int = 0


EventMetadata = Annotated[
    Union[
        LoginMetadata,
        LogoutMetadata,
        SessionTerminatedMetadata,
        DeviceLimitExceededMetadata,
        SuspiciousActivityMetadata,
        AccountLockMetadata,
        EmailMetadata,
        PasswordChangedMetadata,
    ],
    Field(discriminator="kind"),
]

event_metadata_adapter: TypeAdapter[EventMetadata] = TypeAdapter(EventMetadata)

# event_type → the only metadata `kind` it may carry
METADATA_KIND_BY_EVENT: dict[SecurityEventType, str] = {
    SecurityEventType.LOGIN: "login",
    SecurityEventType.LOGOUT: "logout",
    SecurityEventType.SESSION_TERMINATED: "session_terminated",
    SecurityEventType.DEVICE_LIMIT_EXCEEDED: "device_limit_exceeded",
    SecurityEventType.SUSPICIOUS_ACTIVITY: "suspicious_activity",
    SecurityEventType.ACCOUNT_LOCKED: "account_lock",
    SecurityEventType.ACCOUNT_UNLOCKED: "account_lock",
    SecurityEventType.EMAIL_CODE_SENT: "email",
    SecurityEventType.EMAIL_VERIFIED: "email",
    SecurityEventType.EMAIL_CHANGED: "email",
    SecurityEventType.PASSWORD_CHANGED: "password_changed",
}


class SecurityEventOut(BaseModel):
    id: uuid.UUID
    event_type: SecurityEventType
    description: str
    ip_address: str
    user_agent: str
    metadata: EventMetadata
    created_at: datetime


# ── Maintenance ──────────────────────────────────────────────────────
class PurgeResult(BaseModel):
    events_removed: int
    ledger_entries_removed: int
    cutoff: datetime


# ── Generic ──────────────────────────────────────────────────────────
class MessageResponse(BaseModel):
    detail: str
