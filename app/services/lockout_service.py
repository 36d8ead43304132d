"""
Lockout service: the UNLOCKED / LOCKED(until, reason) state machine.

State lives on the user row (`device_lock_until`, `device_lock_reason`)
and is written only from here.  Expiry is lazy: a `device_lock_until`
in the past reads as unlocked, with no write and no background sweeper.

Transitions:
- `evaluate`: device-velocity check run once per login, after the
  ledger write.  More than MAX_DEVICES_PER_DAY distinct fingerprints
  since UTC midnight → LOCKED for DEVICE_LOCK_DURATION_HOURS, every
  session wiped, one DEVICE_LIMIT_EXCEEDED event.
- `lock` / `unlock`: administrative overrides.

`evaluate` does NOT swallow errors from the lock decision.  It is the
authoritative check on the login path and must fail closed.  Only the
audit-only rapid-switching signal is guarded.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import add_hours_clamped, ensure_utc, start_of_utc_day, utcnow
from app.core.config import settings
from app.core.context import RequestContext
from app.models.security_event import SecurityEventType
from app.models.user import User
from app.schemas import (
    AccountLockMetadata,
    DeviceLimitExceededMetadata,
    SuspiciousActivityMetadata,
)
from app.services import audit_service, device_ledger_service, session_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockState:
    locked: bool
    lock_until: datetime | None = None
    reason: str | None = None

    @property
    def remaining_seconds(self) -> int:
        if not self.locked or self.lock_until is None:
            return 0
        return max(0, int((self.lock_until - utcnow()).total_seconds()))


UNLOCKED = LockState(locked=False)


@dataclass(frozen=True)
class LockEvaluation:
    locked: bool
    devices_used_today: int
    lock_until: datetime | None = None
    sessions_removed: int = 0


# ── Reads ────────────────────────────────────────────────────────────

async def _get_user(user_id: uuid.UUID, db: AsyncSession) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def lock_state_of(user: User, now: datetime | None = None) -> LockState:
    """Interpret the stored lock columns at `now` (lazy expiry)."""
    lock_until = ensure_utc(user.device_lock_until)
    if lock_until is None or lock_until <= (now or utcnow()):
        return UNLOCKED
    return LockState(locked=True, lock_until=lock_until, reason=user.device_lock_reason)


async def get_lock_state(user_id: uuid.UUID, db: AsyncSession) -> LockState:
    user = await _get_user(user_id, db)
    return lock_state_of(user)


async def is_locked(user_id: uuid.UUID, db: AsyncSession) -> bool:
    return (await get_lock_state(user_id, db)).locked


# ── Transitions ──────────────────────────────────────────────────────

def _set_lock(user: User, reason: str, hours: int, now: datetime) -> datetime:
    lock_until = add_hours_clamped(now, hours, settings.MAX_LOCK_DURATION_HOURS)
    user.device_lock_until = lock_until
    user.device_lock_reason = reason[:512]
    return lock_until


async def evaluate(
    ctx: RequestContext,
    user_id: uuid.UUID,
    db: AsyncSession,
    fingerprint: str | None = None,
) -> LockEvaluation:
    """
    Run the device-velocity policy for `user_id`.

    Call at most once per login attempt.  Pass the login's `fingerprint`
    so the current device is counted whether or not its ledger write
    succeeded.
    """
    now = utcnow()
    user = await _get_user(user_id, db)
    day_start = start_of_utc_day(now)
    if fingerprint is not None:
        # The current device counts even if its ledger row was never written
        distinct_today = 1 + await device_ledger_service.count_other_devices(
            user_id, day_start, fingerprint, db,
        )
    else:
        distinct_today = await device_ledger_service.count_distinct_devices(user_id, day_start, db)

    if distinct_today <= settings.MAX_DEVICES_PER_DAY:
        if fingerprint is not None:
            try:
                async with db.begin_nested():
                    await _flag_rapid_switching(ctx, user_id, fingerprint, now, db)
            except Exception:
                logger.exception(
                    "Rapid-switching check failed for user %s (request=%s)", user_id, ctx.request_id,
                )
        return LockEvaluation(locked=False, devices_used_today=distinct_today)

    current = lock_state_of(user, now)
    if current.locked:
        # Same trigger already handled; keep the wipe, skip a second event.
        removed = await session_service.delete_all_user_sessions(user_id, db)
        return LockEvaluation(
            locked=True,
            devices_used_today=distinct_today,
            lock_until=current.lock_until,
            sessions_removed=removed,
        )

    reason = (
        f"Too many different devices used today ({distinct_today}). "
        "Account locked for security."
    )
    lock_until = _set_lock(user, reason, settings.DEVICE_LOCK_DURATION_HOURS, now)
    await db.flush()
    removed = await session_service.delete_all_user_sessions(user_id, db)

    logger.warning(
        "Device limit exceeded for user %s (%d > %d); locked until %s",
        user_id, distinct_today, settings.MAX_DEVICES_PER_DAY, lock_until.isoformat(),
    )
    await audit_service.record_event(
        ctx,
        user_id,
        SecurityEventType.DEVICE_LIMIT_EXCEEDED,
        f"{reason} Lock duration: {settings.DEVICE_LOCK_DURATION_HOURS} hours",
        DeviceLimitExceededMetadata(
            device_count=distinct_today,
            max_devices=settings.MAX_DEVICES_PER_DAY,
            lock_until=lock_until,
            sessions_removed=removed,
            fingerprint=fingerprint,
        ),
        db,
    )
    return LockEvaluation(
        locked=True,
        devices_used_today=distinct_today,
        lock_until=lock_until,
        sessions_removed=removed,
    )


async def _flag_rapid_switching(
    ctx: RequestContext,
    user_id: uuid.UUID,
    fingerprint: str,
    now: datetime,
    db: AsyncSession,
) -> None:
    """Audit-only signal: many other devices inside a short window.  Never locks."""
    window = settings.RAPID_SWITCH_WINDOW_MINUTES
    others = await device_ledger_service.count_other_devices(
        user_id, now - timedelta(minutes=window), fingerprint, db,
    )
    if others < settings.RAPID_SWITCH_THRESHOLD:
        return
    logger.info("Rapid device switching for user %s: %d other devices in %dm", user_id, others, window)
    await audit_service.record_event(
        ctx,
        user_id,
        SecurityEventType.SUSPICIOUS_ACTIVITY,
        f"Rapid device switching detected: {others} other devices in the last {window} minutes",
        SuspiciousActivityMetadata(
            signal="rapid_device_switching",
            distinct_devices=others + 1,
            window_minutes=window,
            fingerprint=fingerprint,
        ),
        db,
    )


async def lock(
    ctx: RequestContext,
    user_id: uuid.UUID,
    reason: str,
    hours: int,
    db: AsyncSession,
) -> LockState:
    """Administrative lock: set LockState and wipe every session."""
    if not reason or not reason.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lock reason is required")
    if hours <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lock duration must be positive")

    user = await _get_user(user_id, db)
    lock_until = _set_lock(user, reason.strip(), hours, utcnow())
    await db.flush()
    removed = await session_service.delete_all_user_sessions(user_id, db)

    logger.info("User %s locked until %s by %s", user_id, lock_until.isoformat(), ctx.actor_id)
    await audit_service.record_event(
        ctx,
        user_id,
        SecurityEventType.ACCOUNT_LOCKED,
        f"Account locked by administrator. Reason: {reason.strip()}. "
        f"{removed} session(s) removed",
        AccountLockMetadata(
            action="lock",
            lock_until=lock_until,
            reason=reason.strip(),
            actor_id=ctx.actor_id,
        ),
        db,
    )
    return LockState(locked=True, lock_until=lock_until, reason=user.device_lock_reason)


async def unlock(
    ctx: RequestContext,
    user_id: uuid.UUID,
    db: AsyncSession,
) -> LockState:
    """Administrative unlock: clear LockState immediately."""
    user = await _get_user(user_id, db)
    user.device_lock_until = None
    user.device_lock_reason = None
    await db.flush()

    logger.info("User %s unlocked by %s", user_id, ctx.actor_id)
    await audit_service.record_event(
        ctx,
        user_id,
        SecurityEventType.ACCOUNT_UNLOCKED,
        "Account manually unlocked by admin",
        AccountLockMetadata(action="unlock", actor_id=ctx.actor_id),
        db,
    )
    return UNLOCKED
