"""
Security gate: cheap, read-only lock status for polling clients and
route guards.

This read path fails OPEN.  If the status cannot be read, the caller
gets a neutral "not locked, status unknown" answer rather than an error,
so an outage here cannot lock out every user.  The authoritative lock
decision is made at login by `lockout_service.evaluate`, which fails
closed.
"""

import enum
import logging
import uuid

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import start_of_utc_day, utcnow
from app.core.config import settings
from app.schemas import SecurityStatus
from app.services import device_ledger_service, lockout_service

logger = logging.getLogger(__name__)


class GateDecision(str, enum.Enum):
    OK = "ok"
    LOCKED = "locked"


def _unknown_status() -> SecurityStatus:
    return SecurityStatus(
        locked=False,
        devices_used_today=0,
        max_devices_allowed=settings.MAX_DEVICES_PER_DAY,
        status_known=False,
    )


async def get_status(user_id: uuid.UUID, db: AsyncSession) -> SecurityStatus:
    try:
        state = await lockout_service.get_lock_state(user_id, db)
        devices_today = await device_ledger_service.count_distinct_devices(
            user_id, start_of_utc_day(utcnow()), db,
        )
    except HTTPException:
        raise
    except Exception:
        logger.exception("Security status read failed for user %s", user_id)
        return _unknown_status()

    return SecurityStatus(
        locked=state.locked,
        lock_until=state.lock_until,
        lock_reason=state.reason,
        devices_used_today=devices_today,
        max_devices_allowed=settings.MAX_DEVICES_PER_DAY,
    )


async def check(user_id: uuid.UUID, db: AsyncSession) -> GateDecision:
    try:
        locked = await lockout_service.is_locked(user_id, db)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Lock check failed for user %s; treating as unknown", user_id)
        return GateDecision.OK
    return GateDecision.LOCKED if locked else GateDecision.OK
