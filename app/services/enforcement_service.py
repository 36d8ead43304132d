"""
Single-session enforcement: run once, right after authentication.

Order of operations (one transaction, the request's):
  1. fingerprint the device
  2. append it to the device ledger (with a location, when available)
  3. list the user's other live sessions, by token identity
  4. delete them, auditing each with its own origin ip / user-agent
  5. run the lockout policy; it may wipe *all* sessions and lock

Steps 1-4 are bookkeeping: each runs in a SAVEPOINT and any failure is
logged and swallowed, because the user has already authenticated.
Step 5 is not guarded, so a failure there propagates and the login is
rolled back (the lock decision fails closed).

Two near-simultaneous logins may both survive steps 3-4 (each sees the
other as current).  Enable ENFORCEMENT_ADVISORY_LOCK to serialise them
on PostgreSQL; otherwise the next login converges the state.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import settings
from app.core.context import RequestContext
from app.models.security_event import SecurityEventType
from app.models.session import UserSession
from app.schemas import GeoLocation, SessionTerminatedMetadata
from app.services import (
    audit_service,
    device_ledger_service,
    lockout_service,
    session_service,
)
from app.services.fingerprint_service import fingerprint as make_fingerprint
from app.services.geo_service import GeoLocator, geo_locator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnforcementResult:
    terminated_count: int
    locked: bool = False
    devices_used_today: int = 0
    lock_until: datetime | None = None


async def _resolve_location(
    user_id: uuid.UUID,
    fingerprint: str,
    ip_address: str,
    db: AsyncSession,
    locator: GeoLocator,
) -> GeoLocation | None:
    """At most one provider call per device per tracking interval."""
    if not settings.GEO_LOOKUP_ENABLED:
        return None
    since = utcnow() - timedelta(minutes=settings.GEO_TRACKING_INTERVAL_MINUTES)
    async with db.begin_nested():
        recent = await device_ledger_service.latest_for_fingerprint(user_id, fingerprint, since, db)
    if recent is not None and recent.country:
        return GeoLocation(
            country=recent.country,
            city=recent.city or "Unknown",
            region=recent.region or "Unknown",
            isp=recent.isp or "Unknown",
        )
    return await locator.locate(ip_address)


async def _terminate_others(
    ctx: RequestContext,
    user_id: uuid.UUID,
    current_session_token: str,
    fingerprint: str,
    db: AsyncSession,
) -> int:
    await session_service.acquire_user_advisory_lock(user_id, db)

    active = await session_service.list_active(user_id, db)
    others: list[UserSession] = [s for s in active if s.token != current_session_token]
    if not others:
        return 0

    # Read what the audit rows need before the rows disappear
    snapshots = [(s.id, s.ip_address, s.user_agent) for s in others]
    terminated = await session_service.delete_many([s.id for s in others], db)

    for session_id, ip_address, user_agent in snapshots:
        await audit_service.record_event(
            ctx,
            user_id,
            SecurityEventType.SESSION_TERMINATED,
            "Session terminated due to new device login. "
            f"Previous device: {user_agent or 'Unknown'}",
            SessionTerminatedMetadata(
                terminated_session_id=session_id,
                reason="new_device_login",
                new_device_fingerprint=fingerprint,
                new_ip_address=ctx.ip_address,
            ),
            db,
            ip_address=ip_address or "unknown",
            user_agent=user_agent or "unknown",
        )
    return terminated


async def enforce_single_session(
    ctx: RequestContext,
    user_id: uuid.UUID,
    current_session_token: str,
    db: AsyncSession,
    locator: GeoLocator | None = None,
) -> EnforcementResult:
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")
    if not current_session_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="current session token is required",
        )

    fp = make_fingerprint(ctx.user_agent, ctx.ip_address)

    try:
        location = await _resolve_location(user_id, fp, ctx.ip_address, db, locator or geo_locator)
        async with db.begin_nested():
            await device_ledger_service.record(
                user_id, fp, ctx.ip_address, ctx.user_agent, db, location=location,
            )
    except Exception:
        logger.exception("Device ledger write failed for user %s (request=%s)", user_id, ctx.request_id)

    terminated = 0
    try:
        async with db.begin_nested():
            terminated = await _terminate_others(ctx, user_id, current_session_token, fp, db)
    except Exception:
        terminated = 0
        logger.exception("Session termination failed for user %s (request=%s)", user_id, ctx.request_id)

    if terminated:
        logger.info("Single session enforced for user %s: %d session(s) terminated", user_id, terminated)

    evaluation = await lockout_service.evaluate(ctx, user_id, db, fingerprint=fp)

    return EnforcementResult(
        terminated_count=terminated,
        locked=evaluation.locked,
        devices_used_today=evaluation.devices_used_today,
        lock_until=evaluation.lock_until,
    )
