"""
Device ledger service: append-only per-login device history.

Every query here is a range scan on (user_id, created_at), which is the
composite index declared on `DeviceLog`.
"""

import uuid
from datetime import datetime

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.device_log import DeviceLog
from app.schemas import GeoLocation


async def record(
    user_id: uuid.UUID,
    fingerprint: str,
    ip_address: str,
    user_agent: str,
    db: AsyncSession,
    location: GeoLocation | None = None,
) -> DeviceLog:
    entry = DeviceLog(
        id=uuid.uuid4(),
        user_id=user_id,
        fingerprint=fingerprint,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    if location is not None:
        entry.country = location.country
        entry.city = location.city
        entry.region = location.region
        entry.isp = location.isp
    db.add(entry)
    await db.flush()
    return entry


async def count_distinct_devices(
    user_id: uuid.UUID,
    since: datetime,
    db: AsyncSession,
) -> int:
    """Number of distinct fingerprints seen for `user_id` at or after `since`."""
    stmt = select(func.count(distinct(DeviceLog.fingerprint))).where(
        DeviceLog.user_id == user_id,
        DeviceLog.created_at >= since,
    )
    return (await db.execute(stmt)).scalar_one()


async def count_other_devices(
    user_id: uuid.UUID,
    since: datetime,
    exclude_fingerprint: str,
    db: AsyncSession,
) -> int:
    """Distinct fingerprints since `since`, not counting `exclude_fingerprint`."""
    stmt = select(func.count(distinct(DeviceLog.fingerprint))).where(
        DeviceLog.user_id == user_id,
        DeviceLog.created_at >= since,
        DeviceLog.fingerprint != exclude_fingerprint,
    )
    return (await db.execute(stmt)).scalar_one()


async def history(
    user_id: uuid.UUID,
    db: AsyncSession,
    limit: int = 100,
) -> list[DeviceLog]:
    """Newest-first device history for a user."""
    stmt = (
        select(DeviceLog)
        .where(DeviceLog.user_id == user_id)
        .order_by(DeviceLog.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def latest_for_fingerprint(
    user_id: uuid.UUID,
    fingerprint: str,
    since: datetime,
    db: AsyncSession,
) -> DeviceLog | None:
    stmt = (
        select(DeviceLog)
        .where(
            DeviceLog.user_id == user_id,
            DeviceLog.fingerprint == fingerprint,
            DeviceLog.created_at >= since,
        )
        .order_by(DeviceLog.created_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
