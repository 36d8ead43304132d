"""
Admin controller: account lock overrides, per-user security views and
the retention purge.

Every route uses `Depends(require_admin)`, which also tags the request
context with the acting admin so lock / unlock events record who did it.
Controllers are THIN; they delegate to services and return schemas.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.context import RequestContext
from app.core.database import get_db
from app.core.security import require_admin
from app.schemas import (
    DeviceLogOut,
    LockAccountRequest,
    PurgeResult,
    SecurityEventOut,
    SecurityStatus,
    SessionOut,
)
from app.services import (
    audit_service,
    device_ledger_service,
    lockout_service,
    session_service,
)
from app.services.security_gate_service import get_status

router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ── Lock overrides ───────────────────────────────────────────────────
@router.post("/users/{user_id}/lock", response_model=SecurityStatus)
async def lock_account(
    user_id: uuid.UUID,
    body: LockAccountRequest,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await lockout_service.lock(ctx, user_id, body.reason, body.hours, db)
    return await get_status(user_id, db)


@router.post("/users/{user_id}/unlock", response_model=SecurityStatus)
async def unlock_account(
    user_id: uuid.UUID,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await lockout_service.unlock(ctx, user_id, db)
    return await get_status(user_id, db)


# ── Per-user views ───────────────────────────────────────────────────
@router.get("/users/{user_id}/security", response_model=SecurityStatus)
async def user_security(
    user_id: uuid.UUID,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_status(user_id, db)


@router.get("/users/{user_id}/sessions", response_model=list[SessionOut])
async def user_sessions(
    user_id: uuid.UUID,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    sessions = await session_service.list_active(user_id, db)
    return [SessionOut.model_validate(s) for s in sessions]


@router.get("/users/{user_id}/devices", response_model=list[DeviceLogOut])
async def user_devices(
    user_id: uuid.UUID,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(100, ge=1, le=500),
):
    entries = await device_ledger_service.history(user_id, db, limit)
    return [DeviceLogOut.model_validate(e) for e in entries]


@router.get("/users/{user_id}/events", response_model=list[SecurityEventOut])
async def user_events(
    user_id: uuid.UUID,
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
):
    events = await audit_service.query(user_id, db, limit)
    return [audit_service.to_out(e) for e in events]


# ── Maintenance ──────────────────────────────────────────────────────
@router.post("/maintenance/purge", response_model=PurgeResult)
async def purge_security_logs(
    ctx: RequestContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    days_to_keep: int = Query(settings.AUDIT_RETENTION_DAYS, ge=0, le=audit_service.MAX_RETENTION_DAYS),
):
    """Drop device-ledger and security-event rows older than `days_to_keep` days."""
    return await audit_service.purge_security_logs(db, days_to_keep)
