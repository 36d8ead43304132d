"""
Security controller: self-service routes for the signed-in user.

- `GET /status` is the cheap endpoint clients poll every few minutes to
  notice a server-initiated lock.  Clients should poll with a bounded
  timeout and treat a failed poll as "unknown", not as locked.
- `/sessions` backs the "manage my devices" screen.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext, get_request_context
from app.core.database import get_db
from app.core.security import CurrentSession, get_current_session, require_unlocked_session
from app.models.security_event import SecurityEventType
from app.schemas import (
    DeviceLogOut,
    MessageResponse,
    SecurityEventOut,
    SecurityStatus,
    SessionOut,
    SessionTerminatedMetadata,
)
from app.services import audit_service, device_ledger_service, session_service
from app.services.security_gate_service import get_status

router = APIRouter(prefix="/api/security", tags=["Security"])


@router.get("/status", response_model=SecurityStatus)
async def security_status(
    current: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    return await get_status(current.user_id, db)


@router.get("/check", response_model=MessageResponse)
async def check_access(current: CurrentSession = Depends(require_unlocked_session)):
    """Guarded no-op: 200 when the account is usable, 423 when locked."""
    return MessageResponse(detail="ok")


@router.get("/sessions", response_model=list[SessionOut])
async def list_sessions(
    current: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    sessions = await session_service.list_active(current.user_id, db)
    return [
        SessionOut.model_validate(s).model_copy(update={"is_current": s.id == current.session.id})
        for s in sessions
    ]


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def terminate_session(
    session_id: uuid.UUID,
    current: CurrentSession = Depends(get_current_session),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Sign out one of your own devices."""
    target = await session_service.get_user_session(session_id, current.user_id, db)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    origin_ip, origin_ua = target.ip_address, target.user_agent
    await session_service.delete_session(target.id, db)
    await audit_service.record_event(
        ctx,
        current.user_id,
        SecurityEventType.SESSION_TERMINATED,
        f"Session manually terminated. Device: {origin_ua or 'Unknown'}",
        SessionTerminatedMetadata(terminated_session_id=session_id, reason="manual"),
        db,
        ip_address=origin_ip or "unknown",
        user_agent=origin_ua or "unknown",
    )
    return MessageResponse(detail="Session terminated")


@router.get("/events", response_model=list[SecurityEventOut])
async def my_events(
    current: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
):
    events = await audit_service.query(current.user_id, db, limit)
    return [audit_service.to_out(e) for e in events]


@router.get("/devices", response_model=list[DeviceLogOut])
async def my_devices(
    current: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(100, ge=1, le=500),
):
    entries = await device_ledger_service.history(current.user_id, db, limit)
    return [DeviceLogOut.model_validate(e) for e in entries]
