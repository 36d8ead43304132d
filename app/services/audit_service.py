"""
Security audit service: the append-only event trail + retention purge.

Two ways to write:
- `append` is strict.  It raises on contract violations (blank
  description, metadata shape that does not belong to the event type)
  and lets database errors propagate.
- `record_event` is what request code calls.  It runs `append` inside a
  SAVEPOINT and returns an `AuditWriteResult`, so an audit failure is
  logged and reported at the call site but never fails (or poisons the
  transaction of) the caller's primary operation.

`purge_older_than` sweeps both append-only logs (security events and the
device ledger) under one retention cutoff, in one transaction.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import settings
from app.core.context import RequestContext
from app.models.device_log import DeviceLog
from app.models.security_event import SecurityEvent, SecurityEventType
from app.schemas import (
    METADATA_KIND_BY_EVENT,
    EventMetadata,
    PurgeResult,
    SecurityEventOut,
    event_metadata_adapter,
)

logger = logging.getLogger(__name__)

MAX_RETENTION_DAYS = 36500


@dataclass(frozen=True)
class AuditWriteResult:
    """Outcome of a log-and-continue audit write."""

    ok: bool
    event_id: uuid.UUID | None = None
    error: str | None = None


async def append(
    ctx: RequestContext,
    user_id: uuid.UUID,
    event_type: SecurityEventType,
    description: str,
    metadata: EventMetadata,
    db: AsyncSession,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Insert one security event.

    `ip_address` / `user_agent` default to the request context; pass them
    explicitly to record the origin of something else (e.g. the device
    whose session was just terminated).
    """
    if not description or not description.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Security event description is required",
        )
    expected_kind = METADATA_KIND_BY_EVENT[event_type]
    if metadata.kind != expected_kind:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{event_type.value} events require '{expected_kind}' metadata",
        )

    event = SecurityEvent(
        id=uuid.uuid4(),
        user_id=user_id,
        event_type=event_type,
        description=description.strip(),
        ip_address=(ip_address or ctx.ip_address)[:64],
        user_agent=(user_agent or ctx.user_agent)[:512],
        event_metadata=metadata.model_dump(mode="json"),
    )
    db.add(event)
    await db.flush()
    return event


async def record_event(
    ctx: RequestContext,
    user_id: uuid.UUID,
    event_type: SecurityEventType,
    description: str,
    metadata: EventMetadata,
    db: AsyncSession,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditWriteResult:
    """Log-and-continue wrapper around `append`."""
    try:
        async with db.begin_nested():
            event = await append(
                ctx, user_id, event_type, description, metadata, db,
                ip_address=ip_address, user_agent=user_agent,
            )
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception(
            "Audit write failed (request=%s user=%s type=%s)",
            ctx.request_id, user_id, event_type.value,
        )
        return AuditWriteResult(ok=False, error=type(exc).__name__)
    return AuditWriteResult(ok=True, event_id=event.id)


async def query(
    user_id: uuid.UUID,
    db: AsyncSession,
    limit: int = 50,
) -> list[SecurityEvent]:
    """Newest-first events for a user."""
    stmt = (
        select(SecurityEvent)
        .where(SecurityEvent.user_id == user_id)
        .order_by(SecurityEvent.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def to_out(event: SecurityEvent) -> SecurityEventOut:
    return SecurityEventOut(
        id=event.id,
        event_type=event.event_type,
        description=event.description,
        ip_address=event.ip_address,
        user_agent=event.user_agent,
        metadata=event_metadata_adapter.validate_python(event.event_metadata),
        created_at=event.created_at,
    )


async def purge_older_than(cutoff: datetime, db: AsyncSession) -> PurgeResult:
    """
    Remove audit and ledger rows with `created_at < cutoff`.

    Idempotent: a second call with the same cutoff removes nothing.
    """
    events = await db.execute(
        delete(SecurityEvent)
        .where(SecurityEvent.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    ledger = await db.execute(
        delete(DeviceLog)
        .where(DeviceLog.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    result = PurgeResult(
        events_removed=events.rowcount or 0,
        ledger_entries_removed=ledger.rowcount or 0,
        cutoff=cutoff,
    )
    logger.info(
        "Retention purge (cutoff=%s): %d events, %d ledger entries removed",
        cutoff.isoformat(), result.events_removed, result.ledger_entries_removed,
    )
    return result


async def purge_security_logs(
    db: AsyncSession,
    days_to_keep: int | None = None,
) -> PurgeResult:
    """Scheduled retention job entry point (default: AUDIT_RETENTION_DAYS)."""
    if days_to_keep is None:
        days_to_keep = settings.AUDIT_RETENTION_DAYS
    if days_to_keep < 0 or days_to_keep > MAX_RETENTION_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"days_to_keep must be between 0 and {MAX_RETENTION_DAYS}",
        )
    cutoff = utcnow() - timedelta(days=days_to_keep)
    return await purge_older_than(cutoff, db)
