"""
Session service: the active-session table.

Handles:
- Issuing sessions at login
- Querying non-expired sessions (for enforcement & "manage my devices")
- Deleting sessions by id, by owner, or one at a time (logout)
- The optional per-user advisory lock around enforcement

Exclusion of the just-issued session is always by token identity, never
by a timing window, so deletes are safe to run next to session creation.
"""

import logging
import secrets
import uuid
from datetime import timedelta

from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import settings
from app.models.session import UserSession

logger = logging.getLogger(__name__)


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


async def create_session(
    user_id: uuid.UUID,
    ip_address: str | None,
    user_agent: str | None,
    db: AsyncSession,
    token: str | None = None,
) -> UserSession:
    """Persist a new session.  A token is issued when none is supplied."""
    now = utcnow()
    session = UserSession(
        id=uuid.uuid4(),
        token=token or generate_session_token(),
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=now,
        expires_at=now + timedelta(days=settings.SESSION_EXPIRE_DAYS),
    )
    db.add(session)
    await db.flush()
    return session


async def list_active(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> list[UserSession]:
    """Return all non-expired sessions for a user, newest first."""
    stmt = (
        select(UserSession)
        .where(
            UserSession.user_id == user_id,
            UserSession.expires_at > utcnow(),
        )
        .order_by(UserSession.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_current(token: str, db: AsyncSession) -> UserSession | None:
    """Resolve a bearer token to its non-expired session."""
    if not token:
        return None
    stmt = select(UserSession).where(
        UserSession.token == token,
        UserSession.expires_at > utcnow(),
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_session(
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession,
) -> UserSession | None:
    """Return a session only if it belongs to `user_id`."""
    stmt = select(UserSession).where(
        UserSession.id == session_id,
        UserSession.user_id == user_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def count_active(user_id: uuid.UUID, db: AsyncSession) -> int:
    stmt = select(func.count()).select_from(UserSession).where(
        UserSession.user_id == user_id,
        UserSession.expires_at > utcnow(),
    )
    return (await db.execute(stmt)).scalar_one()


async def delete_many(
    session_ids: list[uuid.UUID],
    db: AsyncSession,
) -> int:
    """Delete the given sessions.  Returns the number of rows removed."""
    if not session_ids:
        return 0
    stmt = delete(UserSession).where(UserSession.id.in_(session_ids))
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount or 0


async def delete_session(session_id: uuid.UUID, db: AsyncSession) -> int:
    """Remove a single session (logout)."""
    return await delete_many([session_id], db)


async def delete_all_user_sessions(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> int:
    """
    Delete every session (expired or not) for a given user.

    Returns the number of sessions removed.
    Used by lockout and admin lock flows.
    """
    stmt = delete(UserSession).where(UserSession.user_id == user_id)
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount or 0


async def acquire_user_advisory_lock(user_id: uuid.UUID, db: AsyncSession) -> bool:
    """
    Take a transaction-scoped advisory lock keyed by user id.

    Serialises concurrent enforcement for the same account so two
    near-simultaneous logins cannot each keep the other's session alive.
    Released automatically at commit/rollback.  No-op unless
    ENFORCEMENT_ADVISORY_LOCK is on and the backend is PostgreSQL.
    """
    if not settings.ENFORCEMENT_ADVISORY_LOCK:
        return False
    dialect = db.get_bind().dialect.name
    if dialect != "postgresql":
        logger.debug("Advisory lock requested on %s; skipping", dialect)
        return False
    await db.execute(
        text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
        {"key": f"session-enforce:{user_id}"},
    )
    return True
