"""
Authentication service.

Handles:
- The identity step (email + bcrypt password check).  This stands in for
  the host application's credential verification; enforcement only
  needs the resulting user id and a freshly issued session token.
- Login orchestration: refuse locked accounts, issue the session, audit
  the login, then hand over to single-session enforcement.
- Logout.

All business logic lives here; controllers call service methods and
return the result.
"""

import logging
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext
from app.core.security import verify_password
from app.models.security_event import SecurityEventType
from app.models.session import UserSession
from app.models.user import User, UserStatus
from app.schemas import LoginMetadata, LogoutMetadata
from app.services import audit_service, enforcement_service, lockout_service, session_service
from app.services.fingerprint_service import fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginOutcome:
    user_id: uuid.UUID
    session: UserSession | None
    lock_state: lockout_service.LockState
    terminated_sessions: int = 0

    @property
    def locked(self) -> bool:
        return self.lock_state.locked


async def authenticate_user(email: str, password: str, db: AsyncSession) -> User:
    """Validate credentials.  401 on mismatch, 403 for disabled accounts."""
    stmt = select(User).where(User.email == email.strip().lower())
    user = (await db.execute(stmt)).scalar_one_or_none()

    if user is None or not verify_password(password, user.password_hash or ""):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if user.status == UserStatus.DISABLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )
    return user


async def login(
    ctx: RequestContext,
    email: str,
    password: str,
    db: AsyncSession,
) -> LoginOutcome:
    user = await authenticate_user(email, password, db)

    state = lockout_service.lock_state_of(user)
    if state.locked:
        logger.info("Login refused for locked user %s", user.id)
        return LoginOutcome(user_id=user.id, session=None, lock_state=state)

    session = await session_service.create_session(user.id, ctx.ip_address, ctx.user_agent, db)
    await audit_service.record_event(
        ctx,
        user.id,
        SecurityEventType.LOGIN,
        "User logged in",
        LoginMetadata(
            session_id=session.id,
            fingerprint=fingerprint(ctx.user_agent, ctx.ip_address),
        ),
        db,
    )

    result = await enforcement_service.enforce_single_session(ctx, user.id, session.token, db)
    if result.locked:
        return LoginOutcome(
            user_id=user.id,
            session=None,
            lock_state=await lockout_service.get_lock_state(user.id, db),
            terminated_sessions=result.terminated_count,
        )

    return LoginOutcome(
        user_id=user.id,
        session=session,
        lock_state=lockout_service.UNLOCKED,
        terminated_sessions=result.terminated_count,
    )


async def logout(ctx: RequestContext, session: UserSession, db: AsyncSession) -> None:
    await session_service.delete_session(session.id, db)
    await audit_service.record_event(
        ctx,
        session.user_id,
        SecurityEventType.LOGOUT,
        "User logged out",
        LogoutMetadata(session_id=session.id),
        db,
    )
