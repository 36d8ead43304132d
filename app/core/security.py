"""
Password hashing & per-request session resolution.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).  Only the identity adapter uses them.
- Bearer tokens are opaque session tokens (no JWT): every protected
  request resolves the token against the server-side session table, so
  a session terminated by enforcement or lockout stops working on the
  very next request.
"""

import uuid
from dataclasses import dataclass

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext, get_request_context
from app.core.database import get_db
from app.models.session import UserSession
from app.models.user import User, UserRole, UserStatus
from app.schemas import LockedResponse
from app.services import lockout_service, session_service
from app.services.security_gate_service import GateDecision, check

# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# ── Per-request session validation ──────────────────────────────────
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@dataclass
class CurrentSession:
    session: UserSession
    user: User

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id


def locked_exception(state: lockout_service.LockState) -> HTTPException:
    """423 with the explanation the client shows on its "locked" page."""
    body = LockedResponse(
        lock_reason=state.reason or "Account temporarily locked due to suspicious device activity",
        lock_until=state.lock_until,
        remaining_seconds=state.remaining_seconds,
    )
    return HTTPException(
        status_code=status.HTTP_423_LOCKED,
        detail=body.model_dump(mode="json"),
    )


async def get_current_session(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentSession:
    """
    FastAPI dependency: resolve the bearer token to a live session.

    Checks performed on every protected request:
      1. Session with this token exists and has not expired.
      2. Owning user exists and is not disabled.
    """
    session = await session_service.find_current(token, db)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await db.get(User, session.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.status == UserStatus.DISABLED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")

    return CurrentSession(session=session, user=user)


async def require_unlocked_session(
    current: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> CurrentSession:
    """Route guard: 423 Locked for locked accounts, pass-through otherwise."""
    if await check(current.user_id, db) == GateDecision.LOCKED:
        raise locked_exception(await lockout_service.get_lock_state(current.user_id, db))
    return current


async def require_admin(
    current: CurrentSession = Depends(get_current_session),
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """Admin-only routes.  Returns the request context tagged with the actor."""
    if current.user.role != UserRole.ADMIN:
        # Intentionally vague
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return ctx.with_actor(current.user_id)
