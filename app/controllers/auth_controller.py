"""
Auth controller: login & logout.

Login is PUBLIC (no session dependency).  Logout requires a valid
session.  A locked account gets 423 with the lock explanation; when the
lock was triggered by this very login, it is committed before the 423
goes out so the rollback in `get_db` does not undo it.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext, get_request_context
from app.core.database import get_db
from app.core.security import CurrentSession, get_current_session, locked_exception
from app.schemas import LoginRequest, LoginResponse, MessageResponse
from app.services import auth_service

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Authenticate with email + password → receive a session token."""
    outcome = await auth_service.login(ctx, body.email, body.password, db)
    if outcome.locked:
        await db.commit()
        raise locked_exception(outcome.lock_state)
    return LoginResponse(
        access_token=outcome.session.token,
        user_id=outcome.user_id,
        terminated_sessions=outcome.terminated_sessions,
    )


@router.delete("/logout", response_model=MessageResponse)
async def logout(
    current: CurrentSession = Depends(get_current_session),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Delete the current session (server-side logout)."""
    await auth_service.logout(ctx, current.session, db)
    return MessageResponse(detail="Logged out successfully")
