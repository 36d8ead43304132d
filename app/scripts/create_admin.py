"""
Bootstrap script: create the first ADMIN user, or promote an existing one.

Usage:
    uv run python -m app.scripts.create_admin
    uv run python -m app.scripts.create_admin --email ops@example.com --full-name "Ops"

The password is always read from the terminal.  Admins can lock / unlock
accounts, inspect per-user security data and run the retention purge
from the API.
"""

import argparse
import asyncio
import getpass
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.security import hash_password
from app.models.user import User, UserRole, UserStatus

logger = logging.getLogger("app.create_admin")


async def bootstrap_admin(
    email: str,
    full_name: str,
    password: str,
    db: AsyncSession,
) -> tuple[User, bool]:
    """Return (admin user, created).  An existing account is promoted in place."""
    email = email.strip().lower()
    existing = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if existing is not None:
        existing.role = UserRole.ADMIN
        existing.status = UserStatus.ACTIVE
        return existing, False

    user = User(
        id=uuid.uuid4(),
        email=email,
        password_hash=hash_password(password),
        full_name=full_name.strip(),
        role=UserRole.ADMIN,
        status=UserStatus.ACTIVE,
    )
    db.add(user)
    return user, True


async def create_admin(email: str, full_name: str, password: str) -> None:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with session_factory() as session:
            async with session.begin():
                user, created = await bootstrap_admin(email, full_name, password, session)
    finally:
        await engine.dispose()

    action = "created" if created else "promoted to ADMIN"
    logger.info("Admin %s %s (id=%s)", user.email, action, user.id)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=f"{settings.APP_NAME}: first admin setup")
    parser.add_argument("--email")
    parser.add_argument("--full-name")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    email = args.email or input("  Admin email: ")
    full_name = args.full_name or input("  Full name:   ")
    password = getpass.getpass("  Password:    ")
    if password != getpass.getpass("  Confirm:     "):
        parser.error("passwords do not match")
    if not email.strip() or not full_name.strip() or not password:
        parser.error("email, full name and password are all required")

    asyncio.run(create_admin(email, full_name, password))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
