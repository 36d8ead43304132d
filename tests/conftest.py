"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite).  The
`connect` / `begin` listeners are SQLAlchemy's recipe for making
pysqlite-family drivers honour SAVEPOINT, which `begin_nested()` in the
audit and enforcement services relies on.
"""

import uuid

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.context import RequestContext
from app.core.database import get_db
from app.core.security import hash_password
from app.models import Base, User, UserRole, UserStatus

PASSWORD = "correct-horse-battery"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setattr(settings, "GEO_LOOKUP_ENABLED", False)
    monkeypatch.setattr(settings, "ENFORCEMENT_ADVISORY_LOCK", False)
    monkeypatch.setattr(settings, "MAX_DEVICES_PER_DAY", 3)
    monkeypatch.setattr(settings, "DEVICE_LOCK_DURATION_HOURS", 24)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    async def _make(
        email: str | None = None,
        role: UserRole = UserRole.USER,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            password_hash=PASSWORD_HASH,
            full_name="Test User",
            role=role,
            status=status,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
async def user(make_user):
    return await make_user("learner@example.com")


@pytest.fixture
async def admin(make_user):
    return await make_user("admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
def device_ctx():
    """`device_ctx(n)` → a RequestContext for the n-th distinct device."""

    def _ctx(n: int) -> RequestContext:
        return RequestContext(
            ip_address=f"198.51.100.{n}",
            user_agent=f"Mozilla/5.0 TestBrowser/{n}",
            request_id=uuid.uuid4().hex,
        )

    return _ctx


@pytest.fixture
def device_headers():
    def _headers(n: int, token: str | None = None) -> dict[str, str]:
        headers = {
            "user-agent": f"Mozilla/5.0 TestBrowser/{n}",
            "x-forwarded-for": f"198.51.100.{n}",
        }
        if token:
            headers["authorization"] = f"Bearer {token}"
        return headers

    return _headers


@pytest.fixture
async def client(session_factory):
    from app.main import app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def login(client, device_headers):
    """`await login(email, n)` → the /api/auth/login response from device n."""

    async def _login(email: str, n: int, password: str = PASSWORD) -> httpx.Response:
        return await client.post(
            "/api/auth/login",
            json={"email": email, "password": password},
            headers=device_headers(n),
        )

    return _login
