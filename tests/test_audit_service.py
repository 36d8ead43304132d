import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from app.core.clock import utcnow
from app.core.context import RequestContext
from app.models import DeviceLog, SecurityEvent, SecurityEventType, User
from app.schemas import (
    LoginMetadata,
    LogoutMetadata,
    SessionTerminatedMetadata,
    event_metadata_adapter,
)
from app.services import audit_service

CTX = RequestContext(ip_address="203.0.113.9", user_agent="Mozilla/5.0 Audit", request_id="req-1")


def _login_meta() -> LoginMetadata:
    return LoginMetadata(session_id=uuid.uuid4(), fingerprint="fp-a")


async def test_append_defaults_origin_to_request_context(db, user):
    event = await audit_service.append(
        CTX, user.id, SecurityEventType.LOGIN, "  User logged in  ", _login_meta(), db,
    )

    assert event.ip_address == CTX.ip_address
    assert event.user_agent == CTX.user_agent
    assert event.description == "User logged in"
    assert event.event_metadata["kind"] == "login"


async def test_append_records_explicit_origin(db, user):
    meta = SessionTerminatedMetadata(terminated_session_id=uuid.uuid4(), reason="new_device_login")
    event = await audit_service.append(
        CTX, user.id, SecurityEventType.SESSION_TERMINATED, "terminated", meta, db,
        ip_address="8.8.4.4", user_agent="Old Phone",
    )

    assert (event.ip_address, event.user_agent) == ("8.8.4.4", "Old Phone")


async def test_append_rejects_blank_description(db, user):
    with pytest.raises(HTTPException) as exc:
        await audit_service.append(CTX, user.id, SecurityEventType.LOGIN, "   ", _login_meta(), db)
    assert exc.value.status_code == 400


async def test_append_rejects_metadata_of_another_event_type(db, user):
    with pytest.raises(HTTPException) as exc:
        await audit_service.append(
            CTX, user.id, SecurityEventType.LOGIN, "x", LogoutMetadata(session_id=uuid.uuid4()), db,
        )
    assert exc.value.status_code == 400


async def test_record_event_reports_success(db, user):
    result = await audit_service.record_event(
        CTX, user.id, SecurityEventType.LOGIN, "User logged in", _login_meta(), db,
    )

    assert result.ok
    assert result.error is None
    assert (await db.get(SecurityEvent, result.event_id)) is not None


async def test_record_event_contract_violation_still_raises(db, user):
    with pytest.raises(HTTPException):
        await audit_service.record_event(CTX, user.id, SecurityEventType.LOGIN, "", _login_meta(), db)


async def test_record_event_failure_keeps_transaction_usable(db, user, monkeypatch):
    """A failed insert is rolled back to its savepoint and reported, not raised."""

    async def _conflicting_append(ctx, user_id, event_type, description, metadata, session, **kwargs):
        session.add(User(
            id=uuid.uuid4(),
            email=user.email,
            password_hash="x",
            full_name="duplicate",
        ))
        await session.flush()

    original_append = audit_service.append
    monkeypatch.setattr(audit_service, "append", _conflicting_append)
    failed = await audit_service.record_event(
        CTX, user.id, SecurityEventType.LOGIN, "User logged in", _login_meta(), db,
    )
    monkeypatch.setattr(audit_service, "append", original_append)

    assert not failed.ok
    assert failed.event_id is None
    assert failed.error == "IntegrityError"

    ok = await audit_service.record_event(
        CTX, user.id, SecurityEventType.LOGIN, "User logged in", _login_meta(), db,
    )
    await db.commit()
    assert ok.ok
    count = (await db.execute(select(func.count()).select_from(SecurityEvent))).scalar_one()
    assert count == 1


async def test_query_is_newest_first_and_scoped(db, make_user, user):
    other = await make_user()
    first = await audit_service.append(CTX, user.id, SecurityEventType.LOGIN, "first", _login_meta(), db)
    first.created_at = utcnow() - timedelta(minutes=10)
    second = await audit_service.append(CTX, user.id, SecurityEventType.LOGIN, "second", _login_meta(), db)
    await audit_service.append(CTX, other.id, SecurityEventType.LOGIN, "other", _login_meta(), db)
    await db.flush()

    events = await audit_service.query(user.id, db)
    assert [e.id for e in events] == [second.id, first.id]
    assert len(await audit_service.query(user.id, db, limit=1)) == 1


async def test_to_out_parses_typed_metadata(db, user):
    meta = _login_meta()
    event = await audit_service.append(CTX, user.id, SecurityEventType.LOGIN, "User logged in", meta, db)

    out = audit_service.to_out(event)

    assert isinstance(out.metadata, LoginMetadata)
    assert out.metadata.session_id == meta.session_id
    assert event_metadata_adapter.validate_python(event.event_metadata) == meta


# ── retention purge ──────────────────────────────────────────────────

async def _seed_logs(db, user, created_at, label):
    db.add(SecurityEvent(
        id=uuid.uuid4(),
        user_id=user.id,
        event_type=SecurityEventType.LOGIN,
        description=label,
        ip_address="8.8.8.8",
        user_agent="ua",
        event_metadata=_login_meta().model_dump(mode="json"),
        created_at=created_at,
    ))
    db.add(DeviceLog(
        id=uuid.uuid4(),
        user_id=user.id,
        fingerprint=f"fp-{label}",
        ip_address="8.8.8.8",
        user_agent="ua",
        created_at=created_at,
    ))
    await db.flush()


async def test_purge_removes_only_rows_older_than_cutoff(db, user):
    now = utcnow()
    await _seed_logs(db, user, now - timedelta(days=120), "old")
    await _seed_logs(db, user, now - timedelta(days=1), "recent")
    cutoff = now - timedelta(days=90)

    result = await audit_service.purge_older_than(cutoff, db)

    assert result.events_removed == 1
    assert result.ledger_entries_removed == 1
    assert result.cutoff == cutoff
    assert [e.description for e in await audit_service.query(user.id, db)] == ["recent"]
    remaining = (await db.execute(select(DeviceLog.fingerprint))).scalars().all()
    assert remaining == ["fp-recent"]


async def test_purge_is_idempotent(db, user):
    now = utcnow()
    await _seed_logs(db, user, now - timedelta(days=120), "old")
    cutoff = now - timedelta(days=90)

    await audit_service.purge_older_than(cutoff, db)
    again = await audit_service.purge_older_than(cutoff, db)

    assert (again.events_removed, again.ledger_entries_removed) == (0, 0)


async def test_purge_security_logs_uses_days_to_keep(db, user):
    now = utcnow()
    await _seed_logs(db, user, now - timedelta(days=10), "ten-days")
    await _seed_logs(db, user, now - timedelta(days=1), "yesterday")

    result = await audit_service.purge_security_logs(db, days_to_keep=5)

    assert result.events_removed == 1
    assert result.ledger_entries_removed == 1


async def test_purge_security_logs_rejects_negative_retention(db):
    with pytest.raises(HTTPException) as exc:
        await audit_service.purge_security_logs(db, days_to_keep=-1)
    assert exc.value.status_code == 400
