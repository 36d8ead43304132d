import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException

from app.core.clock import utcnow
from app.services import device_ledger_service, lockout_service
from app.services.security_gate_service import GateDecision, check, get_status


async def test_status_of_an_unlocked_account(db, user):
    await device_ledger_service.record(user.id, "fp-a", "8.8.8.8", "ua", db)

    status = await get_status(user.id, db)

    assert not status.locked
    assert status.lock_until is None
    assert status.devices_used_today == 1
    assert status.max_devices_allowed == 3
    assert status.status_known
    assert await check(user.id, db) == GateDecision.OK


async def test_status_of_a_locked_account(db, user, device_ctx):
    await lockout_service.lock(device_ctx(1), user.id, "Manual review", 6, db)

    status = await get_status(user.id, db)

    assert status.locked
    assert status.lock_reason == "Manual review"
    assert status.lock_until > utcnow() + timedelta(hours=5)
    assert await check(user.id, db) == GateDecision.LOCKED


async def test_status_read_failure_fails_open(db, user, monkeypatch):
    async def _broken(*args, **kwargs):
        raise RuntimeError("database unreachable")

    monkeypatch.setattr(lockout_service, "get_lock_state", _broken)

    status = await get_status(user.id, db)

    assert not status.locked
    assert status.devices_used_today == 0
    assert not status.status_known


async def test_check_failure_fails_open(db, user, device_ctx, monkeypatch):
    await lockout_service.lock(device_ctx(1), user.id, "Manual review", 6, db)

    async def _broken(*args, **kwargs):
        raise RuntimeError("database unreachable")

    monkeypatch.setattr(lockout_service, "is_locked", _broken)

    assert await check(user.id, db) == GateDecision.OK


async def test_unknown_user_is_not_masked(db):
    with pytest.raises(HTTPException) as exc:
        await get_status(uuid.uuid4(), db)
    assert exc.value.status_code == 404
