"""
Tests for application startup and background maintenance.
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from phonegate import create_app
from phonegate.auth.token_blacklist import BlacklistService, RevocationReason
from phonegate.tasks import MaintenanceTask, run_sweep

from conftest import PHONE, login


def test_startup_provisions_admin_who_logs_in_normally(settings, store, gateway):
    settings.PROVISION_ADMIN_ON_STARTUP = True
    settings.SUPERUSER_PHONE = PHONE
    settings.SUPERUSER_PASSWORD = "admin-pass"
    app = create_app(settings, store=store, gateway=gateway)

    with TestClient(app) as client:
        assert login(client, password="admin-pass", role="admin").status_code == 200

        for _ in range(settings.LOGIN_RATE_LIMIT):
            assert login(client, password="wrong", role="admin").status_code == 401
        # No exemption: the admin is rate limited like everyone else
        assert login(client, password="admin-pass", role="admin").status_code == 429


def test_docs_disabled(client):
    assert client.get("/docs").status_code == 404


@pytest.mark.asyncio
async def test_run_sweep_reaps_expired_rows(database, gateway, clock):
    async with database.get_session() as db:
        now = clock()
        await BlacklistService.add(db, "gone", 1, RevocationReason.LOGOUT, now - timedelta(minutes=1), now=now)
        await BlacklistService.add(db, "kept", 1, RevocationReason.LOGOUT, now + timedelta(days=1), now=now)

    result = await run_sweep(database, gateway)

    assert result.blacklist_entries == 1
    assert result.sessions == 0
    async with database.get_session() as db:
        assert await BlacklistService.contains(db, "kept", clock())


@pytest.mark.asyncio
async def test_maintenance_task_start_stop(database, gateway):
    task = MaintenanceTask(database, gateway, interval=3600)

    task.start()
    await task.stop()

    assert task._task is None
