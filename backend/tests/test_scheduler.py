from __future__ import annotations

import asyncio
import importlib

from app.services import scheduler as scheduler_module
from app.services.analytics_pipeline import UserSyncOutcome

worker = importlib.import_module("worker")


def _patch_sync(monkeypatch, outcomes=None, error=None):
    async def _fake_scheduled_sync():
        if error is not None:
            raise error
        return outcomes or []

    monkeypatch.setattr(scheduler_module, "run_scheduled_sync", _fake_scheduled_sync)


def test_refresh_summarizes_and_logs_failed_users(caplog, monkeypatch):
    _patch_sync(
        monkeypatch,
        [
            UserSyncOutcome(user_id="user-1", status="success"),
            UserSyncOutcome(user_id="user-2", status="error", message="boom"),
        ],
    )
    caplog.set_level("WARNING", logger=scheduler_module.__name__)

    summary = asyncio.run(scheduler_module.refresh_connected_accounts())

    assert summary == {"processed": 2, "succeeded": 1, "failed_users": ["user-2"]}
    assert any("user-2" in record.getMessage() for record in caplog.records)
    assert not any("user-1" in record.getMessage() for record in caplog.records)


def test_run_once_records_last_sync(monkeypatch):
    _patch_sync(monkeypatch, [UserSyncOutcome(user_id="user-1", status="success")])
    runner = scheduler_module.SchedulerRunner()

    last_sync = asyncio.run(runner.run_once())

    assert runner.last_sync is last_sync
    assert last_sync["status"] == "ok"
    assert last_sync["processed"] == 1
    assert last_sync["failed_users"] == []
    assert last_sync["started_at"] <= last_sync["finished_at"]


def test_run_once_keeps_running_after_job_error(monkeypatch):
    _patch_sync(monkeypatch, error=RuntimeError("database unavailable"))
    runner = scheduler_module.SchedulerRunner()

    last_sync = asyncio.run(runner.run_once())

    assert last_sync["status"] == "error"
    assert last_sync["error"] == "database unavailable"


def test_worker_health_reports_last_scheduled_sync(monkeypatch):
    runner = scheduler_module.SchedulerRunner()
    monkeypatch.setattr(worker, "scheduler", runner)

    assert worker.health_payload()["last_sync"] is None
    assert worker.health_payload()["status"] == "ok"

    _patch_sync(
        monkeypatch,
        [
            UserSyncOutcome(user_id="user-1", status="success"),
            UserSyncOutcome(user_id="user-2", status="error", message="Property not found"),
        ],
    )
    asyncio.run(runner.run_once())
    payload = worker.health_payload()

    assert payload["service"] == "statsnap-worker"
    assert payload["status"] == "ok"
    assert payload["last_sync"]["status"] == "partial"
    assert payload["last_sync"]["failed_users"] == ["user-2"]

    _patch_sync(monkeypatch, error=RuntimeError("database unavailable"))
    asyncio.run(runner.run_once())
    assert worker.health_payload()["status"] == "degraded"
