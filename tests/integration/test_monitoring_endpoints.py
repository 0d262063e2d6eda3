"""Integration tests for the monitoring endpoints"""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from agent_scheduler.core.config import settings
from agent_scheduler.models.base import utcnow
from agent_scheduler.models.schedule_execution import ScheduleExecutionModel
from agent_scheduler.services.execution_ledger import ExecutionLedger


async def record_failures(session_factory, schedule_id, count, error="boom"):
    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        failures = []
        for _ in range(count):
            execution = await ledger.start(schedule_id)
            await ledger.fail(execution.execution_id, error)
            failures.append(execution)
    return failures


class TestFailedExecutions:

    @pytest.mark.asyncio
    async def test_groups_recent_failures_by_schedule(
        self, client: AsyncClient, schedule_factory, session_factory
    ):
        nightly = await schedule_factory(name="Nightly")
        hourly = await schedule_factory(name="Hourly")
        await record_failures(session_factory, nightly.schedule_id, 2, error="timeout")
        [old] = await record_failures(session_factory, hourly.schedule_id, 1)

        async with session_factory() as session:
            await session.execute(
                update(ScheduleExecutionModel)
                .where(ScheduleExecutionModel.id == old.execution_id)
                .values(started_at=utcnow() - timedelta(hours=30))
            )
            await session.commit()

        response = await client.get("/api/v1/monitoring/executions/failed")

        assert response.status_code == 200
        data = response.json()
        assert data["hours"] == 24
        assert data["summary"] == {"total_failures": 2, "affected_schedules": 1}
        [group] = data["schedules"]
        assert group["schedule_id"] == nightly.schedule_id
        assert group["schedule_name"] == "Nightly"
        assert [f["error"] for f in group["failures"]] == ["timeout", "timeout"]
        assert all(f["duration_seconds"] is not None for f in group["failures"])

        response = await client.get("/api/v1/monitoring/executions/failed", params={"hours": 48})

        assert response.json()["summary"] == {"total_failures": 3, "affected_schedules": 2}

    @pytest.mark.asyncio
    async def test_filters_by_workspace(self, client: AsyncClient, schedule_factory, session_factory):
        mine = await schedule_factory(name="Mine", workspace_id="ws-a")
        theirs = await schedule_factory(name="Theirs", workspace_id="ws-b")
        await record_failures(session_factory, mine.schedule_id, 1)
        await record_failures(session_factory, theirs.schedule_id, 1)

        response = await client.get(
            "/api/v1/monitoring/executions/failed", params={"workspace_id": "ws-a"}
        )

        assert [g["schedule_name"] for g in response.json()["schedules"]] == ["Mine"]

    @pytest.mark.asyncio
    async def test_rejects_bad_window(self, client: AsyncClient):
        response = await client.get("/api/v1/monitoring/executions/failed", params={"hours": 0})

        assert response.status_code == 422
        assert response.json()["type"] == "validation_error"


class TestAlerts:

    @pytest.mark.asyncio
    async def test_no_alerts_when_healthy(self, client: AsyncClient, schedule_factory):
        await schedule_factory()

        response = await client.get("/api/v1/monitoring/alerts")

        assert response.status_code == 200
        data = response.json()
        assert data["alert_count"] == 0
        assert data["alerts"] == []

    @pytest.mark.asyncio
    async def test_failure_tiers(self, client: AsyncClient, schedule_factory, session_factory):
        broken = await schedule_factory(name="Broken")
        flaky = await schedule_factory(name="Flaky")
        await record_failures(session_factory, broken.schedule_id, 3)
        await record_failures(session_factory, flaky.schedule_id, 2)
        async with session_factory() as session:
            ledger = ExecutionLedger(session)
            for _ in range(3):
                execution = await ledger.start(flaky.schedule_id)
                await ledger.complete(execution.execution_id)

        response = await client.get("/api/v1/monitoring/alerts")

        data = response.json()
        assert data["alert_count"] == 2
        assert [(a["level"], a["type"], a["schedule_name"]) for a in data["alerts"]] == [
            ("critical", "high_failure_rate", "Broken"),
            ("warning", "elevated_failure_rate", "Flaky"),
        ]
        assert data["alerts"][1]["details"]["success_rate"] == 60.0

    @pytest.mark.asyncio
    async def test_thresholds_come_from_settings(
        self, client: AsyncClient, schedule_factory, session_factory, monkeypatch
    ):
        schedule = await schedule_factory()
        await record_failures(session_factory, schedule.schedule_id, 3)
        monkeypatch.setattr(settings, "ALERT_CRITICAL_MIN_FAILURES", 10)
        monkeypatch.setattr(settings, "ALERT_WARNING_MIN_FAILURES", 10)

        response = await client.get("/api/v1/monitoring/alerts")

        assert response.json()["alert_count"] == 0

    @pytest.mark.asyncio
    async def test_stopped_engine_raises_critical_alert(self, client: AsyncClient, engine):
        await engine.stop()

        response = await client.get("/api/v1/monitoring/alerts")

        [alert] = response.json()["alerts"]
        assert alert["level"] == "critical"
        assert alert["type"] == "scheduler_down"

    @pytest.mark.asyncio
    async def test_stopped_engine_is_fine_when_scheduler_disabled(
        self, client: AsyncClient, engine, monkeypatch
    ):
        await engine.stop()
        monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)

        response = await client.get("/api/v1/monitoring/alerts")

        assert response.json()["alert_count"] == 0
