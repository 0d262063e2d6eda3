"""Unit tests for ExecutionLedger"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from agent_scheduler.core.exceptions import ExecutionAlreadyRunningError
from agent_scheduler.models.base import utcnow
from agent_scheduler.models.schedule_execution import ScheduleExecutionModel
from agent_scheduler.services.execution_ledger import (
    ExecutionInfo,
    ExecutionLedger,
    compute_stats,
    serialize_output,
)


async def _backdate(session_factory, execution_id, days):
    async with session_factory() as session:
        await session.execute(
            update(ScheduleExecutionModel)
            .where(ScheduleExecutionModel.id == execution_id)
            .values(started_at=utcnow() - timedelta(days=days))
        )
        await session.commit()


@pytest.mark.asyncio
async def test_start_opens_running_execution(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        execution = await ExecutionLedger(session).start(schedule.schedule_id)

    assert execution.status == "running"
    assert execution.schedule_id == schedule.schedule_id
    assert execution.completed_at is None
    assert execution.duration_seconds is None

    async with session_factory() as session:
        running = await ExecutionLedger(session).running()
    assert [e.execution_id for e in running] == [execution.execution_id]


@pytest.mark.asyncio
async def test_start_rejects_second_running_execution(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        first = await ExecutionLedger(session).start(schedule.schedule_id)

    async with session_factory() as session:
        with pytest.raises(ExecutionAlreadyRunningError) as exc_info:
            await ExecutionLedger(session).start(schedule.schedule_id)

    assert exc_info.value.schedule_id == schedule.schedule_id
    assert exc_info.value.execution_id == first.execution_id

    async with session_factory() as session:
        history = await ExecutionLedger(session).history(schedule.schedule_id)
    assert len(history) == 1


@pytest.mark.asyncio
async def test_start_allowed_after_completion(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        first = await ledger.start(schedule.schedule_id)
        await ledger.complete(first.execution_id, output="ok")
        second = await ledger.start(schedule.schedule_id)

    assert second.execution_id != first.execution_id


@pytest.mark.asyncio
async def test_complete_records_output_and_tokens(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        execution = await ledger.start(schedule.schedule_id)
        completed = await ledger.complete(
            execution.execution_id,
            output={"summary": "3 new issues"},
            tokens_used=42
        )

    assert completed.status == "success"
    assert completed.output == '{"summary": "3 new issues"}'
    assert completed.tokens_used == 42
    assert completed.completed_at is not None
    assert completed.duration_seconds >= 0


@pytest.mark.asyncio
async def test_terminal_executions_are_immutable(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        execution = await ledger.start(schedule.schedule_id)
        failed = await ledger.fail(execution.execution_id, "agent crashed")

        assert failed.status == "failed"
        assert failed.error == "agent crashed"

        assert await ledger.complete(execution.execution_id, output="late") is None
        assert await ledger.fail(execution.execution_id, "again") is None

    async with session_factory() as session:
        [stored] = await ExecutionLedger(session).history(schedule.schedule_id)

    assert stored.status == "failed"
    assert stored.error == "agent crashed"
    assert stored.output is None


@pytest.mark.asyncio
async def test_complete_unknown_execution(db_session):
    assert await ExecutionLedger(db_session).complete("missing") is None


@pytest.mark.asyncio
async def test_history_is_newest_first_and_limited(schedule_factory, session_factory):
    schedule = await schedule_factory()

    ids = []
    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        for _ in range(3):
            execution = await ledger.start(schedule.schedule_id)
            await ledger.complete(execution.execution_id)
            ids.append(execution.execution_id)

    for days, execution_id in zip((3, 2, 1), ids):
        await _backdate(session_factory, execution_id, days)

    async with session_factory() as session:
        history = await ExecutionLedger(session).history(schedule.schedule_id, limit=2)

    assert [e.execution_id for e in history] == [ids[2], ids[1]]


@pytest.mark.asyncio
async def test_stats_without_executions(schedule_factory, db_session):
    schedule = await schedule_factory()

    stats = await ExecutionLedger(db_session).stats(schedule.schedule_id)

    assert stats.total == 0
    assert stats.success_rate == 100.0
    assert stats.avg_duration_seconds == 0.0


@pytest.mark.asyncio
async def test_stats_counts_outcomes(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        for outcome in ("success", "failed", "failed", "success"):
            execution = await ledger.start(schedule.schedule_id)
            if outcome == "success":
                await ledger.complete(execution.execution_id)
            else:
                await ledger.fail(execution.execution_id, "boom")

        stats = await ledger.stats(schedule.schedule_id)

    assert stats.total == 4
    assert stats.successful == 2
    assert stats.failed == 2
    assert stats.success_rate == 50.0


@pytest.mark.asyncio
async def test_recent_filters_by_workspace(schedule_factory, session_factory):
    mine = await schedule_factory(name="Mine", workspace_id="ws-a")
    theirs = await schedule_factory(name="Theirs", workspace_id="ws-b")

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        for schedule in (mine, theirs):
            execution = await ledger.start(schedule.schedule_id)
            await ledger.complete(execution.execution_id)

        everything = await ledger.recent(limit=10)
        scoped = await ledger.recent(limit=10, workspace_id="ws-a")

    assert {e.schedule_name for e in everything} == {"Mine", "Theirs"}
    assert [e.schedule_name for e in scoped] == ["Mine"]


@pytest.mark.asyncio
async def test_failed_since_window_and_status(schedule_factory, session_factory):
    mine = await schedule_factory(name="Mine", workspace_id="ws-a")
    theirs = await schedule_factory(name="Theirs", workspace_id="ws-b")

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        old_failure = await ledger.start(mine.schedule_id)
        await ledger.fail(old_failure.execution_id, "last week")
        success = await ledger.start(mine.schedule_id)
        await ledger.complete(success.execution_id)
        failure = await ledger.start(mine.schedule_id)
        await ledger.fail(failure.execution_id, "timeout")
        other = await ledger.start(theirs.schedule_id)
        await ledger.fail(other.execution_id, "boom")

    await _backdate(session_factory, old_failure.execution_id, 2)

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        everything = await ledger.failed_since(hours=24)
        scoped = await ledger.failed_since(hours=24, workspace_id="ws-a")
        limited = await ledger.failed_since(hours=24, limit=1)
        wide = await ledger.failed_since(hours=24 * 3)

    assert {e.execution_id for e in everything} == {failure.execution_id, other.execution_id}
    assert all(e.status == "failed" for e in everything)
    assert [(e.execution_id, e.schedule_name, e.error) for e in scoped] == [
        (failure.execution_id, "Mine", "timeout")
    ]
    assert len(limited) == 1
    assert old_failure.execution_id in {e.execution_id for e in wide}
    assert wide[-1].execution_id == old_failure.execution_id


@pytest.mark.asyncio
async def test_fail_orphaned(schedule_factory, session_factory):
    a = await schedule_factory(name="A")
    b = await schedule_factory(name="B")

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        await ledger.start(a.schedule_id)
        done = await ledger.start(b.schedule_id)
        await ledger.complete(done.execution_id)

    async with session_factory() as session:
        assert await ExecutionLedger(session).fail_orphaned() == 1

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        assert await ledger.running() == []
        [orphan] = await ledger.history(a.schedule_id)
        [finished] = await ledger.history(b.schedule_id)

    assert orphan.status == "failed"
    assert orphan.error == "Scheduler restarted during execution"
    assert finished.status == "success"


@pytest.mark.asyncio
async def test_cleanup_respects_retention_window(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        old = await ledger.start(schedule.schedule_id)
        await ledger.complete(old.execution_id)
        recent = await ledger.start(schedule.schedule_id)
        await ledger.complete(recent.execution_id)

    await _backdate(session_factory, old.execution_id, 31)
    await _backdate(session_factory, recent.execution_id, 1)

    async with session_factory() as session:
        assert await ExecutionLedger(session).cleanup(30) == 1

    async with session_factory() as session:
        remaining = await ExecutionLedger(session).history(schedule.schedule_id)

    assert [e.execution_id for e in remaining] == [recent.execution_id]


class TestHelpers:
    """Test suite for ledger helpers"""

    def test_serialize_output(self):
        assert serialize_output(None) is None
        assert serialize_output("plain text") == "plain text"
        assert serialize_output({"a": 1}) == '{"a": 1}'
        assert serialize_output([1, 2]) == "[1, 2]"

    def test_compute_stats_averages_completed_rows_only(self):
        now = utcnow()
        rows = [
            ExecutionInfo("1", "s", "success", now, now + timedelta(seconds=2)),
            ExecutionInfo("2", "s", "failed", now, now + timedelta(seconds=4)),
            ExecutionInfo("3", "s", "running", now),
        ]

        stats = compute_stats(rows)

        assert stats.total == 3
        assert stats.successful == 1
        assert stats.failed == 1
        assert stats.avg_duration_seconds == 3.0
        assert stats.success_rate == pytest.approx(100 / 3)
