"""Unit tests for ScheduleStore"""

from datetime import timedelta

import pytest
from sqlalchemy.orm import configure_mappers

from agent_scheduler.core.exceptions import ScheduleNotFoundError, ScheduleValidationError
from agent_scheduler.models.agent_schedule import AgentScheduleModel
from agent_scheduler.models.base import utcnow
from agent_scheduler.models.schedule_execution import ScheduleExecutionModel
from agent_scheduler.services.cron_expression import calculate_next_run
from agent_scheduler.services.execution_ledger import ExecutionLedger
from agent_scheduler.services.schedule_store import ScheduleStore, normalize_context


async def _get(session_factory, schedule_id):
    async with session_factory() as session:
        return await ScheduleStore(session).get_by_id(schedule_id)


@pytest.mark.asyncio
async def test_create_computes_next_run(db_session):
    store = ScheduleStore(db_session)

    before = utcnow()
    schedule = await store.create(
        agent_id="daily-report",
        agent_type="imported",
        name="Daily report",
        cron_expression="*/5 * * * *",
        context={"prompt": "hello"},
        workspace_id="ws-1"
    )

    assert schedule.schedule_id
    assert schedule.enabled is True
    assert schedule.timezone == "UTC"
    assert schedule.context == {"prompt": "hello"}
    assert schedule.last_run_at is None
    assert schedule.next_run_at > before
    assert schedule.next_run_at <= before + timedelta(minutes=5, seconds=1)


@pytest.mark.asyncio
async def test_create_accepts_json_context(db_session):
    schedule = await ScheduleStore(db_session).create(
        agent_id="a",
        agent_type="imported",
        name="JSON context",
        cron_expression="0 9 * * *",
        context='{"prompt": "from json"}'
    )

    assert schedule.context == {"prompt": "from json"}


@pytest.mark.asyncio
@pytest.mark.parametrize("expression", ["* * *", "99 * * * *"])
async def test_create_rejects_invalid_cron(db_session, expression):
    store = ScheduleStore(db_session)

    with pytest.raises(ScheduleValidationError) as exc_info:
        await store.create(
            agent_id="a",
            agent_type="imported",
            name="Broken",
            cron_expression=expression
        )

    assert exc_info.value.field == "cron_expression"
    assert await store.list_by_filter() == []


@pytest.mark.asyncio
async def test_create_rejects_unknown_timezone(db_session):
    store = ScheduleStore(db_session)

    with pytest.raises(ScheduleValidationError) as exc_info:
        await store.create(
            agent_id="a",
            agent_type="imported",
            name="Broken",
            cron_expression="0 9 * * *",
            timezone="Atlantis/Capital"
        )

    assert exc_info.value.field == "timezone"


@pytest.mark.asyncio
async def test_get_by_id_missing_returns_none(db_session):
    assert await ScheduleStore(db_session).get_by_id("does-not-exist") is None


@pytest.mark.asyncio
async def test_list_by_filter(schedule_factory, db_session):
    a = await schedule_factory(name="A", workspace_id="ws-1")
    b = await schedule_factory(name="B", workspace_id="ws-2", agent_id="other")
    c = await schedule_factory(name="C", workspace_id="ws-1", enabled=False)

    store = ScheduleStore(db_session)

    ws1 = {s.schedule_id for s in await store.list_by_filter(workspace_id="ws-1")}
    assert ws1 == {a.schedule_id, c.schedule_id}

    enabled = {s.schedule_id for s in await store.list_by_filter(enabled_only=True)}
    assert enabled == {a.schedule_id, b.schedule_id}

    by_agent = await store.list_by_filter(agent_id="other")
    assert [s.schedule_id for s in by_agent] == [b.schedule_id]

    assert {s.schedule_id for s in await store.list_enabled()} == {a.schedule_id, b.schedule_id}


@pytest.mark.asyncio
async def test_list_due(schedule_factory, session_factory):
    due = await schedule_factory(name="Due")
    later = await schedule_factory(name="Later")
    disabled = await schedule_factory(name="Disabled", enabled=False)

    past = utcnow() - timedelta(minutes=5)
    async with session_factory() as session:
        store = ScheduleStore(session)
        await store.update(due.schedule_id, next_run_at=past)
        await store.update(disabled.schedule_id, next_run_at=past)

    async with session_factory() as session:
        result = await ScheduleStore(session).list_due(utcnow())

    assert [s.schedule_id for s in result] == [due.schedule_id]
    assert later.schedule_id not in {s.schedule_id for s in result}


@pytest.mark.asyncio
async def test_update_cron_and_timezone_recomputes_next_run(schedule_factory, session_factory):
    schedule = await schedule_factory(cron_expression="*/5 * * * *", timezone="UTC")

    before = utcnow()
    async with session_factory() as session:
        await ScheduleStore(session).update(
            schedule.schedule_id,
            cron_expression="0 9 * * *",
            timezone="America/New_York"
        )
    after = utcnow()

    updated = await _get(session_factory, schedule.schedule_id)

    assert updated.cron_expression == "0 9 * * *"
    assert updated.timezone == "America/New_York"
    assert calculate_next_run("0 9 * * *", "America/New_York", before) <= updated.next_run_at
    assert updated.next_run_at <= calculate_next_run("0 9 * * *", "America/New_York", after)


@pytest.mark.asyncio
async def test_update_timezone_only_keeps_expression(schedule_factory, session_factory):
    schedule = await schedule_factory(cron_expression="0 9 * * *", timezone="UTC")

    before = utcnow()
    async with session_factory() as session:
        updated = await ScheduleStore(session).update(schedule.schedule_id, timezone="Asia/Tokyo")
    after = utcnow()

    assert calculate_next_run("0 9 * * *", "Asia/Tokyo", before) <= updated.next_run_at
    assert updated.next_run_at <= calculate_next_run("0 9 * * *", "Asia/Tokyo", after)


@pytest.mark.asyncio
async def test_update_rejects_invalid_values(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        store = ScheduleStore(session)

        with pytest.raises(ScheduleValidationError):
            await store.update(schedule.schedule_id, cron_expression="99 * * * *")

        with pytest.raises(ScheduleValidationError):
            await store.update(schedule.schedule_id, timezone="Nope/Nowhere")

        with pytest.raises(ScheduleValidationError):
            await store.update(schedule.schedule_id, owner="someone")

    unchanged = await _get(session_factory, schedule.schedule_id)
    assert unchanged.cron_expression == schedule.cron_expression
    assert unchanged.timezone == schedule.timezone


@pytest.mark.asyncio
async def test_update_unknown_schedule_raises(db_session):
    with pytest.raises(ScheduleNotFoundError):
        await ScheduleStore(db_session).update("missing", name="x")


@pytest.mark.asyncio
async def test_re_enable_recomputes_stale_next_run(schedule_factory, session_factory):
    schedule = await schedule_factory()
    stale = utcnow() - timedelta(days=3)

    async with session_factory() as session:
        store = ScheduleStore(session)
        await store.update(schedule.schedule_id, enabled=False, next_run_at=stale)
        enabled = await store.set_enabled(schedule.schedule_id, True)

    assert enabled.enabled is True
    assert enabled.next_run_at > utcnow() - timedelta(seconds=1)


@pytest.mark.asyncio
async def test_update_last_run(schedule_factory, session_factory):
    schedule = await schedule_factory(cron_expression="*/1 * * * *")

    ran_at = utcnow()
    async with session_factory() as session:
        updated = await ScheduleStore(session).update_last_run(schedule.schedule_id, ran_at)

    assert updated.last_run_at == ran_at
    assert updated.next_run_at == calculate_next_run("*/1 * * * *", "UTC", ran_at)


@pytest.mark.asyncio
async def test_update_last_run_missing_schedule(db_session):
    assert await ScheduleStore(db_session).update_last_run("missing") is None


@pytest.mark.asyncio
async def test_delete_cascades_executions(schedule_factory, session_factory):
    schedule = await schedule_factory()

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        execution = await ledger.start(schedule.schedule_id)
        await ledger.complete(execution.execution_id, output="done")

    async with session_factory() as session:
        assert await ScheduleStore(session).delete(schedule.schedule_id) is True

    async with session_factory() as session:
        assert await ScheduleStore(session).get_by_id(schedule.schedule_id) is None
        assert await ExecutionLedger(session).history(schedule.schedule_id) == []


def test_relationships_never_load_implicitly():
    configure_mappers()

    # Rows are always fetched with explicit queries; an implicit load is a bug
    assert AgentScheduleModel.executions.property.lazy == "raise"
    assert ScheduleExecutionModel.schedule.property.lazy == "raise"


@pytest.mark.asyncio
async def test_delete_unknown_schedule_raises(db_session):
    with pytest.raises(ScheduleNotFoundError):
        await ScheduleStore(db_session).delete("missing")


@pytest.mark.asyncio
async def test_workspace_stats(schedule_factory, session_factory):
    a = await schedule_factory(name="A", workspace_id="ws-stats")
    await schedule_factory(name="B", workspace_id="ws-stats", enabled=False)
    await schedule_factory(name="Elsewhere", workspace_id="ws-other")

    async with session_factory() as session:
        ledger = ExecutionLedger(session)
        execution = await ledger.start(a.schedule_id)
        await ledger.fail(execution.execution_id, "boom")

    async with session_factory() as session:
        stats = await ScheduleStore(session).workspace_stats("ws-stats")

    assert stats["total_schedules"] == 2
    assert stats["active_schedules"] == 1
    assert stats["total_executions"] == 1
    assert [e.schedule_name for e in stats["recent_executions"]] == ["A"]


class TestNormalizeContext:
    """Test suite for context payload normalization"""

    def test_mapping_is_kept(self):
        assert normalize_context({"a": 1}) == {"a": 1}

    def test_empty_values(self):
        assert normalize_context(None) == {}
        assert normalize_context("") == {}

    def test_json_string(self):
        assert normalize_context('{"a": [1, 2]}') == {"a": [1, 2]}

    @pytest.mark.parametrize("value", ["{broken", "[1, 2]", 42])
    def test_rejects_non_objects(self, value):
        with pytest.raises(ScheduleValidationError) as exc_info:
            normalize_context(value)

        assert exc_info.value.field == "context"
