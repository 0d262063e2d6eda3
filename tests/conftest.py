"""Shared test fixtures for all tests"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from agent_scheduler.core.database import create_all, create_engine_for_url, create_session_factory, get_db
from agent_scheduler.core.exceptions import AgentResolutionError
from agent_scheduler.services.agent_adapter import AgentAdapter, AgentResolver, Runnable
from agent_scheduler.services.schedule_events import ScheduleEventBus
from agent_scheduler.services.schedule_store import ScheduleStore
from agent_scheduler.services.scheduling_engine import SchedulingEngine


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create test database engine (file-backed SQLite, one per test)"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    await create_all(engine)

    yield engine

    # Cleanup
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory shared by the store, the ledger and the engine"""
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Agent Fixtures
# ============================================================================

class FakeRunnable(Runnable):
    """Scriptable agent that records every context it was invoked with"""

    def __init__(
        self,
        result: Any = "ok",
        error: Optional[Exception] = None,
        delay: float = 0.0,
        supports_scheduling: bool = True,
        min_interval: Optional[timedelta] = None
    ):
        self.result = result
        self.error = error
        self.delay = delay
        self._supports_scheduling = supports_scheduling
        self._min_interval = min_interval
        self.calls: List[Dict[str, Any]] = []
        self.release = asyncio.Event()
        self.release.set()

    @property
    def supports_scheduling(self) -> bool:
        return self._supports_scheduling

    @property
    def min_interval(self) -> Optional[timedelta]:
        return self._min_interval

    async def run(self, context: Dict[str, Any]) -> Any:
        self.calls.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.result


class FakeResolver(AgentResolver):
    """Resolves agent IDs to FakeRunnables registered by the test"""

    def __init__(self, agent_type: str = "imported"):
        self.agent_type = agent_type
        self.agents: Dict[str, FakeRunnable] = {}

    def add(self, agent_id: str, runnable: Optional[FakeRunnable] = None) -> FakeRunnable:
        runnable = runnable or FakeRunnable()
        self.agents[agent_id] = runnable
        return runnable

    def resolve(self, agent_id: str) -> Runnable:
        runnable = self.agents.get(agent_id)
        if runnable is None:
            raise AgentResolutionError(
                f"Agent {agent_id} not found",
                agent_id=agent_id,
                agent_type=self.agent_type
            )
        return runnable


@pytest.fixture
def agents():
    """Resolver for "imported" agents; tests add the agents they need"""
    resolver = FakeResolver("imported")
    resolver.add("daily-report")
    return resolver


@pytest.fixture
def adapter(agents):
    adapter = AgentAdapter()
    adapter.register("imported", agents)
    return adapter


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def events():
    """Event bus that also keeps every emitted event for assertions"""
    bus = ScheduleEventBus()
    bus.received = []
    bus.subscribe(bus.received.append)
    return bus


@pytest_asyncio.fixture
async def engine(session_factory, adapter, events):
    """Scheduling engine with short timings; not started"""
    scheduling_engine = SchedulingEngine(
        session_factory,
        adapter,
        events=events,
        missed_check_interval=3600,
        cleanup_interval=3600,
        execution_timeout=5,
        retention_days=30,
        auto_disable_min_failures=5,
        auto_disable_success_rate_threshold=20.0,
        shutdown_grace=1,
        max_timer_sleep=0.05
    )

    yield scheduling_engine

    await scheduling_engine.stop()


@pytest_asyncio.fixture
async def schedule_factory(session_factory):
    """Create schedules through the store in their own session"""

    async def create(**overrides):
        fields = {
            "agent_id": "daily-report",
            "agent_type": "imported",
            "name": "Daily report",
            "cron_expression": "0 9 * * *",
            "timezone": "UTC",
            "context": {"prompt": "Summarize yesterday"},
            "workspace_id": "ws-1",
        }
        fields.update(overrides)
        async with session_factory() as session:
            return await ScheduleStore(session).create(**fields)

    return create


@pytest_asyncio.fixture
async def client(engine, session_factory):
    """HTTP client against the app, with the engine running on the test database"""
    from agent_scheduler.main import create_app

    app = create_app(adapter=engine.adapter)

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    # The lifespan does not run under ASGITransport
    app.state.engine = engine
    await engine.start()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
