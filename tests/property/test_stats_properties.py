"""
Property-based tests for execution statistics and the circuit breaker.
"""

from datetime import datetime, timedelta

from hypothesis import given, strategies as st, settings

from agent_scheduler.services.execution_ledger import ExecutionInfo, compute_stats
from agent_scheduler.services.scheduling_engine import SchedulingEngine

BASE = datetime(2024, 1, 1)

rows = st.lists(
    st.tuples(
        st.sampled_from(["running", "success", "failed"]),
        st.integers(min_value=0, max_value=3600),
    ).map(lambda r: ExecutionInfo(
        execution_id="e",
        schedule_id="s",
        status=r[0],
        started_at=BASE,
        completed_at=None if r[0] == "running" else BASE + timedelta(seconds=r[1])
    )),
    max_size=50
)


# Property: counts add up and the rate is a percentage of all rows
@given(executions=rows)
@settings(max_examples=100, deadline=None)
def test_stats_counts_are_consistent(executions):
    stats = compute_stats(executions)

    assert stats.total == len(executions)
    assert stats.successful + stats.failed <= stats.total
    assert 0.0 <= stats.success_rate <= 100.0
    if stats.total == 0:
        assert stats.success_rate == 100.0
    else:
        assert stats.success_rate == stats.successful / stats.total * 100


# Property: average duration lies between the shortest and longest completed run
@given(executions=rows)
@settings(max_examples=100, deadline=None)
def test_average_duration_bounds(executions):
    stats = compute_stats(executions)
    durations = [e.duration_seconds for e in executions if e.duration_seconds is not None]

    if not durations:
        assert stats.avg_duration_seconds == 0.0
    else:
        assert min(durations) - 1e-9 <= stats.avg_duration_seconds <= max(durations) + 1e-9


# Property: the breaker trips only with enough failures and a low success rate
@given(
    successful=st.integers(min_value=0, max_value=50),
    failed=st.integers(min_value=0, max_value=50),
    min_failures=st.integers(min_value=1, max_value=10),
    threshold=st.floats(min_value=0, max_value=100),
)
@settings(max_examples=100, deadline=None)
def test_auto_disable_policy(successful, failed, min_failures, threshold):
    engine = SchedulingEngine(
        session_factory=None,
        adapter=None,
        auto_disable_min_failures=min_failures,
        auto_disable_success_rate_threshold=threshold
    )
    executions = (
        [ExecutionInfo("e", "s", "success", BASE, BASE) for _ in range(successful)]
        + [ExecutionInfo("e", "s", "failed", BASE, BASE) for _ in range(failed)]
    )
    stats = compute_stats(executions)

    tripped = engine.should_auto_disable(stats)

    assert tripped == (failed >= min_failures and stats.success_rate < threshold)
    if tripped:
        assert failed >= min_failures
