"""
Scheduling Engine - fires agent schedules at the right wall-clock time.

This service is responsible for:
- Keeping exactly one timer per enabled schedule
- Running each fire through the ledger and the agent adapter
- Recovering fires missed while the process was down
- Disabling schedules that keep failing
- Purging old execution records
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from agent_scheduler.core.config import settings
from agent_scheduler.core.exceptions import (
    ExecutionAlreadyRunningError,
    ExecutionTimeoutError,
    ScheduleNotFoundError,
    ScheduleValidationError,
    SchedulerError,
)
from agent_scheduler.core.logging_config import bind_execution_context, get_logger
from agent_scheduler.core.monitoring import MetricsCollector
from agent_scheduler.models.base import utcnow
from agent_scheduler.services.agent_adapter import AgentAdapter, RunResult
from agent_scheduler.services.cron_expression import calculate_next_run
from agent_scheduler.services.execution_ledger import ExecutionInfo, ExecutionLedger, ExecutionStats
from agent_scheduler.services.schedule_events import (
    EVENT_COMPLETED,
    EVENT_DISABLED,
    EVENT_FAILED,
    EVENT_STARTED,
    ScheduleEventBus,
)
from agent_scheduler.services.schedule_store import ScheduleInfo, ScheduleStore

logger = get_logger(__name__)

# Upper bound on a single timer sleep so wall-clock jumps are noticed
MAX_TIMER_SLEEP_SECONDS = 60.0


def _error_message(error: BaseException) -> str:
    if isinstance(error, SchedulerError):
        return error.message
    return str(error) or type(error).__name__


class SchedulingEngine:
    """
    In-process scheduler for agent schedules.

    One engine exists per process. It owns the timer table (schedule ID to
    timer task) and the set of schedules with a fire in flight. Database
    access goes through short-lived sessions from the session factory, never
    held across an agent run.

    Usage:
        engine = SchedulingEngine(session_factory, adapter)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        session_factory: Callable[[], Any],
        adapter: AgentAdapter,
        events: Optional[ScheduleEventBus] = None,
        missed_check_interval: Optional[float] = None,
        cleanup_interval: Optional[float] = None,
        execution_timeout: Optional[float] = None,
        retention_days: Optional[int] = None,
        auto_disable_min_failures: Optional[int] = None,
        auto_disable_success_rate_threshold: Optional[float] = None,
        shutdown_grace: Optional[float] = None,
        max_timer_sleep: float = MAX_TIMER_SLEEP_SECONDS
    ):
        self.session_factory = session_factory
        self.adapter = adapter
        self.events = events or ScheduleEventBus()

        self.missed_check_interval = (
            missed_check_interval if missed_check_interval is not None
            else settings.SCHEDULER_MISSED_CHECK_INTERVAL_SECONDS
        )
        self.cleanup_interval = (
            cleanup_interval if cleanup_interval is not None
            else settings.SCHEDULER_CLEANUP_INTERVAL_SECONDS
        )
        self.execution_timeout = (
            execution_timeout if execution_timeout is not None
            else settings.SCHEDULER_EXECUTION_TIMEOUT_SECONDS
        )
        self.retention_days = (
            retention_days if retention_days is not None
            else settings.EXECUTION_RETENTION_DAYS
        )
        self.auto_disable_min_failures = (
            auto_disable_min_failures if auto_disable_min_failures is not None
            else settings.AUTO_DISABLE_MIN_FAILURES
        )
        self.auto_disable_success_rate_threshold = (
            auto_disable_success_rate_threshold if auto_disable_success_rate_threshold is not None
            else settings.AUTO_DISABLE_SUCCESS_RATE_THRESHOLD
        )
        self.shutdown_grace = (
            shutdown_grace if shutdown_grace is not None
            else settings.SCHEDULER_SHUTDOWN_GRACE_SECONDS
        )
        self.max_timer_sleep = max_timer_sleep

        self.running = False
        self._timers: Dict[str, asyncio.Task] = {}
        self._in_flight: Set[str] = set()
        self._fire_tasks: Set[asyncio.Task] = set()
        self._sweep_tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start the engine.

        Fails executions orphaned by a previous process, registers every
        enabled schedule, runs the ones whose fire was missed while the
        process was down, and starts the missed-schedule and retention
        sweeps. Store errors propagate and leave the engine stopped.
        """
        if self.running:
            logger.info("scheduling_engine_already_running")
            return

        logger.info("scheduling_engine_starting")
        self.running = True

        try:
            async with self.session_factory() as session:
                await ExecutionLedger(session).fail_orphaned()

            async with self.session_factory() as session:
                store = ScheduleStore(session)
                now = utcnow()
                overdue = await store.list_due(now)
                schedules = await store.list_enabled()

            for schedule in schedules:
                self.register_schedule(schedule)

            for schedule in overdue:
                logger.info(
                    "missed_schedule_recovered",
                    schedule_id=schedule.schedule_id,
                    next_run_at=schedule.next_run_at.isoformat() if schedule.next_run_at else None
                )
                self._spawn(self.execute_schedule(schedule))

            self._sweep_tasks = [
                asyncio.create_task(
                    self._periodic(
                        "missed_schedule_check",
                        self.check_missed_schedules,
                        self.missed_check_interval,
                        run_immediately=True
                    )
                ),
                asyncio.create_task(
                    self._periodic(
                        "execution_cleanup",
                        self.cleanup_old_executions,
                        self.cleanup_interval,
                        run_immediately=False
                    )
                ),
            ]
        except Exception as e:
            logger.error("scheduling_engine_start_failed", error=str(e))
            await self._cancel_timers()
            self.running = False
            raise

        logger.info(
            "scheduling_engine_started",
            registered_count=len(self._timers),
            recovered_count=len(overdue)
        )

    async def stop(self) -> None:
        """
        Stop timers and sweeps.

        Fires already in flight get SCHEDULER_SHUTDOWN_GRACE_SECONDS to
        finish; anything still running after that is cancelled and recorded
        as failed.
        """
        if not self.running:
            return

        logger.info("scheduling_engine_stopping", in_flight_count=len(self._in_flight))
        self.running = False

        sweeps, self._sweep_tasks = self._sweep_tasks, []
        for task in sweeps:
            task.cancel()
        await asyncio.gather(*sweeps, return_exceptions=True)

        await self._cancel_timers()

        pending_fires = list(self._fire_tasks)
        if pending_fires:
            _, pending = await asyncio.wait(pending_fires, timeout=self.shutdown_grace)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("in_flight_executions_cancelled", count=len(pending))
                await asyncio.gather(*pending, return_exceptions=True)

        await self.events.drain()

        logger.info("scheduling_engine_stopped")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_schedule(self, schedule: ScheduleInfo) -> bool:
        """
        Create the timer for a schedule, replacing any existing one.

        Disabled schedules stay unregistered. An expression or timezone that
        cannot be evaluated is logged and the schedule stays unregistered.

        Returns:
            True if a timer is now live for the schedule
        """
        schedule_id = schedule.schedule_id

        if schedule_id in self._timers:
            self.unregister_schedule(schedule_id)

        if not self.running:
            logger.debug("schedule_registration_skipped", schedule_id=schedule_id, reason="engine_stopped")
            return False

        if not schedule.enabled:
            logger.debug("schedule_registration_skipped", schedule_id=schedule_id, reason="disabled")
            return False

        try:
            next_fire = calculate_next_run(schedule.cron_expression, schedule.timezone, utcnow())
        except ScheduleValidationError as e:
            logger.error(
                "schedule_registration_failed",
                schedule_id=schedule_id,
                cron_expression=schedule.cron_expression,
                timezone=schedule.timezone,
                error=e.message
            )
            return False

        task = asyncio.create_task(self._timer_loop(schedule))
        self._timers[schedule_id] = task
        MetricsCollector.update_registered_schedules(len(self._timers))

        logger.info(
            "schedule_registered",
            schedule_id=schedule_id,
            name=schedule.name,
            cron_expression=schedule.cron_expression,
            timezone=schedule.timezone,
            next_fire_at=next_fire.isoformat()
        )
        return True

    def unregister_schedule(self, schedule_id: str) -> bool:
        """
        Cancel and discard a schedule's timer.

        Returns:
            True if a timer was removed
        """
        task = self._timers.pop(str(schedule_id), None)
        if task is None:
            return False

        task.cancel()
        MetricsCollector.update_registered_schedules(len(self._timers))
        logger.info("schedule_unregistered", schedule_id=str(schedule_id))
        return True

    def is_registered(self, schedule_id: str) -> bool:
        return str(schedule_id) in self._timers

    async def reload_schedules(self) -> int:
        """
        Drop every timer and register the enabled schedules from the store.

        Returns:
            Number of schedules registered
        """
        for schedule_id in list(self._timers):
            self.unregister_schedule(schedule_id)

        async with self.session_factory() as session:
            schedules = await ScheduleStore(session).list_enabled()

        registered = sum(1 for s in schedules if self.register_schedule(s))
        logger.info("schedules_reloaded", registered_count=registered)
        return registered

    async def update_schedule(self, schedule_id: str) -> bool:
        """
        Re-read a schedule after it changed and re-register it if enabled.

        Returns:
            True if the schedule is registered afterwards
        """
        self.unregister_schedule(schedule_id)

        async with self.session_factory() as session:
            schedule = await ScheduleStore(session).get_by_id(schedule_id)

        if schedule is None:
            logger.debug("updated_schedule_not_found", schedule_id=str(schedule_id))
            return False

        return self.register_schedule(schedule)

    # ------------------------------------------------------------------
    # Timers and sweeps
    # ------------------------------------------------------------------

    async def _timer_loop(self, schedule: ScheduleInfo) -> None:
        schedule_id = schedule.schedule_id
        try:
            next_fire = calculate_next_run(schedule.cron_expression, schedule.timezone, utcnow())
            while True:
                while True:
                    remaining = (next_fire - utcnow()).total_seconds()
                    if remaining <= 0:
                        break
                    await asyncio.sleep(min(remaining, self.max_timer_sleep))

                logger.debug("schedule_timer_fired", schedule_id=schedule_id, fire_at=next_fire.isoformat())
                self._spawn(self.execute_schedule(schedule))

                next_fire = calculate_next_run(
                    schedule.cron_expression,
                    schedule.timezone,
                    max(utcnow(), next_fire)
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("schedule_timer_failed", schedule_id=schedule_id, error=str(e))
            if self._timers.get(schedule_id) is asyncio.current_task():
                del self._timers[schedule_id]
                MetricsCollector.update_registered_schedules(len(self._timers))

    async def _periodic(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval: float,
        run_immediately: bool
    ) -> None:
        if not run_immediately:
            await asyncio.sleep(interval)
        while True:
            try:
                await func()
            except Exception as e:
                logger.error("periodic_task_failed", task=name, error=str(e))
            await asyncio.sleep(interval)

    async def check_missed_schedules(self) -> int:
        """
        Fire enabled schedules that are due but have no live timer.

        Each fire runs as its own task so a slow agent cannot hold back the
        others. Schedules with a run already in flight are left alone.

        Returns:
            Number of fires started
        """
        try:
            async with self.session_factory() as session:
                due = await ScheduleStore(session).list_due(utcnow())
        except Exception as e:
            logger.error("missed_schedule_check_failed", error=str(e))
            return 0

        started = 0
        for schedule in due:
            if self.is_registered(schedule.schedule_id) or schedule.schedule_id in self._in_flight:
                continue

            logger.info(
                "missed_schedule_detected",
                schedule_id=schedule.schedule_id,
                next_run_at=schedule.next_run_at.isoformat() if schedule.next_run_at else None
            )
            self._spawn(self.execute_schedule(schedule))
            started += 1

        return started

    async def cleanup_old_executions(self) -> int:
        """
        Delete executions older than EXECUTION_RETENTION_DAYS.

        Returns:
            Number of executions deleted
        """
        try:
            async with self.session_factory() as session:
                deleted = await ExecutionLedger(session).cleanup(self.retention_days)
        except Exception as e:
            logger.error("execution_cleanup_failed", error=str(e))
            return 0

        MetricsCollector.record_cleanup(deleted)
        return deleted

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._fire_tasks.add(task)
        task.add_done_callback(self._fire_tasks.discard)
        return task

    def _release(self, schedule_id: str) -> None:
        self._in_flight.discard(schedule_id)
        MetricsCollector.update_executions_in_progress(len(self._in_flight))

    async def _begin(self, schedule: ScheduleInfo) -> ExecutionInfo:
        """
        Claim the schedule and open its execution record.

        Raises:
            ExecutionAlreadyRunningError: If a run for the schedule is in flight
        """
        schedule_id = schedule.schedule_id

        # Check and claim with no await in between
        if schedule_id in self._in_flight:
            MetricsCollector.record_execution_skipped("already_running")
            raise ExecutionAlreadyRunningError(schedule_id)

        self._in_flight.add(schedule_id)
        MetricsCollector.update_executions_in_progress(len(self._in_flight))

        try:
            async with self.session_factory() as session:
                return await ExecutionLedger(session).start(schedule_id)
        except ExecutionAlreadyRunningError:
            MetricsCollector.record_execution_skipped("already_running")
            self._release(schedule_id)
            raise
        except BaseException:
            self._release(schedule_id)
            raise

    async def execute_schedule(self, schedule: ScheduleInfo) -> Optional[ExecutionInfo]:
        """
        Run one fire of a schedule.

        Never raises. Returns the terminal execution record, or None when
        the attempt was skipped because a run is already in flight or the
        execution record could not be opened.
        """
        try:
            execution = await self._begin(schedule)
        except ExecutionAlreadyRunningError:
            logger.info(
                "schedule_execution_skipped",
                schedule_id=schedule.schedule_id,
                reason="already_running"
            )
            return None
        except Exception as e:
            MetricsCollector.record_execution_skipped("ledger_error")
            logger.error(
                "schedule_execution_start_failed",
                schedule_id=schedule.schedule_id,
                error=str(e)
            )
            return None

        return await self._finish(schedule, execution)

    async def run_now(self, schedule_id: str) -> ExecutionInfo:
        """
        Fire a schedule immediately, outside its cron timing.

        The run continues in the background; the running execution record is
        returned right away.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
            ExecutionAlreadyRunningError: If a run for the schedule is in flight
        """
        async with self.session_factory() as session:
            schedule = await ScheduleStore(session).get_by_id(schedule_id)

        if schedule is None:
            raise ScheduleNotFoundError(str(schedule_id))

        execution = await self._begin(schedule)
        logger.info("schedule_manual_run", schedule_id=schedule.schedule_id, execution_id=execution.execution_id)
        self._spawn(self._finish(schedule, execution))
        return execution

    async def _run_agent(self, schedule: ScheduleInfo, execution_id: str) -> RunResult:
        run = self.adapter.run(schedule.agent_ref, schedule.context, schedule_id=schedule.schedule_id)

        if not self.execution_timeout:
            return await run

        try:
            return await asyncio.wait_for(run, timeout=self.execution_timeout)
        except asyncio.TimeoutError:
            raise ExecutionTimeoutError(
                self.execution_timeout,
                execution_id=execution_id,
                schedule_id=schedule.schedule_id
            )

    async def _finish(self, schedule: ScheduleInfo, execution: ExecutionInfo) -> Optional[ExecutionInfo]:
        schedule_id = schedule.schedule_id
        execution_id = execution.execution_id
        started = time.perf_counter()

        try:
            self._emit(EVENT_STARTED, schedule, execution_id)
            logger.info(
                "schedule_execution_started",
                schedule_id=schedule_id,
                execution_id=execution_id,
                agent_id=schedule.agent_id,
                agent_type=schedule.agent_type
            )

            try:
                with bind_execution_context(
                    schedule_id, execution_id, agent=f"{schedule.agent_type}:{schedule.agent_id}"
                ):
                    result = await self._run_agent(schedule, execution_id)
            except asyncio.CancelledError:
                await self._record_failure(
                    schedule, execution, "Execution cancelled during shutdown",
                    time.perf_counter() - started
                )
                raise
            except Exception as e:
                return await self._record_failure(
                    schedule, execution, e, time.perf_counter() - started
                )

            return await self._record_success(
                schedule, execution, result, time.perf_counter() - started
            )
        finally:
            self._release(schedule_id)

    async def _record_success(
        self,
        schedule: ScheduleInfo,
        execution: ExecutionInfo,
        result: RunResult,
        duration: float
    ) -> Optional[ExecutionInfo]:
        schedule_id = schedule.schedule_id

        try:
            async with self.session_factory() as session:
                completed = await ExecutionLedger(session).complete(
                    execution.execution_id,
                    output=result.output,
                    tokens_used=result.tokens_used
                )
                await ScheduleStore(session).update_last_run(schedule_id)
        except Exception as e:
            logger.error(
                "schedule_execution_record_failed",
                schedule_id=schedule_id,
                execution_id=execution.execution_id,
                error=str(e)
            )
            return None

        MetricsCollector.record_execution(schedule.agent_type, "success", duration)
        self._emit(
            EVENT_COMPLETED,
            schedule,
            execution.execution_id,
            tokens_used=result.tokens_used,
            duration_seconds=duration
        )
        logger.info(
            "schedule_execution_completed",
            schedule_id=schedule_id,
            execution_id=execution.execution_id,
            tokens_used=result.tokens_used,
            duration_seconds=round(duration, 3)
        )
        return completed

    async def _record_failure(
        self,
        schedule: ScheduleInfo,
        execution: ExecutionInfo,
        error: Any,
        duration: float
    ) -> Optional[ExecutionInfo]:
        schedule_id = schedule.schedule_id
        message = error if isinstance(error, str) else _error_message(error)
        timed_out = isinstance(error, ExecutionTimeoutError)

        try:
            async with self.session_factory() as session:
                ledger = ExecutionLedger(session)
                failed = await ledger.fail(execution.execution_id, message)
                stats = await ledger.stats(schedule_id)
        except Exception as e:
            logger.error(
                "schedule_execution_record_failed",
                schedule_id=schedule_id,
                execution_id=execution.execution_id,
                error=str(e)
            )
            return None

        MetricsCollector.record_execution(
            schedule.agent_type, "timeout" if timed_out else "failed", duration
        )
        self._emit(EVENT_FAILED, schedule, execution.execution_id, error=message)
        logger.error(
            "schedule_execution_failed",
            schedule_id=schedule_id,
            execution_id=execution.execution_id,
            error=message,
            error_type=getattr(error, "error_type", type(error).__name__),
            failed_count=stats.failed,
            success_rate=stats.success_rate
        )

        if self.should_auto_disable(stats):
            await self._auto_disable(schedule, stats)

        return failed

    def should_auto_disable(self, stats: ExecutionStats) -> bool:
        """Circuit breaker: enough failures and a low enough success rate"""
        return (
            stats.failed >= self.auto_disable_min_failures
            and stats.success_rate < self.auto_disable_success_rate_threshold
        )

    async def _auto_disable(self, schedule: ScheduleInfo, stats: ExecutionStats) -> None:
        schedule_id = schedule.schedule_id

        try:
            async with self.session_factory() as session:
                await ScheduleStore(session).set_enabled(schedule_id, False)
        except ScheduleNotFoundError:
            logger.debug("auto_disable_schedule_deleted", schedule_id=schedule_id)
            return
        except Exception as e:
            logger.error("schedule_auto_disable_failed", schedule_id=schedule_id, error=str(e))
            return

        self.unregister_schedule(schedule_id)
        MetricsCollector.record_auto_disable()
        self._emit(
            EVENT_DISABLED,
            schedule,
            None,
            reason="failure_rate",
            failed_count=stats.failed,
            success_rate=stats.success_rate
        )
        logger.warning(
            "schedule_auto_disabled",
            schedule_id=schedule_id,
            failed_count=stats.failed,
            success_rate=stats.success_rate
        )

    def _emit(self, event: str, schedule: ScheduleInfo, execution_id: Optional[str], **data: Any) -> None:
        self.events.emit(
            event,
            schedule.schedule_id,
            workspace_id=schedule.workspace_id,
            schedule_name=schedule.name,
            execution_id=execution_id,
            **data
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "registered_count": len(self._timers),
            "schedule_ids": sorted(self._timers),
            "in_flight_count": len(self._in_flight)
        }

    async def _cancel_timers(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        MetricsCollector.update_registered_schedules(0)
