"""Cron scheduling for discovery generation"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set

from croniter import croniter

from trackdrop.errors import (
    InvalidCronExpressionError, SchedulerError, SchedulerStartError,
    SchedulerStopError, TaskExecutionError, TrackDropError,
)


logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 30.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_cron_expression(cron_expression: str) -> str:
    """Check a five-field cron expression.

    Args:
        cron_expression: Cron expression string

    Returns:
        The expression with surrounding whitespace removed

    Raises:
        InvalidCronExpressionError: If croniter rejects it or it has the wrong field count
    """
    expression = (cron_expression or "").strip()
    if len(expression.split()) != 5 or not croniter.is_valid(expression):
        raise InvalidCronExpressionError(cron_expression)
    return expression


def calculate_next_run(cron_expression: str, now: Optional[datetime] = None) -> datetime:
    """Calculate next run time from cron expression.

    Args:
        cron_expression: Cron expression string
        now: Reference time (default: current UTC time)

    Returns:
        Next run datetime (UTC)
    """
    now = now or _utc_now()
    cron = croniter(cron_expression, now)
    return cron.get_next(datetime)


def next_runs(cron_expression: str, count: int = 3, now: Optional[datetime] = None) -> List[datetime]:
    """Upcoming fire times for a cron expression."""
    cron = croniter(validate_cron_expression(cron_expression), now or _utc_now())
    return [cron.get_next(datetime) for _ in range(count)]


class SchedulerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class ScheduleHandle:
    """Snapshot of the scheduler's registration"""
    state: SchedulerState = SchedulerState.STOPPED
    cron_expression: Optional[str] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None

    def format_stats(self) -> str:
        status = "🟢 Running" if self.state is SchedulerState.RUNNING else f"🔴 {self.state.value.capitalize()}"
        lines = [
            "📅 Scheduler status",
            f"  Status: {status}",
            f"  Schedule: {self.cron_expression or 'not registered'}",
        ]
        if self.next_run is not None:
            lines.append(f"  Next run: {self.next_run.strftime('%Y-%m-%d %H:%M %Z')}")
        lines.append(f"  Runs so far: {self.run_count}")
        if self.last_error:
            lines.append(f"  Last error: {self.last_error}")
        return "\n".join(lines)


class DiscoveryScheduler:
    """Runs one async job on a cron schedule.

    A single timer task sleeps until the next fire time and awaits the job
    inline, so firings never overlap. Stopping waits for a firing that is
    already in progress, and for runs started with ``trigger_now``.
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[Any]],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize scheduler.

        Args:
            job: Coroutine function run on every firing
            clock: Returns the current aware UTC datetime
        """
        self._job = job
        self._clock = clock or _utc_now
        self._state = SchedulerState.STOPPED
        self._handle = ScheduleHandle()
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._manual_runs: Set[asyncio.Task] = set()

    @property
    def state(self) -> SchedulerState:
        return self._state

    def status(self) -> ScheduleHandle:
        return dataclasses.replace(self._handle, state=self._state)

    async def start(self, cron_expression: str) -> ScheduleHandle:
        """Register the job and start the timer.

        Raises:
            SchedulerStartError: If the scheduler is not stopped
            InvalidCronExpressionError: If the expression is invalid
        """
        if self._state is not SchedulerState.STOPPED:
            raise SchedulerStartError(f"Scheduler already {self._state.value}")
        expression = validate_cron_expression(cron_expression)

        self._state = SchedulerState.STARTING
        self._handle.cron_expression = expression
        self._handle.next_run = calculate_next_run(expression, self._clock())
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(expression), name="discovery-scheduler")
        self._state = SchedulerState.RUNNING

        logger.info("✓ Scheduler started with cron '%s', next run at %s",
                    expression, self._handle.next_run.strftime("%Y-%m-%d %H:%M:%S %Z"))
        return self.status()

    async def _run_loop(self, expression: str) -> None:
        while not self._stop_event.is_set():
            now = self._clock()
            next_run = calculate_next_run(expression, now)
            self._handle.next_run = next_run
            wait_seconds = max(0.0, (next_run - now).total_seconds())
            logger.debug("Waiting %.1f seconds until next run at %s", wait_seconds, next_run)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=wait_seconds)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break

            logger.info("Executing scheduled discovery run")
            try:
                await self._execute()
            except Exception as e:
                logger.error("Scheduled run failed: %s", e)

    async def _execute(self) -> Any:
        self._handle.run_count += 1
        self._handle.last_run = self._clock()
        try:
            result = await self._job()
        except Exception as e:
            self._handle.last_error = str(e) or type(e).__name__
            raise
        self._handle.last_error = None
        return result

    async def trigger_now(self) -> Any:
        """Run the job immediately, outside the timer.

        Raises:
            SchedulerError: If the scheduler is shutting down
            TaskExecutionError: If the job raised something other than a TrackDropError
        """
        if self._state is SchedulerState.STOPPING:
            raise SchedulerError("Scheduler is stopping")
        logger.info("Manually triggered discovery run")
        task = asyncio.create_task(self._execute(), name="discovery-manual-run")
        self._manual_runs.add(task)
        task.add_done_callback(self._manual_run_done)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise SchedulerStopError("Manual run was cancelled by shutdown") from None
            raise
        except TrackDropError:
            raise
        except Exception as e:
            raise TaskExecutionError(f"Job failed: {e}", cause=e) from e

    def _manual_run_done(self, task: asyncio.Task) -> None:
        self._manual_runs.discard(task)
        # The caller may have gone away; the error is already in last_error
        if not task.cancelled():
            task.exception()

    async def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Stop the timer, waiting up to ``timeout`` seconds for in-flight runs.

        Raises:
            SchedulerStopError: If a run did not finish in time; unfinished runs are cancelled
        """
        if self._state is SchedulerState.STOPPING:
            return
        pending = [t for t in (self._task, *self._manual_runs) if t is not None]
        if self._state is SchedulerState.STOPPED and not pending:
            return

        self._state = SchedulerState.STOPPING
        logger.info("Stopping scheduler, %d run(s) in flight", len(self._manual_runs))
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            _, unfinished = await asyncio.wait(pending, timeout=timeout)
            if unfinished:
                for task in unfinished:
                    task.cancel()
                await asyncio.gather(*unfinished, return_exceptions=True)
                raise SchedulerStopError(
                    f"{len(unfinished)} run(s) did not finish within {timeout:.1f}s and were cancelled"
                )
        finally:
            self._task = None
            self._handle.next_run = None
            self._state = SchedulerState.STOPPED
        logger.info("✓ Scheduler stopped")
