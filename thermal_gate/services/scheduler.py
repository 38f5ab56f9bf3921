"""Scheduler loop -- admits queued jobs when thermal conditions allow.

Each tick:
1. Samples the sensor provider
2. Evaluates the verdict against the task thresholds and preferred window
3. Returns without touching the queue if conditions are unfavorable, a task
   is already running, or nothing is pending
4. Otherwise runs the highest-priority pending task to completion and
   archives its outcome
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from ..core.errors import InvalidStateError, SchedulerStopped, WaitTimeoutError
from ..core.timeutil import Clock
from ..domain.evaluator import evaluate
from ..domain.interfaces import ActionFactory, SensorProvider
from ..domain.models import (
    ConditionVerdict,
    Task,
    TaskOutcome,
    TaskState,
    ThermalReading,
    Thresholds,
    TickResult,
)
from ..domain.window import PreferredWindow
from ..drivers.actions import default_action_factory
from .task_queue import TaskQueue
from .timer import StopSignal

logger = logging.getLogger(__name__)


class SchedulerLoop:
    """Single-worker, condition-gated runner for the task queue.

    Usage:
        loop = SchedulerLoop(queue, sensor, thresholds, window)
        await loop.start()  # periodic ticks until stop()
    """

    def __init__(
        self,
        queue: TaskQueue,
        sensor: SensorProvider,
        thresholds: Thresholds,
        window: Optional[PreferredWindow] = None,
        clock: Optional[Clock] = None,
        action_factory: ActionFactory = default_action_factory,
        stop: Optional[StopSignal] = None,
        poll_seconds: float = 300,
        interval_seconds: float = 300,
        dry_run: bool = False,
    ) -> None:
        self._queue = queue
        self._sensor = sensor
        self._thresholds = thresholds
        self._window = window
        self._clock = clock or Clock()
        self._action_factory = action_factory
        self._stop = stop or StopSignal()
        self._poll_seconds = poll_seconds
        self._interval_seconds = interval_seconds
        self._dry_run = dry_run

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.last_result: Optional[TickResult] = None
        self.current_task_id: Optional[str] = None

    @property
    def thresholds(self) -> Thresholds:
        return self._thresholds

    @property
    def window(self) -> Optional[PreferredWindow]:
        return self._window

    async def check_conditions(self, now: Optional[datetime] = None) -> tuple[ConditionVerdict, ThermalReading]:
        now = now or self._clock.now()
        reading = await self._sensor.sample()
        verdict = evaluate(reading, self._thresholds, self._window, now)
        if reading.temperature_c is None:
            logger.warning("Temperature unknown (%s), treating as unfavorable", reading.error or "no reading")
        else:
            logger.info("Current temperature: %.1f°C -> %s", reading.temperature_c, verdict.value)
        return verdict, reading

    async def tick(self, now: Optional[datetime] = None, dry_run: bool = False) -> TickResult:
        async with self._lock:
            result = await self._tick(now, dry_run)
        self.last_result = result
        return result

    async def _tick(self, now: Optional[datetime], dry_run: bool) -> TickResult:
        dry_run = dry_run or self._dry_run
        verdict, reading = await self.check_conditions(now)

        if verdict is ConditionVerdict.UNFAVORABLE:
            reason = (
                "Temperature unknown"
                if reading.temperature_c is None
                else f"Temperature too high for heavy tasks ({reading.temperature_c:.1f}°C > {self._thresholds.ceiling_c:.0f}°C)"
            )
            logger.info("Conditions not suitable: %s", reason)
            return TickResult("not_eligible", verdict, reason, reading)

        running = await self._queue.running()
        if running is not None:
            return TickResult("busy", verdict, f"Task {running.id} is running", reading, running)

        task = await self._queue.select_next_eligible()
        if task is None:
            logger.info("No pending tasks")
            return TickResult("nothing_to_do", verdict, "No pending tasks", reading)

        if dry_run:
            logger.info("[dry-run] would run task %s (%s)", task.name, task.id)
            return TickResult("would_run", verdict, f"Would run {task.name}", reading, task)

        return await self._execute(task, verdict, reading)

    async def _execute(self, task: Task, verdict: ConditionVerdict, reading: ThermalReading) -> TickResult:
        task = await self._queue.mark_running(task.id)
        self.current_task_id = task.id
        started = self._clock.monotonic()
        try:
            result = await self._action_factory(task.action).invoke()
        except Exception as e:
            logger.exception("Task %s raised", task.name)
            outcome = TaskOutcome(
                state=TaskState.FAILED,
                duration_seconds=max(0.0, self._clock.monotonic() - started),
                detail=f"{type(e).__name__}: {e}",
            )
        else:
            outcome = TaskOutcome(
                state=TaskState.SUCCEEDED if result.ok else TaskState.FAILED,
                duration_seconds=max(0.0, self._clock.monotonic() - started),
                exit_code=result.exit_code,
                detail=result.detail,
            )

        if outcome.state is TaskState.SUCCEEDED:
            logger.info("Task %s completed successfully in %.1fs", task.name, outcome.duration_seconds)
        else:
            logger.error("Task %s failed (%s)", task.name, outcome.detail or f"exit code {outcome.exit_code}")

        try:
            await self._queue.mark_terminal(task.id, outcome)
            await self._queue.archive_terminal()
        finally:
            self.current_task_id = None
        return TickResult("ran", verdict, f"Ran {task.name}", reading, task, outcome)

    async def wait_and_run(self, task_id: str, max_wait_seconds: float, dry_run: bool = False) -> TickResult:
        """Poll until ``task_id`` can run, then run it.

        Raises WaitTimeoutError after ``max_wait_seconds`` and SchedulerStopped
        on a stop request; in both cases the task stays pending.
        """
        dry_run = dry_run or self._dry_run
        started = self._clock.monotonic()
        logger.info("Waiting for good conditions to execute task %s...", task_id)

        while True:
            async with self._lock:
                task = await self._queue.get(task_id)
                if task.state is not TaskState.PENDING:
                    raise InvalidStateError(f"Task {task_id} is {task.state.value}, not pending")

                verdict, reading = await self.check_conditions()
                running = await self._queue.running()
                if verdict is not ConditionVerdict.UNFAVORABLE and running is None:
                    if dry_run:
                        result = TickResult("would_run", verdict, f"Would run {task.name}", reading, task)
                    else:
                        result = await self._execute(task, verdict, reading)
                    self.last_result = result
                    return result

            remaining = max_wait_seconds - (self._clock.monotonic() - started)
            if remaining <= 0:
                logger.error("Timeout waiting for good conditions for task %s", task_id)
                raise WaitTimeoutError(f"Task {task_id} not runnable within {max_wait_seconds}s")

            wait = min(self._poll_seconds, remaining)
            logger.info("Conditions not suitable, waiting %.0fs...", wait)
            if await self._stop.sleep(wait):
                raise SchedulerStopped(f"Stopped while waiting for task {task_id}")

    # --- daemon cycle ---

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self.run_forever(), name="scheduler_loop")

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            await self._task
            self._task = None

    async def run_forever(self) -> None:
        logger.info(
            "Starting scheduler daemon (interval: %ss%s)",
            self._interval_seconds, ", dry-run" if self._dry_run else "",
        )
        try:
            for task in await self._queue.stale_running():
                logger.warning(
                    "Task %s (%s) was left running by a previous process; reconcile it to resume scheduling",
                    task.id, task.name,
                )
        except Exception:
            logger.exception("Could not check for stale running tasks")

        while not self._stop.is_set():
            try:
                result = await self.tick()
                logger.info("Tick: %s (%s)", result.status, result.reason)
            except Exception:
                logger.exception("Error in scheduler loop")

            if await self._stop.sleep(self._interval_seconds):
                break

        logger.info("Scheduler stopped")
