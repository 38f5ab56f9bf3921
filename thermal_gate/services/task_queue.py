"""Durable, priority-ordered queue of deferred jobs.

The queue owns every task record. Other components change a task only
through the state-transition methods below, each of which runs as one
store transaction so the single-running invariant survives concurrent
enqueue and cancel calls.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from ..core.errors import InvalidStateError, TaskNotFoundError
from ..core.timeutil import Clock
from ..domain.models import HistoryEntry, Task, TaskOutcome, TaskState
from ..storage.sqlite_repo import SQLiteRepository

logger = logging.getLogger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 10
INTERRUPTED = "interrupted"


def new_task_id() -> str:
    return uuid4().hex[:12]


class TaskQueue:
    def __init__(self, repo: SQLiteRepository, clock: Optional[Clock] = None) -> None:
        self._repo = repo
        self._clock = clock or Clock()

    async def enqueue(self, name: str, action: str, priority: int = 5, now: Optional[datetime] = None) -> str:
        """Add a pending task and return its id."""
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValueError(f"priority must be {MIN_PRIORITY}-{MAX_PRIORITY}, got {priority}")
        task = Task(
            id=new_task_id(),
            priority=int(priority),
            name=name,
            action=action,
            state=TaskState.PENDING,
            enqueued_at=now or self._clock.now(),
        )
        async with self._repo.transaction() as tx:
            await tx.insert_task(task)
        logger.info("Task added to queue: %s (ID: %s, Priority: %d)", name, task.id, task.priority)
        return task.id

    async def list_pending(self) -> List[Task]:
        return await self._repo.list_tasks(TaskState.PENDING)

    async def list_tasks(self) -> List[Task]:
        return await self._repo.list_tasks()

    async def get(self, task_id: str) -> Task:
        task = await self._repo.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def running(self) -> Optional[Task]:
        running = await self._repo.list_tasks(TaskState.RUNNING)
        return running[0] if running else None

    async def select_next_eligible(self) -> Optional[Task]:
        """Highest-priority pending task. Thermal conditions are not considered here."""
        pending = await self.list_pending()
        return pending[0] if pending else None

    async def mark_running(self, task_id: str) -> Task:
        async with self._repo.transaction() as tx:
            task = await tx.get_task(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.state is not TaskState.PENDING:
                raise InvalidStateError(f"Task {task_id} is {task.state.value}, not pending")
            running = await tx.tasks_in_state(TaskState.RUNNING)
            if running:
                raise InvalidStateError(f"Task {running[0].id} is already running")
            await tx.set_running(task_id)
        logger.info("Executing task: %s (%s)", task.name, task_id)
        return replace(task, state=TaskState.RUNNING)

    async def mark_terminal(self, task_id: str, outcome: TaskOutcome, now: Optional[datetime] = None) -> None:
        if not outcome.state.terminal:
            raise InvalidStateError(f"{outcome.state.value} is not a terminal state")
        async with self._repo.transaction() as tx:
            task = await tx.get_task(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.state is not TaskState.RUNNING:
                raise InvalidStateError(f"Task {task_id} is {task.state.value}, not running")
            await tx.set_terminal(
                task_id,
                outcome.state,
                outcome.exit_code,
                outcome.duration_seconds,
                now or self._clock.now(),
                outcome.detail,
            )

    async def cancel(self, task_id: str) -> Task:
        async with self._repo.transaction() as tx:
            task = await tx.get_task(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.state is not TaskState.PENDING:
                raise InvalidStateError(f"Task {task_id} is {task.state.value}; only pending tasks can be cancelled")
            await tx.delete_task(task_id)
        logger.info("Task %s removed from queue", task_id)
        return task

    async def archive_terminal(self) -> List[HistoryEntry]:
        async with self._repo.transaction() as tx:
            entries = await tx.move_terminal_to_history()
        for e in entries:
            logger.info("Archived task %s (%s): %s in %.1fs", e.id, e.name, e.outcome.value, e.duration_seconds)
        return entries

    async def history(self, limit: int = 20) -> List[HistoryEntry]:
        return await self._repo.query_history(limit)

    # --- restart reconciliation ---

    async def stale_running(self) -> List[Task]:
        """Tasks left ``running`` by a previous process; they need an operator."""
        return await self._repo.list_tasks(TaskState.RUNNING)

    async def reconcile(self, task_id: str, detail: str = INTERRUPTED) -> HistoryEntry:
        """Record an orphaned running task as failed and archive it."""
        task = await self.get(task_id)
        if task.state is not TaskState.RUNNING:
            raise InvalidStateError(f"Task {task_id} is {task.state.value}, not running")
        await self.mark_terminal(task_id, TaskOutcome(state=TaskState.FAILED, duration_seconds=0.0, detail=detail))
        archived = await self.archive_terminal()
        logger.warning("Reconciled task %s (%s) as failed: %s", task_id, task.name, detail)
        return next(e for e in archived if e.id == task_id)
