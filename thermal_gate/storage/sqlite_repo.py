from __future__ import annotations
import aiosqlite
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Sequence
from ..core.errors import StorageError
from ..domain.models import HistoryEntry, PowerRecord, PowerState, Task, TaskState


_TASK_COLUMNS = "id,priority,name,action,state,enqueued_at"
_TASK_ORDER = "ORDER BY priority ASC, enqueued_at ASC, seq ASC"


def _ts(dt: datetime) -> str:
    # Fixed-width UTC so text ordering matches time ordering
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_task(row: Sequence) -> Task:
    tid, priority, name, action, state, enqueued_at = row
    return Task(
        id=tid,
        priority=int(priority),
        name=name,
        action=action,
        state=TaskState(state),
        enqueued_at=datetime.fromisoformat(enqueued_at),
    )


def _row_to_history(row: Sequence) -> HistoryEntry:
    tid, name, outcome, exit_code, duration, completed_at, detail = row
    return HistoryEntry(
        id=tid,
        name=name,
        outcome=TaskState(outcome),
        exit_code=exit_code,
        duration_seconds=float(duration),
        completed_at=datetime.fromisoformat(completed_at),
        detail=detail or "",
    )


class RepoTransaction:
    """Queue operations bound to one open ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def insert_task(self, task: Task) -> None:
        await self._db.execute(
            f"INSERT INTO tasks({_TASK_COLUMNS}) VALUES (?,?,?,?,?,?)",
            (task.id, task.priority, task.name, task.action, task.state.value, _ts(task.enqueued_at)),
        )

    async def get_task(self, task_id: str) -> Optional[Task]:
        cur = await self._db.execute(f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,))
        row = await cur.fetchone()
        return _row_to_task(row) if row else None

    async def tasks_in_state(self, *states: TaskState) -> List[Task]:
        marks = ",".join("?" for _ in states)
        cur = await self._db.execute(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE state IN ({marks}) {_TASK_ORDER}",
            tuple(s.value for s in states),
        )
        return [_row_to_task(r) for r in await cur.fetchall()]

    async def set_running(self, task_id: str) -> None:
        await self._db.execute("UPDATE tasks SET state = ? WHERE id = ?", (TaskState.RUNNING.value, task_id))

    async def set_terminal(
        self,
        task_id: str,
        state: TaskState,
        exit_code: Optional[int],
        duration_seconds: float,
        completed_at: datetime,
        detail: str,
    ) -> None:
        await self._db.execute(
            "UPDATE tasks SET state=?, exit_code=?, duration_seconds=?, completed_at=?, detail=? WHERE id=?",
            (state.value, exit_code, float(duration_seconds), _ts(completed_at), detail, task_id),
        )

    async def delete_task(self, task_id: str) -> None:
        await self._db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))

    async def move_terminal_to_history(self) -> List[HistoryEntry]:
        cur = await self._db.execute(
            """
            SELECT id,name,state,exit_code,duration_seconds,completed_at,detail
            FROM tasks
            WHERE state IN (?, ?)
            ORDER BY completed_at ASC, seq ASC
            """,
            (TaskState.SUCCEEDED.value, TaskState.FAILED.value),
        )
        entries = [_row_to_history(r) for r in await cur.fetchall()]
        for e in entries:
            await self._db.execute(
                "INSERT INTO history(id,name,outcome,exit_code,duration_seconds,completed_at,detail) "
                "VALUES (?,?,?,?,?,?,?)",
                (e.id, e.name, e.outcome.value, e.exit_code, e.duration_seconds, _ts(e.completed_at), e.detail),
            )
            await self._db.execute("DELETE FROM tasks WHERE id = ?", (e.id,))
        return entries


class SQLiteRepository:
    """Durable store for the task queue, task history and power-mode record.

    Every read-modify-write goes through ``transaction()``, which takes the
    SQLite write lock up front so concurrent writers (even in other
    processes) serialise instead of losing updates.
    """

    def __init__(self, path: str) -> None:
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self._path, isolation_level=None) as db:
                yield db
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"{self._path}: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RepoTransaction]:
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield RepoTransaction(db)
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")

    async def init(self) -> None:
        async with self._connect() as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    priority INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    action TEXT NOT NULL,
                    state TEXT NOT NULL,
                    enqueued_at TEXT NOT NULL,
                    exit_code INTEGER,
                    duration_seconds REAL,
                    completed_at TEXT,
                    detail TEXT
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS history (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    exit_code INTEGER,
                    duration_seconds REAL NOT NULL,
                    completed_at TEXT NOT NULL,
                    detail TEXT
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS power_state (
                    key INTEGER PRIMARY KEY CHECK (key = 1),
                    state TEXT NOT NULL,
                    last_transition_at TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_tasks_order ON tasks(state, priority, enqueued_at)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_history_completed ON history(completed_at)")

    async def list_tasks(self, *states: TaskState) -> List[Task]:
        async with self._connect() as db:
            if states:
                return await RepoTransaction(db).tasks_in_state(*states)
            cur = await db.execute(f"SELECT {_TASK_COLUMNS} FROM tasks {_TASK_ORDER}")
            rows = await cur.fetchall()
        return [_row_to_task(r) for r in rows]

    async def get_task(self, task_id: str) -> Optional[Task]:
        async with self._connect() as db:
            return await RepoTransaction(db).get_task(task_id)

    async def query_history(self, limit: int) -> List[HistoryEntry]:
        async with self._connect() as db:
            cur = await db.execute(
                """
                SELECT id,name,outcome,exit_code,duration_seconds,completed_at,detail
                FROM history
                ORDER BY seq DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cur.fetchall()
        return [_row_to_history(r) for r in rows]

    async def get_power_record(self) -> Optional[PowerRecord]:
        async with self._connect() as db:
            cur = await db.execute("SELECT state, last_transition_at FROM power_state WHERE key = 1")
            row = await cur.fetchone()
        if row is None:
            return None
        state, last = row
        return PowerRecord(
            state=PowerState(state),
            last_transition_at=datetime.fromisoformat(last) if last else None,
        )

    async def save_power_record(self, record: PowerRecord) -> None:
        now = datetime.now(timezone.utc).isoformat()
        last = _ts(record.last_transition_at) if record.last_transition_at else None
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO power_state(key, state, last_transition_at, updated_at) VALUES (1, ?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET state=excluded.state, "
                "last_transition_at=excluded.last_transition_at, updated_at=excluded.updated_at",
                (record.state.value, last, now),
            )
