import os
import tempfile
import unittest
from datetime import datetime, time, timezone

from thermal_gate.core.errors import InvalidStateError, SchedulerStopped, WaitTimeoutError
from thermal_gate.domain.models import ConditionVerdict, TaskState, Thresholds
from thermal_gate.domain.window import PreferredWindow
from thermal_gate.services.scheduler import SchedulerLoop
from thermal_gate.services.task_queue import TaskQueue
from thermal_gate.storage.sqlite_repo import SQLiteRepository

from fakes import ActionBook, FakeAction, FakeClock, FakeSensor, SimulatedStop


class SchedulerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.repo = SQLiteRepository(os.path.join(self.tmp.name, "sched.db"))
        await self.repo.init()
        self.clock = FakeClock()
        self.queue = TaskQueue(self.repo, self.clock)
        self.sensor = FakeSensor(50.0)
        self.actions = ActionBook()
        self.stop = SimulatedStop(self.clock)
        self.scheduler = SchedulerLoop(
            queue=self.queue,
            sensor=self.sensor,
            thresholds=Thresholds(ceiling_c=70.0, ideal_c=55.0),
            window=PreferredWindow(start=time(22, 0), end=time(6, 0)),
            clock=self.clock,
            action_factory=self.actions,
            stop=self.stop,
            poll_seconds=300,
            interval_seconds=300,
        )

    async def asyncTearDown(self) -> None:
        self.tmp.cleanup()


class TestTick(SchedulerTestCase):
    async def test_runs_highest_priority_task(self):
        await self.queue.enqueue("low", "low.sh", 9)
        high = await self.queue.enqueue("high", "high.sh", 1)

        result = await self.scheduler.tick()

        assert result.status == "ran"
        assert result.task.id == high
        assert result.task.state is TaskState.RUNNING
        assert result.outcome.state is TaskState.SUCCEEDED
        assert self.actions.invoked == ["high.sh"]
        history = await self.queue.history()
        assert [e.id for e in history] == [high]
        assert [t.name for t in await self.queue.list_pending()] == ["low"]

    async def test_unfavorable_changes_nothing(self):
        await self.queue.enqueue("job", "job.sh", 5)
        before = await self.queue.list_tasks()
        self.sensor.set(85.0)

        result = await self.scheduler.tick()

        assert result.status == "not_eligible"
        assert result.verdict is ConditionVerdict.UNFAVORABLE
        assert await self.queue.list_tasks() == before
        assert self.actions.invoked == []

    async def test_unreadable_sensor_is_unfavorable(self):
        await self.queue.enqueue("job", "job.sh", 5)
        self.sensor.set(None)
        result = await self.scheduler.tick()
        assert result.status == "not_eligible"
        assert result.reason == "Temperature unknown"
        assert self.actions.invoked == []

    async def test_empty_queue(self):
        result = await self.scheduler.tick()
        assert result.status == "nothing_to_do"

    async def test_busy_when_task_running(self):
        stale = await self.queue.enqueue("stale", "a", 1)
        await self.queue.enqueue("next", "b", 1)
        await self.queue.mark_running(stale)

        result = await self.scheduler.tick()

        assert result.status == "busy"
        assert self.actions.invoked == []

    async def test_ideal_verdict_inside_window(self):
        self.sensor.set(40.0)
        await self.queue.enqueue("job", "job.sh", 5)
        result = await self.scheduler.tick(now=datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc))
        assert result.verdict is ConditionVerdict.IDEAL
        assert result.status == "ran"

    async def test_failed_action_recorded_and_not_retried(self):
        self.actions.actions["boom.sh"] = FakeAction(raises=RuntimeError("disk full"), clock=self.clock, takes=7)
        tid = await self.queue.enqueue("boom", "boom.sh", 1)

        result = await self.scheduler.tick()

        assert result.outcome.state is TaskState.FAILED
        assert "disk full" in result.outcome.detail
        history = await self.queue.history()
        assert [(e.id, e.outcome) for e in history] == [(tid, TaskState.FAILED)]
        assert history[0].duration_seconds == 7

        assert (await self.scheduler.tick()).status == "nothing_to_do"
        assert self.actions.actions["boom.sh"].calls == 1

    async def test_non_zero_exit_is_failure(self):
        self.actions.actions["bad.sh"] = FakeAction(ok=False)
        await self.queue.enqueue("bad", "bad.sh", 1)
        result = await self.scheduler.tick()
        assert result.outcome.state is TaskState.FAILED
        assert result.outcome.exit_code == 2

    async def test_dry_run_reports_without_running(self):
        tid = await self.queue.enqueue("job", "job.sh", 5)
        result = await self.scheduler.tick(dry_run=True)
        assert result.status == "would_run"
        assert result.task.id == tid
        assert self.actions.invoked == []
        assert (await self.queue.get(tid)).state is TaskState.PENDING

    async def test_tasks_added_between_ticks_are_considered(self):
        await self.queue.enqueue("later", "later.sh", 5)
        await self.scheduler.tick()
        await self.queue.enqueue("urgent", "urgent.sh", 1)
        await self.queue.enqueue("normal", "normal.sh", 5)
        await self.scheduler.tick()
        assert self.actions.invoked == ["later.sh", "urgent.sh"]


class TestWaitAndRun(SchedulerTestCase):
    async def test_runs_when_conditions_clear(self):
        tid = await self.queue.enqueue("job", "job.sh", 5)
        self.sensor.set(85.0, 80.0, 60.0)

        result = await self.scheduler.wait_and_run(tid, max_wait_seconds=3600)

        assert result.status == "ran"
        assert result.task.id == tid
        assert self.stop.sleeps == [300, 300]

    async def test_runs_named_task_not_queue_head(self):
        await self.queue.enqueue("head", "head.sh", 1)
        tid = await self.queue.enqueue("mine", "mine.sh", 9)
        await self.scheduler.wait_and_run(tid, max_wait_seconds=60)
        assert self.actions.invoked == ["mine.sh"]

    async def test_timeout_leaves_task_pending(self):
        tid = await self.queue.enqueue("job", "job.sh", 5)
        self.sensor.set(85.0)

        with self.assertRaises(WaitTimeoutError):
            await self.scheduler.wait_and_run(tid, max_wait_seconds=700)

        assert self.stop.sleeps == [300, 300, 100]
        assert (await self.queue.get(tid)).state is TaskState.PENDING
        assert self.actions.invoked == []

    async def test_timeout_error_is_a_timeout(self):
        tid = await self.queue.enqueue("job", "job.sh", 5)
        self.sensor.set(85.0)
        with self.assertRaises(TimeoutError):
            await self.scheduler.wait_and_run(tid, max_wait_seconds=10)

    async def test_stop_aborts_cleanly(self):
        tid = await self.queue.enqueue("job", "job.sh", 5)
        self.sensor.set(85.0)
        self.stop.set()

        with self.assertRaises(SchedulerStopped):
            await self.scheduler.wait_and_run(tid, max_wait_seconds=3600)
        assert (await self.queue.get(tid)).state is TaskState.PENDING

    async def test_waits_while_another_task_runs(self):
        other = await self.queue.enqueue("other", "other.sh", 1)
        tid = await self.queue.enqueue("job", "job.sh", 5)
        await self.queue.mark_running(other)

        with self.assertRaises(WaitTimeoutError):
            await self.scheduler.wait_and_run(tid, max_wait_seconds=600)
        assert self.actions.invoked == []

    async def test_cancelled_task_cannot_be_waited_on(self):
        tid = await self.queue.enqueue("job", "job.sh", 5)
        await self.queue.cancel(tid)
        with self.assertRaises(InvalidStateError):
            await self.scheduler.wait_and_run(tid, max_wait_seconds=60)


class TestDaemonCycle(SchedulerTestCase):
    async def test_loop_ticks_until_stopped(self):
        self.stop = SimulatedStop(self.clock, stop_after=3)
        self.scheduler._stop = self.stop
        await self.queue.enqueue("a", "a.sh", 1)
        await self.queue.enqueue("b", "b.sh", 2)

        await self.scheduler.run_forever()

        assert self.actions.invoked == ["a.sh", "b.sh"]
        assert self.scheduler.last_result.status == "nothing_to_do"
        assert self.stop.sleeps == [300, 300, 300]

    async def test_loop_survives_failing_cycle(self):
        self.stop = SimulatedStop(self.clock, stop_after=2)
        self.scheduler._stop = self.stop
        await self.queue.enqueue("a", "a.sh", 1)

        class BrokenSensor:
            calls = 0

            async def sample(inner):
                inner.calls += 1
                if inner.calls == 1:
                    raise RuntimeError("provider bug")
                return await self.sensor.sample()

        self.scheduler._sensor = BrokenSensor()
        await self.scheduler.run_forever()
        assert self.actions.invoked == ["a.sh"]

    async def test_dry_run_loop_runs_nothing(self):
        self.stop = SimulatedStop(self.clock, stop_after=2)
        scheduler = SchedulerLoop(
            queue=self.queue,
            sensor=self.sensor,
            thresholds=Thresholds(ceiling_c=70.0, ideal_c=55.0),
            clock=self.clock,
            action_factory=self.actions,
            stop=self.stop,
            dry_run=True,
        )
        tid = await self.queue.enqueue("a", "a.sh", 1)

        await scheduler.run_forever()

        assert self.actions.invoked == []
        assert scheduler.last_result.status == "would_run"
        assert (await self.queue.get(tid)).state is TaskState.PENDING
        assert await self.queue.history() == []
