from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..core.config import settings
from ..core.errors import InvalidStateError, StorageError, TaskNotFoundError, WaitTimeoutError
from ..core.timeutil import now_local
from ..domain.models import HistoryEntry, PowerDecision, Task, TaskState, ThermalReading, TickResult
from ..services.power_monitor import PowerModeService
from ..services.scheduler import SchedulerLoop
from ..services.task_queue import INTERRUPTED, TaskQueue
from ..sensors.simulated import PatternConfig, SimulatedThermalSensor
from .schemas import (
    EnqueueRequest,
    ReconcileRequest,
    SimFailureRateRequest,
    SimManualRequest,
    SimPatternRequest,
    WaitRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependency getters ---
# Placeholders that main.py replaces via app.dependency_overrides.
def get_queue() -> TaskQueue:  # overridden in main
    raise RuntimeError("Queue dependency not configured")

def get_scheduler() -> SchedulerLoop:  # overridden in main
    raise RuntimeError("Scheduler dependency not configured")

def get_power() -> PowerModeService:  # overridden in main
    raise RuntimeError("Power mode dependency not configured")

def get_sim_sensor() -> SimulatedThermalSensor:  # overridden in main
    raise RuntimeError("Sim sensor dependency not configured")


def _task_out(t: Task) -> dict:
    return {
        "id": t.id,
        "priority": t.priority,
        "name": t.name,
        "action": t.action,
        "state": t.state.value,
        "enqueued_at": t.enqueued_at.isoformat(),
    }


def _history_out(e: HistoryEntry) -> dict:
    return {
        "id": e.id,
        "name": e.name,
        "outcome": e.outcome.value,
        "exit_code": e.exit_code,
        "duration_seconds": e.duration_seconds,
        "completed_at": e.completed_at.isoformat(),
        "detail": e.detail,
    }


def _reading_out(r: Optional[ThermalReading]) -> Optional[dict]:
    if r is None:
        return None
    return {
        "ts_utc": r.ts_utc.isoformat(),
        "temperature_c": r.temperature_c,
        "sensor_id": r.sensor_id,
        "error": r.error,
    }


def _tick_out(r: Optional[TickResult]) -> Optional[dict]:
    if r is None:
        return None
    return {
        "status": r.status,
        "verdict": r.verdict.value,
        "reason": r.reason,
        "reading": _reading_out(r.reading),
        "task": _task_out(r.task) if r.task else None,
        "outcome": {
            "state": r.outcome.state.value,
            "exit_code": r.outcome.exit_code,
            "duration_seconds": r.outcome.duration_seconds,
            "detail": r.outcome.detail,
        } if r.outcome else None,
    }


def _decision_out(d: Optional[PowerDecision]) -> Optional[dict]:
    if d is None:
        return None
    return {
        "current": d.current.value,
        "target": d.target.value if d.target else None,
        "verdict": d.verdict.value,
        "reason": d.reason,
        "temperature_c": d.temperature_c,
    }


def _raise_http(e: Exception):
    if isinstance(e, TaskNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidStateError):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, WaitTimeoutError):
        raise HTTPException(status_code=504, detail=str(e))
    if isinstance(e, StorageError):
        logger.error("Storage error: %s", e)
        raise HTTPException(status_code=503, detail=str(e))
    raise e


@router.get("/status")
async def get_status(
    queue: TaskQueue = Depends(get_queue),
    sched: SchedulerLoop = Depends(get_scheduler),
    power: PowerModeService = Depends(get_power),
):
    try:
        tasks = await queue.list_tasks()
    except StorageError as e:
        _raise_http(e)
    running = [t for t in tasks if t.state is TaskState.RUNNING]
    # Running tasks this process is not executing were left by an earlier one
    stale = [t for t in running if t.id != sched.current_task_id]
    st = power.controller.state
    window = sched.window
    return {
        "app": settings.app_name,
        "now_local": now_local().isoformat(),
        "power": {
            "state": st.power_state.value,
            "last_transition_at": st.last_transition_at.isoformat() if st.last_transition_at else None,
            "last_temperature_c": st.last_temperature_c,
            "last_decision": _decision_out(st.last_decision),
        },
        "scheduler": {
            "ceiling_c": sched.thresholds.ceiling_c,
            "ideal_c": sched.thresholds.ideal_c,
            "preferred_window": window.label if window else None,
            "last_tick": _tick_out(sched.last_result),
        },
        "queue": {
            "pending": len(tasks) - len(running),
            "running": _task_out(running[0]) if running else None,
            "stale_running": [_task_out(t) for t in stale],
        },
    }


@router.get("/tasks")
async def list_tasks(queue: TaskQueue = Depends(get_queue)):
    try:
        tasks = await queue.list_tasks()
    except StorageError as e:
        _raise_http(e)
    return {"tasks": [_task_out(t) for t in tasks]}


@router.post("/tasks", status_code=201)
async def enqueue(req: EnqueueRequest, queue: TaskQueue = Depends(get_queue)):
    try:
        task_id = await queue.enqueue(req.name, req.action, req.priority)
    except StorageError as e:
        _raise_http(e)
    return {"ok": True, "id": task_id}


@router.delete("/tasks/{task_id}")
async def cancel(task_id: str, queue: TaskQueue = Depends(get_queue)):
    try:
        task = await queue.cancel(task_id)
    except (InvalidStateError, StorageError) as e:
        _raise_http(e)
    return {"ok": True, "cancelled": _task_out(task)}


@router.post("/tasks/{task_id}/reconcile")
async def reconcile(task_id: str, req: ReconcileRequest, queue: TaskQueue = Depends(get_queue)):
    try:
        entry = await queue.reconcile(task_id, req.detail or INTERRUPTED)
    except (InvalidStateError, StorageError) as e:
        _raise_http(e)
    return {"ok": True, "history": _history_out(entry)}


@router.post("/tasks/{task_id}/wait")
async def wait_and_run(task_id: str, req: WaitRequest, sched: SchedulerLoop = Depends(get_scheduler)):
    try:
        result = await sched.wait_and_run(task_id, req.max_wait_s, dry_run=req.dry_run or settings.dry_run)
    except (InvalidStateError, StorageError, WaitTimeoutError) as e:
        _raise_http(e)
    return _tick_out(result)


@router.get("/history")
async def history(limit: int = 20, queue: TaskQueue = Depends(get_queue)):
    try:
        entries = await queue.history(limit=max(1, min(limit, 1000)))
    except StorageError as e:
        _raise_http(e)
    return {"rows": [_history_out(e) for e in entries]}


@router.post("/scheduler/tick")
async def tick(dry_run: bool = False, sched: SchedulerLoop = Depends(get_scheduler)):
    try:
        result = await sched.tick(dry_run=dry_run or settings.dry_run)
    except (InvalidStateError, StorageError) as e:
        _raise_http(e)
    return _tick_out(result)


@router.post("/power/evaluate")
async def evaluate_power(dry_run: bool = False, power: PowerModeService = Depends(get_power)):
    try:
        decision = await power.evaluate_once(dry_run=dry_run or settings.dry_run)
    except StorageError as e:
        _raise_http(e)
    return _decision_out(decision)


# --- Simulation endpoints ---
@router.get("/sim/status")
async def sim_status(sensor: SimulatedThermalSensor = Depends(get_sim_sensor)):
    return sensor.status()


@router.post("/sim/enable")
async def sim_enable(sensor: SimulatedThermalSensor = Depends(get_sim_sensor)):
    sensor.enable()
    return {"ok": True, "enabled": True}


@router.post("/sim/disable")
async def sim_disable(sensor: SimulatedThermalSensor = Depends(get_sim_sensor)):
    sensor.disable()
    return {"ok": True, "enabled": False}


@router.post("/sim/temperature")
async def sim_set_manual(req: SimManualRequest, sensor: SimulatedThermalSensor = Depends(get_sim_sensor)):
    sensor.set_manual(req.temperature_c)
    return {"ok": True, "mode": "manual", "temperature_c": req.temperature_c}


@router.post("/sim/pattern")
async def sim_set_pattern(req: SimPatternRequest, sensor: SimulatedThermalSensor = Depends(get_sim_sensor)):
    cfg = PatternConfig(**req.model_dump())
    sensor.set_pattern(cfg)
    return {"ok": True, "pattern": cfg.__dict__}


@router.post("/sim/failure-rate")
async def sim_set_failure_rate(req: SimFailureRateRequest, sensor: SimulatedThermalSensor = Depends(get_sim_sensor)):
    sensor.set_failure_rate(req.rate)
    return {"ok": True, "failure_rate": req.rate}
