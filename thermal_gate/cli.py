"""
Command-line operator surface.

Usage:
    thermal-gate add "nightly build" "make -j8" --priority 3
    thermal-gate list
    thermal-gate process --dry-run          # one scheduler tick
    thermal-gate wait <task-id> --max-wait 3600
    thermal-gate power                      # one power-mode evaluation
    thermal-gate daemon --interval 300      # both loops until Ctrl-C
    thermal-gate serve --port 8080          # HTTP API
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Optional

from .core.config import Settings, settings
from .core.errors import InvalidStateError, SchedulerStopped, StorageError, WaitTimeoutError
from .core.log import configure_logging
from .domain.models import TickResult
from .domain.window import PreferredWindow
from .main import Services, build_services
from .services.task_queue import INTERRUPTED


def _apply_overrides(args: argparse.Namespace) -> Settings:
    updates = {
        "task_ceiling_c": args.ceiling,
        "task_ideal_c": args.ideal,
        "power_high_c": args.high,
        "power_recovery_c": args.recovery,
        "power_critical_c": args.critical,
        "min_dwell_seconds": args.min_dwell,
        "sqlite_path": args.db,
        "sensor_mode": args.sensor,
        "profile_mode": args.profile,
    }
    if args.window is not None:
        if args.window in ("", "none"):
            updates["preferred_start"], updates["preferred_end"] = "", ""
        else:
            start, _, end = args.window.partition("-")
            PreferredWindow.parse(start, end)
            updates["preferred_start"], updates["preferred_end"] = start, end
    if getattr(args, "interval", None) is not None:
        updates["scheduler_interval_seconds"] = args.interval
    if args.dry_run:
        updates["dry_run"] = True
    merged = settings.model_dump()
    merged.update({k: v for k, v in updates.items() if v is not None})
    # Re-validate so inconsistent thresholds fail fast
    return Settings.model_validate(merged)


def _print_tick(r: TickResult) -> None:
    temp = r.reading.temperature_c if r.reading else None
    print(f"status:  {r.status}")
    print(f"verdict: {r.verdict.value} ({'unknown' if temp is None else f'{temp:.1f}°C'})")
    print(f"reason:  {r.reason}")
    if r.task:
        print(f"task:    {r.task.id} {r.task.name}")
    if r.outcome:
        print(f"outcome: {r.outcome.state.value} in {r.outcome.duration_seconds:.1f}s {r.outcome.detail}".rstrip())


async def _run_daemon(svc: Services) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, svc.stop.set)
        except NotImplementedError:  # Windows
            pass
    await svc.power.start()
    await svc.scheduler.start()
    await svc.stop.wait_stopped()
    await svc.scheduler.stop()
    await svc.power.stop()


async def _dispatch(args: argparse.Namespace, cfg: Settings) -> int:
    svc = build_services(cfg)
    await svc.init()
    queue = svc.queue

    if args.cmd == "add":
        task_id = await queue.enqueue(args.name, args.action, args.priority or cfg.default_priority)
        print(task_id)
        if args.wait:
            _print_tick(await svc.scheduler.wait_and_run(task_id, cfg.max_wait_seconds, dry_run=cfg.dry_run))
        return 0

    if args.cmd == "list":
        tasks = await queue.list_tasks()
        if not tasks:
            print("No tasks in queue")
        for t in tasks:
            print(f"{t.id:<12} {t.priority:>3}  {t.name[:24]:<24} {t.state.value:<8} {t.enqueued_at:%Y-%m-%d %H:%M:%S}")
        return 0

    if args.cmd == "cancel":
        await queue.cancel(args.task_id)
        print(f"Task {args.task_id} removed from queue")
        return 0

    if args.cmd == "history":
        entries = await queue.history(limit=args.limit)
        if not entries:
            print("No task history")
        for e in entries:
            code = "-" if e.exit_code is None else str(e.exit_code)
            print(
                f"{e.id:<12} {e.name[:24]:<24} {e.outcome.value:<9} {code:>4} "
                f"{e.duration_seconds:>8.1f}s {e.completed_at:%Y-%m-%d %H:%M:%S}"
            )
        return 0

    if args.cmd == "reconcile":
        entry = await queue.reconcile(args.task_id, args.detail or INTERRUPTED)
        print(f"Task {entry.id} archived as {entry.outcome.value}")
        return 0

    if args.cmd == "status":
        verdict, reading = await svc.scheduler.check_conditions()
        record = svc.power.controller.record()
        running = await queue.running()
        pending = await queue.list_pending()
        temp = "unknown" if reading.temperature_c is None else f"{reading.temperature_c:.1f}°C"
        print(f"temperature: {temp}")
        print(f"task verdict: {verdict.value}")
        print(f"power state: {record.state.value} (since {record.last_transition_at or 'start'})")
        print(f"running:     {running.id + ' ' + running.name if running else '-'}")
        print(f"pending:     {len(pending)}")
        for t in await queue.stale_running():
            print(f"stale running task {t.id}: reconcile it to resume scheduling")
        return 0

    if args.cmd == "process":
        _print_tick(await svc.scheduler.tick(dry_run=cfg.dry_run))
        return 0

    if args.cmd == "wait":
        max_wait = args.max_wait if args.max_wait is not None else cfg.max_wait_seconds
        _print_tick(await svc.scheduler.wait_and_run(args.task_id, max_wait, dry_run=cfg.dry_run))
        return 0

    if args.cmd == "power":
        d = await svc.power.evaluate_once(dry_run=cfg.dry_run)
        target = d.target.value if d.target else "no change"
        print(f"{d.current.value} -> {target}: {d.reason}")
        return 0

    if args.cmd == "daemon":
        await _run_daemon(svc)
        return 0

    raise ValueError(f"unknown command {args.cmd}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="thermal-gate", description="Thermal-gated power mode and task scheduler")

    p.add_argument("--ceiling", type=float, help="Max temperature to start heavy tasks (°C)")
    p.add_argument("--ideal", type=float, help="Ideal temperature for heavy tasks (°C)")
    p.add_argument("--high", type=float, help="Temperature that triggers low power mode (°C)")
    p.add_argument("--recovery", type=float, help="Temperature to return to normal mode (°C)")
    p.add_argument("--critical", type=float, help="Emergency thermal protection (°C)")
    p.add_argument("--min-dwell", type=float, help="Minimum seconds between power mode changes")
    p.add_argument("--window", help="Preferred window HH:MM-HH:MM, or 'none'")
    p.add_argument("--db", help="SQLite database path")
    p.add_argument("--sensor", choices=["sim", "sysfs", "command"])
    p.add_argument("--profile", choices=["sim", "command"])
    p.add_argument("--dry-run", action="store_true", help="Report decisions without applying them")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = p.add_subparsers(dest="cmd", required=True)

    add = sub.add_parser("add", help="Queue a task")
    add.add_argument("name")
    add.add_argument("action", help="Shell command to run")
    add.add_argument("--priority", "-p", type=int, choices=range(1, 11), metavar="1-10")
    add.add_argument("--wait", action="store_true", help="Block until the task has run")

    sub.add_parser("list", help="List queued tasks")

    cancel = sub.add_parser("cancel", help="Remove a pending task")
    cancel.add_argument("task_id")

    hist = sub.add_parser("history", help="Show completed tasks")
    hist.add_argument("--limit", type=int, default=20)

    rec = sub.add_parser("reconcile", help="Archive a task left running by a crashed process")
    rec.add_argument("task_id")
    rec.add_argument("--detail")

    sub.add_parser("status", help="Show temperature, verdict and power state")
    sub.add_parser("process", help="Run one scheduler tick")

    wait = sub.add_parser("wait", help="Wait for good conditions, then run a task")
    wait.add_argument("task_id")
    wait.add_argument("--max-wait", type=float)

    sub.add_parser("power", help="Evaluate power mode once")

    daemon = sub.add_parser("daemon", help="Run the scheduler and power mode loops")
    daemon.add_argument("--interval", type=float, help="Seconds between scheduler ticks")

    serve = sub.add_parser("serve", help="Run the HTTP API (includes both loops)")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = _apply_overrides(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.cmd == "serve":
        import uvicorn
        # The app reads the module-level settings; carry CLI overrides over
        for key, value in cfg.model_dump().items():
            setattr(settings, key, value)
        uvicorn.run("thermal_gate.main:app", host=args.host, port=args.port)
        return 0

    configure_logging(
        "DEBUG" if args.verbose else cfg.log_level,
        cfg.log_file if args.cmd == "daemon" else None,
    )

    try:
        return asyncio.run(_dispatch(args, cfg))
    except InvalidStateError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except WaitTimeoutError as e:
        print(f"timeout: {e}", file=sys.stderr)
        return 3
    except SchedulerStopped as e:
        print(f"stopped: {e}", file=sys.stderr)
        return 130
    except StorageError as e:
        print(f"storage error: {e}", file=sys.stderr)
        return 4


if __name__ == "__main__":
    sys.exit(main())
