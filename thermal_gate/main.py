from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, HTTPException

from .core.config import Settings, settings
from .core.log import configure_logging
from .core.timeutil import Clock

from .api.routes import router as api_router
import thermal_gate.api.routes as routes_module

from .domain.models import PowerState, PowerThresholds, Thresholds
from .domain.power_mode import PowerModeController
from .domain.window import PreferredWindow
from .drivers.actions import shell_action_factory
from .drivers.profiles import CommandPowerProfile, SimulatedPowerProfile
from .sensors.base import Sensor
from .sensors.host import CommandThermalSensor, SysfsThermalSensor
from .sensors.provider import ThermalSensorProvider
from .sensors.simulated import SimulatedThermalSensor
from .services.power_monitor import PowerModeService
from .services.scheduler import SchedulerLoop
from .services.task_queue import TaskQueue
from .services.timer import StopSignal
from .storage.sqlite_repo import SQLiteRepository


logger = logging.getLogger(__name__)


def build_sensor(cfg: Settings) -> Sensor:
    mode = cfg.sensor_mode.lower()
    if mode == "sysfs":
        return SysfsThermalSensor(zone_glob=cfg.sysfs_zone_glob)
    if mode == "command":
        return CommandThermalSensor(
            command=cfg.sensor_command,
            pattern=cfg.sensor_pattern,
            timeout=cfg.sensor_timeout_seconds,
        )
    # default to sim
    return SimulatedThermalSensor(temperature_c=cfg.sim_temperature_c)


def build_profile(cfg: Settings):
    if cfg.profile_mode.lower() == "command":
        return CommandPowerProfile(
            commands={
                PowerState.NORMAL: cfg.profile_normal_command,
                PowerState.LOW_POWER: cfg.profile_low_power_command,
                PowerState.EMERGENCY: cfg.profile_emergency_command,
            },
            timeout=cfg.profile_timeout_seconds,
        )
    return SimulatedPowerProfile()


@dataclass
class Services:
    repo: SQLiteRepository
    sensor: ThermalSensorProvider
    queue: TaskQueue
    scheduler: SchedulerLoop
    power: PowerModeService
    stop: StopSignal

    async def init(self) -> None:
        await self.repo.init()
        await self.power.load()


def build_services(cfg: Settings, stop: Optional[StopSignal] = None) -> Services:
    clock = Clock()
    stop = stop or StopSignal()
    repo = SQLiteRepository(cfg.sqlite_path)
    sensor = ThermalSensorProvider(build_sensor(cfg), timeout=cfg.sensor_timeout_seconds)
    queue = TaskQueue(repo, clock)
    scheduler = SchedulerLoop(
        queue=queue,
        sensor=sensor,
        thresholds=Thresholds(ceiling_c=cfg.task_ceiling_c, ideal_c=cfg.task_ideal_c),
        window=PreferredWindow.parse(cfg.preferred_start, cfg.preferred_end),
        clock=clock,
        action_factory=shell_action_factory(cfg.action_timeout_seconds or None),
        stop=stop,
        poll_seconds=cfg.wait_poll_seconds,
        interval_seconds=cfg.scheduler_interval_seconds,
        dry_run=cfg.dry_run,
    )
    controller = PowerModeController(
        PowerThresholds(
            high_c=cfg.power_high_c,
            recovery_c=cfg.power_recovery_c,
            critical_c=cfg.power_critical_c,
            min_dwell_seconds=cfg.min_dwell_seconds,
        )
    )
    power = PowerModeService(
        sensor=sensor,
        profile=build_profile(cfg),
        repo=repo,
        controller=controller,
        clock=clock,
        stop=stop,
        check_seconds=cfg.power_check_seconds,
        dry_run=cfg.dry_run,
    )
    return Services(repo=repo, sensor=sensor, queue=queue, scheduler=scheduler, power=power, stop=stop)


services: Services | None = None


def get_services() -> Services:
    assert services is not None
    return services


def get_queue() -> TaskQueue:
    return get_services().queue


def get_scheduler() -> SchedulerLoop:
    return get_services().scheduler


def get_power() -> PowerModeService:
    return get_services().power


def get_sim_sensor() -> SimulatedThermalSensor:
    sensor = get_services().sensor.sensor
    if not isinstance(sensor, SimulatedThermalSensor):
        raise HTTPException(status_code=404, detail="Sim sensor not available (sensor_mode is not 'sim')")
    return sensor


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file)
    logger.info(
        "Starting %s (sensor=%s profile=%s%s)",
        settings.app_name, settings.sensor_mode, settings.profile_mode,
        " dry-run" if settings.dry_run else "",
    )

    global services
    services = build_services(settings)
    await services.init()

    await services.power.start()
    await services.scheduler.start()

    try:
        yield
    finally:
        services.stop.set()
        await services.scheduler.stop()
        await services.power.stop()
        logger.info("Shutdown complete")


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# Make the dependency functions in routes resolve to the real ones
app.dependency_overrides[routes_module.get_queue] = get_queue
app.dependency_overrides[routes_module.get_scheduler] = get_scheduler
app.dependency_overrides[routes_module.get_power] = get_power
app.dependency_overrides[routes_module.get_sim_sensor] = get_sim_sensor

app.include_router(api_router, prefix="/api")
