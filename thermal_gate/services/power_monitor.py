from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from typing import Optional

from ..core.errors import ProfileApplyFailure
from ..core.timeutil import Clock
from ..domain.interfaces import PowerProfileController, SensorProvider
from ..domain.models import PowerDecision, PowerRecord
from ..domain.power_mode import PowerModeController
from ..storage.sqlite_repo import SQLiteRepository
from .timer import StopSignal

logger = logging.getLogger(__name__)


class PowerModeService:
    def __init__(
        self,
        sensor: SensorProvider,
        profile: PowerProfileController,
        repo: SQLiteRepository,
        controller: PowerModeController,
        clock: Optional[Clock] = None,
        stop: Optional[StopSignal] = None,
        check_seconds: float = 30,
        dry_run: bool = False,
    ) -> None:
        self._sensor = sensor
        self._profile = profile
        self._repo = repo
        self._controller = controller
        self._clock = clock or Clock()
        self._stop = stop or StopSignal()
        self._check_seconds = check_seconds
        self._dry_run = dry_run

        self._task: Optional[asyncio.Task] = None

    @property
    def controller(self) -> PowerModeController:
        return self._controller

    async def load(self) -> PowerRecord:
        """Restore the last successfully applied state from the store."""
        record = await self._repo.get_power_record()
        if record is not None:
            self._controller.restore(record)
            logger.info(
                "Restored power state %s (last transition %s)",
                record.state.value,
                record.last_transition_at.isoformat() if record.last_transition_at else "never",
            )
        return self._controller.record()

    async def evaluate_once(self, now: Optional[datetime] = None, dry_run: bool = False) -> PowerDecision:
        dry_run = dry_run or self._dry_run
        now = now or self._clock.now()
        reading = await self._sensor.sample()
        decision = self._controller.decide(reading, now)

        if decision.target is None:
            return decision

        if dry_run:
            logger.info("[dry-run] would apply power profile %s", decision.target.value)
            return decision

        try:
            applied = await self._profile.apply(decision.target)
        except ProfileApplyFailure as e:
            logger.warning("Profile apply %s failed, will retry next cycle: %s", decision.target.value, e)
            return decision
        if not applied:
            logger.warning("Profile apply %s reported failure, will retry next cycle", decision.target.value)
            return decision

        # Persist before committing so memory never runs ahead of the store
        await self._repo.save_power_record(PowerRecord(decision.target, now))
        self._controller.commit(decision.target, now)
        return decision

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self.run_forever(), name="power_mode_loop")

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            await self._task
            self._task = None

    async def run_forever(self) -> None:
        t = self._controller.thresholds
        logger.info(
            "Power mode loop started (check every %ss; high=%.0f recovery=%.0f critical=%.0f dwell=%ss%s)",
            self._check_seconds, t.high_c, t.recovery_c, t.critical_c, t.min_dwell_seconds,
            "; dry-run" if self._dry_run else "",
        )
        while not self._stop.is_set():
            try:
                await self.evaluate_once()
            except Exception as e:
                logger.exception("Power mode loop error: %s", e)

            if await self._stop.sleep(self._check_seconds):
                break

        logger.info("Power mode loop stopped")
