import os
import tempfile
import unittest
from datetime import timedelta

import pytest

from thermal_gate.domain.models import PowerRecord, PowerState, PowerThresholds, ThermalReading
from thermal_gate.domain.power_mode import PowerModeController
from thermal_gate.drivers.profiles import SimulatedPowerProfile
from thermal_gate.services.power_monitor import PowerModeService
from thermal_gate.storage.sqlite_repo import SQLiteRepository

from fakes import T0, FakeClock, FakeProfile, FakeSensor, SimulatedStop


THRESHOLDS = PowerThresholds(high_c=80.0, recovery_c=65.0, critical_c=90.0, min_dwell_seconds=300)


def reading(temp):
    return ThermalReading(ts_utc=T0, temperature_c=temp)


def after(seconds):
    return T0 + timedelta(seconds=seconds)


def applied(ctrl, temp, now):
    """Decide and, if a transition is proposed, commit it as a successful apply would."""
    d = ctrl.decide(reading(temp), now)
    if d.target is not None:
        ctrl.commit(d.target, now)
    return d


class TestPowerModeController:
    def test_critical_preempts_from_normal(self):
        ctrl = PowerModeController(THRESHOLDS)
        d = ctrl.decide(reading(96.0), T0)
        assert d.target is PowerState.EMERGENCY

    @pytest.mark.parametrize("state", [PowerState.NORMAL, PowerState.LOW_POWER])
    def test_critical_ignores_dwell(self, state):
        ctrl = PowerModeController(THRESHOLDS, PowerRecord(state, T0))
        d = ctrl.decide(reading(90.0), after(1))
        assert d.target is PowerState.EMERGENCY

    def test_already_in_emergency_is_noop(self):
        ctrl = PowerModeController(THRESHOLDS, PowerRecord(PowerState.EMERGENCY, T0))
        assert ctrl.decide(reading(99.0), after(1)).target is None

    def test_high_temperature_switches_to_low_power(self):
        ctrl = PowerModeController(THRESHOLDS)
        d = applied(ctrl, 85.0, T0)
        assert d.target is PowerState.LOW_POWER
        assert ctrl.power_state is PowerState.LOW_POWER

    def test_at_high_threshold_stays_normal(self):
        ctrl = PowerModeController(THRESHOLDS)
        assert ctrl.decide(reading(80.0), T0).target is None

    def test_no_second_transition_within_dwell(self):
        ctrl = PowerModeController(THRESHOLDS)
        applied(ctrl, 85.0, T0)
        d = applied(ctrl, 60.0, after(100))
        assert d.target is None
        assert d.reason == "Min dwell time not met"
        assert ctrl.power_state is PowerState.LOW_POWER

    def test_recovery_after_dwell(self):
        ctrl = PowerModeController(THRESHOLDS)
        applied(ctrl, 85.0, T0)
        d = applied(ctrl, 60.0, after(300))
        assert d.target is PowerState.NORMAL

    def test_below_ceiling_but_above_recovery_keeps_low_power(self):
        ctrl = PowerModeController(THRESHOLDS)
        applied(ctrl, 85.0, T0)
        assert applied(ctrl, 70.0, after(1000)).target is None
        assert ctrl.power_state is PowerState.LOW_POWER

    def test_recovery_threshold_is_inclusive(self):
        ctrl = PowerModeController(THRESHOLDS, PowerRecord(PowerState.LOW_POWER, T0))
        assert ctrl.decide(reading(65.0), after(301)).target is PowerState.NORMAL

    def test_emergency_recovers_to_normal(self):
        ctrl = PowerModeController(THRESHOLDS, PowerRecord(PowerState.EMERGENCY, T0))
        assert ctrl.decide(reading(50.0), after(300)).target is PowerState.NORMAL

    def test_emergency_cooling_into_band_holds(self):
        ctrl = PowerModeController(THRESHOLDS, PowerRecord(PowerState.EMERGENCY, T0))
        assert ctrl.decide(reading(85.0), after(600)).target is None

    def test_unknown_temperature_never_transitions(self):
        ctrl = PowerModeController(THRESHOLDS, PowerRecord(PowerState.LOW_POWER, T0))
        d = ctrl.decide(reading(None), after(1000))
        assert d.target is None
        assert d.reason == "Temperature unknown"

    def test_clock_going_backwards_counts_as_zero_elapsed(self):
        ctrl = PowerModeController(THRESHOLDS, PowerRecord(PowerState.LOW_POWER, T0))
        assert ctrl.decide(reading(50.0), T0 - timedelta(hours=2)).target is None

    def test_fresh_controller_has_no_dwell(self):
        ctrl = PowerModeController(THRESHOLDS, PowerRecord(PowerState.LOW_POWER, None))
        assert ctrl.decide(reading(50.0), T0).target is PowerState.NORMAL

    def test_thresholds_validated(self):
        with pytest.raises(ValueError):
            PowerThresholds(high_c=80.0, recovery_c=80.0, critical_c=90.0, min_dwell_seconds=0)


class PowerServiceTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        fd, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.repo = SQLiteRepository(self.db_path)
        await self.repo.init()
        self.clock = FakeClock()
        self.sensor = FakeSensor(85.0)
        self.profile = FakeProfile()
        self.service = self._service()

    async def asyncTearDown(self) -> None:
        os.unlink(self.db_path)

    def _service(self, **kwargs) -> PowerModeService:
        return PowerModeService(
            sensor=self.sensor,
            profile=self.profile,
            repo=self.repo,
            controller=PowerModeController(THRESHOLDS),
            clock=self.clock,
            **kwargs,
        )


class TestPowerModeService(PowerServiceTestCase):
    async def test_transition_applies_and_persists(self):
        d = await self.service.evaluate_once()
        assert d.target is PowerState.LOW_POWER
        assert self.profile.applied == [PowerState.LOW_POWER]
        record = await self.repo.get_power_record()
        assert record.state is PowerState.LOW_POWER
        assert record.last_transition_at == self.clock.now()

    async def test_failed_apply_is_retried_without_recording(self):
        self.profile.fail_next = 1
        await self.service.evaluate_once()
        assert await self.repo.get_power_record() is None
        assert self.service.controller.power_state is PowerState.NORMAL

        self.clock.advance(30)
        d = await self.service.evaluate_once()
        assert d.target is PowerState.LOW_POWER
        assert self.service.controller.power_state is PowerState.LOW_POWER
        assert (await self.repo.get_power_record()).state is PowerState.LOW_POWER

    async def test_dry_run_applies_nothing(self):
        d = await self.service.evaluate_once(dry_run=True)
        assert d.target is PowerState.LOW_POWER
        assert self.profile.applied == []
        assert await self.repo.get_power_record() is None

    async def test_state_survives_restart(self):
        await self.service.evaluate_once()
        self.clock.advance(100)
        self.sensor.set(60.0)

        restarted = self._service()
        await restarted.load()
        assert restarted.controller.power_state is PowerState.LOW_POWER
        # Dwell is measured from the persisted transition time
        assert (await restarted.evaluate_once()).target is None
        self.clock.advance(200)
        assert (await restarted.evaluate_once()).target is PowerState.NORMAL

    async def test_emergency_bypasses_dwell(self):
        await self.service.evaluate_once()
        self.clock.advance(5)
        self.sensor.set(96.0)
        d = await self.service.evaluate_once()
        assert d.target is PowerState.EMERGENCY
        assert self.profile.applied == [PowerState.LOW_POWER, PowerState.EMERGENCY]


class TestPowerModeLoop(PowerServiceTestCase):
    async def test_loop_checks_until_stopped(self):
        stop = SimulatedStop(self.clock, stop_after=2)
        service = self._service(stop=stop, check_seconds=30)
        await service.run_forever()
        assert stop.sleeps == [30, 30]
        assert self.profile.applied == [PowerState.LOW_POWER]

    async def test_loop_survives_failing_cycle(self):
        stop = SimulatedStop(self.clock, stop_after=2)
        sensor = self.sensor

        class BrokenSensor:
            calls = 0

            async def sample(inner):
                inner.calls += 1
                if inner.calls == 1:
                    raise RuntimeError("provider bug")
                return await sensor.sample()

        self.sensor = BrokenSensor()
        service = self._service(stop=stop, check_seconds=30)
        await service.run_forever()
        assert self.sensor.calls == 2
        assert service.controller.power_state is PowerState.LOW_POWER
        assert self.profile.applied == [PowerState.LOW_POWER]

    async def test_dry_run_loop_applies_nothing(self):
        stop = SimulatedStop(self.clock, stop_after=3)
        service = self._service(stop=stop, dry_run=True)
        await service.run_forever()
        assert len(stop.sleeps) == 3
        assert self.profile.applied == []
        assert await self.repo.get_power_record() is None
        assert service.controller.power_state is PowerState.NORMAL


class TestSimulatedPowerProfile(unittest.IsolatedAsyncioTestCase):
    async def test_apply_is_idempotent(self):
        profile = SimulatedPowerProfile()
        assert await profile.apply(PowerState.LOW_POWER)
        assert await profile.apply(PowerState.LOW_POWER)
        assert profile.applied == [PowerState.LOW_POWER]
        assert profile.state is PowerState.LOW_POWER
