from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from .evaluator import evaluate
from .models import (
    ConditionVerdict,
    PowerDecision,
    PowerRecord,
    PowerState,
    PowerThresholds,
    ThermalReading,
    Thresholds,
)
from ..core.timeutil import elapsed_seconds

logger = logging.getLogger(__name__)


@dataclass
class ControllerState:
    power_state: PowerState = PowerState.NORMAL
    last_transition_at: Optional[datetime] = None
    last_temperature_c: Optional[float] = None
    last_decision: Optional[PowerDecision] = None


class PowerModeController:
    """Hysteretic state machine over normal / low_power / emergency.

    The controller only decides. Applying the profile and persisting the
    record is the caller's job; ``commit`` is called once both succeeded so
    the in-memory state always mirrors the last applied profile.
    """

    def __init__(self, thresholds: PowerThresholds, record: Optional[PowerRecord] = None) -> None:
        self.thresholds = thresholds
        self.state = ControllerState()
        if record is not None:
            self.restore(record)

    @property
    def power_state(self) -> PowerState:
        return self.state.power_state

    def restore(self, record: PowerRecord) -> None:
        self.state.power_state = record.state
        self.state.last_transition_at = record.last_transition_at

    def record(self) -> PowerRecord:
        return PowerRecord(self.state.power_state, self.state.last_transition_at)

    def _dwell_met(self, now: datetime) -> bool:
        elapsed = elapsed_seconds(self.state.last_transition_at, now)
        return elapsed is None or elapsed >= self.thresholds.min_dwell_seconds

    def decide(self, reading: Optional[ThermalReading], now: datetime) -> PowerDecision:
        t = self.thresholds
        current = self.state.power_state
        temp = reading.temperature_c if reading is not None else None
        self.state.last_temperature_c = temp

        verdict = evaluate(reading, Thresholds(ceiling_c=t.high_c, ideal_c=t.recovery_c), None, now)

        def _decision(target: Optional[PowerState], reason: str) -> PowerDecision:
            d = PowerDecision(current, target, verdict, reason, temp)
            self.state.last_decision = d
            if target is None:
                logger.info("power: no change (%s) - %s", current.value, reason)
            else:
                logger.info("power: %s -> %s - %s", current.value, target.value, reason)
            return d

        if temp is None:
            return _decision(None, "Temperature unknown")

        # Emergencies preempt immediately, no dwell check
        if temp >= t.critical_c:
            if current is PowerState.EMERGENCY:
                return _decision(None, f"Still critical ({temp:.1f}°C >= {t.critical_c:.0f}°C)")
            return _decision(
                PowerState.EMERGENCY, f"Critical temperature {temp:.1f}°C >= {t.critical_c:.0f}°C"
            )

        if current is PowerState.NORMAL and verdict is ConditionVerdict.UNFAVORABLE:
            if not self._dwell_met(now):
                return _decision(None, "Min dwell time not met")
            return _decision(PowerState.LOW_POWER, f"Temperature {temp:.1f}°C above {t.high_c:.0f}°C")

        if current in (PowerState.LOW_POWER, PowerState.EMERGENCY) and temp <= t.recovery_c:
            if not self._dwell_met(now):
                return _decision(None, "Min dwell time not met")
            return _decision(PowerState.NORMAL, f"Temperature {temp:.1f}°C recovered to <= {t.recovery_c:.0f}°C")

        return _decision(
            None,
            f"Within band (temp={temp:.1f}, high>{t.high_c:.0f}, recovery<={t.recovery_c:.0f})",
        )

    def commit(self, target: PowerState, now: datetime) -> None:
        self.state.power_state = target
        self.state.last_transition_at = now
