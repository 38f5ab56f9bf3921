from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass
from threading import Lock

from .base import Sensor
from ..core.errors import SensorUnavailable


@dataclass
class PatternConfig:
    type: str = "sine"     # sine|step|ramp|random
    baseline: float = 60.0
    amplitude: float = 20.0
    period_s: float = 600
    noise: float = 0.5

    step_low: float = 50.0
    step_high: float = 85.0
    step_period_s: float = 120

    ramp_min: float = 45.0
    ramp_max: float = 95.0
    ramp_period_s: float = 600


class SimulatedThermalSensor(Sensor):
    def __init__(self, sensor_id: str = "temp_sim", temperature_c: float = 50.0):
        self._sensor_id = sensor_id
        self._lock = Lock()
        self._enabled = True
        self._mode = "manual"   # manual|pattern
        self._manual_c = float(temperature_c)
        self._pattern = PatternConfig()
        self._failure_rate = 0.0

    @property
    def sensor_id(self) -> str:
        return self._sensor_id

    def enable(self) -> None:
        with self._lock:
            self._enabled = True

    def disable(self) -> None:
        with self._lock:
            self._enabled = False

    def set_manual(self, temperature_c: float) -> None:
        with self._lock:
            self._mode = "manual"
            self._manual_c = float(temperature_c)

    def set_pattern(self, cfg: PatternConfig) -> None:
        with self._lock:
            self._mode = "pattern"
            self._pattern = cfg

    def set_failure_rate(self, rate: float) -> None:
        with self._lock:
            self._failure_rate = min(1.0, max(0.0, float(rate)))

    def status(self) -> dict:
        with self._lock:
            return {
                "enabled": self._enabled,
                "mode": self._mode,
                "manual_c": self._manual_c,
                "pattern": self._pattern.__dict__,
                "failure_rate": self._failure_rate,
            }

    def read(self) -> float:
        with self._lock:
            if not self._enabled:
                raise SensorUnavailable("Simulated sensor disabled")

            if self._failure_rate > 0.0 and random.random() < self._failure_rate:
                raise SensorUnavailable("Simulated read failure")

            if self._mode == "manual":
                return float(self._manual_c)

            cfg = self._pattern

        t = time.time()

        if cfg.type == "sine":
            phase = (t % cfg.period_s) / cfg.period_s * 2.0 * math.pi
            v = cfg.baseline + cfg.amplitude * math.sin(phase)

        elif cfg.type == "step":
            half = cfg.step_period_s / 2.0
            v = cfg.step_high if (t % cfg.step_period_s) < half else cfg.step_low

        elif cfg.type == "ramp":
            frac = (t % cfg.ramp_period_s) / cfg.ramp_period_s
            v = cfg.ramp_min + (cfg.ramp_max - cfg.ramp_min) * frac

        elif cfg.type == "random":
            v = cfg.baseline + random.uniform(-cfg.amplitude, cfg.amplitude)

        else:
            v = cfg.baseline

        if cfg.noise > 0:
            v += random.uniform(-cfg.noise, cfg.noise)

        return float(v)
