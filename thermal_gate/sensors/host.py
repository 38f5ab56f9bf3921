from __future__ import annotations

import glob
import logging
import re
import subprocess

from .base import Sensor
from ..core.errors import SensorUnavailable

logger = logging.getLogger(__name__)


class SysfsThermalSensor(Sensor):
    """Hottest Linux thermal zone, read from sysfs (millidegrees)."""

    def __init__(self, zone_glob: str = "/sys/class/thermal/thermal_zone*/temp", sensor_id: str = "sysfs"):
        self._zone_glob = zone_glob
        self._sensor_id = sensor_id

    @property
    def sensor_id(self) -> str:
        return self._sensor_id

    def read(self) -> float:
        temps = []
        for path in sorted(glob.glob(self._zone_glob)):
            try:
                with open(path) as f:
                    raw = int(f.read().strip())
            except (OSError, ValueError) as e:
                logger.debug("Skipping thermal zone %s: %s", path, e)
                continue
            if raw > 0:
                temps.append(raw / 1000.0)

        if not temps:
            raise SensorUnavailable(f"No readable thermal zones matching {self._zone_glob}")
        return max(temps)


class CommandThermalSensor(Sensor):
    """Run a command (e.g. powermetrics) and extract the temperature from its output."""

    def __init__(
        self,
        command: str,
        pattern: str = r"([0-9]+(?:\.[0-9]+)?)",
        timeout: float = 10.0,
        sensor_id: str = "command",
    ):
        self._command = command
        self._pattern = re.compile(pattern)
        self._timeout = timeout
        self._sensor_id = sensor_id

    @property
    def sensor_id(self) -> str:
        return self._sensor_id

    def read(self) -> float:
        try:
            proc = subprocess.run(
                self._command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            raise SensorUnavailable(f"Sensor command timed out after {self._timeout}s") from None

        m = self._pattern.search(proc.stdout)
        if not m:
            raise SensorUnavailable(
                f"No temperature in output of {self._command!r} (exit {proc.returncode})"
            )
        temp = float(m.group(1))
        # The macOS tooling reports 0 when the SMC read fails
        if temp <= 0.0:
            raise SensorUnavailable(f"Implausible temperature {temp}")
        return temp
