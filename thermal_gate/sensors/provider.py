from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .base import Sensor
from ..core.timeutil import now_utc
from ..domain.models import ThermalReading

logger = logging.getLogger(__name__)


class ThermalSensorProvider:
    """Turns a blocking ``Sensor`` into a bounded, never-raising ``sample()``.

    Failures and timeouts become an absent reading, which the evaluator
    treats as unfavorable.
    """

    def __init__(self, sensor: Sensor, timeout: float = 10.0) -> None:
        self._sensor = sensor
        self._timeout = timeout
        self.last_reading: Optional[ThermalReading] = None

    @property
    def sensor(self) -> Sensor:
        return self._sensor

    async def sample(self) -> ThermalReading:
        sensor_id = getattr(self._sensor, "sensor_id", "unknown")
        try:
            # Sync call, run in thread to avoid blocking event loop
            loop = asyncio.get_running_loop()
            temp = await asyncio.wait_for(
                loop.run_in_executor(None, self._sensor.read), timeout=self._timeout
            )
            reading = ThermalReading(ts_utc=now_utc(), temperature_c=float(temp), sensor_id=sensor_id)
            logger.debug("Sensor read OK: %.1f°C (sensor=%s)", reading.temperature_c, sensor_id)
        except asyncio.TimeoutError:
            reading = ThermalReading(
                ts_utc=now_utc(), temperature_c=None, sensor_id=sensor_id,
                error=f"timed out after {self._timeout}s",
            )
            logger.warning("SensorUnavailable: %s read timed out after %ss", sensor_id, self._timeout)
        except Exception as e:
            reading = ThermalReading(ts_utc=now_utc(), temperature_c=None, sensor_id=sensor_id, error=str(e))
            logger.warning("SensorUnavailable: %s read failed: %s", sensor_id, e)

        self.last_reading = reading
        return reading
