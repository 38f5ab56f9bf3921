from __future__ import annotations

from abc import ABC, abstractmethod


class Sensor(ABC):
    """Domain-facing temperature sensor abstraction."""

    @property
    @abstractmethod
    def sensor_id(self) -> str:
        ...

    @property
    def unit(self) -> str:
        return "°C"

    @abstractmethod
    def read(self) -> float:
        """Return a temperature in °C. Blocking; raise on failure."""
        ...
