from __future__ import annotations
from typing import Protocol, Callable, runtime_checkable
from .models import ActionResult, PowerState, ThermalReading


@runtime_checkable
class SensorProvider(Protocol):
    async def sample(self) -> ThermalReading:
        ...


@runtime_checkable
class PowerProfileController(Protocol):
    profile_id: str

    async def apply(self, state: PowerState) -> bool:
        ...


@runtime_checkable
class JobAction(Protocol):
    async def invoke(self) -> ActionResult:
        ...


ActionFactory = Callable[[str], JobAction]
