from __future__ import annotations


class ThermalGateError(Exception):
    """Base class for errors raised by the control core."""


class SensorUnavailable(ThermalGateError):
    """The thermal sensor could not produce a reading this cycle."""


class StorageError(ThermalGateError):
    """The persistence store could not complete an operation."""


class InvalidStateError(ThermalGateError):
    """A queue operation does not fit the task's current lifecycle state."""


class TaskNotFoundError(InvalidStateError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class WaitTimeoutError(ThermalGateError, TimeoutError):
    """Conditions never became favourable within the wait budget."""


class SchedulerStopped(ThermalGateError):
    """A stop was requested while waiting for conditions."""


class ProfileApplyFailure(ThermalGateError):
    """The power profile could not be applied."""
