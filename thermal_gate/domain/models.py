from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ConditionVerdict(str, Enum):
    UNFAVORABLE = "unfavorable"
    ACCEPTABLE = "acceptable"
    IDEAL = "ideal"


class PowerState(str, Enum):
    NORMAL = "normal"
    LOW_POWER = "low_power"
    EMERGENCY = "emergency"


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED)


@dataclass(frozen=True)
class ThermalReading:
    ts_utc: datetime
    temperature_c: Optional[float]  # None = unknown this cycle, never zero
    sensor_id: str = "unknown"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.temperature_c is not None


@dataclass(frozen=True)
class Thresholds:
    ceiling_c: float
    ideal_c: float

    def __post_init__(self) -> None:
        if self.ideal_c > self.ceiling_c:
            raise ValueError(f"ideal_c {self.ideal_c} exceeds ceiling_c {self.ceiling_c}")


@dataclass(frozen=True)
class PowerThresholds:
    high_c: float
    recovery_c: float
    critical_c: float
    min_dwell_seconds: float

    def __post_init__(self) -> None:
        if not self.recovery_c < self.high_c <= self.critical_c:
            raise ValueError(
                f"expected recovery < high <= critical, got "
                f"{self.recovery_c}/{self.high_c}/{self.critical_c}"
            )


@dataclass(frozen=True)
class PowerRecord:
    state: PowerState
    last_transition_at: Optional[datetime]


@dataclass(frozen=True)
class PowerDecision:
    current: PowerState
    target: Optional[PowerState]  # None = no transition
    verdict: ConditionVerdict
    reason: str
    temperature_c: Optional[float] = None


@dataclass(frozen=True)
class Task:
    id: str
    priority: int
    name: str
    action: str
    state: TaskState
    enqueued_at: datetime


@dataclass(frozen=True)
class TaskOutcome:
    state: TaskState
    duration_seconds: float
    exit_code: Optional[int] = None
    detail: str = ""


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    name: str
    outcome: TaskState
    exit_code: Optional[int]
    duration_seconds: float
    completed_at: datetime
    detail: str = ""


@dataclass(frozen=True)
class ActionResult:
    ok: bool
    exit_code: Optional[int] = None
    detail: str = ""


@dataclass(frozen=True)
class TickResult:
    status: str  # "not_eligible" | "busy" | "nothing_to_do" | "ran" | "would_run"
    verdict: ConditionVerdict
    reason: str
    reading: Optional[ThermalReading] = None
    task: Optional[Task] = None
    outcome: Optional[TaskOutcome] = None
