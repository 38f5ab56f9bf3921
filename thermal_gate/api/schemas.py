from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional


class EnqueueRequest(BaseModel):
    name: str = Field(min_length=1)
    action: str = Field(min_length=1)  # shell command line
    priority: int = Field(default=5, ge=1, le=10)


class WaitRequest(BaseModel):
    max_wait_s: float = Field(default=86400, gt=0)
    dry_run: bool = False


class ReconcileRequest(BaseModel):
    detail: Optional[str] = None


class SimManualRequest(BaseModel):
    temperature_c: float = Field(ge=-40, le=150)


class SimPatternRequest(BaseModel):
    type: str = Field(default="sine", pattern="^(sine|step|ramp|random)$")
    baseline: float = 60.0
    amplitude: float = Field(default=20.0, ge=0)
    period_s: float = Field(default=600, gt=0)
    noise: float = Field(default=0.5, ge=0)

    step_low: float = 50.0
    step_high: float = 85.0
    step_period_s: float = Field(default=120, gt=0)

    ramp_min: float = 45.0
    ramp_max: float = 95.0
    ramp_period_s: float = Field(default=600, gt=0)


class SimFailureRateRequest(BaseModel):
    rate: float = Field(ge=0, le=1)
