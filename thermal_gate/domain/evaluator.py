"""Thermal condition evaluator shared by the power controller and the scheduler."""

from __future__ import annotations
from datetime import datetime
from typing import Optional

from .models import ConditionVerdict, Thresholds, ThermalReading
from .window import PreferredWindow


def evaluate(
    reading: Optional[ThermalReading],
    thresholds: Thresholds,
    window: Optional[PreferredWindow],
    now: datetime,
) -> ConditionVerdict:
    """Classify the current conditions.

    ``now`` is local wall-clock time; it only matters for the preferred
    window. A missing reading is never treated as safe.
    """
    if reading is None or reading.temperature_c is None:
        return ConditionVerdict.UNFAVORABLE

    temp = reading.temperature_c
    if temp > thresholds.ceiling_c:
        return ConditionVerdict.UNFAVORABLE

    if temp <= thresholds.ideal_c and window is not None and window.contains(now):
        return ConditionVerdict.IDEAL

    return ConditionVerdict.ACCEPTABLE
