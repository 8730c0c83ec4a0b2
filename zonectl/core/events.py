"""Events accepted by the event router and applied by the mode state machine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from zonectl.models.enums import OperatingMode


@dataclass(frozen=True, slots=True)
class TemperaturesUpdated:
    """New sensor data. A ``None`` temperature keeps the last value of that kind."""

    indoor_temp: float | None = None
    outdoor_temp: float | None = None
    observed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ManualOverrideRequested:
    mode: OperatingMode
    temperature: float | None = None
    ttl_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class ManualOverrideCancelled:
    pass


@dataclass(frozen=True, slots=True)
class AutoEvaluate:
    reason: str = "periodic"


@dataclass(frozen=True, slots=True)
class Shutdown:
    reason: str = "shutdown requested"


@dataclass(frozen=True, slots=True)
class Restart:
    pass


HVACEvent = (
    TemperaturesUpdated
    | ManualOverrideRequested
    | ManualOverrideCancelled
    | AutoEvaluate
    | Shutdown
    | Restart
)


def event_name(event: HVACEvent) -> str:
    return type(event).__name__


__all__ = [
    "AutoEvaluate",
    "HVACEvent",
    "ManualOverrideCancelled",
    "ManualOverrideRequested",
    "Restart",
    "Shutdown",
    "TemperaturesUpdated",
    "event_name",
]
