"""Domain enums and pydantic schemas for zonectl."""

from .enums import HealthStatus, HVACMode, OperatingMode, SensorKind, SystemMode
from .schemas import (
    ActiveHours,
    CoolingOptions,
    DefrostOptions,
    DutyCycleOptions,
    HeatingOptions,
    HvacOptions,
    OverrideRequest,
    SafetyOptions,
    TemperatureThresholds,
    ZoneEntity,
)

__all__ = [
    "ActiveHours",
    "CoolingOptions",
    "DefrostOptions",
    "DutyCycleOptions",
    "HVACMode",
    "HealthStatus",
    "HeatingOptions",
    "HvacOptions",
    "OperatingMode",
    "OverrideRequest",
    "SafetyOptions",
    "SensorKind",
    "SystemMode",
    "TemperatureThresholds",
    "ZoneEntity",
]
