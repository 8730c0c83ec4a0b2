"""Pydantic schemas for zonectl configuration and API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import HealthStatus, OperatingMode, SystemMode

# ---------------------------------------------------------------------------
# HVAC configuration
# ---------------------------------------------------------------------------


class TemperatureThresholds(BaseModel):
    """Hysteresis band (indoor) and operating window (outdoor) for one mode."""

    model_config = ConfigDict(frozen=True)

    indoor_min: float = Field(ge=-50, le=60, description="Lower indoor threshold")
    indoor_max: float = Field(ge=-50, le=60, description="Upper indoor threshold")
    outdoor_min: float = Field(ge=-50, le=60, description="Minimum outdoor temperature for operation")
    outdoor_max: float = Field(ge=-50, le=60, description="Maximum outdoor temperature for operation")

    @model_validator(mode="after")
    def _check_ranges(self) -> TemperatureThresholds:
        if self.indoor_min >= self.indoor_max:
            raise ValueError("indoor_min must be less than indoor_max")
        if self.outdoor_min >= self.outdoor_max:
            raise ValueError("outdoor_min must be less than outdoor_max")
        return self


class DefrostOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    temperature_threshold: float = Field(
        default=0.0, description="Outdoor temperature at/below which icing is possible"
    )
    period_seconds: int = Field(
        default=7200, gt=0, description="Heating runtime between two defrost cycles"
    )
    duration_seconds: int = Field(default=300, gt=0, description="Length of one defrost cycle")


class HeatingOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=21.0, ge=10, le=35)
    preset_mode: str | None = None
    thresholds: TemperatureThresholds
    defrost: DefrostOptions | None = None


class CoolingOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=24.5, ge=15, le=35)
    preset_mode: str | None = None
    thresholds: TemperatureThresholds


class SafetyOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_temp_c: float = 18.0
    max_temp_c: float = 26.0
    heating_margin_c: float = Field(default=1.0, ge=0)
    cooling_margin_c: float = Field(default=1.0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> SafetyOptions:
        if self.min_temp_c >= self.max_temp_c:
            raise ValueError("safety min_temp_c must be less than max_temp_c")
        return self

    def clamp(self, temperature: float) -> float:
        return max(self.min_temp_c, min(self.max_temp_c, temperature))


class DutyCycleOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_run_time_seconds: int = Field(default=300, ge=0)
    max_cycles_per_hour: int = Field(default=6, ge=1)


class ActiveHours(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0, le=23, description="Weekend start hour (24h)")
    start_weekday: int = Field(ge=0, le=23, description="Weekday start hour (24h)")
    end: int = Field(ge=0, le=23, description="End hour (24h, inclusive)")

    def contains(self, hour: int, *, weekday: bool) -> bool:
        start = self.start_weekday if weekday else self.start
        return start <= hour <= self.end


class ZoneEntity(BaseModel):
    """One independently controllable climate entity."""

    model_config = ConfigDict(frozen=True)

    id: str
    enabled: bool = True
    defrost: bool = False

    @field_validator("id")
    @classmethod
    def _check_entity_id(cls, v: str) -> str:
        if "." not in v:
            raise ValueError('entity id must be in format "domain.entity"')
        return v


class HvacOptions(BaseModel):
    """Everything the control core needs to know about the installation."""

    model_config = ConfigDict(frozen=True)

    indoor_sensor: str
    outdoor_sensor: str
    system_mode: SystemMode = SystemMode.auto
    zones: tuple[ZoneEntity, ...] = ()
    heating: HeatingOptions
    cooling: CoolingOptions
    safety: SafetyOptions = Field(default_factory=SafetyOptions)
    duty_cycle: DutyCycleOptions = Field(default_factory=DutyCycleOptions)
    active_hours: ActiveHours | None = None
    history_size: int = Field(default=100, ge=1)
    dispatch_timeout_seconds: float = Field(default=10.0, gt=0)
    default_override_ttl_seconds: int | None = Field(default=None, gt=0)

    @field_validator("indoor_sensor", "outdoor_sensor")
    @classmethod
    def _check_sensor(cls, v: str) -> str:
        if not v.startswith("sensor."):
            raise ValueError("temperature sources must be sensor entities")
        return v

    @property
    def initial_mode(self) -> OperatingMode:
        return OperatingMode.off if self.system_mode == SystemMode.off else OperatingMode.idle


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

OVERRIDE_MODES = frozenset(
    {OperatingMode.off, OperatingMode.idle, OperatingMode.heating, OperatingMode.cooling}
)


class OverrideRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: OperatingMode
    temperature: float | None = Field(default=None, ge=-50, le=60)
    ttl_seconds: int | None = Field(default=None, gt=0)

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, v: OperatingMode) -> OperatingMode:
        if v not in OVERRIDE_MODES:
            raise ValueError(f"mode {v.value!r} cannot be requested manually")
        return v


class ZoneOutcomeResponse(BaseModel):
    zone_id: str
    success: bool
    error: str | None = None


class DispatchResponse(BaseModel):
    all_succeeded: bool
    per_zone: list[ZoneOutcomeResponse] = Field(default_factory=list)


class TransitionRecordResponse(BaseModel):
    timestamp: datetime
    from_mode: OperatingMode
    to_mode: OperatingMode
    reasoning: str
    triggering_conditions: dict[str, Any] = Field(default_factory=dict)
    event: str = ""


class EventOutcomeResponse(BaseModel):
    event: str
    accepted: bool
    record: TransitionRecordResponse | None = None
    dispatch: DispatchResponse | None = None
    error: str | None = None


class ModeRuntimeResponse(BaseModel):
    last_entered_at: datetime | None = None
    cumulative_runtime_seconds: float = 0.0
    cycles_this_hour: int = 0


class StatusResponse(BaseModel):
    current_mode: OperatingMode
    system_mode: SystemMode
    accepting_events: bool
    last_transition_at: datetime | None = None
    last_reasoning: str = ""
    target_temperature: float | None = None
    indoor_temp: float | None = None
    outdoor_temp: float | None = None
    override: dict[str, Any] | None = None
    bookkeeping: dict[str, ModeRuntimeResponse] = Field(default_factory=dict)
    last_error: str | None = None


class HealthResponse(BaseModel):
    status: HealthStatus
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "ActiveHours",
    "CoolingOptions",
    "DefrostOptions",
    "DispatchResponse",
    "DutyCycleOptions",
    "EventOutcomeResponse",
    "HealthResponse",
    "HeatingOptions",
    "HvacOptions",
    "ModeRuntimeResponse",
    "OVERRIDE_MODES",
    "OverrideRequest",
    "SafetyOptions",
    "StatusResponse",
    "TemperatureThresholds",
    "TransitionRecordResponse",
    "ZoneEntity",
    "ZoneOutcomeResponse",
]
