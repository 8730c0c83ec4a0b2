"""Application configuration powered by Pydantic settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import AnyUrl, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from zonectl.models.enums import SystemMode
from zonectl.models.schemas import (
    ActiveHours,
    CoolingOptions,
    DefrostOptions,
    DutyCycleOptions,
    HeatingOptions,
    HvacOptions,
    SafetyOptions,
    TemperatureThresholds,
    ZoneEntity,
)


class Settings(BaseSettings):
    """Centralized configuration object with environment fallbacks."""

    model_config = SettingsConfigDict(env_prefix="ZONECTL_", env_file=".env", extra="ignore")

    # App
    app_name: str = "zonectl"
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8420
    debug: bool = False
    log_level: str = Field(default="info")

    # Home Assistant
    home_assistant_url: AnyUrl | str = Field(default="http://localhost:8123")
    home_assistant_token: str = Field(default="")
    home_assistant_timeout_seconds: float = Field(default=15.0, gt=0)

    # Sensors and equipment
    indoor_sensor: str = Field(default="sensor.indoor_temperature")
    outdoor_sensor: str = Field(default="sensor.outdoor_temperature")
    # Comma-separated climate entities. "!climate.x" is disabled, "climate.x~" can defrost.
    hvac_entities: str = Field(default="")
    system_mode: SystemMode = SystemMode.auto

    # Heating
    heating_temperature: float = 21.0
    heating_preset_mode: str | None = Field(default="comfort")
    heating_indoor_min: float = 19.7
    heating_indoor_max: float = 20.2
    heating_outdoor_min: float = -10.0
    heating_outdoor_max: float = 15.0

    # Defrost (heat pumps)
    defrost_enabled: bool = False
    defrost_temperature_threshold: float = 0.0
    defrost_period_seconds: int = Field(default=7200, gt=0)
    defrost_duration_seconds: int = Field(default=300, gt=0)

    # Cooling
    cooling_temperature: float = 24.0
    cooling_preset_mode: str | None = Field(default="windFree")
    cooling_indoor_min: float = 23.5
    cooling_indoor_max: float = 25.0
    cooling_outdoor_min: float = 10.0
    cooling_outdoor_max: float = 45.0

    # Safety limits (absolute bounds for any commanded target)
    safety_min_temp_c: float = Field(default=18.0)
    safety_max_temp_c: float = Field(default=26.0)
    heating_margin_c: float = Field(default=1.0, ge=0)
    cooling_margin_c: float = Field(default=1.0, ge=0)

    # Duty cycle
    min_run_time_seconds: int = Field(default=300, ge=0)
    max_cycles_per_hour: int = Field(default=6, ge=1)

    # Active hours (unset = always active)
    active_hours_start: int | None = Field(default=None, ge=0, le=23)
    active_hours_start_weekday: int | None = Field(default=None, ge=0, le=23)
    active_hours_end: int | None = Field(default=None, ge=0, le=23)

    # Control loop
    evaluation_interval_seconds: int = Field(default=300, gt=0)
    dispatch_timeout_seconds: float = Field(default=10.0, gt=0)
    history_size: int = Field(default=100, ge=1)
    default_override_ttl_seconds: int | None = Field(default=None, gt=0)
    health_log_interval_seconds: int = Field(default=3600, gt=0)

    @field_validator("heating_preset_mode", "cooling_preset_mode", mode="before")
    @classmethod
    def _coerce_empty_preset(cls, v: str | None) -> str | None:
        """Treat a blank env var as "no preset"."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator(
        "active_hours_start",
        "active_hours_start_weekday",
        "active_hours_end",
        "default_override_ttl_seconds",
        mode="before",
    )
    @classmethod
    def _coerce_empty_int(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def zone_entities(self) -> list[ZoneEntity]:
        """Parsed ``hvac_entities``."""
        return parse_hvac_entities(self.hvac_entities)


def parse_hvac_entities(raw: str) -> list[ZoneEntity]:
    """Parse ``"climate.a, !climate.b, climate.c~"`` into zone entities.

    Raises:
        pydantic.ValidationError: If an entity id is not ``domain.object``.
    """
    zones: list[ZoneEntity] = []
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        enabled = not token.startswith("!")
        defrost = token.endswith("~")
        entity_id = token.lstrip("!").rstrip("~").strip()
        zones.append(ZoneEntity(id=entity_id, enabled=enabled, defrost=defrost))
    return zones


def build_hvac_options(settings: Settings) -> HvacOptions:
    """Turn flat settings into the nested options the control core consumes.

    Raises:
        pydantic.ValidationError: If thresholds or entity ids are inconsistent.
    """
    active_hours = None
    if settings.active_hours_start is not None and settings.active_hours_end is not None:
        start_weekday = settings.active_hours_start_weekday
        active_hours = ActiveHours(
            start=settings.active_hours_start,
            start_weekday=settings.active_hours_start if start_weekday is None else start_weekday,
            end=settings.active_hours_end,
        )

    return HvacOptions(
        indoor_sensor=settings.indoor_sensor,
        outdoor_sensor=settings.outdoor_sensor,
        system_mode=settings.system_mode,
        zones=tuple(settings.zone_entities),
        heating=HeatingOptions(
            temperature=settings.heating_temperature,
            preset_mode=settings.heating_preset_mode,
            thresholds=TemperatureThresholds(
                indoor_min=settings.heating_indoor_min,
                indoor_max=settings.heating_indoor_max,
                outdoor_min=settings.heating_outdoor_min,
                outdoor_max=settings.heating_outdoor_max,
            ),
            defrost=DefrostOptions(
                enabled=settings.defrost_enabled,
                temperature_threshold=settings.defrost_temperature_threshold,
                period_seconds=settings.defrost_period_seconds,
                duration_seconds=settings.defrost_duration_seconds,
            ),
        ),
        cooling=CoolingOptions(
            temperature=settings.cooling_temperature,
            preset_mode=settings.cooling_preset_mode,
            thresholds=TemperatureThresholds(
                indoor_min=settings.cooling_indoor_min,
                indoor_max=settings.cooling_indoor_max,
                outdoor_min=settings.cooling_outdoor_min,
                outdoor_max=settings.cooling_outdoor_max,
            ),
        ),
        safety=SafetyOptions(
            min_temp_c=settings.safety_min_temp_c,
            max_temp_c=settings.safety_max_temp_c,
            heating_margin_c=settings.heating_margin_c,
            cooling_margin_c=settings.cooling_margin_c,
        ),
        duty_cycle=DutyCycleOptions(
            min_run_time_seconds=settings.min_run_time_seconds,
            max_cycles_per_hour=settings.max_cycles_per_hour,
        ),
        active_hours=active_hours,
        history_size=settings.history_size,
        dispatch_timeout_seconds=settings.dispatch_timeout_seconds,
        default_override_ttl_seconds=settings.default_override_ttl_seconds,
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
