"""Domain enums for zonectl."""

from enum import StrEnum


class OperatingMode(StrEnum):
    off = "off"
    idle = "idle"
    heating = "heating"
    cooling = "cooling"
    defrosting = "defrosting"
    evaluating = "evaluating"

    @property
    def is_active(self) -> bool:
        """Return ``True`` for modes that run equipment."""
        return self in (OperatingMode.heating, OperatingMode.cooling, OperatingMode.defrosting)


class SystemMode(StrEnum):
    auto = "auto"
    heat_only = "heat_only"
    cool_only = "cool_only"
    off = "off"


class HVACMode(StrEnum):
    """HVAC modes accepted by Home Assistant climate entities."""

    OFF = "off"
    HEAT = "heat"
    COOL = "cool"


class SensorKind(StrEnum):
    indoor = "indoor"
    outdoor = "outdoor"


class HealthStatus(StrEnum):
    insufficient_data = "INSUFFICIENT_DATA"
    healthy = "HEALTHY"
    warning = "WARNING"
    critical = "CRITICAL"
    info = "INFO"
