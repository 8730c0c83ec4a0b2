"""Deterministic policy evaluator for zonectl mode decisions.

``decide`` is a pure function: given the latest readings, the manual
override, a read-only bookkeeping snapshot and the HVAC options it returns
the next mode, its target temperature and a human-readable reasoning. It
never performs I/O and never mutates its arguments.

Precedence, highest first: system mode off, safety, duty cycle, manual
override, hysteresis bands, advisory hints.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from zonectl.core.bookkeeping import RuntimeBookkeeping
from zonectl.core.exceptions import InvalidReading, PolicyViolation
from zonectl.models.enums import OperatingMode, SystemMode
from zonectl.models.schemas import HvacOptions

# Values outside this window are treated as sensor faults, not weather.
PLAUSIBLE_RANGE_C: tuple[float, float] = (-60.0, 70.0)


@dataclass(frozen=True, slots=True)
class Reading:
    """Most recent indoor/outdoor temperatures. ``None`` means never seen."""

    indoor_temp: float | None = None
    outdoor_temp: float | None = None
    observed_at: datetime | None = None

    def merged(
        self,
        *,
        indoor_temp: float | None,
        outdoor_temp: float | None,
        observed_at: datetime | None,
    ) -> Reading:
        return Reading(
            indoor_temp=self.indoor_temp if indoor_temp is None else indoor_temp,
            outdoor_temp=self.outdoor_temp if outdoor_temp is None else outdoor_temp,
            observed_at=observed_at or self.observed_at,
        )


@dataclass(frozen=True, slots=True)
class ManualOverride:
    active: bool = False
    mode: OperatingMode = OperatingMode.idle
    temperature: float | None = None
    expires_at: datetime | None = None

    def is_effective(self, now: datetime) -> bool:
        return self.active and not self.is_expired(now)

    def is_expired(self, now: datetime) -> bool:
        return self.active and self.expires_at is not None and now >= self.expires_at

    def as_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "mode": self.mode.value,
            "temperature": self.temperature,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


NO_OVERRIDE = ManualOverride()


@dataclass(frozen=True, slots=True)
class Advisory:
    """Hint from a scheduling/analytics collaborator. Never mutates mode directly."""

    target_temperature: float | None = None
    mode: OperatingMode | None = None
    source: str = "advisory"


@dataclass(frozen=True, slots=True)
class Decision:
    mode: OperatingMode
    target_temperature: float | None
    reasoning: str
    conditions: dict[str, Any] = field(default_factory=dict)
    held: bool = False
    safety_blocked: bool = False


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def decide(
    readings: Reading,
    override: ManualOverride,
    bookkeeping: RuntimeBookkeeping,
    options: HvacOptions,
    *,
    now: datetime,
    advisory: Advisory | None = None,
) -> Decision:
    """Select the next operating mode.

    Raises:
        InvalidReading: If a temperature is non-numeric, non-finite or implausible.
    """

    indoor = validate_temperature(readings.indoor_temp, kind="indoor")
    outdoor = validate_temperature(readings.outdoor_temp, kind="outdoor")
    current = bookkeeping.current_mode
    effective_override = override if override.is_effective(now) else NO_OVERRIDE
    conditions = _conditions(readings, effective_override, options, now, advisory)

    if options.system_mode == SystemMode.off:
        return Decision(OperatingMode.off, None, "system mode is off", conditions)

    def target_for(mode: OperatingMode) -> float | None:
        return _target_for(mode, options, effective_override, advisory)

    if indoor is None or outdoor is None:
        missing = " and ".join(
            kind
            for kind, value in (("indoor", indoor), ("outdoor", outdoor))
            if value is None
        )
        return Decision(
            current,
            target_for(current),
            f"awaiting {missing} reading; holding {current.value}",
            conditions,
            held=True,
        )

    if effective_override.active:
        candidate = effective_override.mode
        reason = f"manual override: {candidate.value}"
        target = target_for(candidate)
        if target is not None:
            reason += f" at {target:.1f}°C"
    else:
        candidate, reason = _from_hysteresis(
            current, indoor, outdoor, options, bookkeeping, now, advisory
        )
        target = target_for(candidate)

    try:
        enforce_safety(candidate, target, indoor=indoor, outdoor=outdoor, options=options)
    except PolicyViolation as exc:
        fallback = _safe_fallback(current, target_for(current), indoor, outdoor, options)
        return Decision(
            fallback,
            target_for(fallback),
            f"{reason}; safety: {exc}; holding {fallback.value}",
            conditions,
            held=fallback == current,
            safety_blocked=True,
        )

    hold = _duty_cycle_hold(current, candidate, bookkeeping, options, now)
    if hold:
        unsafe = _safety_violation(current, target_for(current), indoor, outdoor, options)
        if unsafe is None:
            return Decision(
                current,
                target_for(current),
                f"{reason}; duty cycle: {hold}; holding {current.value}",
                conditions,
                held=True,
            )
        # Neither the candidate nor the current mode may run.
        return Decision(
            OperatingMode.idle,
            None,
            f"{reason}; duty cycle: {hold}; safety: {unsafe}; idling",
            conditions,
            safety_blocked=True,
        )

    return Decision(candidate, target, reason, conditions)


def validate_temperature(value: object, *, kind: str) -> float | None:
    """Return *value* as a float, ``None`` if unknown, or raise ``InvalidReading``."""

    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidReading(f"{kind} temperature is not numeric: {value!r}", value=value)
    result = float(value)
    if not math.isfinite(result):
        raise InvalidReading(f"{kind} temperature is not finite: {value!r}", value=value)
    low, high = PLAUSIBLE_RANGE_C
    if not low <= result <= high:
        raise InvalidReading(
            f"{kind} temperature {result:.1f}°C outside plausible range {low:.0f}..{high:.0f}",
            value=value,
        )
    return result


def enforce_safety(
    mode: OperatingMode,
    target: float | None,
    *,
    indoor: float,
    outdoor: float,
    options: HvacOptions,
) -> None:
    """Raise ``PolicyViolation`` if running *mode* now would be unsafe."""

    violation = _safety_violation(mode, target, indoor, outdoor, options)
    if violation:
        raise PolicyViolation(violation)


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _from_hysteresis(
    current: OperatingMode,
    indoor: float,
    outdoor: float,
    options: HvacOptions,
    bookkeeping: RuntimeBookkeeping,
    now: datetime,
    advisory: Advisory | None,
) -> tuple[OperatingMode, str]:
    heat = options.heating.thresholds
    cool = options.cooling.thresholds
    active_hours = options.active_hours
    if active_hours and not active_hours.contains(now.hour, weekday=now.weekday() < 5):
        return OperatingMode.idle, f"outside active hours (hour {now.hour})"

    prefix = ""
    if current == OperatingMode.defrosting:
        defrost = options.heating.defrost
        elapsed = bookkeeping.time_in_mode(now).total_seconds()
        if defrost and elapsed < defrost.duration_seconds:
            return (
                OperatingMode.defrosting,
                f"defrost in progress ({elapsed:.0f}s of {defrost.duration_seconds}s)",
            )
        prefix = "defrost complete; "
        current = OperatingMode.heating

    if current == OperatingMode.heating:
        if indoor >= heat.indoor_max:
            return (
                OperatingMode.idle,
                f"{prefix}indoor {indoor:.1f}°C reached heating high threshold "
                f"{heat.indoor_max:.1f}°C",
            )
        if _needs_defrost(outdoor, options, bookkeeping):
            return (
                OperatingMode.defrosting,
                f"{prefix}icing risk: outdoor {outdoor:.1f}°C after "
                f"{bookkeeping.heating_runtime_since_defrost.total_seconds():.0f}s of heating",
            )
        return (
            OperatingMode.heating,
            f"{prefix}indoor {indoor:.1f}°C below heating high threshold "
            f"{heat.indoor_max:.1f}°C; continuing heating",
        )

    if current == OperatingMode.cooling:
        if indoor <= cool.indoor_min:
            return (
                OperatingMode.idle,
                f"indoor {indoor:.1f}°C reached cooling low threshold {cool.indoor_min:.1f}°C",
            )
        return (
            OperatingMode.cooling,
            f"indoor {indoor:.1f}°C above cooling low threshold {cool.indoor_min:.1f}°C; "
            "continuing cooling",
        )

    if indoor <= heat.indoor_min and _mode_permitted(OperatingMode.heating, options):
        return (
            OperatingMode.heating,
            f"indoor {indoor:.1f}°C at/below heating low threshold {heat.indoor_min:.1f}°C",
        )
    if indoor >= cool.indoor_max and _mode_permitted(OperatingMode.cooling, options):
        return (
            OperatingMode.cooling,
            f"indoor {indoor:.1f}°C at/above cooling high threshold {cool.indoor_max:.1f}°C",
        )
    if (
        advisory is not None
        and advisory.mode in (OperatingMode.heating, OperatingMode.cooling)
        and _mode_permitted(advisory.mode, options)
    ):
        return advisory.mode, f"{advisory.source} suggests {advisory.mode.value}"
    return OperatingMode.idle, f"indoor {indoor:.1f}°C within hysteresis band"


def _needs_defrost(outdoor: float, options: HvacOptions, bookkeeping: RuntimeBookkeeping) -> bool:
    defrost = options.heating.defrost
    if defrost is None or not defrost.enabled:
        return False
    if outdoor > defrost.temperature_threshold:
        return False
    return bookkeeping.heating_runtime_since_defrost.total_seconds() >= defrost.period_seconds


def _mode_permitted(mode: OperatingMode, options: HvacOptions) -> bool:
    if mode in (OperatingMode.heating, OperatingMode.defrosting):
        return options.system_mode in (SystemMode.auto, SystemMode.heat_only)
    if mode == OperatingMode.cooling:
        return options.system_mode in (SystemMode.auto, SystemMode.cool_only)
    return True


def _safety_violation(
    mode: OperatingMode,
    target: float | None,
    indoor: float,
    outdoor: float,
    options: HvacOptions,
) -> str | None:
    if not mode.is_active:
        return None
    if not _mode_permitted(mode, options):
        return f"{mode.value} not permitted in system mode {options.system_mode.value}"

    safety = options.safety
    if mode in (OperatingMode.heating, OperatingMode.defrosting):
        limits = options.heating.thresholds
        heat_target = target if target is not None else options.heating.temperature
        if indoor >= heat_target + safety.heating_margin_c:
            return (
                f"heating blocked, indoor {indoor:.1f}°C at/above target "
                f"{heat_target:.1f}°C + margin {safety.heating_margin_c:.1f}°C"
            )
        if outdoor > limits.outdoor_max:
            return (
                f"heating blocked, outdoor {outdoor:.1f}°C above hot-outdoor ceiling "
                f"{limits.outdoor_max:.1f}°C"
            )
        if outdoor < limits.outdoor_min:
            return (
                f"heating blocked, outdoor {outdoor:.1f}°C below heating minimum "
                f"{limits.outdoor_min:.1f}°C"
            )
        return None

    limits = options.cooling.thresholds
    cool_target = target if target is not None else options.cooling.temperature
    if indoor <= cool_target - safety.cooling_margin_c:
        return (
            f"cooling blocked, indoor {indoor:.1f}°C at/below target "
            f"{cool_target:.1f}°C - margin {safety.cooling_margin_c:.1f}°C"
        )
    if outdoor < limits.outdoor_min:
        return (
            f"cooling blocked, outdoor {outdoor:.1f}°C below cooling minimum "
            f"{limits.outdoor_min:.1f}°C"
        )
    if outdoor > limits.outdoor_max:
        return (
            f"cooling blocked, outdoor {outdoor:.1f}°C above cooling maximum "
            f"{limits.outdoor_max:.1f}°C"
        )
    return None


def _safe_fallback(
    current: OperatingMode,
    current_target: float | None,
    indoor: float,
    outdoor: float,
    options: HvacOptions,
) -> OperatingMode:
    if _safety_violation(current, current_target, indoor, outdoor, options) is None:
        return current
    return OperatingMode.idle


def _duty_cycle_hold(
    current: OperatingMode,
    candidate: OperatingMode,
    bookkeeping: RuntimeBookkeeping,
    options: HvacOptions,
    now: datetime,
) -> str | None:
    if candidate == current:
        return None
    limits = options.duty_cycle

    if current in (OperatingMode.heating, OperatingMode.cooling) and (
        candidate != OperatingMode.defrosting
    ):
        ran = bookkeeping.time_in_mode(now).total_seconds()
        if ran < limits.min_run_time_seconds:
            return (
                f"{current.value} ran {ran:.0f}s, minimum run time is "
                f"{limits.min_run_time_seconds}s"
            )

    resuming_heat = current == OperatingMode.defrosting and candidate == OperatingMode.heating
    if candidate.is_active and not resuming_heat:
        cycles = bookkeeping.modes[candidate].cycles_this_hour
        if cycles >= limits.max_cycles_per_hour:
            return (
                f"{candidate.value} already started {cycles} time(s) this hour "
                f"(max {limits.max_cycles_per_hour})"
            )
    return None


def _target_for(
    mode: OperatingMode,
    options: HvacOptions,
    override: ManualOverride,
    advisory: Advisory | None,
) -> float | None:
    if mode in (OperatingMode.heating, OperatingMode.defrosting):
        configured = options.heating.temperature
        override_mode = OperatingMode.heating
    elif mode == OperatingMode.cooling:
        configured = options.cooling.temperature
        override_mode = OperatingMode.cooling
    else:
        return None

    if override.active and override.mode == override_mode and override.temperature is not None:
        return options.safety.clamp(override.temperature)
    if advisory is not None and advisory.target_temperature is not None:
        return options.safety.clamp(advisory.target_temperature)
    return options.safety.clamp(configured)


def _conditions(
    readings: Reading,
    override: ManualOverride,
    options: HvacOptions,
    now: datetime,
    advisory: Advisory | None,
) -> dict[str, Any]:
    conditions: dict[str, Any] = {
        "indoor_temp": readings.indoor_temp,
        "outdoor_temp": readings.outdoor_temp,
        "observed_at": readings.observed_at.isoformat() if readings.observed_at else None,
        "system_mode": options.system_mode.value,
        "override": override.mode.value if override.active else None,
        "hour": now.hour,
        "is_weekday": now.weekday() < 5,
    }
    if advisory is not None:
        conditions["advisory"] = {
            "source": advisory.source,
            "mode": advisory.mode.value if advisory.mode else None,
            "target_temperature": advisory.target_temperature,
        }
    return conditions


__all__ = [
    "NO_OVERRIDE",
    "PLAUSIBLE_RANGE_C",
    "Advisory",
    "Decision",
    "ManualOverride",
    "Reading",
    "decide",
    "enforce_safety",
    "validate_temperature",
]
