"""Rapid-cycling detection and hysteresis health.

Subscribes to the mode state machine's transition stream; it never feeds
back into decisions.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from zonectl.core.state_machine import TransitionRecord
from zonectl.models.enums import HealthStatus, OperatingMode

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
_MAX_HISTORY = 100
_RAPID_CYCLE_MINUTES = 15.0     # HEAT -> IDLE -> HEAT faster than this is rapid
_CRITICAL_CYCLE_MINUTES = 5.0
_HEALTH_WINDOW = timedelta(hours=24)
_WARNING_AVG_MINUTES = 30.0
_STABLE_AVG_MINUTES = 120.0

_RESTING_MODES = (OperatingMode.idle, OperatingMode.off)


@dataclass(frozen=True, slots=True)
class ModeChange:
    timestamp: datetime
    from_mode: OperatingMode
    to_mode: OperatingMode
    indoor_temp: float | None = None


@dataclass(frozen=True, slots=True)
class HysteresisHealth:
    status: HealthStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)


class CyclingMonitor:
    """Keeps the last mode changes and flags short heating cycles."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        rapid_cycle_minutes: float = _RAPID_CYCLE_MINUTES,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._rapid_cycle_minutes = rapid_cycle_minutes
        self._changes: deque[ModeChange] = deque(maxlen=_MAX_HISTORY)

    @property
    def changes(self) -> list[ModeChange]:
        return list(self._changes)

    def __call__(self, record: TransitionRecord) -> None:
        """Transition listener entry point; evaluations that kept the mode are ignored."""
        if not record.changed:
            return
        self.record(
            record.from_mode,
            record.to_mode,
            record.triggering_conditions.get("indoor_temp"),
            timestamp=record.timestamp,
        )

    def record(
        self,
        from_mode: OperatingMode,
        to_mode: OperatingMode,
        indoor_temp: float | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> None:
        self._changes.append(
            ModeChange(timestamp or self._clock(), from_mode, to_mode, indoor_temp)
        )
        self._detect_rapid_cycling()

    def _detect_rapid_cycling(self) -> None:
        if len(self._changes) < 3:
            return
        first, middle, last = list(self._changes)[-3:]
        if not (
            first.to_mode == OperatingMode.heating
            and middle.to_mode in _RESTING_MODES
            and last.to_mode == OperatingMode.heating
        ):
            return

        minutes = (last.timestamp - first.timestamp).total_seconds() / 60
        if minutes >= self._rapid_cycle_minutes:
            return
        temps = " -> ".join(
            "?" if c.indoor_temp is None else f"{c.indoor_temp:.1f}°C"
            for c in (first, middle, last)
        )
        level = logging.ERROR if minutes < _CRITICAL_CYCLE_MINUTES else logging.WARNING
        logger.log(
            level,
            "Rapid cycling detected: %s->heating->%s->heating in %.1f min (threshold %.0f min), "
            "temperatures %s",
            first.from_mode.value,
            middle.to_mode.value,
            minutes,
            self._rapid_cycle_minutes,
            temps,
        )

    def hysteresis_health(self) -> HysteresisHealth:
        if len(self._changes) < 2:
            return HysteresisHealth(
                HealthStatus.insufficient_data, "Need more state changes to analyze"
            )

        now = self._clock()
        recent = [c for c in self._changes if now - c.timestamp < _HEALTH_WINDOW]
        # Resuming heat after a defrost cycle is not a new heating cycle.
        heat_starts = [
            c
            for c in recent
            if c.to_mode == OperatingMode.heating and c.from_mode != OperatingMode.defrosting
        ]

        avg_minutes: float | None = None
        if len(heat_starts) > 1:
            intervals = [
                (later.timestamp - earlier.timestamp).total_seconds() / 60
                for earlier, later in zip(heat_starts, heat_starts[1:])
            ]
            avg_minutes = sum(intervals) / len(intervals)

        status, message = HealthStatus.healthy, "Normal cycling behavior detected"
        if avg_minutes is not None:
            if avg_minutes < self._rapid_cycle_minutes:
                status, message = (
                    HealthStatus.critical,
                    "Rapid cycling detected - system may be damaged",
                )
            elif avg_minutes < _WARNING_AVG_MINUTES:
                status, message = (
                    HealthStatus.warning,
                    "Frequent cycling - check hysteresis configuration",
                )
            elif avg_minutes > _STABLE_AVG_MINUTES:
                status, message = HealthStatus.info, "Excellent cycling stability"

        return HysteresisHealth(
            status,
            message,
            {
                "cycles_last_24h": len(heat_starts),
                "average_cycle_minutes": None if avg_minutes is None else round(avg_minutes, 1),
                "last_state_change": self._changes[-1].timestamp.isoformat(),
                "rapid_cycle_threshold_minutes": self._rapid_cycle_minutes,
            },
        )

    def log_health_status(self) -> HysteresisHealth:
        health = self.hysteresis_health()
        level = {
            HealthStatus.critical: logging.ERROR,
            HealthStatus.warning: logging.WARNING,
        }.get(health.status, logging.INFO)
        logger.log(level, "Hysteresis health %s: %s %s", health.status, health.message, health.details)
        return health


__all__ = ["CyclingMonitor", "HysteresisHealth", "ModeChange"]
