"""Per-mode runtime and cycle accounting for the mode state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from zonectl.models.enums import OperatingMode

STEADY_MODES: tuple[OperatingMode, ...] = tuple(
    mode for mode in OperatingMode if mode != OperatingMode.evaluating
)


def hour_floor(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0, microsecond=0)


@dataclass(slots=True)
class ModeRuntime:
    last_entered_at: datetime | None = None
    cumulative_runtime: timedelta = timedelta(0)
    cycles_this_hour: int = 0


@dataclass(slots=True)
class RuntimeBookkeeping:
    """Timing state owned by the machine; everyone else gets a ``copy()``.

    Runtime is accrued lazily: ``accrue`` adds the time elapsed since the last
    call to the current mode. Counters reset once per clock-hour boundary.
    """

    current_mode: OperatingMode
    hour_start: datetime
    accrued_until: datetime
    modes: dict[OperatingMode, ModeRuntime] = field(default_factory=dict)
    heating_runtime_since_defrost: timedelta = timedelta(0)
    last_defrost_at: datetime | None = None

    @classmethod
    def start(cls, mode: OperatingMode, now: datetime) -> RuntimeBookkeeping:
        book = cls(
            current_mode=mode,
            hour_start=hour_floor(now),
            accrued_until=now,
            modes={m: ModeRuntime() for m in STEADY_MODES},
        )
        book.modes[mode].last_entered_at = now
        return book

    # ------------------------------------------------------------------
    def roll_over(self, now: datetime) -> bool:
        """Reset hourly counters if ``now`` lies in a later hour. Returns ``True`` on reset."""
        boundary = hour_floor(now)
        if boundary <= self.hour_start:
            return False
        # Runtime up to the boundary still counts toward the defrost period.
        self.accrue(boundary)
        for runtime in self.modes.values():
            runtime.cumulative_runtime = timedelta(0)
            runtime.cycles_this_hour = 0
        self.hour_start = boundary
        return True

    def accrue(self, now: datetime) -> None:
        elapsed = now - self.accrued_until
        if elapsed <= timedelta(0):
            return
        self.modes[self.current_mode].cumulative_runtime += elapsed
        if self.current_mode == OperatingMode.heating:
            self.heating_runtime_since_defrost += elapsed
        self.accrued_until = now

    def record_transition(self, to_mode: OperatingMode, now: datetime) -> None:
        from_mode = self.current_mode
        self.accrue(now)
        runtime = self.modes[to_mode]
        runtime.last_entered_at = now
        # Returning to heating after a defrost cycle continues the same heating cycle.
        if not (from_mode == OperatingMode.defrosting and to_mode == OperatingMode.heating):
            runtime.cycles_this_hour += 1
        if to_mode == OperatingMode.defrosting:
            self.last_defrost_at = now
            self.heating_runtime_since_defrost = timedelta(0)
        self.current_mode = to_mode

    def time_in_mode(self, now: datetime) -> timedelta:
        entered = self.modes[self.current_mode].last_entered_at
        if entered is None:
            return timedelta(0)
        return now - entered

    def copy(self) -> RuntimeBookkeeping:
        return RuntimeBookkeeping(
            current_mode=self.current_mode,
            hour_start=self.hour_start,
            accrued_until=self.accrued_until,
            modes={
                mode: ModeRuntime(
                    last_entered_at=runtime.last_entered_at,
                    cumulative_runtime=runtime.cumulative_runtime,
                    cycles_this_hour=runtime.cycles_this_hour,
                )
                for mode, runtime in self.modes.items()
            },
            heating_runtime_since_defrost=self.heating_runtime_since_defrost,
            last_defrost_at=self.last_defrost_at,
        )

    def as_dict(self) -> dict[str, dict[str, object]]:
        return {
            mode.value: {
                "last_entered_at": runtime.last_entered_at,
                "cumulative_runtime_seconds": runtime.cumulative_runtime.total_seconds(),
                "cycles_this_hour": runtime.cycles_this_hour,
            }
            for mode, runtime in self.modes.items()
        }


__all__ = ["STEADY_MODES", "ModeRuntime", "RuntimeBookkeeping", "hour_floor"]
