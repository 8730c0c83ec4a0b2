"""Mode state machine owning the authoritative HVAC operating mode.

The machine is single-writer: it is only ever driven by the event router's
consumer task, so it carries no locks. Every evaluation passes through the
transient ``evaluating`` state; a ``TransitionRecord`` whose ``from_mode``
equals its ``to_mode`` is the trace of an evaluation that kept the mode.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from zonectl.core.bookkeeping import STEADY_MODES, RuntimeBookkeeping
from zonectl.core.dispatcher import DispatchResult, EquipmentDispatcher
from zonectl.core.events import (
    AutoEvaluate,
    HVACEvent,
    ManualOverrideCancelled,
    ManualOverrideRequested,
    Restart,
    Shutdown,
    TemperaturesUpdated,
    event_name,
)
from zonectl.core.exceptions import EventRejected, InvalidReading, StateCorruption
from zonectl.core.policy import (
    NO_OVERRIDE,
    Advisory,
    Decision,
    ManualOverride,
    Reading,
    decide,
    validate_temperature,
)
from zonectl.models.enums import OperatingMode, SystemMode
from zonectl.models.schemas import OVERRIDE_MODES, HvacOptions

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class TransitionRecord:
    timestamp: datetime
    from_mode: OperatingMode
    to_mode: OperatingMode
    reasoning: str
    triggering_conditions: dict[str, Any] = field(default_factory=dict)
    event: str = ""

    @property
    def changed(self) -> bool:
        return self.from_mode != self.to_mode


@dataclass(frozen=True, slots=True)
class EventOutcome:
    event: str
    accepted: bool
    record: TransitionRecord | None = None
    dispatch: DispatchResult | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    current_mode: OperatingMode
    system_mode: SystemMode
    accepting_events: bool
    last_transition_at: datetime | None
    last_reasoning: str
    target_temperature: float | None
    readings: Reading
    override: ManualOverride
    bookkeeping: RuntimeBookkeeping
    last_error: str | None


TransitionListener = Callable[[TransitionRecord], None]
AdvisoryProvider = Callable[[], Advisory | None]


class ModeStateMachine:
    """Apply events, consult the policy evaluator and command equipment."""

    def __init__(
        self,
        options: HvacOptions,
        dispatcher: EquipmentDispatcher,
        *,
        clock: Callable[[], datetime] | None = None,
        advisor: AdvisoryProvider | None = None,
    ) -> None:
        self._options = options
        self._dispatcher = dispatcher
        self._clock = clock or _utc_now
        self._advisor = advisor
        self._mode = options.initial_mode
        self._book = RuntimeBookkeeping.start(self._mode, self._clock())
        self._readings = Reading()
        self._override = NO_OVERRIDE
        self._target: float | None = None
        self._history: deque[TransitionRecord] = deque(maxlen=options.history_size)
        self._accepting = True
        self._last_reasoning = ""
        self._last_transition_at: datetime | None = None
        self._last_error: str | None = None
        self._failed_zones: set[str] = set()
        self._listeners: list[TransitionListener] = []

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def mode(self) -> OperatingMode:
        return self._mode

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def options(self) -> HvacOptions:
        return self._options

    def history(self) -> list[TransitionRecord]:
        return list(self._history)

    def status(self) -> StatusSnapshot:
        return StatusSnapshot(
            current_mode=self._mode,
            system_mode=self._options.system_mode,
            accepting_events=self._accepting,
            last_transition_at=self._last_transition_at,
            last_reasoning=self._last_reasoning,
            target_temperature=self._target,
            readings=self._readings,
            override=self._override,
            bookkeeping=self._book.copy(),
            last_error=self._last_error,
        )

    # ------------------------------------------------------------------
    # Output stream
    # ------------------------------------------------------------------
    def add_listener(self, listener: TransitionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------
    async def handle(self, event: HVACEvent) -> EventOutcome:
        """Apply one event to completion.

        Raises:
            EventRejected: If the machine is shut down (``Restart``/``Shutdown`` excepted)
                or a ``Restart`` arrives while running.
            StateCorruption: If an invariant no longer holds after the event.
        """

        name = event_name(event)
        if isinstance(event, Shutdown):
            outcome = await self._shutdown(event)
        elif isinstance(event, Restart):
            if self._accepting:
                raise EventRejected("machine is already running")
            self._accepting = True
            logger.info("Restarting mode state machine from %s", self._mode.value)
            outcome = await self._evaluate(name)
        elif not self._accepting:
            raise EventRejected(f"{name} rejected: machine is shut down")
        elif isinstance(event, TemperaturesUpdated):
            outcome = await self._on_temperatures(event)
        elif isinstance(event, ManualOverrideRequested):
            outcome = await self._on_override(event)
        elif isinstance(event, ManualOverrideCancelled):
            if self._override.active:
                logger.info("Manual override cancelled (%s)", self._override.mode.value)
            self._override = NO_OVERRIDE
            outcome = await self._evaluate(name)
        elif isinstance(event, AutoEvaluate):
            outcome = await self._evaluate(name)
        else:
            raise EventRejected(f"unsupported event {name}")

        self._check_invariants()
        return outcome

    async def _on_temperatures(self, event: TemperaturesUpdated) -> EventOutcome:
        name = event_name(event)
        try:
            indoor = validate_temperature(event.indoor_temp, kind="indoor")
            outdoor = validate_temperature(event.outdoor_temp, kind="outdoor")
        except InvalidReading as exc:
            logger.warning("Dropping invalid reading: %s", exc)
            self._last_error = str(exc)
            return EventOutcome(name, True, error=str(exc))

        merged = self._readings.merged(
            indoor_temp=indoor, outdoor_temp=outdoor, observed_at=event.observed_at
        )
        if merged == self._readings:
            logger.debug("Reading unchanged (%s); nothing to do", merged)
            return EventOutcome(name, True)
        self._readings = merged
        return await self._evaluate(name)

    async def _on_override(self, event: ManualOverrideRequested) -> EventOutcome:
        name = event_name(event)
        if event.mode not in OVERRIDE_MODES:
            error = f"mode {event.mode.value!r} cannot be requested manually"
            logger.warning("Rejecting manual override: %s", error)
            self._last_error = error
            return EventOutcome(name, False, error=error)
        try:
            temperature = validate_temperature(event.temperature, kind="override")
        except InvalidReading as exc:
            logger.warning("Rejecting manual override: %s", exc)
            self._last_error = str(exc)
            return EventOutcome(name, False, error=str(exc))

        now = self._clock()
        ttl = event.ttl_seconds or self._options.default_override_ttl_seconds
        expires_at = now + timedelta(seconds=ttl) if ttl else None
        self._override = ManualOverride(
            active=True, mode=event.mode, temperature=temperature, expires_at=expires_at
        )
        logger.info(
            "Manual override requested: mode=%s temperature=%s expires_at=%s",
            event.mode.value,
            temperature,
            expires_at.isoformat() if expires_at else "never",
        )
        return await self._evaluate(name)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    async def _evaluate(self, name: str) -> EventOutcome:
        now = self._clock()
        if self._book.roll_over(now):
            logger.debug("Hour boundary crossed; duty-cycle counters reset")
        self._book.accrue(now)

        override_expired = self._override.is_expired(now)
        if override_expired:
            logger.info("Manual override (%s) expired", self._override.mode.value)
            self._override = NO_OVERRIDE

        advisory = self._advisor() if self._advisor else None
        try:
            decision = decide(
                self._readings,
                self._override,
                self._book.copy(),
                self._options,
                now=now,
                advisory=advisory,
            )
        except InvalidReading as exc:
            logger.warning("Evaluation aborted, holding %s: %s", self._mode.value, exc)
            self._last_error = str(exc)
            return EventOutcome(name, True, error=str(exc))

        if decision.safety_blocked:
            logger.warning("Policy violation prevented: %s", decision.reasoning)

        mode_changed = decision.mode != self._mode
        target_changed = decision.mode.is_active and decision.target_temperature != self._target
        record = self._apply(decision, now, name)
        if mode_changed or target_changed:
            dispatch = await self._dispatch(decision.mode, decision.target_temperature)
        else:
            dispatch = await self._retry_failed_zones()
        error = str(dispatch.error()) if dispatch and not dispatch.all_succeeded else None
        return EventOutcome(name, True, record=record, dispatch=dispatch, error=error)

    def _apply(self, decision: Decision, now: datetime, name: str) -> TransitionRecord:
        from_mode = self._mode
        if decision.mode != from_mode:
            self._book.record_transition(decision.mode, now)
            self._mode = decision.mode
            self._last_transition_at = now
            logger.info(
                "Mode %s -> %s (%s)", from_mode.value, decision.mode.value, decision.reasoning
            )
        else:
            logger.debug("Evaluation kept %s: %s", from_mode.value, decision.reasoning)
        self._target = decision.target_temperature
        return self._record(
            from_mode, decision.mode, decision.reasoning, decision.conditions, now, name
        )

    def _record(
        self,
        from_mode: OperatingMode,
        to_mode: OperatingMode,
        reasoning: str,
        conditions: dict[str, Any],
        now: datetime,
        name: str,
    ) -> TransitionRecord:
        record = TransitionRecord(
            timestamp=now,
            from_mode=from_mode,
            to_mode=to_mode,
            reasoning=reasoning,
            triggering_conditions=dict(conditions),
            event=name,
        )
        self._history.append(record)
        self._last_reasoning = reasoning
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("Transition listener %r raised", listener)
        return record

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    async def _dispatch(self, mode: OperatingMode, target: float | None) -> DispatchResult:
        result = await self._dispatcher.apply(mode, target, self._options.zones)
        self._note_dispatch(result)
        return result

    async def _retry_failed_zones(self) -> DispatchResult | None:
        if not self._failed_zones:
            return None
        zones = [zone for zone in self._options.zones if zone.id in self._failed_zones]
        logger.info("Retrying last command for %d zone(s)", len(zones))
        result = await self._dispatcher.apply(self._mode, self._target, zones)
        self._note_dispatch(result)
        return result

    def _note_dispatch(self, result: DispatchResult) -> None:
        self._failed_zones = {outcome.zone_id for outcome in result.failed}
        failure = result.error()
        if failure is None:
            self._last_error = None
            return
        # Mode stays as decided; failed zones are retried on the next evaluation.
        logger.warning("%s; keeping %s and retrying later", failure, self._mode.value)
        self._last_error = str(failure)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    async def _shutdown(self, event: Shutdown) -> EventOutcome:
        name = event_name(event)
        if not self._accepting:
            return await self._repeat_all_off(name)

        now = self._clock()
        self._book.roll_over(now)
        self._book.accrue(now)
        from_mode = self._mode
        self._override = NO_OVERRIDE
        self._accepting = False
        self._failed_zones = set()
        if from_mode != OperatingMode.off:
            self._book.record_transition(OperatingMode.off, now)
            self._mode = OperatingMode.off
            self._last_transition_at = now
        self._target = None
        logger.info("Shutdown from %s: %s", from_mode.value, event.reason)
        record = self._record(
            from_mode,
            OperatingMode.off,
            f"shutdown: {event.reason}",
            {"indoor_temp": self._readings.indoor_temp, "outdoor_temp": self._readings.outdoor_temp},
            now,
            name,
        )
        result = await self._dispatcher.all_off(self._options.zones)
        self._note_dispatch(result)
        return EventOutcome(name, True, record=record, dispatch=result, error=self._last_error)

    async def _repeat_all_off(self, name: str) -> EventOutcome:
        """Re-send ``off`` to zones the last shutdown could not reach."""
        if not self._failed_zones:
            logger.debug("Already shut down; ignoring %s", name)
            return EventOutcome(name, True)
        zones = [zone for zone in self._options.zones if zone.id in self._failed_zones]
        logger.info("Already shut down; repeating all-off for %d zone(s)", len(zones))
        result = await self._dispatcher.all_off(zones)
        self._note_dispatch(result)
        return EventOutcome(name, True, dispatch=result, error=self._last_error)

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------
    def _check_invariants(self) -> None:
        if self._mode not in STEADY_MODES:
            raise StateCorruption(f"machine at rest in transient mode {self._mode.value}")
        if self._book.current_mode != self._mode:
            raise StateCorruption(
                f"bookkeeping mode {self._book.current_mode.value} != machine mode "
                f"{self._mode.value}"
            )
        if not self._accepting and self._mode != OperatingMode.off:
            raise StateCorruption(f"shut down but mode is {self._mode.value}")
        limit = self._options.duty_cycle.max_cycles_per_hour
        for mode, runtime in self._book.modes.items():
            if runtime.cycles_this_hour < 0 or runtime.cumulative_runtime < timedelta(0):
                raise StateCorruption(f"negative bookkeeping for {mode.value}")
            if mode.is_active and runtime.cycles_this_hour > limit:
                raise StateCorruption(
                    f"{mode.value} started {runtime.cycles_this_hour} times this hour "
                    f"(limit {limit})"
                )


__all__ = [
    "AdvisoryProvider",
    "EventOutcome",
    "ModeStateMachine",
    "StatusSnapshot",
    "TransitionListener",
    "TransitionRecord",
]
