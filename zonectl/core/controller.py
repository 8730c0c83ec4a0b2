"""HVAC controller: wires sensors, the command surface and the ticker to the router.

Everything upstream of the event router (WebSocket callbacks, API handlers,
APScheduler jobs) only enqueues events; the router's consumer task is the
only code that touches machine state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from zonectl.core.cycling_monitor import CyclingMonitor, HysteresisHealth
from zonectl.core.dispatcher import DispatchResult, EquipmentDispatcher
from zonectl.core.events import (
    AutoEvaluate,
    HVACEvent,
    ManualOverrideCancelled,
    ManualOverrideRequested,
    Restart,
    Shutdown,
    TemperaturesUpdated,
)
from zonectl.core.exceptions import EventRejected, InvalidReading, StateCorruption
from zonectl.core.router import EventRouter
from zonectl.core.state_machine import (
    AdvisoryProvider,
    EventOutcome,
    ModeStateMachine,
    StatusSnapshot,
    TransitionRecord,
)
from zonectl.integrations.ha_client import HAClient, HAClientError
from zonectl.integrations.ha_websocket import (
    HAStateChange,
    HAWebSocketClient,
    HAWebSocketError,
    parse_temperature,
)
from zonectl.models.enums import OperatingMode, SensorKind
from zonectl.models.schemas import HvacOptions

logger = logging.getLogger(__name__)


class HVACController:
    """Owns one machine, its router, the dispatcher and the periodic jobs.

    Usage::

        controller = HVACController(options, ha_client=client, ha_ws=ws)
        await controller.start()
        await controller.request_override(OperatingMode.heating, 22.0)
        await controller.stop()
    """

    def __init__(
        self,
        options: HvacOptions,
        *,
        ha_client: HAClient,
        ha_ws: HAWebSocketClient | None = None,
        evaluation_interval_seconds: int = 300,
        health_log_interval_seconds: int = 3600,
        clock: Callable[[], datetime] | None = None,
        advisor: AdvisoryProvider | None = None,
    ) -> None:
        self._options = options
        self._ha_client = ha_client
        self._ha_ws = ha_ws
        self._evaluation_interval = evaluation_interval_seconds
        self._health_interval = health_log_interval_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

        self._dispatcher = EquipmentDispatcher(
            ha_client,
            heating_preset=options.heating.preset_mode,
            cooling_preset=options.cooling.preset_mode,
            timeout=options.dispatch_timeout_seconds,
        )
        self._machine = ModeStateMachine(
            options, self._dispatcher, clock=self._clock, advisor=advisor
        )
        self._monitor = CyclingMonitor(clock=self._clock)
        self._machine.add_listener(self._monitor)
        self._router = EventRouter(self._machine, on_fatal=self._on_fatal)
        self._scheduler: AsyncIOScheduler | None = None
        self._sensor_kinds = {
            options.indoor_sensor: SensorKind.indoor,
            options.outdoor_sensor: SensorKind.outdoor,
        }
        self._started_at: datetime | None = None

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------
    @property
    def options(self) -> HvacOptions:
        return self._options

    @property
    def machine(self) -> ModeStateMachine:
        return self._machine

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def monitor(self) -> CyclingMonitor:
        return self._monitor

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    @property
    def running(self) -> bool:
        return self._router.running

    def status(self) -> StatusSnapshot:
        return self._machine.status()

    def history(self, limit: int | None = None) -> list[TransitionRecord]:
        records = self._machine.history()
        return records[-limit:] if limit else records

    def health(self) -> HysteresisHealth:
        return self._monitor.hysteresis_health()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self.running:
            return
        logger.info(
            "Starting HVAC controller: %d zone(s), system mode %s",
            len(self._options.zones),
            self._options.system_mode.value,
        )
        self._router.start()
        await self._load_initial_readings()

        if self._ha_ws is not None:
            self._ha_ws.add_callback(self.handle_state_change)
            try:
                await self._ha_ws.connect()
            except HAWebSocketError as exc:
                logger.warning("HA WebSocket connection failed (sensor stream degraded): %s", exc)

        self._scheduler = self._init_scheduler()
        self._scheduler.start()
        self._started_at = self._clock()
        logger.info("HVAC controller started")

    async def stop(self) -> None:
        """Stop producers, command every zone off and stop the router."""
        logger.info("Stopping HVAC controller")
        self._stop_scheduler()
        if self._ha_ws is not None:
            self._ha_ws.remove_callback(self.handle_state_change)
            await self._ha_ws.disconnect()
        if self.running and not self._router.halted:
            await self._router.submit(Shutdown("controller stopping"))
        await self._router.stop()
        logger.info("HVAC controller stopped")

    def _init_scheduler(self) -> AsyncIOScheduler:
        scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
        )
        scheduler.add_job(
            self._tick,
            IntervalTrigger(seconds=self._evaluation_interval),
            id="auto_evaluate",
            name="Periodic HVAC evaluation",
            replace_existing=True,
        )
        scheduler.add_job(
            self._log_health,
            IntervalTrigger(seconds=self._health_interval),
            id="hysteresis_health",
            name="Log hysteresis health",
            replace_existing=True,
        )
        return scheduler

    def _stop_scheduler(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

    async def _tick(self) -> None:
        self._router.submit(AutoEvaluate("periodic"))

    async def _log_health(self) -> None:
        self._monitor.log_health_status()

    async def _on_fatal(self, exc: StateCorruption) -> None:
        logger.critical("Controller halted by state corruption; commanding all zones off")
        self._stop_scheduler()
        result: DispatchResult = await self._dispatcher.all_off(self._options.zones)
        if not result.all_succeeded:
            logger.critical("All-off after corruption incomplete: %s", result.error())

    # ------------------------------------------------------------------
    # Sensor producers
    # ------------------------------------------------------------------
    async def _load_initial_readings(self) -> None:
        temps: dict[SensorKind, float] = {}
        for entity_id, kind in self._sensor_kinds.items():
            try:
                state = await self._ha_client.get_state(entity_id)
            except HAClientError as exc:
                logger.warning("Initial %s reading from %s unavailable: %s", kind, entity_id, exc)
                continue
            if not state.available:
                logger.warning("Initial %s reading from %s is %r", kind, entity_id, state.state)
                continue
            value = parse_temperature(state.state, state.attributes.get("unit_of_measurement", ""))
            if value is None:
                logger.warning(
                    "Initial %s reading from %s is not numeric: %r", kind, entity_id, state.state
                )
                continue
            temps[kind] = value

        if temps:
            logger.info("Initial readings: %s", {k.value: v for k, v in temps.items()})
            await self._router.submit(
                TemperaturesUpdated(
                    indoor_temp=temps.get(SensorKind.indoor),
                    outdoor_temp=temps.get(SensorKind.outdoor),
                    observed_at=self._clock(),
                )
            )

    def handle_state_change(self, change: HAStateChange) -> None:
        """WebSocket callback. Enqueues and returns without waiting for evaluation."""
        kind = self._sensor_kinds.get(change.entity_id)
        if kind is None:
            return
        if change.temperature is None:
            error = InvalidReading(
                f"non-numeric state {change.state!r}", entity_id=change.entity_id, value=change.state
            )
            logger.warning("Dropping %s reading from %s: %s", kind, change.entity_id, error)
            return
        self._router.submit(
            TemperaturesUpdated(
                indoor_temp=change.temperature if kind == SensorKind.indoor else None,
                outdoor_temp=change.temperature if kind == SensorKind.outdoor else None,
                observed_at=change.timestamp,
            )
        )

    # ------------------------------------------------------------------
    # Command surface
    # ------------------------------------------------------------------
    async def request_override(
        self,
        mode: OperatingMode,
        temperature: float | None = None,
        ttl_seconds: float | None = None,
    ) -> EventOutcome:
        return await self._send(ManualOverrideRequested(mode, temperature, ttl_seconds))

    async def cancel_override(self) -> EventOutcome:
        return await self._send(ManualOverrideCancelled())

    async def evaluate(self, reason: str = "manual") -> EventOutcome:
        return await self._send(AutoEvaluate(reason))

    async def shutdown(self, reason: str = "shutdown requested") -> EventOutcome:
        return await self._send(Shutdown(reason))

    async def restart(self) -> EventOutcome:
        return await self._send(Restart())

    async def _send(self, event: HVACEvent) -> EventOutcome:
        """Submit and wait.

        Raises:
            EventRejected: If the router or machine refused the event.
        """
        outcome = await self._router.submit(event)
        if not outcome.accepted:
            raise EventRejected(outcome.error or f"{outcome.event} rejected")
        return outcome


__all__ = ["HVACController"]
