from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from zonectl.api.main import app
from zonectl.core.controller import HVACController
from zonectl.integrations.ha_client import EntityState
from zonectl.models.enums import SystemMode
from zonectl.models.schemas import (
    CoolingOptions,
    DefrostOptions,
    DutyCycleOptions,
    HeatingOptions,
    HvacOptions,
    TemperatureThresholds,
    ZoneEntity,
)

# Monday, mid-morning: inside any weekday active-hours window used in tests.
T0 = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock injected into the machine and monitor."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def build_options(
    *,
    system_mode: SystemMode = SystemMode.auto,
    zones: tuple[ZoneEntity, ...] | None = None,
    heating_temperature: float = 22.0,
    heating_preset: str | None = None,
    cooling_preset: str | None = None,
    defrost: DefrostOptions | None = None,
    min_run_time_seconds: int = 0,
    max_cycles_per_hour: int = 6,
    **overrides: Any,
) -> HvacOptions:
    """Scenario defaults: heat below 18 °C up to 22 °C, cool above 25 °C down to 23.5 °C."""
    if zones is None:
        zones = (
            ZoneEntity(id="climate.living_room"),
            ZoneEntity(id="climate.bedroom"),
            ZoneEntity(id="climate.garage", enabled=False),
        )
    return HvacOptions(
        indoor_sensor="sensor.indoor_temperature",
        outdoor_sensor="sensor.outdoor_temperature",
        system_mode=system_mode,
        zones=zones,
        heating=HeatingOptions(
            temperature=heating_temperature,
            preset_mode=heating_preset,
            thresholds=TemperatureThresholds(
                indoor_min=18.0, indoor_max=22.0, outdoor_min=-10.0, outdoor_max=15.0
            ),
            defrost=defrost,
        ),
        cooling=CoolingOptions(
            temperature=24.0,
            preset_mode=cooling_preset,
            thresholds=TemperatureThresholds(
                indoor_min=23.5, indoor_max=25.0, outdoor_min=10.0, outdoor_max=45.0
            ),
        ),
        duty_cycle=DutyCycleOptions(
            min_run_time_seconds=min_run_time_seconds,
            max_cycles_per_hour=max_cycles_per_hour,
        ),
        **overrides,
    )


def make_sensor_state(entity_id: str, state: str, unit: str = "°C") -> EntityState:
    return EntityState(
        entity_id=entity_id,
        state=state,
        attributes={"unit_of_measurement": unit, "device_class": "temperature"},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_options() -> Callable[..., HvacOptions]:
    return build_options


@pytest.fixture
def options() -> HvacOptions:
    return build_options()


@pytest.fixture
def ha_client() -> AsyncMock:
    """Stand-in for ``HAClient``; every service call succeeds."""
    client = AsyncMock()
    states = {
        "sensor.indoor_temperature": make_sensor_state("sensor.indoor_temperature", "20.0"),
        "sensor.outdoor_temperature": make_sensor_state("sensor.outdoor_temperature", "5.0"),
    }
    client.get_state.side_effect = lambda entity_id: states[entity_id]
    client.sensor_states = states
    return client


@pytest.fixture
async def client(
    options: HvacOptions, ha_client: AsyncMock, clock: FakeClock
) -> AsyncIterator[AsyncClient]:
    """API client bound to a started controller; the app lifespan is not run."""
    controller = HVACController(
        options, ha_client=ha_client, evaluation_interval_seconds=3600, clock=clock
    )
    await controller.start()
    app.state.controller = controller
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.state.controller = None
        if controller.running:
            await controller.stop()
