"""Unit tests for zonectl.core.controller.HVACController."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from zonectl.core.controller import HVACController
from zonectl.core.exceptions import EventRejected
from zonectl.integrations.ha_client import EntityState, HANotFoundError, HAServiceError
from zonectl.integrations.ha_websocket import HAStateChange, HAWebSocketError
from zonectl.models.enums import OperatingMode
from zonectl.models.schemas import HvacOptions


def _change(entity_id: str, state: str, temperature: float | None, clock: Any) -> HAStateChange:
    return HAStateChange(
        entity_id=entity_id, state=state, temperature=temperature, timestamp=clock()
    )


@pytest.fixture
async def controller(options: HvacOptions, ha_client: AsyncMock, clock: Any):
    controller = HVACController(
        options, ha_client=ha_client, evaluation_interval_seconds=3600, clock=clock
    )
    yield controller
    if controller.running:
        await controller.stop()


class TestLifecycle:
    async def test_start_loads_initial_readings(
        self, controller: HVACController, ha_client: AsyncMock
    ) -> None:
        await controller.start()

        assert controller.running is True
        assert controller.started_at is not None
        readings = controller.status().readings
        assert readings.indoor_temp == 20.0
        assert readings.outdoor_temp == 5.0
        assert controller.machine.mode == OperatingMode.idle
        assert len(controller.history()) == 1
        ha_client.get_state.assert_any_await("sensor.indoor_temperature")

    async def test_missing_sensor_leaves_readings_empty(
        self, controller: HVACController, ha_client: AsyncMock
    ) -> None:
        ha_client.get_state.side_effect = HANotFoundError("no such entity")

        await controller.start()

        assert controller.status().readings.indoor_temp is None
        assert controller.history() == []

    async def test_stop_commands_all_zones_off(
        self, controller: HVACController, ha_client: AsyncMock
    ) -> None:
        await controller.start()
        ha_client.reset_mock()

        await controller.stop()

        assert controller.running is False
        assert controller.machine.mode == OperatingMode.off
        assert {c.args for c in ha_client.set_hvac_mode.await_args_list} == {
            ("climate.living_room", "off"),
            ("climate.bedroom", "off"),
            ("climate.garage", "off"),
        }

    async def test_unavailable_sensor_not_loaded(
        self, controller: HVACController, ha_client: AsyncMock
    ) -> None:
        ha_client.sensor_states["sensor.indoor_temperature"] = EntityState(
            "sensor.indoor_temperature", "unavailable"
        )

        await controller.start()

        readings = controller.status().readings
        assert readings.indoor_temp is None
        assert readings.outdoor_temp == 5.0

    async def test_stop_retries_zones_missed_by_earlier_shutdown(
        self, controller: HVACController, ha_client: AsyncMock
    ) -> None:
        await controller.start()

        async def flaky(entity_id: str, hvac_mode: str) -> None:
            if entity_id == "climate.garage":
                raise HAServiceError("garage unreachable")

        ha_client.set_hvac_mode.side_effect = flaky
        outcome = await controller.shutdown("maintenance")
        assert outcome.error is not None and "climate.garage" in outcome.error

        ha_client.set_hvac_mode.side_effect = None
        ha_client.set_hvac_mode.reset_mock()
        await controller.stop()

        ha_client.set_hvac_mode.assert_awaited_once_with("climate.garage", "off")

    async def test_websocket_failure_is_not_fatal(
        self, options: HvacOptions, ha_client: AsyncMock, clock: Any
    ) -> None:
        ws = MagicMock()
        ws.connect = AsyncMock(side_effect=HAWebSocketError("refused"))
        ws.disconnect = AsyncMock()
        controller = HVACController(options, ha_client=ha_client, ha_ws=ws, clock=clock)

        await controller.start()
        try:
            assert controller.running is True
            ws.add_callback.assert_called_once_with(controller.handle_state_change)
        finally:
            await controller.stop()
        ws.remove_callback.assert_called_once_with(controller.handle_state_change)
        ws.disconnect.assert_awaited_once()


class TestSensorStream:
    async def test_state_change_reaches_machine(
        self, controller: HVACController, clock: Any
    ) -> None:
        await controller.start()
        clock.advance(seconds=30)

        controller.handle_state_change(
            _change("sensor.indoor_temperature", "17.0", 17.0, clock)
        )
        await controller.evaluate()

        assert controller.machine.mode == OperatingMode.heating
        assert controller.status().readings.outdoor_temp == 5.0

    async def test_unusable_changes_dropped(self, controller: HVACController, clock: Any) -> None:
        await controller.start()

        controller.handle_state_change(
            _change("sensor.indoor_temperature", "unavailable", None, clock)
        )
        controller.handle_state_change(_change("sensor.kitchen", "17.0", 17.0, clock))

        assert controller.router.pending == 0


class TestCommands:
    async def test_override_and_cancel(self, controller: HVACController) -> None:
        await controller.start()

        outcome = await controller.request_override(OperatingMode.heating, 21.0)
        assert outcome.accepted is True
        assert controller.machine.mode == OperatingMode.heating

        await controller.cancel_override()
        assert controller.status().override.active is False

    async def test_transient_mode_override_refused(self, controller: HVACController) -> None:
        await controller.start()

        with pytest.raises(EventRejected, match="cannot be requested manually"):
            await controller.request_override(OperatingMode.evaluating)

        assert controller.status().override.active is False
        assert controller.machine.mode == OperatingMode.idle

    async def test_shutdown_then_restart(self, controller: HVACController) -> None:
        await controller.start()

        await controller.shutdown("maintenance")
        with pytest.raises(EventRejected):
            await controller.evaluate()

        outcome = await controller.restart()
        assert outcome.record is not None
        assert outcome.record.from_mode == OperatingMode.off
        assert controller.machine.accepting is True


class TestFatalPath:
    async def test_corruption_halts_and_turns_everything_off(
        self, controller: HVACController, ha_client: AsyncMock
    ) -> None:
        await controller.start()
        controller.machine._book.modes[OperatingMode.heating].cycles_this_hour = -1
        ha_client.reset_mock()

        with pytest.raises(EventRejected):
            await controller.evaluate()
        while controller.running:
            await asyncio.sleep(0)

        assert controller.router.halted is True
        assert {c.args for c in ha_client.set_hvac_mode.await_args_list} == {
            ("climate.living_room", "off"),
            ("climate.bedroom", "off"),
            ("climate.garage", "off"),
        }
        with pytest.raises(EventRejected, match="controller halted"):
            await controller.evaluate()
