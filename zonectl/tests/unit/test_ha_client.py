"""Tests for zonectl.integrations.ha_client against an in-memory transport."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from zonectl.integrations.ha_client import (
    EntityState,
    HAAuthenticationError,
    HAClient,
    HAConnectionError,
    HANotFoundError,
    HAServiceError,
)

Handler = Callable[[httpx.Request], httpx.Response]


def _make_client(handler: Handler) -> HAClient:
    client = HAClient("http://ha.local:8123/", token="fake-token")
    client._client = httpx.AsyncClient(
        base_url="http://ha.local:8123",
        transport=httpx.MockTransport(handler),
    )
    return client


class TestEntityState:
    def test_from_dict(self) -> None:
        state = EntityState.from_dict(
            {
                "entity_id": "sensor.outdoor_temperature",
                "state": 3.5,
                "attributes": None,
                "last_updated": "2024-01-15T10:00:00+00:00",
            }
        )
        assert state.state == "3.5"
        assert state.attributes == {}
        assert state.domain == "sensor"
        assert state.available is True

    @pytest.mark.parametrize("raw", ["", "unknown", "unavailable"])
    def test_unavailable(self, raw: str) -> None:
        assert EntityState("sensor.x", raw).available is False


class TestRequests:
    async def test_get_state(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/states/sensor.indoor_temperature"
            return httpx.Response(
                200,
                json={
                    "entity_id": "sensor.indoor_temperature",
                    "state": "20.5",
                    "attributes": {"unit_of_measurement": "°C"},
                },
            )

        client = _make_client(handler)
        state = await client.get_state("sensor.indoor_temperature")
        await client.disconnect()

        assert state.state == "20.5"
        assert state.attributes["unit_of_measurement"] == "°C"

    async def test_set_temperature_payload(self) -> None:
        seen: list[tuple[str, dict[str, object]]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json=[])

        client = _make_client(handler)
        await client.set_temperature("climate.bedroom", 21.5, hvac_mode="heat")
        await client.set_hvac_mode("climate.bedroom", "off")
        await client.set_preset_mode("climate.bedroom", "eco")

        assert seen == [
            (
                "/api/services/climate/set_temperature",
                {
                    "temperature": 21.5,
                    "hvac_mode": "heat",
                    "target": {"entity_id": "climate.bedroom"},
                },
            ),
            (
                "/api/services/climate/set_hvac_mode",
                {"hvac_mode": "off", "target": {"entity_id": "climate.bedroom"}},
            ),
            (
                "/api/services/climate/set_preset_mode",
                {"preset_mode": "eco", "target": {"entity_id": "climate.bedroom"}},
            ),
        ]

    async def test_non_json_service_response(self) -> None:
        client = _make_client(lambda request: httpx.Response(200, text="ok"))
        assert await client.call_service("climate", "turn_off") is None


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("status", "error"),
        [
            (401, HAAuthenticationError),
            (404, HANotFoundError),
            (400, HAServiceError),
            (500, HAServiceError),
        ],
    )
    async def test_status_codes(self, status: int, error: type[Exception]) -> None:
        client = _make_client(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(error):
            await client.set_hvac_mode("climate.bedroom", "off")

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _make_client(handler)

        with pytest.raises(HAConnectionError):
            await client.get_state("sensor.indoor_temperature")
        assert client.connected is False

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = _make_client(handler)

        with pytest.raises(HAConnectionError, match="timed out"):
            await client.get_state("sensor.indoor_temperature")

    async def test_connect_requires_token(self) -> None:
        client = HAClient("http://ha.local:8123", token="")

        with pytest.raises(RuntimeError):
            await client.connect()
