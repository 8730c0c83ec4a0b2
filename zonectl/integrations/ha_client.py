"""Home Assistant REST client used by zonectl.

Two jobs: read temperature sensors once at start-up and send climate
commands to the zone entities on behalf of the equipment dispatcher.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class HAClientError(Exception):
    """Base exception for all HA client errors."""


class HAConnectionError(HAClientError):
    """Home Assistant is unreachable or the request timed out."""


class HAAuthenticationError(HAClientError):
    """The access token was rejected (401)."""


class HANotFoundError(HAClientError):
    """Unknown entity or service (404)."""


class HAServiceError(HAClientError):
    """Any other 4xx / 5xx answer."""


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class EntityState:
    entity_id: str
    state: str
    attributes: dict[str, Any] = field(default_factory=dict)
    last_changed: str = ""
    last_updated: str = ""

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0]

    @property
    def available(self) -> bool:
        return self.state not in ("", "unknown", "unavailable")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityState:
        return cls(
            entity_id=data.get("entity_id", ""),
            state=str(data.get("state", "")),
            attributes=data.get("attributes") or {},
            last_changed=data.get("last_changed", ""),
            last_updated=data.get("last_updated", ""),
        )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HAClient:
    """Async REST wrapper for the Home Assistant API.

    Usage::

        async with HAClient("http://homeassistant.local:8123", token="ey...") as client:
            sensor = await client.get_state("sensor.indoor_temperature")
            await client.set_temperature("climate.living_room", 21.0, hvac_mode="heat")
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = 15.0,
        verify_ssl: bool = True,
    ) -> None:
        self._base_url = url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._client: httpx.AsyncClient | None = None
        self._connected: bool = False

    async def __aenter__(self) -> HAClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.disconnect()

    # -- lifecycle ------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the HTTP session and check the token against ``/api/``.

        Raises:
            RuntimeError: If no token was configured.
            HAAuthenticationError: If the token is rejected.
            HAConnectionError: If the server is unreachable.
        """
        if self._connected:
            return
        if not self._token:
            raise RuntimeError("Home Assistant long-lived access token is required")

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            verify=self._verify_ssl,
        )
        logger.info("Connecting to Home Assistant at %s", self._base_url)

        try:
            response = await self._client.get("/api/")
            self._raise_for_status(response, context="connect")
        except HAClientError:
            await self.disconnect()
            raise
        except httpx.TimeoutException as exc:
            await self.disconnect()
            msg = f"Connection to Home Assistant timed out ({self._timeout}s)"
            logger.error(msg)
            raise HAConnectionError(msg) from exc
        except httpx.HTTPError as exc:
            await self.disconnect()
            msg = f"Cannot reach Home Assistant at {self._base_url}: {exc}"
            logger.error(msg)
            raise HAConnectionError(msg) from exc

        self._connected = True
        logger.info("Connected to Home Assistant")

    async def disconnect(self) -> None:
        self._connected = False
        if self._client is not None:
            with suppress(httpx.HTTPError, RuntimeError):
                await self._client.aclose()
            self._client = None
            logger.info("Disconnected from Home Assistant")

    # -- internal request helper ----------------------------------------------

    def _raise_for_status(self, response: httpx.Response, *, context: str = "") -> None:
        if response.is_success:
            return

        status = response.status_code
        detail = response.text[:300]
        prefix = f"[{context}] " if context else ""

        if status == 401:
            msg = f"{prefix}Authentication failed (401). Check your HA token."
            logger.error(msg)
            raise HAAuthenticationError(msg)
        if status == 404:
            msg = f"{prefix}Resource not found (404): {detail}"
            logger.warning(msg)
            raise HANotFoundError(msg)
        kind = "Client" if status < 500 else "Server"
        msg = f"{prefix}{kind} error {status}: {detail}"
        logger.error(msg)
        raise HAServiceError(msg)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        context: str = "",
    ) -> httpx.Response:
        if self._client is None:
            await self.connect()
        assert self._client is not None  # noqa: S101 - guaranteed by connect()

        logger.debug("%s %s", method, path)
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            msg = f"Request to {path} timed out"
            logger.error(msg)
            raise HAConnectionError(msg) from exc
        except httpx.TransportError as exc:
            self._connected = False
            msg = f"Lost connection to Home Assistant: {exc}"
            logger.error(msg)
            raise HAConnectionError(msg) from exc

        self._raise_for_status(response, context=context or f"{method} {path}")
        return response

    # -- core API -------------------------------------------------------------

    async def call_service(
        self,
        domain: str,
        service: str,
        data: dict[str, Any] | None = None,
        target: dict[str, Any] | None = None,
    ) -> Any:
        """POST ``/api/services/<domain>/<service>`` and return the JSON body, if any."""
        payload: dict[str, Any] = dict(data or {})
        if target:
            payload["target"] = target

        logger.info("Calling service %s.%s -> %s", domain, service, target or "no target")
        response = await self._request(
            "POST",
            f"/api/services/{domain}/{service}",
            json=payload,
            context=f"service:{domain}.{service}",
        )
        if response.headers.get("content-type", "").startswith("application/json"):
            return response.json()
        return None

    async def get_state(self, entity_id: str) -> EntityState:
        """Fetch one entity.

        Raises:
            HANotFoundError: If the entity does not exist.
        """
        response = await self._request(
            "GET", f"/api/states/{entity_id}", context=f"get_state({entity_id})"
        )
        state = EntityState.from_dict(response.json())
        logger.debug("State %s = %s", entity_id, state.state)
        return state

    # -- climate commands -----------------------------------------------------

    async def set_hvac_mode(self, entity_id: str, mode: str) -> Any:
        logger.info("Setting HVAC mode on %s to %s", entity_id, mode)
        return await self.call_service(
            "climate",
            "set_hvac_mode",
            data={"hvac_mode": mode},
            target={"entity_id": entity_id},
        )

    async def set_temperature(
        self, entity_id: str, temperature: float, *, hvac_mode: str | None = None
    ) -> Any:
        """Set the target temperature, switching the HVAC mode in the same call when given."""
        logger.info(
            "Setting temperature on %s to %.1f (hvac_mode=%s)", entity_id, temperature, hvac_mode
        )
        data: dict[str, Any] = {"temperature": temperature}
        if hvac_mode is not None:
            data["hvac_mode"] = hvac_mode
        return await self.call_service(
            "climate", "set_temperature", data=data, target={"entity_id": entity_id}
        )

    async def set_preset_mode(self, entity_id: str, preset_mode: str) -> Any:
        logger.info("Setting preset mode on %s to '%s'", entity_id, preset_mode)
        return await self.call_service(
            "climate",
            "set_preset_mode",
            data={"preset_mode": preset_mode},
            target={"entity_id": entity_id},
        )

    def __repr__(self) -> str:
        return f"<HAClient url={self._base_url!r} connected={self._connected}>"


__all__ = [
    "EntityState",
    "HAAuthenticationError",
    "HAClient",
    "HAClientError",
    "HAConnectionError",
    "HANotFoundError",
    "HAServiceError",
]
