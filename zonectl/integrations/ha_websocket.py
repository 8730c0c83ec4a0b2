"""Home Assistant WebSocket client streaming temperature sensor updates.

Subscribes to ``state_changed`` events, keeps only the configured sensor
entities and hands normalized changes to registered callbacks. This is the
producer side of the event router: callbacks must enqueue and return.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

_FAHRENHEIT_UNITS = frozenset({"°F", "F"})


@dataclass(slots=True)
class HAStateChange:
    """Normalized sensor state change. ``temperature`` is in °C or ``None`` if unparsable."""

    entity_id: str
    state: str
    attributes: dict[str, Any] = field(default_factory=dict)
    temperature: float | None = None
    unit: str = ""
    last_updated: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


StateChangeCallback = Callable[[HAStateChange], Awaitable[None] | None]


class HAWebSocketError(Exception):
    """Base exception for HA WebSocket errors."""


class HAWebSocketAuthError(HAWebSocketError):
    """Authentication failed."""


def parse_temperature(state: str, unit: str = "") -> float | None:
    """Convert a sensor state string to °C. Non-numeric states yield ``None``.

    Non-finite values are passed through so the state machine can reject them.
    """
    try:
        value = float(state)
    except (TypeError, ValueError):
        return None
    if unit in _FAHRENHEIT_UNITS and math.isfinite(value):
        value = (value - 32) * 5 / 9
    return value


def parse_state_change(entity_id: str, state_data: dict[str, Any]) -> HAStateChange:
    state = str(state_data.get("state", ""))
    attrs = state_data.get("attributes") or {}
    unit = attrs.get("unit_of_measurement", "") or ""
    last_updated = state_data.get("last_updated", "") or ""
    timestamp = datetime.now(UTC)
    if last_updated:
        with suppress(ValueError):
            timestamp = datetime.fromisoformat(last_updated)
    return HAStateChange(
        entity_id=entity_id,
        state=state,
        attributes=attrs,
        temperature=parse_temperature(state, unit),
        unit=unit,
        last_updated=last_updated,
        timestamp=timestamp,
    )


class HAWebSocketClient:
    """Async WebSocket client for Home Assistant sensor subscriptions.

    Usage::

        client = HAWebSocketClient(url, token, entity_filter={"sensor.indoor"})
        client.add_callback(on_change)
        await client.connect()
        ...
        await client.disconnect()
    """

    _RECONNECT_DELAYS = (1, 2, 5, 10, 30, 60)

    def __init__(
        self,
        url: str,
        token: str,
        *,
        entity_filter: set[str] | None = None,
    ) -> None:
        base = url.rstrip("/")
        if base.startswith("https://"):
            self._ws_url = base.replace("https://", "wss://", 1) + "/api/websocket"
        elif base.startswith("http://"):
            self._ws_url = base.replace("http://", "ws://", 1) + "/api/websocket"
        else:
            self._ws_url = f"ws://{base}/api/websocket"

        self._token = token
        self._entity_filter = entity_filter
        self._ws: ClientConnection | None = None
        self._connected = asyncio.Event()
        self._stop = False
        self._lock = asyncio.Lock()
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._msg_id = 0
        self._callbacks: list[StateChangeCallback] = []
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, authenticate and subscribe to ``state_changed``."""
        async with self._lock:
            if self._ws is not None:
                return
            await self._open_and_auth()
            self._stop = False
            self._listen_task = asyncio.create_task(self._listen_loop(), name="ha-ws-listen")
            self._reconnect_task = asyncio.create_task(
                self._reconnect_loop(), name="ha-ws-reconnect"
            )
            logger.info("HA WebSocket connected to %s", self._ws_url)

    async def disconnect(self) -> None:
        async with self._lock:
            self._stop = True
            self._connected.clear()
            await self._cancel_tasks()
            await self._close_socket()
            logger.info("HA WebSocket disconnected")

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def add_callback(self, callback: StateChangeCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def remove_callback(self, callback: StateChangeCallback) -> None:
        with suppress(ValueError):
            self._callbacks.remove(callback)

    # ------------------------------------------------------------------
    # Connection & auth
    # ------------------------------------------------------------------

    async def _open_and_auth(self) -> None:
        try:
            self._ws = await websockets.connect(
                self._ws_url,
                additional_headers={"User-Agent": "zonectl/1.0"},
                ping_interval=30,
                ping_timeout=10,
                close_timeout=5,
            )
        except (OSError, websockets.WebSocketException) as exc:
            logger.error("Failed to connect to HA WebSocket at %s: %s", self._ws_url, exc)
            raise HAWebSocketError(f"Connection failed: {exc}") from exc

        msg = json.loads(await self._ws.recv())
        if msg.get("type") != "auth_required":
            raise HAWebSocketError(f"Expected auth_required, got: {msg.get('type')}")

        await self._ws.send(json.dumps({"type": "auth", "access_token": self._token}))
        msg = json.loads(await self._ws.recv())
        if msg.get("type") == "auth_invalid":
            raise HAWebSocketAuthError(
                f"Authentication failed: {msg.get('message', 'invalid token')}"
            )
        if msg.get("type") != "auth_ok":
            raise HAWebSocketError(f"Expected auth_ok, got: {msg.get('type')}")

        self._msg_id += 1
        await self._ws.send(
            json.dumps(
                {"id": self._msg_id, "type": "subscribe_events", "event_type": "state_changed"}
            )
        )
        result = json.loads(await self._ws.recv())
        if not result.get("success", False):
            raise HAWebSocketError(f"Failed to subscribe to state_changed: {result}")

        self._connected.set()
        logger.info("Subscribed to state_changed events (msg_id=%d)", self._msg_id)

    async def _close_socket(self) -> None:
        if self._ws is not None:
            with suppress(websockets.WebSocketException, OSError):
                await self._ws.close()
            self._ws = None

    # ------------------------------------------------------------------
    # Message processing
    # ------------------------------------------------------------------

    async def _listen_loop(self) -> None:
        try:
            while not self._stop and self._ws is not None:
                try:
                    raw = await self._ws.recv()
                except websockets.ConnectionClosed:
                    logger.warning("HA WebSocket connection closed")
                    self._connected.clear()
                    break
                change = self._handle_message(raw)
                if change is not None:
                    self._dispatch(change)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("HA WebSocket listen loop crashed")
            self._connected.clear()

    def _handle_message(self, raw: str | bytes) -> HAStateChange | None:
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON WebSocket frame")
            return None
        if msg.get("type") != "event":
            return None
        event = msg.get("event") or {}
        if event.get("event_type") != "state_changed":
            return None

        data = event.get("data") or {}
        entity_id = data.get("entity_id", "")
        new_state = data.get("new_state")
        if not entity_id or not new_state:
            return None
        if self._entity_filter is not None and entity_id not in self._entity_filter:
            return None
        return parse_state_change(entity_id, new_state)

    def _dispatch(self, change: HAStateChange) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(change)
                if asyncio.iscoroutine(result):
                    task = asyncio.create_task(result)
                    self._background.add(task)
                    task.add_done_callback(self._background.discard)
            except Exception:
                logger.exception("HA WebSocket callback raised an exception")

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    async def _reconnect_loop(self) -> None:
        while not self._stop:
            await asyncio.sleep(2)
            if self._connected.is_set():
                continue

            logger.info("HA WebSocket connection lost, reconnecting")
            for delay in self._RECONNECT_DELAYS:
                if self._stop:
                    return
                try:
                    await self._close_socket()
                    await self._open_and_auth()
                except HAWebSocketAuthError:
                    logger.error("HA WebSocket auth failed, not retrying")
                    return
                except (HAWebSocketError, OSError, websockets.WebSocketException) as exc:
                    logger.warning(
                        "HA WebSocket reconnect failed (%s), retrying in %ss", exc, delay
                    )
                    await asyncio.sleep(delay)
                    continue

                if self._listen_task and not self._listen_task.done():
                    self._listen_task.cancel()
                    with suppress(asyncio.CancelledError):
                        await self._listen_task
                self._listen_task = asyncio.create_task(self._listen_loop(), name="ha-ws-listen")
                logger.info("HA WebSocket reconnected")
                break
            else:
                logger.error(
                    "HA WebSocket reconnect exhausted backoff; retrying every %ss",
                    self._RECONNECT_DELAYS[-1],
                )

    async def _cancel_tasks(self) -> None:
        for task in (self._listen_task, self._reconnect_task):
            if task and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._listen_task = None
        self._reconnect_task = None

    def __repr__(self) -> str:
        return f"<HAWebSocketClient url={self._ws_url!r} connected={self.connected}>"


__all__ = [
    "HAStateChange",
    "HAWebSocketAuthError",
    "HAWebSocketClient",
    "HAWebSocketError",
    "StateChangeCallback",
    "parse_state_change",
    "parse_temperature",
]
