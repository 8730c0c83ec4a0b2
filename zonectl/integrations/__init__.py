"""Home Assistant integration clients for zonectl."""

from .ha_client import EntityState, HAClient, HAClientError
from .ha_websocket import HAStateChange, HAWebSocketClient, HAWebSocketError

__all__ = [
    "EntityState",
    "HAClient",
    "HAClientError",
    "HAStateChange",
    "HAWebSocketClient",
    "HAWebSocketError",
]
