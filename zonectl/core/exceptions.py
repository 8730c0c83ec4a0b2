"""Error taxonomy for the zonectl control core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zonectl.core.dispatcher import DispatchResult


class ZoneCtlError(Exception):
    """Base exception for all control core errors."""


class InvalidReading(ZoneCtlError):
    """Raised for malformed or non-finite sensor values. The event is dropped."""

    def __init__(self, message: str, *, entity_id: str | None = None, value: object = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id
        self.value = value


class PolicyViolation(ZoneCtlError):
    """The evaluator would have selected an unsafe mode; the current mode is held."""


class DispatchFailure(ZoneCtlError):
    """One or more zones rejected a command."""

    def __init__(self, result: DispatchResult) -> None:
        failed = ", ".join(outcome.zone_id for outcome in result.failed)
        super().__init__(f"Dispatch failed for zone(s): {failed}")
        self.result = result


class StateCorruption(ZoneCtlError):
    """A machine invariant was violated. Fatal: the controller must stop."""


class EventRejected(ZoneCtlError):
    """The event was refused because the machine is shut down or halted."""


__all__ = [
    "DispatchFailure",
    "EventRejected",
    "InvalidReading",
    "PolicyViolation",
    "StateCorruption",
    "ZoneCtlError",
]
