"""Control core for zonectl: policy, state machine, router and dispatcher."""

from __future__ import annotations

from .controller import HVACController
from .cycling_monitor import CyclingMonitor, HysteresisHealth
from .dispatcher import DispatchResult, EquipmentDispatcher, ZoneCommand, ZoneOutcome
from .events import (
    AutoEvaluate,
    HVACEvent,
    ManualOverrideCancelled,
    ManualOverrideRequested,
    Restart,
    Shutdown,
    TemperaturesUpdated,
)
from .exceptions import (
    DispatchFailure,
    EventRejected,
    InvalidReading,
    PolicyViolation,
    StateCorruption,
    ZoneCtlError,
)
from .policy import Advisory, Decision, ManualOverride, Reading, decide
from .router import EventRouter
from .state_machine import EventOutcome, ModeStateMachine, StatusSnapshot, TransitionRecord

__all__ = [
    "Advisory",
    "AutoEvaluate",
    "CyclingMonitor",
    "Decision",
    "DispatchFailure",
    "DispatchResult",
    "EquipmentDispatcher",
    "EventOutcome",
    "EventRejected",
    "EventRouter",
    "HVACController",
    "HVACEvent",
    "HysteresisHealth",
    "InvalidReading",
    "ManualOverride",
    "ManualOverrideCancelled",
    "ManualOverrideRequested",
    "ModeStateMachine",
    "PolicyViolation",
    "Reading",
    "Restart",
    "Shutdown",
    "StateCorruption",
    "StatusSnapshot",
    "TemperaturesUpdated",
    "TransitionRecord",
    "ZoneCommand",
    "ZoneCtlError",
    "ZoneOutcome",
    "decide",
]
