"""HVAC command and status routes."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from zonectl.api.dependencies import ControllerDep
from zonectl.core.dispatcher import DispatchResult
from zonectl.core.exceptions import EventRejected
from zonectl.core.state_machine import EventOutcome, TransitionRecord
from zonectl.models.schemas import (
    DispatchResponse,
    EventOutcomeResponse,
    HealthResponse,
    ModeRuntimeResponse,
    OverrideRequest,
    StatusResponse,
    TransitionRecordResponse,
    ZoneOutcomeResponse,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------


def _record_response(record: TransitionRecord) -> TransitionRecordResponse:
    return TransitionRecordResponse(
        timestamp=record.timestamp,
        from_mode=record.from_mode,
        to_mode=record.to_mode,
        reasoning=record.reasoning,
        triggering_conditions=record.triggering_conditions,
        event=record.event,
    )


def _dispatch_response(result: DispatchResult) -> DispatchResponse:
    return DispatchResponse(
        all_succeeded=result.all_succeeded,
        per_zone=[
            ZoneOutcomeResponse(zone_id=o.zone_id, success=o.success, error=o.error)
            for o in result.per_zone
        ],
    )


def _outcome_response(outcome: EventOutcome) -> EventOutcomeResponse:
    return EventOutcomeResponse(
        event=outcome.event,
        accepted=outcome.accepted,
        record=_record_response(outcome.record) if outcome.record else None,
        dispatch=_dispatch_response(outcome.dispatch) if outcome.dispatch else None,
        error=outcome.error,
    )


def _conflict(exc: EventRejected) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


@router.get("/status", response_model=StatusResponse)
async def get_status(controller: ControllerDep) -> StatusResponse:
    snapshot = controller.status()
    return StatusResponse(
        current_mode=snapshot.current_mode,
        system_mode=snapshot.system_mode,
        accepting_events=snapshot.accepting_events and not controller.router.halted,
        last_transition_at=snapshot.last_transition_at,
        last_reasoning=snapshot.last_reasoning,
        target_temperature=snapshot.target_temperature,
        indoor_temp=snapshot.readings.indoor_temp,
        outdoor_temp=snapshot.readings.outdoor_temp,
        override=snapshot.override.as_dict() if snapshot.override.active else None,
        bookkeeping={
            mode: ModeRuntimeResponse.model_validate(runtime)
            for mode, runtime in snapshot.bookkeeping.as_dict().items()
        },
        last_error=snapshot.last_error,
    )


@router.get("/history", response_model=list[TransitionRecordResponse])
async def get_history(
    controller: ControllerDep,
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> list[TransitionRecordResponse]:
    return [_record_response(record) for record in controller.history(limit)]


@router.get("/health", response_model=HealthResponse)
async def get_health(controller: ControllerDep) -> HealthResponse:
    health = controller.health()
    return HealthResponse(status=health.status, message=health.message, details=health.details)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@router.post("/override", response_model=EventOutcomeResponse)
async def request_override(
    payload: OverrideRequest, controller: ControllerDep
) -> EventOutcomeResponse:
    try:
        outcome = await controller.request_override(
            payload.mode, payload.temperature, payload.ttl_seconds
        )
    except EventRejected as exc:
        raise _conflict(exc) from exc
    return _outcome_response(outcome)


@router.delete("/override", response_model=EventOutcomeResponse)
async def cancel_override(controller: ControllerDep) -> EventOutcomeResponse:
    try:
        outcome = await controller.cancel_override()
    except EventRejected as exc:
        raise _conflict(exc) from exc
    return _outcome_response(outcome)


@router.post("/evaluate", response_model=EventOutcomeResponse)
async def evaluate(controller: ControllerDep) -> EventOutcomeResponse:
    try:
        outcome = await controller.evaluate("api")
    except EventRejected as exc:
        raise _conflict(exc) from exc
    return _outcome_response(outcome)


@router.post("/shutdown", response_model=EventOutcomeResponse)
async def shutdown(controller: ControllerDep) -> EventOutcomeResponse:
    try:
        outcome = await controller.shutdown("requested via API")
    except EventRejected as exc:
        raise _conflict(exc) from exc
    return _outcome_response(outcome)


@router.post("/restart", response_model=EventOutcomeResponse)
async def restart(controller: ControllerDep) -> EventOutcomeResponse:
    try:
        outcome = await controller.restart()
    except EventRejected as exc:
        raise _conflict(exc) from exc
    return _outcome_response(outcome)
