"""FastAPI dependency injection helpers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from zonectl.core.controller import HVACController

# ---------------------------------------------------------------------------
# Controller dependency
# ---------------------------------------------------------------------------


def get_controller(request: Request) -> HVACController:
    controller: HVACController | None = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="HVAC controller not running",
        )
    return controller


ControllerDep = Annotated[HVACController, Depends(get_controller)]


__all__ = [
    "ControllerDep",
    "get_controller",
]
