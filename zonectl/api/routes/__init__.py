"""API route registration for zonectl."""

from fastapi import APIRouter

from . import hvac

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(hvac.router, prefix="/hvac", tags=["hvac"])


__all__ = ["api_router", "hvac"]
