"""
zonectl API - Main Entry Point

FastAPI application hosting the HVAC controller: Home Assistant sensor
stream in, climate commands out, and a small command/status surface.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from zonectl.api.routes import api_router
from zonectl.config import Settings, build_hvac_options, get_settings
from zonectl.core.controller import HVACController
from zonectl.integrations.ha_client import HAClient, HAClientError
from zonectl.integrations.ha_websocket import HAWebSocketClient

_VERSION = "0.1.0"

# Configure logging
settings_instance = get_settings()
logging.basicConfig(
    level=logging.DEBUG if settings_instance.debug else settings_instance.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# ============================================================================
# Controller construction
# ============================================================================


def build_controller(settings: Settings) -> tuple[HVACController, HAClient]:
    """Create the HA clients and the controller from settings.

    Raises:
        pydantic.ValidationError: If the HVAC configuration is invalid.
    """
    options = build_hvac_options(settings)
    ha_client = HAClient(
        url=str(settings.home_assistant_url),
        token=settings.home_assistant_token,
        timeout=settings.home_assistant_timeout_seconds,
    )
    ha_ws = None
    if settings.home_assistant_token:
        ha_ws = HAWebSocketClient(
            url=str(settings.home_assistant_url),
            token=settings.home_assistant_token,
            entity_filter={options.indoor_sensor, options.outdoor_sensor},
        )
    controller = HVACController(
        options,
        ha_client=ha_client,
        ha_ws=ha_ws,
        evaluation_interval_seconds=settings.evaluation_interval_seconds,
        health_log_interval_seconds=settings.health_log_interval_seconds,
    )
    return controller, ha_client


# ============================================================================
# Lifecycle Management
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting zonectl API...")
    settings = settings_instance
    controller, ha_client = build_controller(settings)

    if settings.home_assistant_token:
        try:
            await ha_client.connect()
        except HAClientError as e:
            logger.warning("HA REST connection failed (commands will retry on demand): %s", e)
    else:
        logger.warning("No Home Assistant token configured; zone commands will fail")

    await controller.start()
    app.state.controller = controller
    app.state.startup_time = datetime.now(UTC)
    logger.info("zonectl API startup complete (%d zone(s))", len(controller.options.zones))

    yield

    logger.info("Shutting down zonectl API...")
    await controller.stop()
    await ha_client.disconnect()
    app.state.controller = None
    logger.info("zonectl API shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

settings = settings_instance

app = FastAPI(
    title="zonectl API",
    description="HVAC mode control for Home Assistant climate zones.",
    version=_VERSION,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)
app.state.controller = None


@app.middleware("http")
async def request_logging_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Log all requests with timing and correlation IDs."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    start_time = time.perf_counter()
    request.state.request_id = request_id

    response = await call_next(request)
    process_time = time.perf_counter() - start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{process_time:.4f}"
    logger.info(
        "%s %s status=%d duration=%.4fs",
        request.method,
        request.url.path,
        response.status_code,
        process_time,
    )
    return response


# ============================================================================
# Route Registration
# ============================================================================

app.include_router(api_router)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health/live", tags=["Health"])
async def liveness_check() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"], response_model=None)
async def readiness_check(request: Request) -> Response:
    """Ready once the controller runs and has not halted."""
    controller: HVACController | None = request.app.state.controller
    if controller is None or not controller.running or controller.router.halted:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready"},
        )
    return JSONResponse(content={"status": "ready"})


# ============================================================================
# Exception Handlers
# ============================================================================


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": 500,
                "message": "An internal error occurred" if not settings.debug else str(exc),
                "request_id": getattr(request.state, "request_id", None),
            },
        },
    )


# ============================================================================
# CLI Entry Point
# ============================================================================


def main() -> None:
    import uvicorn

    uvicorn.run(
        "zonectl.api.main:app",
        host=settings.host,
        port=settings.port,
        loop="asyncio",
        reload=settings.debug,
        log_level="debug" if settings.debug else settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
