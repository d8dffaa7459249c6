"""
FastAPI application entrypoint.

Lifespan:
  • On startup: report which upstream credentials are configured.

Routers:
  • /api/consumers — gateway consumer proxy (list/create/update/delete)
  • /api/usage, /api/model-usage — metering query proxy
  • /health — shallow liveness probe

Every ConsoleError is rendered as a JSON body with the matching status.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from keyconsole.core.config import settings
from keyconsole.core.errors import ConsoleError
from keyconsole.routers.consumers import router as consumers_router
from keyconsole.routers.usage import router as usage_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""

    if not settings.GATEWAY_API_KEY:
        logger.warning(
            "GATEWAY_API_KEY is not set. "
            "Consumer routes will answer 500 until it is configured."
        )
    if not settings.METERING_API_KEY:
        logger.warning(
            "METERING_API_KEY is not set. "
            "Usage routes will answer 500 until it is configured."
        )

    yield  # ← application runs here

    logger.info("Shutting down")


# ── App ─────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    description=(
        "Management console backend: gateway consumer CRUD "
        "and metered usage queries."
    ),
    lifespan=lifespan,
)

# Mount routers
app.include_router(consumers_router, prefix="/api/consumers")
app.include_router(usage_router, prefix="/api")


# ── Errors ──────────────────────────────────────────────────
@app.exception_handler(ConsoleError)
async def console_error_handler(_request: Request, exc: ConsoleError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": str(exc)},
    )


# ── Health check ────────────────────────────────────────────
@app.get(
    "/health",
    tags=["System"],
    summary="Liveness probe",
)
async def health_check() -> dict[str, str]:
    """Shallow health check. Confirms the process is alive."""
    return {"status": "healthy"}
