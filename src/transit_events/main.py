"""FastAPI application entry point hosting the GTFS-RT poll worker."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from transit_events.config import get_settings
from transit_events.database import check_database_connection, close_database, create_schema
from transit_events.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from transit_events.routers.ingest import router as ingest_router
from transit_events.services.gtfs_rt.worker import get_worker, init_worker, reset_worker
from transit_events.services.gtfs_static.stops import load_stops

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Stop reference data is required: a ReferenceDataError here aborts startup.
    """
    setup_logging()
    settings = get_settings()
    logger.info("Starting Transit Events", feed_url=settings.feed_url)

    stop_index = load_stops(settings.stops_path)
    if settings.sink == "database":
        await create_schema()

    worker = init_worker(stop_index)
    if settings.worker_auto_start:
        await worker.start()

    yield

    worker = get_worker()
    if worker.is_running:
        await worker.stop()
    reset_worker()

    logger.info("Shutting down Transit Events")
    await close_database()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Polls a GTFS-realtime feed and publishes denormalized transit events",
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_request_context(request_id=request_id, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        clear_request_context()
        return response

    app.include_router(ingest_router)

    @app.get("/health", tags=["meta"])
    async def health_check() -> dict[str, Any]:
        """Health check endpoint returning worker status."""
        settings = get_settings()
        missing_env = settings.missing_required_env()
        worker_status = await get_worker().get_status()
        worker_healthy = worker_status["running"] or not settings.worker_auto_start
        db_healthy = await check_database_connection() if settings.sink == "database" else None

        if missing_env or db_healthy is False:
            status = "unhealthy"
        elif worker_healthy and worker_status["last_status"] != "error":
            status = "healthy"
        else:
            status = "degraded"

        issues: list[str] = []
        if missing_env:
            issues.append("Missing required environment variables: " + ", ".join(missing_env))
        if db_healthy is False:
            issues.append("Database connection failed")
        if settings.worker_auto_start and not worker_status["running"]:
            issues.append("GTFS-RT worker is not running")
        if worker_status["last_status"] == "error":
            issues.append("Last poll cycle failed")

        return {
            "service": settings.app_name,
            "status": status,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "sink": settings.sink,
                "database": db_healthy,
                "worker": {
                    "running": worker_status["running"],
                    "state": worker_status["state"],
                    "pollCount": worker_status["poll_count"],
                    "lastPollAt": worker_status["last_poll_at"],
                    "lastStatus": worker_status["last_status"],
                },
            },
            "issues": issues,
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


app = create_app()
