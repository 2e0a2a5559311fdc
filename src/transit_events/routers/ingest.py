"""Poll worker control and status endpoints."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from transit_events.logging import get_logger
from transit_events.services.gtfs_rt.worker import get_worker

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/ingest", tags=["ingest"])


# --- Response schemas ---


class WorkerStatusResponse(BaseModel):
    """Response for worker status."""

    running: bool
    state: str
    poll_count: int
    skipped_ticks: int
    last_poll_at: Optional[str] = None
    last_status: Optional[str] = None
    last_modified: Optional[str] = None
    poll_period_sec: int


class RunOnceResponse(BaseModel):
    """Response for run-once endpoint."""

    poll_id: str
    poll_count: int
    status: str
    entity_count: int = 0
    records_published: int = 0
    transform_errors: int = 0
    error: Optional[str] = None
    started_at: str
    ended_at: str = ""


# --- Endpoints ---


@router.post(
    "/run-once",
    response_model=RunOnceResponse,
    summary="Trigger a single GTFS-RT poll cycle",
)
async def run_once() -> dict[str, Any]:
    """Execute one poll cycle immediately; skipped if a cycle is in progress."""
    worker = get_worker()
    return await worker.run_once()


@router.post(
    "/start",
    response_model=WorkerStatusResponse,
    summary="Start the GTFS-RT polling worker",
)
async def start_worker() -> dict[str, Any]:
    worker = get_worker()
    await worker.start()
    return await worker.get_status()


@router.post(
    "/stop",
    response_model=WorkerStatusResponse,
    summary="Stop the GTFS-RT polling worker",
)
async def stop_worker() -> dict[str, Any]:
    """Stop the polling worker after its current cycle."""
    worker = get_worker()
    await worker.stop()
    logger.info("Worker stopped via admin endpoint")
    return await worker.get_status()


@router.get(
    "/status",
    response_model=WorkerStatusResponse,
    summary="Get GTFS-RT worker status",
)
async def worker_status() -> dict[str, Any]:
    """Get current worker status."""
    worker = get_worker()
    return await worker.get_status()
