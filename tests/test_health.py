"""Tests for health endpoint."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from transit_events.config import Settings
from transit_events.services.gtfs_rt.worker import get_worker


@pytest.mark.asyncio
async def test_health_endpoint_returns_200(client: AsyncClient) -> None:
    """Test that health endpoint returns 200 with expected fields."""
    response = await client.get("/health")

    assert response.status_code == 200

    data = response.json()
    assert data["service"] == "Transit Events"
    assert "version" in data
    assert "environment" in data
    assert "timestamp" in data
    worker = data["checks"]["worker"]
    assert worker["running"] is False
    assert worker["state"] == "idle"
    assert worker["pollCount"] == 0
    assert isinstance(data["issues"], list)


@pytest.mark.asyncio
async def test_health_degraded_when_worker_not_running(client: AsyncClient) -> None:
    settings = Settings(worker_auto_start=True)
    with patch("transit_events.main.get_settings", return_value=settings):
        response = await client.get("/health")

    data = response.json()
    assert data["status"] == "degraded"
    assert "GTFS-RT worker is not running" in data["issues"]


@pytest.mark.asyncio
async def test_health_healthy_without_auto_start(client: AsyncClient) -> None:
    settings = Settings(worker_auto_start=False)
    with patch("transit_events.main.get_settings", return_value=settings):
        response = await client.get("/health")

    data = response.json()
    assert data["status"] == "healthy"
    assert data["issues"] == []
    assert data["checks"]["database"] is None


@pytest.mark.asyncio
async def test_health_degraded_after_failed_poll(client: AsyncClient) -> None:
    worker = get_worker()
    worker._last_status = "error"
    settings = Settings(worker_auto_start=False)
    with patch("transit_events.main.get_settings", return_value=settings):
        response = await client.get("/health")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["worker"]["lastStatus"] == "error"
    assert "Last poll cycle failed" in data["issues"]


@pytest.mark.asyncio
async def test_health_unhealthy_when_database_unreachable(client: AsyncClient) -> None:
    settings = Settings(worker_auto_start=False, sink="database")
    with (
        patch("transit_events.main.get_settings", return_value=settings),
        patch(
            "transit_events.main.check_database_connection",
            AsyncMock(return_value=False),
        ),
    ):
        response = await client.get("/health")

    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["checks"]["database"] is False
    assert "Database connection failed" in data["issues"]


@pytest.mark.asyncio
async def test_health_endpoint_has_request_id_header(client: AsyncClient) -> None:
    """Test that health endpoint response includes X-Request-ID header."""
    response = await client.get("/health")

    assert "X-Request-ID" in response.headers
    assert len(response.headers["X-Request-ID"]) > 0


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
