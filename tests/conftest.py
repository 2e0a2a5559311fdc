"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from transit_events.main import app
from transit_events.services.gtfs_rt.worker import reset_worker
from transit_events.services.gtfs_static.stops import StopIndex, load_stops

from .fixtures.stops_fixture import write_stops_file

PROCESSED_AT = datetime(2024, 3, 15, 17, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_worker_singleton() -> Iterator[None]:
    """Reset the worker singleton between tests."""
    reset_worker()
    yield
    reset_worker()


@pytest.fixture
def stops_path(tmp_path: Path) -> Path:
    """Path to a small valid stops.txt."""
    return write_stops_file(tmp_path)


@pytest.fixture
def stop_index(stops_path: Path) -> StopIndex:
    """Stop index loaded from the default fixture table."""
    return load_stops(stops_path)


@pytest.fixture
def processed_at() -> datetime:
    """Fixed processing time for deterministic transforms."""
    return PROCESSED_AT


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing (lifespan not run)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
