"""GTFS-RT poll worker: fixed-period fetch, decode, denormalize, publish."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from transit_events.config import Settings, get_settings
from transit_events.logging import get_logger
from transit_events.services.gtfs_rt.decoder import DecodeError, FeedDecoder
from transit_events.services.gtfs_rt.denormalizer import Denormalizer
from transit_events.services.gtfs_rt.fetcher import FeedFetcher, UpstreamError
from transit_events.services.gtfs_rt.sinks import PublishError, create_sink

if TYPE_CHECKING:
    from transit_events.services.gtfs_rt.sinks import RecordSink
    from transit_events.services.gtfs_static.stops import StopIndex

logger = get_logger(__name__)

STATE_IDLE = "idle"
STATE_PROCESSING = "processing"

POLICY_SKIP = "skip"
POLICY_QUEUE = "queue"


def next_tick(scheduled: float, now: float, period: float, policy: str) -> tuple[float, int]:
    """Compute when the next cycle should start after one finishes.

    ``scheduled`` is the tick time of the cycle that just ran. Ticks that
    elapsed while it was processing are dropped under ``skip``; under
    ``queue`` one of them is kept and runs immediately.

    Returns:
        Tuple of (next tick time, number of ticks dropped).
    """
    upcoming = scheduled + period
    if upcoming > now:
        return upcoming, 0

    missed = int((now - upcoming) // period) + 1
    if policy == POLICY_QUEUE:
        return now, missed - 1
    return upcoming + missed * period, missed


class PollWorker:
    """Polls the GTFS-RT feed on a fixed period and publishes flat records.

    The worker is either ``idle`` (waiting for a tick or a stop request) or
    ``processing`` (one fetch -> decode -> denormalize -> publish cycle). A
    stop request is only observed while idle, so an in-flight cycle always
    finishes; its fetch is bounded by the request timeout.

    Usage:
        worker = PollWorker(stop_index=load_stops("stops.txt"))
        await worker.start()   # launches background task
        await worker.stop()    # waits for the current cycle, then exits

        # Or run a single poll cycle:
        report = await worker.run_once()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        stop_index: StopIndex | None = None,
        sink: RecordSink | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._feed_url = settings.feed_url
        self._period = settings.poll_period_sec
        self._policy = settings.tick_overlap_policy
        self._fetcher = FeedFetcher(timeout_sec=settings.fetch_timeout_sec)
        self._decoder = FeedDecoder()
        self._denormalizer = Denormalizer(
            stop_index if stop_index is not None else MappingProxyType({}),
            agency_timezone=settings.agency_timezone,
        )
        self._sink = sink if sink is not None else create_sink(settings)

        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._running = False
        self._state = STATE_IDLE
        self._poll_count = 0
        self._skipped_ticks = 0
        self._last_poll_at: datetime | None = None
        self._last_status: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> str:
        return self._state

    @property
    def poll_count(self) -> int:
        return self._poll_count

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    @property
    def last_poll_at(self) -> datetime | None:
        return self._last_poll_at

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._running:
            logger.warning("Worker already running, ignoring start request")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            "GTFS-RT worker started",
            feed_url=self._feed_url,
            poll_period_sec=self._period,
            tick_overlap_policy=self._policy,
            stop_count=self._denormalizer.stop_count,
        )

    async def stop(self) -> None:
        """Request the loop to stop and wait for it to return to idle and exit."""
        if not self._running:
            return

        self._stop_event.set()
        if self._task is not None:
            await self._task
        self._task = None
        self._running = False
        await self._sink.close()
        logger.info("GTFS-RT worker stopped", poll_count=self._poll_count)

    async def run_once(self) -> dict[str, Any]:
        """Execute a single poll cycle.

        A call made while another cycle is processing returns a ``skipped``
        report without contacting upstream.

        Returns:
            Report dict describing the cycle.
        """
        poll_id = str(uuid.uuid4())[:8]
        started_at = datetime.now(timezone.utc)

        if self._state == STATE_PROCESSING:
            logger.warning("Poll cycle already in progress, skipping", poll_id=poll_id)
            return self._report(poll_id, started_at, status="skipped")

        self._state = STATE_PROCESSING
        self._poll_count += 1
        self._last_poll_at = started_at
        logger.info("Starting poll cycle", poll_id=poll_id, poll_count=self._poll_count)

        try:
            report = await self._process(poll_id, started_at)
        finally:
            self._state = STATE_IDLE

        self._last_status = report["status"]
        logger.info("Poll cycle complete", **report)
        return report

    async def get_status(self) -> dict[str, Any]:
        """Get current worker status for health/meta endpoints."""
        last_updated = self._fetcher.last_updated
        return {
            "running": self._running,
            "state": self._state,
            "poll_count": self._poll_count,
            "skipped_ticks": self._skipped_ticks,
            "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
            "last_status": self._last_status,
            "last_modified": last_updated.isoformat() if last_updated else None,
            "poll_period_sec": self._period,
        }

    async def _poll_loop(self) -> None:
        """Tick on a fixed period until a stop is requested."""
        loop = asyncio.get_running_loop()
        scheduled = loop.time() + self._period

        while True:
            delay = max(0.0, scheduled - loop.time())
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Poll cycle failed unexpectedly", exc_info=exc)

            scheduled, dropped = next_tick(scheduled, loop.time(), self._period, self._policy)
            if dropped:
                self._skipped_ticks += dropped
                logger.warning(
                    "Ticks elapsed while processing were dropped",
                    dropped=dropped,
                    skipped_ticks=self._skipped_ticks,
                    poll_period_sec=self._period,
                )

    async def _process(self, poll_id: str, started_at: datetime) -> dict[str, Any]:
        """Run fetch -> decode -> denormalize -> publish, containing every failure."""
        try:
            result = await self._fetcher.fetch(self._feed_url, poll_id)
            if result.unchanged:
                return self._report(poll_id, started_at, status="unchanged")

            feed = self._decoder.decode(result.content, poll_id)
            entities = self._decoder.entities(feed)
            records, failures = self._denormalizer.denormalize_feed(
                entities, processed_at=started_at, poll_id=poll_id
            )

            published = await self._sink.publish(records, poll_id) if records else 0
            self._fetcher.commit(result.last_modified)

        except (UpstreamError, DecodeError, PublishError) as exc:
            logger.error(
                "Poll cycle failed",
                poll_id=poll_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return self._report(poll_id, started_at, status="error", error=str(exc))

        except Exception as exc:
            logger.error("Unexpected poll cycle error", poll_id=poll_id, exc_info=exc)
            return self._report(poll_id, started_at, status="error", error=str(exc))

        return self._report(
            poll_id,
            started_at,
            status="ok",
            entity_count=len(entities),
            records_published=published,
            transform_errors=failures,
        )

    def _report(
        self,
        poll_id: str,
        started_at: datetime,
        status: str,
        entity_count: int = 0,
        records_published: int = 0,
        transform_errors: int = 0,
        error: str | None = None,
    ) -> dict[str, Any]:
        return {
            "poll_id": poll_id,
            "poll_count": self._poll_count,
            "status": status,
            "entity_count": entity_count,
            "records_published": records_published,
            "transform_errors": transform_errors,
            "error": error,
            "started_at": started_at.isoformat(),
            "ended_at": datetime.now(timezone.utc).isoformat(),
        }


# Singleton instance for the app lifecycle
_worker_instance: PollWorker | None = None


def init_worker(stop_index: StopIndex, sink: RecordSink | None = None) -> PollWorker:
    """Create the singleton worker around loaded reference data."""
    global _worker_instance
    _worker_instance = PollWorker(stop_index=stop_index, sink=sink)
    return _worker_instance


def get_worker() -> PollWorker:
    """Get or create the singleton worker instance."""
    global _worker_instance
    if _worker_instance is None:
        _worker_instance = PollWorker()
    return _worker_instance


def reset_worker() -> None:
    """Reset the singleton (for testing)."""
    global _worker_instance
    _worker_instance = None
