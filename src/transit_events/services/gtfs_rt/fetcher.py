"""GTFS-RT feed fetcher with Last-Modified change detection."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from transit_events.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 30

# Upstream error pages can be large; logs only keep the head.
MAX_LOGGED_BODY = 500


class UpstreamError(Exception):
    """Raised when the upstream feed cannot be fetched."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a single feed fetch."""

    content: bytes
    unchanged: bool
    last_modified: datetime | None = None


class FeedFetcher:
    """Fetches the GTFS-RT protobuf feed and tracks its last-modified marker.

    ``last_updated`` holds the ``Last-Modified`` value of the last fetch whose
    records were fully processed. :meth:`fetch` only compares against it; the
    caller advances it with :meth:`commit` once the cycle has succeeded, so a
    cycle that fails downstream is reprocessed on the next poll.
    """

    def __init__(self, timeout_sec: int = DEFAULT_TIMEOUT_SEC) -> None:
        self.timeout_sec = timeout_sec
        self.last_updated: datetime | None = None

    async def fetch(self, url: str, poll_id: str) -> FetchResult:
        """Issue one GET against the feed URL.

        Args:
            url: Feed URL.
            poll_id: Correlation ID for this poll cycle.

        Returns:
            FetchResult with the body and the unchanged flag.

        Raises:
            UpstreamError: On transport failure or a non-200 status.
        """
        logger.debug("Fetching GTFS-RT feed", url=url, poll_id=poll_id)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_sec),
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.RequestError as exc:
            msg = f"Request to {url} failed: {exc!r}"
            logger.error("GTFS-RT fetch failed", url=url, poll_id=poll_id, error=repr(exc))
            raise UpstreamError(msg) from exc

        if response.status_code != 200:
            body = response.text
            logger.warning(
                "GTFS-RT feed returned an error response",
                url=url,
                poll_id=poll_id,
                status_code=response.status_code,
                body=body[:MAX_LOGGED_BODY],
            )
            msg = f"Upstream returned HTTP {response.status_code}: {body[:MAX_LOGGED_BODY]}"
            raise UpstreamError(msg, status_code=response.status_code, body=body)

        data = response.content
        last_modified = self._parse_last_modified(
            response.headers.get("Last-Modified"), poll_id
        )

        if (
            last_modified is not None
            and self.last_updated is not None
            and last_modified <= self.last_updated
        ):
            logger.info(
                "GTFS-RT feed unchanged",
                poll_id=poll_id,
                last_modified=last_modified.isoformat(),
                last_updated=self.last_updated.isoformat(),
            )
            return FetchResult(content=data, unchanged=True, last_modified=last_modified)

        logger.info(
            "GTFS-RT feed downloaded",
            poll_id=poll_id,
            size_bytes=len(data),
            last_modified=last_modified.isoformat() if last_modified else None,
        )
        return FetchResult(content=data, unchanged=False, last_modified=last_modified)

    def commit(self, last_modified: datetime | None) -> None:
        """Record a fully processed fetch; a missing or older marker is ignored."""
        if last_modified is None:
            return
        if self.last_updated is None or last_modified > self.last_updated:
            self.last_updated = last_modified

    @staticmethod
    def _parse_last_modified(raw: str | None, poll_id: str) -> datetime | None:
        """Parse an RFC 1123 Last-Modified header into an aware UTC datetime."""
        if not raw:
            return None
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            logger.warning(
                "Ignoring unparseable Last-Modified header", poll_id=poll_id, raw=raw
            )
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
