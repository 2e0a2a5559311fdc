"""Downstream sinks for denormalized feed records."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import text

from transit_events.database import close_database, get_session_context
from transit_events.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from transit_events.config import Settings
    from transit_events.services.gtfs_rt.records import OutputRecord

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 500

_EVENT_COLUMNS = ("identity", "kind", "entity_id", "event_timestamp", "fields")


class PublishError(Exception):
    """Raised when a sink cannot deliver a batch of records."""


class RecordSink(Protocol):
    """Accepts one batch of records per poll cycle: deliver all or raise."""

    async def publish(self, records: Sequence[OutputRecord], poll_id: str) -> int: ...

    async def close(self) -> None: ...


class JsonLinesSink:
    """Appends one JSON document per record to a local file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def publish(self, records: Sequence[OutputRecord], poll_id: str) -> int:
        """Append the batch to the file.

        Raises:
            PublishError: If the file cannot be written.
        """
        if not records:
            return 0

        lines = "".join(
            json.dumps(record.to_document(), separators=(",", ":")) + "\n" for record in records
        )
        try:
            await asyncio.to_thread(self._append, lines)
        except OSError as exc:
            msg = f"Failed to write {len(records)} records to {self.path}"
            logger.error(msg, poll_id=poll_id, path=str(self.path), error=str(exc))
            raise PublishError(msg) from exc

        logger.info(
            "Records appended", poll_id=poll_id, path=str(self.path), count=len(records)
        )
        return len(records)

    def _append(self, lines: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(lines)

    async def close(self) -> None:
        return None


class DatabaseSink:
    """Batch writer into ``feed_events`` with idempotent inserts.

    Alert records carry an identity and are inserted with
    ``ON CONFLICT (identity) DO NOTHING``, so refetching an unchanged alert
    does not duplicate it.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.batch_size = batch_size

    async def publish(self, records: Sequence[OutputRecord], poll_id: str) -> int:
        """Insert all records, one transaction per batch.

        Returns the number of rows actually inserted.

        Raises:
            PublishError: If any batch fails.
        """
        if not records:
            return 0

        rows = [_event_row(record) for record in records]
        try:
            async with get_session_context() as session:
                inserted = await self._batch_insert(session, rows, poll_id)
        except PublishError:
            raise
        except Exception as exc:
            msg = f"Failed to publish {len(rows)} records to feed_events"
            logger.error(msg, poll_id=poll_id, error=str(exc))
            raise PublishError(msg) from exc

        return inserted

    async def close(self) -> None:
        await close_database()

    async def _batch_insert(
        self,
        session: Any,
        rows: list[dict[str, Any]],
        poll_id: str,
    ) -> int:
        """Batch INSERT ... ON CONFLICT DO NOTHING into feed_events."""
        column_list = ", ".join(_EVENT_COLUMNS)
        total_inserted = 0

        for batch_start in range(0, len(rows), self.batch_size):
            batch = rows[batch_start : batch_start + self.batch_size]

            values_sql = ", ".join(
                f"(:identity_{i}, :kind_{i}, :entity_id_{i}, :event_timestamp_{i}, "
                f"CAST(:fields_{i} AS JSONB))"
                for i in range(len(batch))
            )
            params: dict[str, Any] = {}
            for i, row in enumerate(batch):
                for col in _EVENT_COLUMNS:
                    params[f"{col}_{i}"] = row[col]

            stmt = text(f"""
                INSERT INTO feed_events ({column_list})
                VALUES {values_sql}
                ON CONFLICT (identity) DO NOTHING
            """)

            try:
                result = await session.execute(stmt, params)
                total_inserted += result.rowcount if result.rowcount else 0
                await session.commit()
            except Exception as exc:
                await session.rollback()
                msg = f"Batch insert into feed_events failed at offset {batch_start}"
                logger.error(
                    msg,
                    poll_id=poll_id,
                    batch_start=batch_start,
                    batch_size=len(batch),
                    error=str(exc),
                )
                raise PublishError(msg) from exc

        logger.info(
            "Batch insert complete",
            table="feed_events",
            poll_id=poll_id,
            total_rows=len(rows),
            inserted=total_inserted,
            duplicates_skipped=len(rows) - total_inserted,
        )
        return total_inserted


def _event_row(record: OutputRecord) -> dict[str, Any]:
    return {
        "identity": record.identity,
        "kind": record.kind,
        "entity_id": record.entity_id,
        "event_timestamp": record.timestamp,
        "fields": json.dumps(record.json_fields()),
    }


def create_sink(settings: Settings) -> RecordSink:
    """Build the sink selected by configuration."""
    if settings.sink == "database":
        return DatabaseSink(batch_size=settings.sink_batch_size)
    return JsonLinesSink(settings.sink_path)
