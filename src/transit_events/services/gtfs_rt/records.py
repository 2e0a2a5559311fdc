"""Flat output records produced by the denormalizer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

KIND_VEHICLE_POSITION = "vehicle_position"
KIND_TRIP_UPDATE = "trip_update"
KIND_ALERT = "alert"


@dataclass
class OutputRecord:
    """A denormalized feed entity.

    ``fields`` maps dotted field paths (``trip.id``, ``stop.name``) to scalar
    or short composite values. ``identity`` is the stable dedup key used by
    downstream indexing; records without one are never deduplicated.
    """

    kind: str
    timestamp: datetime
    entity_id: str | None = None
    identity: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    def put(self, key: str, value: Any) -> None:
        self.fields[key] = value

    def put_if_present(self, key: str, value: Any) -> None:
        """Set ``key`` unless the value is None or an empty string."""
        if value is None or value == "":
            return
        self.fields[key] = value

    def json_fields(self) -> dict[str, Any]:
        """Fields with datetimes rendered as ISO 8601 strings."""
        return {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in self.fields.items()
        }

    def to_document(self) -> dict[str, Any]:
        """Render the record as a JSON-ready document."""
        doc: dict[str, Any] = {
            "@timestamp": self.timestamp.isoformat(),
            "type": self.kind,
        }
        if self.entity_id:
            doc["entity_id"] = self.entity_id
        if self.identity is not None:
            doc["_id"] = self.identity
        doc.update(self.json_fields())
        return doc
