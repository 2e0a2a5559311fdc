"""Static GTFS reference data used to enrich real-time records."""

from transit_events.services.gtfs_static.stops import (
    ReferenceDataError,
    StopIndex,
    StopRecord,
    load_stops,
)

__all__ = [
    "ReferenceDataError",
    "StopIndex",
    "StopRecord",
    "load_stops",
]
