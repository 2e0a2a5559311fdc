"""GTFS-Realtime ingestion and denormalization pipeline."""

from transit_events.services.gtfs_rt.decoder import DecodeError, FeedDecoder
from transit_events.services.gtfs_rt.denormalizer import Denormalizer, TransformError
from transit_events.services.gtfs_rt.fetcher import FeedFetcher, FetchResult, UpstreamError
from transit_events.services.gtfs_rt.records import OutputRecord
from transit_events.services.gtfs_rt.sinks import (
    DatabaseSink,
    JsonLinesSink,
    PublishError,
    RecordSink,
)
from transit_events.services.gtfs_rt.worker import PollWorker

__all__ = [
    "DatabaseSink",
    "DecodeError",
    "Denormalizer",
    "FeedDecoder",
    "FeedFetcher",
    "FetchResult",
    "JsonLinesSink",
    "OutputRecord",
    "PollWorker",
    "PublishError",
    "RecordSink",
    "TransformError",
    "UpstreamError",
]
