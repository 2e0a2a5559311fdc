"""GTFS-RT protobuf decode layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.transit import gtfs_realtime_pb2

from transit_events.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger(__name__)


class DecodeError(Exception):
    """Raised when the feed bytes are not a valid FeedMessage."""


class FeedDecoder:
    """Decodes raw protobuf bytes into GTFS-RT FeedMessage objects."""

    @staticmethod
    def decode(data: bytes, poll_id: str) -> gtfs_realtime_pb2.FeedMessage:
        """Decode protobuf bytes into a FeedMessage.

        The message is parsed as a whole; a broken message never yields a
        partial entity list.

        Raises:
            DecodeError: If protobuf parsing fails.
        """
        feed = gtfs_realtime_pb2.FeedMessage()
        try:
            feed.ParseFromString(data)
        except ProtobufDecodeError as exc:
            msg = f"Failed to decode GTFS-RT feed ({len(data)} bytes): {exc}"
            logger.error(msg, poll_id=poll_id, size_bytes=len(data), error=str(exc))
            raise DecodeError(msg) from exc

        logger.info(
            "GTFS-RT feed decoded",
            poll_id=poll_id,
            entity_count=len(feed.entity),
            feed_timestamp=FeedDecoder.get_feed_timestamp(feed),
            gtfs_rt_version=feed.header.gtfs_realtime_version,
        )
        return feed

    @staticmethod
    def entities(feed: gtfs_realtime_pb2.FeedMessage) -> Sequence[gtfs_realtime_pb2.FeedEntity]:
        """Return the entity list of a decoded FeedMessage."""
        return feed.entity

    @staticmethod
    def get_feed_timestamp(feed: gtfs_realtime_pb2.FeedMessage) -> int:
        """Extract the header timestamp, or 0 if not set."""
        return feed.header.timestamp if feed.header.HasField("timestamp") else 0
