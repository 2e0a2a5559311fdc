"""Tests for GTFS-RT protobuf decoder."""

import pytest

from transit_events.services.gtfs_rt.decoder import DecodeError, FeedDecoder

from .fixtures.gtfs_rt_fixture import (
    build_alert_feed,
    build_empty_feed,
    build_mixed_feed,
    build_vehicle_position_feed,
    new_feed,
)


class TestFeedDecoder:
    """Unit tests for FeedDecoder."""

    def test_decode_vehicle_position_feed(self) -> None:
        data = build_vehicle_position_feed(entity_id="vp_42", trip_id="T9")
        feed = FeedDecoder.decode(data, "poll-1")

        assert len(feed.entity) == 1
        assert feed.entity[0].id == "vp_42"
        assert feed.entity[0].vehicle.trip.trip_id == "T9"

    def test_decode_alert_feed(self) -> None:
        data = build_alert_feed(route_ids=["R1", "R2"])
        feed = FeedDecoder.decode(data, "poll-1")

        assert len(feed.entity) == 1
        assert len(feed.entity[0].alert.informed_entity) == 2

    def test_entities_preserve_feed_order(self) -> None:
        feed = FeedDecoder.decode(build_mixed_feed(), "poll-1")
        assert [entity.id for entity in FeedDecoder.entities(feed)] == ["vp_1", "tu_1", "al_1"]

    def test_decode_empty_feed(self) -> None:
        feed = FeedDecoder.decode(build_empty_feed(), "poll-1")
        assert len(FeedDecoder.entities(feed)) == 0

    def test_decode_invalid_data_raises(self) -> None:
        with pytest.raises(DecodeError, match="Failed to decode"):
            FeedDecoder.decode(b"not a protobuf", "poll-1")

    def test_feed_timestamp(self) -> None:
        feed = FeedDecoder.decode(build_empty_feed(feed_timestamp=1700000123), "poll-1")
        assert FeedDecoder.get_feed_timestamp(feed) == 1700000123

    def test_feed_timestamp_absent(self) -> None:
        feed = new_feed(feed_timestamp=None)
        assert FeedDecoder.get_feed_timestamp(feed) == 0
