"""Test fixtures for GTFS-RT protobuf data."""

from __future__ import annotations

from google.transit import gtfs_realtime_pb2


def new_feed(feed_timestamp: int | None = 1700000000) -> gtfs_realtime_pb2.FeedMessage:
    """Create an empty FeedMessage with a valid header."""
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    if feed_timestamp is not None:
        feed.header.timestamp = feed_timestamp
    return feed


def add_vehicle_entity(
    feed: gtfs_realtime_pb2.FeedMessage,
    entity_id: str = "vp_001",
    trip_id: str | None = "T1",
    route_id: str | None = None,
    vehicle_id: str | None = None,
    stop_id: str | None = None,
    lat: float | None = None,
    lon: float | None = None,
    speed: float | None = None,
    timestamp: int | None = None,
) -> gtfs_realtime_pb2.FeedEntity:
    """Append a VehiclePosition entity; only the given fields are set."""
    entity = feed.entity.add()
    entity.id = entity_id
    vp = entity.vehicle
    if trip_id is not None:
        vp.trip.trip_id = trip_id
    if route_id is not None:
        vp.trip.route_id = route_id
    if vehicle_id is not None:
        vp.vehicle.id = vehicle_id
    if stop_id is not None:
        vp.stop_id = stop_id
    if lat is not None or lon is not None or speed is not None:
        # latitude and longitude are required once a position is present
        vp.position.latitude = lat if lat is not None else 0.0
        vp.position.longitude = lon if lon is not None else 0.0
        if speed is not None:
            vp.position.speed = speed
    if timestamp is not None:
        vp.timestamp = timestamp
    return entity


def add_trip_update_entity(
    feed: gtfs_realtime_pb2.FeedMessage,
    entity_id: str = "tu_001",
    trip_id: str = "trip_001",
    route_id: str = "route_R1",
    stop_updates: list[dict] | None = None,
) -> gtfs_realtime_pb2.FeedEntity:
    """Append a TripUpdate entity.

    Args:
        stop_updates: List of dicts with keys: stop_id, stop_sequence,
            arrival_delay, departure_delay.
    """
    entity = feed.entity.add()
    entity.id = entity_id
    tu = entity.trip_update
    tu.trip.trip_id = trip_id
    tu.trip.route_id = route_id

    for su in stop_updates or []:
        stu = tu.stop_time_update.add()
        stu.stop_id = su["stop_id"]
        stu.stop_sequence = su["stop_sequence"]
        if "arrival_delay" in su:
            stu.arrival.delay = su["arrival_delay"]
        if "departure_delay" in su:
            stu.departure.delay = su["departure_delay"]
    return entity


def add_alert_entity(
    feed: gtfs_realtime_pb2.FeedMessage,
    entity_id: str = "alert_001",
    cause: int = 3,  # TECHNICAL_PROBLEM
    effect: int = 3,  # SIGNIFICANT_DELAYS
    header: str | None = "Delay on Route 99",
    description: str | None = "Expect 10 min delays due to mechanical issue.",
    route_ids: list[str] | None = None,
    active_periods: list[tuple[int | None, int | None]] | None = None,
) -> gtfs_realtime_pb2.FeedEntity:
    """Append an Alert entity with one informed entity per route id."""
    entity = feed.entity.add()
    entity.id = entity_id
    alert = entity.alert
    alert.cause = cause
    alert.effect = effect

    if header is not None:
        ts = alert.header_text.translation.add()
        ts.text = header
        ts.language = "en"
    if description is not None:
        ds = alert.description_text.translation.add()
        ds.text = description
        ds.language = "en"

    for start, end in active_periods or []:
        period = alert.active_period.add()
        if start is not None:
            period.start = start
        if end is not None:
            period.end = end

    for route_id in route_ids if route_ids is not None else ["route_99"]:
        ie = alert.informed_entity.add()
        ie.route_id = route_id
    return entity


def build_vehicle_position_feed(**kwargs) -> bytes:
    """Build a serialized FeedMessage with one VehiclePosition entity."""
    feed_timestamp = kwargs.pop("feed_timestamp", 1700000000)
    feed = new_feed(feed_timestamp)
    add_vehicle_entity(feed, **kwargs)
    return feed.SerializeToString()


def build_alert_feed(**kwargs) -> bytes:
    """Build a serialized FeedMessage with one Alert entity."""
    feed_timestamp = kwargs.pop("feed_timestamp", 1700000000)
    feed = new_feed(feed_timestamp)
    add_alert_entity(feed, **kwargs)
    return feed.SerializeToString()


def build_mixed_feed(feed_timestamp: int = 1700000000) -> bytes:
    """Build a feed with one entity of each kind."""
    feed = new_feed(feed_timestamp)
    add_vehicle_entity(feed, entity_id="vp_1", trip_id="T1", stop_id="S1", lat=29.42, lon=-98.49)
    add_trip_update_entity(
        feed,
        entity_id="tu_1",
        stop_updates=[{"stop_id": "S1", "stop_sequence": 1, "arrival_delay": 60}],
    )
    add_alert_entity(feed, entity_id="al_1", route_ids=["R1", "R2"])
    return feed.SerializeToString()


def build_empty_feed(feed_timestamp: int = 1700000000) -> bytes:
    """Build an empty FeedMessage with no entities."""
    return new_feed(feed_timestamp).SerializeToString()
