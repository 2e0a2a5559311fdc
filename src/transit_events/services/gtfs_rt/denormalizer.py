"""GTFS-RT denormalizer: protobuf entities to flat, stop-enriched records.

Every optional protobuf field is tested with ``HasField`` so that absent
values stay absent in the output instead of turning into zeros.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from transit_events.logging import get_logger
from transit_events.services.gtfs_rt.records import (
    KIND_ALERT,
    KIND_TRIP_UPDATE,
    KIND_VEHICLE_POSITION,
    OutputRecord,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from google.transit import gtfs_realtime_pb2  # type: ignore[import-untyped]

    from transit_events.services.gtfs_static.stops import StopIndex, StopRecord

logger = get_logger(__name__)

MPH_PER_METER_PER_SEC = 2.2369362921

# Enum lookup maps
SCHEDULE_RELATIONSHIP = {
    0: "SCHEDULED",
    1: "ADDED",
    2: "UNSCHEDULED",
    3: "CANCELED",
    5: "REPLACEMENT",
    6: "DUPLICATED",
    7: "DELETED",
}

STOP_TIME_SCHEDULE_RELATIONSHIP = {
    0: "SCHEDULED",
    1: "SKIPPED",
    2: "NO_DATA",
    3: "UNSCHEDULED",
}

VEHICLE_STOP_STATUS = {
    0: "INCOMING_AT",
    1: "STOPPED_AT",
    2: "IN_TRANSIT_TO",
}

CONGESTION_LEVEL = {
    0: "UNKNOWN_CONGESTION_LEVEL",
    1: "RUNNING_SMOOTHLY",
    2: "STOP_AND_GO",
    3: "CONGESTION",
    4: "SEVERE_CONGESTION",
}

OCCUPANCY_STATUS = {
    0: "EMPTY",
    1: "MANY_SEATS_AVAILABLE",
    2: "FEW_SEATS_AVAILABLE",
    3: "STANDING_ROOM_ONLY",
    4: "CRUSHED_STANDING_ROOM_ONLY",
    5: "FULL",
    6: "NOT_ACCEPTING_PASSENGERS",
    7: "NO_DATA_AVAILABLE",
    8: "NOT_BOARDABLE",
}

CAUSE_MAP = {
    1: "UNKNOWN_CAUSE",
    2: "OTHER_CAUSE",
    3: "TECHNICAL_PROBLEM",
    4: "STRIKE",
    5: "DEMONSTRATION",
    6: "ACCIDENT",
    7: "HOLIDAY",
    8: "WEATHER",
    9: "MAINTENANCE",
    10: "CONSTRUCTION",
    11: "POLICE_ACTIVITY",
    12: "MEDICAL_EMERGENCY",
}

EFFECT_MAP = {
    1: "NO_SERVICE",
    2: "REDUCED_SERVICE",
    3: "SIGNIFICANT_DELAYS",
    4: "DETOUR",
    5: "ADDITIONAL_SERVICE",
    6: "MODIFIED_SERVICE",
    7: "OTHER_EFFECT",
    8: "UNKNOWN_EFFECT",
    9: "STOP_MOVED",
    10: "NO_EFFECT",
    11: "ACCESSIBILITY_ISSUE",
}

UNKNOWN_ENUM = "UNKNOWN"

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193

_START_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_START_TIME_RE = re.compile(r"^(\d{1,3}):([0-5]\d):([0-5]\d)$")


class TransformError(Exception):
    """Raised when a single feed entity cannot be denormalized."""

    def __init__(self, message: str, entity_id: str | None = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


def enum_name(table: dict[int, str], value: int, fallback: str = UNKNOWN_ENUM) -> str:
    """Resolve an enum value to its display name, with a fallback for new values."""
    return table.get(value, fallback)


def parse_service_date(raw: str) -> date:
    """Parse a ``YYYYMMDD`` service date.

    Raises:
        ValueError: If the string is not a valid calendar date.
    """
    match = _START_DATE_RE.match(raw)
    if match is None:
        msg = f"Invalid start_date {raw!r}"
        raise ValueError(msg)
    year, month, day = (int(part) for part in match.groups())
    return date(year, month, day)


def parse_time_of_day(raw: str) -> timedelta:
    """Parse ``HH:MM:SS`` as an offset into the service day; hours may exceed 23.

    Raises:
        ValueError: If the string is not a time of day.
    """
    match = _START_TIME_RE.match(raw)
    if match is None:
        msg = f"Invalid start_time {raw!r}"
        raise ValueError(msg)
    hours, minutes, seconds = (int(part) for part in match.groups())
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def reconstruct_start_time(
    start_date: str | None,
    start_time: str,
    tz: ZoneInfo,
    processed_at: datetime,
) -> datetime:
    """Combine a trip's start date and time of day into an absolute datetime.

    GTFS times of day count from noon minus 12h of the service date, which is
    not local midnight on DST transition days. The offset is therefore added
    in UTC.

    When ``start_date`` is missing the processing date in ``tz`` is used. This
    is an approximation: an overnight trip seen after midnight gets the wrong
    service day.
    """
    service_date = (
        parse_service_date(start_date) if start_date else processed_at.astimezone(tz).date()
    )
    offset = parse_time_of_day(start_time)
    noon = datetime.combine(service_date, time(12), tzinfo=tz)
    origin = noon.astimezone(timezone.utc) - timedelta(hours=12)
    return (origin + offset).astimezone(tz)


def text_hash_32(text: str) -> int:
    """32-bit FNV-1a of the UTF-8 text, independent of interpreter hash seeding."""
    value = _FNV32_OFFSET
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * _FNV32_PRIME) & 0xFFFFFFFF
    return value


def alert_identity(
    informed: gtfs_realtime_pb2.EntitySelector, description: str | None
) -> str:
    """Build the dedup identity for one informed entity of an alert."""
    parts = [
        informed.agency_id if informed.HasField("agency_id") else "",
        informed.route_id if informed.HasField("route_id") else "",
        informed.stop_id if informed.HasField("stop_id") else "",
    ]
    if informed.HasField("trip") and informed.trip.HasField("trip_id"):
        parts.append(informed.trip.trip_id)
    identity = "".join(parts)
    if description is not None:
        identity += str(text_hash_32(description))
    return identity


def _first_translation(message: Any, field_name: str) -> str | None:
    """Return the first translation of a TranslatedString field, if any."""
    if not message.HasField(field_name):
        return None
    translated = getattr(message, field_name)
    if not translated.translation:
        return None
    return str(translated.translation[0].text)


def _epoch_to_dt(unix_ts: int) -> datetime:
    return datetime.fromtimestamp(unix_ts, tz=timezone.utc)


class Denormalizer:
    """Turns decoded GTFS-RT entities into flat output records.

    The stop index is shared read-only across cycles.
    """

    def __init__(self, stop_index: StopIndex, agency_timezone: str = "UTC") -> None:
        self._stops = stop_index
        self._tz = ZoneInfo(agency_timezone)

    @property
    def stop_count(self) -> int:
        return len(self._stops)

    def denormalize_feed(
        self,
        entities: Iterable[gtfs_realtime_pb2.FeedEntity],
        processed_at: datetime | None = None,
        poll_id: str = "",
    ) -> tuple[list[OutputRecord], int]:
        """Transform every entity, isolating per-entity failures.

        Returns:
            Tuple of (records, number of entities skipped on error).
        """
        processed_at = processed_at or datetime.now(timezone.utc)
        records: list[OutputRecord] = []
        failures = 0

        for entity in entities:
            try:
                records.extend(self.transform_entity(entity, processed_at))
            except TransformError as exc:
                failures += 1
                logger.error(
                    "Skipping entity that failed to transform",
                    poll_id=poll_id,
                    entity_id=exc.entity_id,
                    error=str(exc),
                    exc_info=exc.__cause__,
                )

        return records, failures

    def transform_entity(
        self,
        entity: gtfs_realtime_pb2.FeedEntity,
        processed_at: datetime | None = None,
    ) -> list[OutputRecord]:
        """Dispatch an entity to the transform of each payload it carries.

        Raises:
            TransformError: If any transform fails for this entity.
        """
        entity_id = entity.id if entity.HasField("id") else None
        records: list[OutputRecord] = []
        try:
            if entity.HasField("vehicle"):
                records.append(self.transform_vehicle(entity.vehicle, processed_at, entity_id))
            if entity.HasField("trip_update"):
                records.append(
                    self.transform_trip_update(entity.trip_update, processed_at, entity_id)
                )
            if entity.HasField("alert"):
                records.extend(self.transform_alert(entity.alert, processed_at, entity_id))
        except Exception as exc:
            msg = f"Failed to transform entity {entity_id!r}: {exc}"
            raise TransformError(msg, entity_id=entity_id) from exc

        if not records:
            logger.debug("Entity carries no supported payload", entity_id=entity_id)
        return records

    def transform_vehicle(
        self,
        vehicle: gtfs_realtime_pb2.VehiclePosition,
        processed_at: datetime | None = None,
        entity_id: str | None = None,
    ) -> OutputRecord:
        """Flatten a VehiclePosition, enriching it from the stop index."""
        now = processed_at or datetime.now(timezone.utc)
        timestamp = _epoch_to_dt(vehicle.timestamp) if vehicle.HasField("timestamp") else now
        record = OutputRecord(kind=KIND_VEHICLE_POSITION, timestamp=timestamp, entity_id=entity_id)

        if vehicle.HasField("trip"):
            self._add_trip(record, vehicle.trip, now)
        if vehicle.HasField("vehicle"):
            _add_vehicle_descriptor(record, vehicle.vehicle)
        if vehicle.HasField("position"):
            _add_position(record, vehicle.position)

        if vehicle.HasField("current_stop_sequence"):
            record.put("stop_seq", vehicle.current_stop_sequence)
        if vehicle.HasField("current_status"):
            record.put("stop_status", enum_name(VEHICLE_STOP_STATUS, vehicle.current_status))
        if vehicle.HasField("congestion_level"):
            record.put("congestion", enum_name(CONGESTION_LEVEL, vehicle.congestion_level))
        if vehicle.HasField("occupancy_status"):
            record.put("occupancy", enum_name(OCCUPANCY_STATUS, vehicle.occupancy_status))

        if vehicle.HasField("stop_id") and vehicle.stop_id:
            record.put("stop_id", vehicle.stop_id)
            stop = self._stops.get(vehicle.stop_id)
            if stop is not None:
                _add_stop(record, stop)
            else:
                logger.debug("Unrecognized stop id", stop_id=vehicle.stop_id, entity_id=entity_id)

        return record

    def transform_trip_update(
        self,
        trip_update: gtfs_realtime_pb2.TripUpdate,
        processed_at: datetime | None = None,
        entity_id: str | None = None,
    ) -> OutputRecord:
        """Flatten a TripUpdate's trip and vehicle identity plus its stop time updates."""
        now = processed_at or datetime.now(timezone.utc)
        timestamp = (
            _epoch_to_dt(trip_update.timestamp) if trip_update.HasField("timestamp") else now
        )
        record = OutputRecord(kind=KIND_TRIP_UPDATE, timestamp=timestamp, entity_id=entity_id)

        if trip_update.HasField("trip"):
            self._add_trip(record, trip_update.trip, now)
        if trip_update.HasField("vehicle"):
            _add_vehicle_descriptor(record, trip_update.vehicle)
        if trip_update.HasField("delay"):
            record.put("delay", trip_update.delay)

        updates = [_stop_time_update(stu) for stu in trip_update.stop_time_update]
        if updates:
            record.put("stop_time_updates", updates)

        return record

    def transform_alert(
        self,
        alert: gtfs_realtime_pb2.Alert,
        processed_at: datetime | None = None,
        entity_id: str | None = None,
    ) -> list[OutputRecord]:
        """Fan an Alert out into one record per informed entity."""
        now = processed_at or datetime.now(timezone.utc)
        cause = enum_name(CAUSE_MAP, alert.cause, "UNKNOWN_CAUSE")
        effect = enum_name(EFFECT_MAP, alert.effect, "UNKNOWN_EFFECT")
        periods = [_time_range(period) for period in alert.active_period]
        url = _first_translation(alert, "url")
        header = _first_translation(alert, "header_text")
        description = _first_translation(alert, "description_text")

        records: list[OutputRecord] = []
        for informed in alert.informed_entity:
            record = OutputRecord(
                kind=KIND_ALERT,
                timestamp=now,
                entity_id=entity_id,
                identity=alert_identity(informed, description),
            )
            record.put("alert_cause", cause)
            record.put("alert_effect", effect)
            if periods:
                record.put("active_period", [dict(period) for period in periods])
            record.put_if_present("url", url)
            record.put_if_present("header", header)
            record.put_if_present("description", description)

            # Informed fields come from this entity only; they differ per record.
            if informed.HasField("agency_id"):
                record.put_if_present("agency_id", informed.agency_id)
            if informed.HasField("route_id"):
                record.put_if_present("route_id", informed.route_id)
            if informed.HasField("route_type"):
                record.put("route_type", informed.route_type)
            if informed.HasField("stop_id"):
                record.put_if_present("stop_id", informed.stop_id)
            if informed.HasField("trip"):
                self._add_trip(record, informed.trip, now)

            records.append(record)

        if not records:
            logger.debug("Alert has no informed entity", entity_id=entity_id)
        return records

    def _add_trip(
        self,
        record: OutputRecord,
        trip: gtfs_realtime_pb2.TripDescriptor,
        processed_at: datetime,
    ) -> None:
        """Copy TripDescriptor fields under ``trip.*``."""
        if trip.HasField("trip_id"):
            record.put_if_present("trip.id", trip.trip_id)
        if trip.HasField("route_id"):
            record.put_if_present("trip.route_id", trip.route_id)
        if trip.HasField("direction_id"):
            record.put("trip.direction_id", trip.direction_id)
        if trip.HasField("schedule_relationship"):
            record.put(
                "trip.schedule_relationship",
                enum_name(SCHEDULE_RELATIONSHIP, trip.schedule_relationship),
            )

        if trip.HasField("start_time") and trip.start_time:
            start_date = trip.start_date if trip.HasField("start_date") else None
            try:
                record.put(
                    "trip.start_time",
                    reconstruct_start_time(start_date, trip.start_time, self._tz, processed_at),
                )
            except ValueError as exc:
                logger.warning(
                    "Dropping unparseable trip start time",
                    entity_id=record.entity_id,
                    trip_id=trip.trip_id,
                    start_date=start_date,
                    start_time=trip.start_time,
                    error=str(exc),
                )


def _add_vehicle_descriptor(
    record: OutputRecord, vehicle: gtfs_realtime_pb2.VehicleDescriptor
) -> None:
    if vehicle.HasField("id"):
        record.put_if_present("vehicle.id", vehicle.id)
    if vehicle.HasField("label"):
        record.put_if_present("vehicle.label", vehicle.label)
    if vehicle.HasField("license_plate"):
        record.put_if_present("vehicle.license_plate", vehicle.license_plate)


def _add_position(record: OutputRecord, position: gtfs_realtime_pb2.Position) -> None:
    if position.HasField("latitude") and position.HasField("longitude"):
        record.put("position", f"{position.latitude:f},{position.longitude:f}")
    if position.HasField("bearing"):
        record.put("bearing", position.bearing)
    if position.HasField("odometer"):
        record.put("odometer_meters", position.odometer)
    if position.HasField("speed"):
        record.put("speed_meters_per_sec", position.speed)
        record.put("speed_mph", position.speed * MPH_PER_METER_PER_SEC)


def _add_stop(record: OutputRecord, stop: StopRecord) -> None:
    """Copy a static stop under ``stop.*``; empty text columns are skipped."""
    record.put("stop.id", stop.stop_id)
    record.put_if_present("stop.code", stop.code)
    record.put_if_present("stop.name", stop.name)
    record.put_if_present("stop.desc", stop.description)
    record.put_if_present("stop.zone_id", stop.zone_id)
    record.put_if_present("stop.url", stop.url)
    record.put_if_present("stop.location_type", stop.location_type)
    record.put_if_present("stop.parent_station", stop.parent_station)
    record.put_if_present("stop.timezone", stop.timezone)
    record.put("stop.position", f"{stop.lat:f},{stop.lon:f}")
    record.put("stop.wheelchair_boarding", stop.wheelchair_boarding)


def _time_range(period: gtfs_realtime_pb2.TimeRange) -> dict[str, int]:
    interval: dict[str, int] = {}
    if period.HasField("start"):
        interval["start"] = period.start
    if period.HasField("end"):
        interval["end"] = period.end
    return interval


def _stop_time_event(event: gtfs_realtime_pb2.TripUpdate.StopTimeEvent) -> dict[str, int]:
    values: dict[str, int] = {}
    for name in ("delay", "time", "uncertainty"):
        if event.HasField(name):
            values[name] = getattr(event, name)
    return values


def _stop_time_update(
    stu: gtfs_realtime_pb2.TripUpdate.StopTimeUpdate,
) -> dict[str, Any]:
    update: dict[str, Any] = {}
    if stu.HasField("stop_sequence"):
        update["stop_seq"] = stu.stop_sequence
    if stu.HasField("stop_id") and stu.stop_id:
        update["stop_id"] = stu.stop_id
    if stu.HasField("arrival"):
        update["arrival"] = _stop_time_event(stu.arrival)
    if stu.HasField("departure"):
        update["departure"] = _stop_time_event(stu.departure)
    if stu.HasField("schedule_relationship"):
        update["schedule_relationship"] = enum_name(
            STOP_TIME_SCHEDULE_RELATIONSHIP, stu.schedule_relationship
        )
    return update
