"""Stop table loader for real-time enrichment."""

from __future__ import annotations

import csv
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from transit_events.logging import get_logger

logger = get_logger(__name__)

# Fixed column order of the stop table
STOP_COLUMNS = (
    "stop_id",
    "stop_code",
    "stop_name",
    "stop_desc",
    "stop_lat",
    "stop_lon",
    "zone_id",
    "stop_url",
    "location_type",
    "parent_station",
    "stop_timezone",
    "wheelchair_boarding",
)

HEADER_MARKER = STOP_COLUMNS[0]

# wheelchair_boarding: 0 = no accessibility information
WHEELCHAIR_UNKNOWN = 0


class ReferenceDataError(Exception):
    """Raised when the static stop table cannot be loaded."""


@dataclass(frozen=True)
class StopRecord:
    """A single row of the static stop table."""

    stop_id: str
    code: str
    name: str
    description: str
    lat: float
    lon: float
    zone_id: str
    url: str
    location_type: str
    parent_station: str
    timezone: str
    wheelchair_boarding: int = WHEELCHAIR_UNKNOWN


StopIndex = Mapping[str, StopRecord]


def load_stops(path: str | Path) -> StopIndex:
    """Load the stop table into a read-only mapping keyed by stop id.

    The first row is skipped when its first column is literally ``stop_id``.
    Any bad row aborts the whole load.

    Raises:
        ReferenceDataError: If the file cannot be opened, a row is short,
            or a numeric column fails to parse.
    """
    path = Path(path)
    stops: dict[str, StopRecord] = {}

    try:
        with path.open(newline="", encoding="utf-8-sig") as handle:
            for line_no, row in enumerate(csv.reader(handle), start=1):
                if not row or not any(cell.strip() for cell in row):
                    continue
                if line_no == 1 and row[0].strip() == HEADER_MARKER:
                    continue
                stop = _parse_row(row, path, line_no)
                stops[stop.stop_id] = stop
    except OSError as exc:
        msg = f"Cannot open stop table {path}: {exc}"
        logger.error("Stop table unreadable", path=str(path), error=str(exc))
        raise ReferenceDataError(msg) from exc
    except csv.Error as exc:
        msg = f"Malformed stop table {path}: {exc}"
        raise ReferenceDataError(msg) from exc

    logger.info("Stop table loaded", path=str(path), stop_count=len(stops))
    return MappingProxyType(stops)


def _parse_row(row: list[str], path: Path, line_no: int) -> StopRecord:
    """Build a StopRecord from one CSV row."""
    if len(row) < len(STOP_COLUMNS):
        msg = (
            f"{path}:{line_no}: expected {len(STOP_COLUMNS)} columns, "
            f"got {len(row)}: {row!r}"
        )
        raise ReferenceDataError(msg)

    cells = [cell.strip() for cell in row[: len(STOP_COLUMNS)]]
    wheelchair_raw = cells[11]

    return StopRecord(
        stop_id=cells[0],
        code=cells[1],
        name=cells[2],
        description=cells[3],
        lat=_parse_number(float, cells[4], "stop_lat", path, line_no),
        lon=_parse_number(float, cells[5], "stop_lon", path, line_no),
        zone_id=cells[6],
        url=cells[7],
        location_type=cells[8],
        parent_station=cells[9],
        timezone=cells[10],
        wheelchair_boarding=(
            _parse_number(int, wheelchair_raw, "wheelchair_boarding", path, line_no)
            if wheelchair_raw
            else WHEELCHAIR_UNKNOWN
        ),
    )


def _parse_number(kind: type[Any], raw: str, column: str, path: Path, line_no: int) -> Any:
    """Parse a numeric cell, naming the column and line on failure."""
    try:
        return kind(raw)
    except ValueError as exc:
        msg = f"{path}:{line_no}: invalid {column} value {raw!r}"
        raise ReferenceDataError(msg) from exc
