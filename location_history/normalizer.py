"""Normalise raw location-history documents into canonical points.

Two document shapes are supported:

* a point list: ``{"locations": [{"latitudeE7": ..., "longitudeE7": ...,
  "timestampMs": ...}, ...]}``. Entries are already canonical and pass
  through in input order.
* a timeline: ``[{"startTime": ..., "endTime": ..., "activity": {...}}, {...
  "visit": {...}}, ...]``. Activity paths and visits are converted to points,
  sorted by time, and consecutive duplicates are suppressed.

The shape is detected once per document and dispatched to one normaliser per
shape; per-point validation failures drop the point, an unknown document shape
raises :class:`FormatError`.
"""

from __future__ import annotations

import json
import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from os import PathLike
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .config import LARGE_INPUT_WARNING_BYTES
from .errors import FormatError, PointRejected
from .models import E7, MAX_LAT_E7, MAX_LON_E7, CanonicalPoint, SourceTag
from .utils import timestamp_in_range
from .utils import format_file_size

LOGGER = logging.getLogger(__name__)

POINT_LIST_FIELD = "locations"
UNKNOWN_ACTIVITY = "unknown"
GEO_PREFIX = "geo:"

Clock = Callable[[], int]
DocumentSource = bytes | str | PathLike[str]

# Trailing "Z" or "+HH:MM" / "-HH:MM" / "+HHMM" zone designators.
_ZONE_SUFFIX = re.compile(r"(Z|[+-]\d{2}(:?\d{2})?)$", re.IGNORECASE)
_DIGITS = re.compile(r"^\d+$")

# (container key, list key) pairs searched in priority order for explicit
# waypoint arrays inside an activity. ``None`` means the value itself is a list.
_PATH_SHAPES: Sequence[tuple[str, Optional[str]]] = (
    ("waypointPath", "waypoints"),
    ("simplifiedRawPath", "points"),
    ("waypoints", None),
    ("points", None),
    ("rawPath", "points"),
    ("path", "points"),
)

# Microdegree/degree field pairs accepted on waypoints and point-list entries.
_E7_FIELDS = (("latitudeE7", "longitudeE7"), ("latE7", "lngE7"))
_DEGREE_FIELDS = (("lat", "lng"), ("latitude", "longitude"), ("lat", "lon"))


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class _PathVertex:
    latitude: float
    longitude: float
    minutes_offset: Optional[float] = None


# ---------------------------------------------------------------------------
# Scalar parsing
# ---------------------------------------------------------------------------
def parse_timestamp_ms(value: Any, *, clock: Clock = _wall_clock_ms) -> int:
    """Parse a timeline timestamp into epoch milliseconds.

    All-digit strings (and integers) are treated as epoch milliseconds. ISO-like
    strings have any trailing zone designator removed and are read as UTC.
    Missing or unparseable values yield the current wall-clock time rather
    than failing.
    """

    if value is None or value == "":
        return clock()
    if isinstance(value, bool):
        return clock()
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            LOGGER.debug("Non-finite timestamp %r; using wall clock", value)
            return clock()
        if not timestamp_in_range(int(value)):
            LOGGER.debug("Out-of-range timestamp %r; using wall clock", value)
            return clock()
        return int(value)
    text = str(value).strip()
    if _DIGITS.match(text):
        if not timestamp_in_range(int(text)):
            LOGGER.debug("Out-of-range timestamp %r; using wall clock", value)
            return clock()
        return int(text)
    cleaned = _strip_zone(text)
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        LOGGER.debug("Unparseable timestamp %r; using wall clock", value)
        return clock()
    return int(round(parsed.replace(tzinfo=timezone.utc).timestamp() * 1000))


def _strip_zone(text: str) -> str:
    # Only strip an offset that follows a time component, never the date's "-DD".
    if "T" not in text and " " not in text:
        return text
    return _ZONE_SUFFIX.sub("", text)


def parse_geo_uri(value: Any) -> Optional[tuple[float, float]]:
    """Return ``(lat, lon)`` from a ``geo:<lat>,<lon>`` string, else ``None``."""

    if not isinstance(value, str) or not value.startswith(GEO_PREFIX):
        return None
    parts = value[len(GEO_PREFIX) :].split(",")
    if len(parts) < 2:
        return None
    try:
        lat = float(parts[0])
        lon = float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    return lat, lon


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_degrees(latitude: float, longitude: float) -> None:
    # NaN fails both comparisons.
    if not (abs(latitude) <= 90 and abs(longitude) <= 180):
        raise PointRejected(f"Coordinate out of range {latitude},{longitude}")


def _make_point(
    latitude: float,
    longitude: float,
    timestamp_ms: int,
    source: SourceTag,
    activity_type: Optional[str] = None,
) -> CanonicalPoint:
    _check_degrees(latitude, longitude)
    return CanonicalPoint(
        lat_e7=int(round(latitude * E7)),
        lon_e7=int(round(longitude * E7)),
        timestamp_ms=int(timestamp_ms),
        source=source,
        activity_type=activity_type,
    )


# ---------------------------------------------------------------------------
# Point-list documents
# ---------------------------------------------------------------------------
def _entry_e7(entry: Mapping[str, Any]) -> tuple[int, int]:
    for lat_key, lon_key in _E7_FIELDS:
        lat, lon = entry.get(lat_key), entry.get(lon_key)
        if _is_number(lat) and _is_number(lon):
            if not (abs(lat) <= MAX_LAT_E7 and abs(lon) <= MAX_LON_E7):
                raise PointRejected(f"Coordinate out of range {lat},{lon}")
            return int(lat), int(lon)
    for lat_key, lon_key in _DEGREE_FIELDS:
        lat, lon = entry.get(lat_key), entry.get(lon_key)
        if _is_number(lat) and _is_number(lon):
            _check_degrees(lat, lon)
            return int(round(lat * E7)), int(round(lon * E7))
    raise PointRejected("No supported coordinate encoding")


def _entry_timestamp(entry: Mapping[str, Any]) -> int:
    raw = entry.get("timestampMs")
    if raw is not None and _DIGITS.match(str(raw).strip()):
        timestamp_ms = int(str(raw).strip())
        if not timestamp_in_range(timestamp_ms):
            raise PointRejected(f"Timestamp out of range {raw!r}")
        return timestamp_ms
    iso = entry.get("timestamp")
    if isinstance(iso, str) and iso.strip():
        cleaned = _strip_zone(iso.strip())
        try:
            parsed = datetime.fromisoformat(cleaned)
        except ValueError as exc:
            raise PointRejected(f"Bad timestamp {iso!r}") from exc
        return int(round(parsed.replace(tzinfo=timezone.utc).timestamp() * 1000))
    raise PointRejected("Missing timestamp")


def _point_from_entry(entry: Any) -> CanonicalPoint:
    if not isinstance(entry, Mapping):
        raise PointRejected("Entry is not an object")
    lat_e7, lon_e7 = _entry_e7(entry)
    activity_type = entry.get("activityType")
    return CanonicalPoint(
        lat_e7=lat_e7,
        lon_e7=lon_e7,
        timestamp_ms=_entry_timestamp(entry),
        source=SourceTag.RAW,
        activity_type=activity_type if isinstance(activity_type, str) else None,
    )


def normalize_point_list(document: Mapping[str, Any]) -> List[CanonicalPoint]:
    """Pass point-list entries through, dropping invalid ones, order preserved."""

    entries = document.get(POINT_LIST_FIELD) or []
    points: List[CanonicalPoint] = []
    rejected = 0
    for entry in entries:
        try:
            points.append(_point_from_entry(entry))
        except PointRejected as exc:
            rejected += 1
            LOGGER.debug("Dropped point-list entry: %s", exc)
    LOGGER.info(
        "Point-list document: %d points kept, %d rejected", len(points), rejected
    )
    return points


# ---------------------------------------------------------------------------
# Timeline (activity/visit) documents
# ---------------------------------------------------------------------------
def _waypoint_latlon(waypoint: Any) -> Optional[tuple[float, float]]:
    if not isinstance(waypoint, Mapping):
        return None
    for lat_key, lon_key in (("latE7", "lngE7"), ("latitudeE7", "longitudeE7")):
        lat, lon = waypoint.get(lat_key), waypoint.get(lon_key)
        if _is_number(lat) and _is_number(lon):
            try:
                return lat / E7, lon / E7
            except OverflowError:
                return None
    lat, lon = waypoint.get("lat"), waypoint.get("lng")
    if _is_number(lat) and _is_number(lon):
        try:
            return float(lat), float(lon)
        except OverflowError:
            return None
    return None


def _timeline_path_vertices(timeline_path: Iterable[Any]) -> List[_PathVertex]:
    vertices: List[_PathVertex] = []
    for item in timeline_path:
        if not isinstance(item, Mapping):
            continue
        latlon = parse_geo_uri(item.get("point"))
        if latlon is None:
            continue
        try:
            offset = float(item.get("durationMinutesOffsetFromStartTime"))
        except (TypeError, ValueError, OverflowError):
            offset = math.nan
        vertices.append(_PathVertex(latlon[0], latlon[1], offset))
    return vertices


def extract_activity_path(activity: Mapping[str, Any]) -> List[_PathVertex]:
    """Return the ordered vertices of an activity's native path.

    A ``timelinePath`` with minute offsets wins over any explicit waypoint
    array; otherwise the first non-empty known waypoint array is used.
    """

    timeline_path = activity.get("timelinePath")
    if isinstance(timeline_path, list):
        vertices = _timeline_path_vertices(timeline_path)
        if vertices:
            return vertices

    for container_key, list_key in _PATH_SHAPES:
        container = activity.get(container_key)
        candidates = (
            container
            if list_key is None
            else (container.get(list_key) if isinstance(container, Mapping) else None)
        )
        if not isinstance(candidates, list):
            continue
        vertices = []
        for waypoint in candidates:
            latlon = _waypoint_latlon(waypoint)
            if latlon is not None and all(map(math.isfinite, latlon)):
                vertices.append(_PathVertex(latlon[0], latlon[1]))
        if vertices:
            return vertices
    return []


def _endpoint_vertices(activity: Mapping[str, Any]) -> List[_PathVertex]:
    vertices = []
    for key in ("start", "end"):
        latlon = parse_geo_uri(activity.get(key))
        if latlon is not None:
            vertices.append(_PathVertex(*latlon))
    return vertices


def _activity_type(activity: Mapping[str, Any]) -> str:
    candidate = activity.get("topCandidate")
    if isinstance(candidate, Mapping):
        value = candidate.get("type")
        if isinstance(value, str) and value.strip():
            return value
    return UNKNOWN_ACTIVITY


def _timed_path_points(
    vertices: Sequence[_PathVertex],
    start_ts: int,
    end_ts: int,
    activity_type: str,
) -> Iterable[CanonicalPoint]:
    has_offsets = bool(vertices) and vertices[0].minutes_offset is not None
    total_ms = max(1, end_ts - start_ts)
    count = len(vertices)
    for index, vertex in enumerate(vertices):
        if has_offsets:
            minutes = vertex.minutes_offset
            if minutes is None or not math.isfinite(minutes):
                minutes = 0.0
            offset_ms = minutes * 60_000
            if not math.isfinite(offset_ms):
                offset_ms = 0.0
            ts = start_ts + int(round(offset_ms))
        elif count == 1:
            ts = start_ts
        else:
            ts = int(round(start_ts + (total_ms * index) / (count - 1)))
        try:
            yield _make_point(
                vertex.latitude,
                vertex.longitude,
                ts,
                SourceTag.ACTIVITY_PATH,
                activity_type,
            )
        except PointRejected as exc:
            LOGGER.debug("Dropped activity vertex: %s", exc)


def _activity_points(
    record: Mapping[str, Any], activity: Mapping[str, Any], clock: Clock
) -> Iterable[CanonicalPoint]:
    start_ts = parse_timestamp_ms(record.get("startTime"), clock=clock)
    end_ts = parse_timestamp_ms(record.get("endTime"), clock=clock)
    vertices = extract_activity_path(activity) or _endpoint_vertices(activity)
    return _timed_path_points(vertices, start_ts, end_ts, _activity_type(activity))


def _visit_points(
    record: Mapping[str, Any], visit: Mapping[str, Any], clock: Clock
) -> Iterable[CanonicalPoint]:
    location = visit.get("placeLocation")
    if location is None and isinstance(visit.get("topCandidate"), Mapping):
        location = visit["topCandidate"].get("placeLocation")
    latlon = parse_geo_uri(location)
    if latlon is None:
        return []
    ts = parse_timestamp_ms(record.get("startTime"), clock=clock)
    try:
        return [_make_point(latlon[0], latlon[1], ts, SourceTag.VISIT)]
    except PointRejected as exc:
        LOGGER.debug("Dropped visit point: %s", exc)
        return []


def _timeline_path_points(
    record: Mapping[str, Any], clock: Clock
) -> Iterable[CanonicalPoint]:
    start_ts = parse_timestamp_ms(record.get("startTime"), clock=clock)
    end_ts = parse_timestamp_ms(record.get("endTime"), clock=clock)
    vertices = _timeline_path_vertices(record.get("timelinePath") or [])
    return _timed_path_points(vertices, start_ts, end_ts, UNKNOWN_ACTIVITY)


def suppress_consecutive_duplicates(
    points: Iterable[CanonicalPoint],
) -> List[CanonicalPoint]:
    """Drop points whose microdegree coordinates equal the previous kept point."""

    kept: List[CanonicalPoint] = []
    for point in points:
        if kept and kept[-1].lat_e7 == point.lat_e7 and kept[-1].lon_e7 == point.lon_e7:
            continue
        kept.append(point)
    return kept


def normalize_timeline(
    records: Sequence[Any], *, clock: Clock = _wall_clock_ms
) -> List[CanonicalPoint]:
    """Convert activity/visit timeline records into sorted canonical points."""

    produced: List[CanonicalPoint] = []
    skipped = 0
    for record in records:
        if not isinstance(record, Mapping):
            skipped += 1
            continue
        activity = record.get("activity")
        visit = record.get("visit")
        if isinstance(activity, Mapping):
            produced.extend(_activity_points(record, activity, clock))
        elif isinstance(visit, Mapping):
            produced.extend(_visit_points(record, visit, clock))
        elif isinstance(record.get("timelinePath"), list):
            produced.extend(_timeline_path_points(record, clock))
        else:
            skipped += 1
    produced.sort(key=lambda p: p.timestamp_ms)
    points = suppress_consecutive_duplicates(produced)
    LOGGER.info(
        "Converted %d timeline records into %d points (%d duplicates removed, "
        "%d records skipped)",
        len(records),
        len(points),
        len(produced) - len(points),
        skipped,
    )
    return points


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------
_NORMALIZERS: Dict[str, Callable[..., List[CanonicalPoint]]] = {
    "point_list": lambda document, clock: normalize_point_list(document),
    "timeline": lambda document, clock: normalize_timeline(document, clock=clock),
}


def detect_shape(document: Any) -> str:
    """Return the discriminator for a parsed document or raise FormatError."""

    if isinstance(document, Mapping) and isinstance(
        document.get(POINT_LIST_FIELD), list
    ):
        return "point_list"
    if isinstance(document, list):
        return "timeline"
    raise FormatError(
        f'Invalid location data format. Expected "{POINT_LIST_FIELD}" array '
        "or activity-based array."
    )


def normalize(document: Any, *, clock: Clock = _wall_clock_ms) -> List[CanonicalPoint]:
    """Normalise a parsed JSON document into canonical points.

    Raises:
        FormatError: If the document is neither a point-list object nor a list
            of timeline records.
    """

    shape = detect_shape(document)
    LOGGER.info("Detected %s location data format", shape.replace("_", "-"))
    return _NORMALIZERS[shape](document, clock)


def load_document(source: DocumentSource) -> Any:
    """Parse JSON from bytes, text, or a file path.

    Strings that do not look like JSON are treated as paths.
    """

    if isinstance(source, bytes):
        payload: bytes | str = source
    elif isinstance(source, str) and source.lstrip()[:1] in ("{", "["):
        payload = source
    else:
        path = Path(source)
        size = path.stat().st_size
        if size > LARGE_INPUT_WARNING_BYTES:
            LOGGER.warning(
                "Large input file %s (%s); processing may take a while",
                path,
                format_file_size(size),
            )
        payload = path.read_bytes()
    try:
        return json.loads(payload)
    except (ValueError, UnicodeDecodeError) as exc:
        raise FormatError(f"Invalid JSON document: {exc}") from exc


__all__ = [
    "detect_shape",
    "extract_activity_path",
    "load_document",
    "normalize",
    "normalize_point_list",
    "normalize_timeline",
    "parse_geo_uri",
    "parse_timestamp_ms",
    "suppress_consecutive_duplicates",
]
