"""Split a canonical point stream into contiguous movement tracks."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, TypeVar

from .config import (
    COORDINATE_TOLERANCE_DEG,
    FAST_TRANSIT_MODES,
    GAP_DEFAULT_MINUTES,
    GAP_FAST_TRANSIT_MINUTES,
    GAP_PEDESTRIAN_MINUTES,
    PEDESTRIAN_MODES,
)
from .models import CanonicalPoint, LatLon, Segment

LOGGER = logging.getLogger(__name__)

MODE_FAST_TRANSIT = "fast_transit"
MODE_PEDESTRIAN = "pedestrian"

_MINUTE_MS = 60_000

CoordT = TypeVar("CoordT", bound=Sequence[float])


def classify_mode(activity_type: Optional[str]) -> Optional[str]:
    """Map a free-form activity type onto a transport mode family.

    Matching is a case-insensitive substring test; ``_`` and ``-`` are read as
    spaces so ``IN_PASSENGER_VEHICLE`` and ``on-foot`` classify as expected.
    """

    if not activity_type:
        return None
    normalized = activity_type.lower().replace("_", " ").replace("-", " ")
    if any(mode in normalized for mode in FAST_TRANSIT_MODES):
        return MODE_FAST_TRANSIT
    if any(mode in normalized for mode in PEDESTRIAN_MODES):
        return MODE_PEDESTRIAN
    return None


def gap_threshold_ms(prev: CanonicalPoint, nxt: CanonicalPoint) -> int:
    """Return the largest time gap (ms) allowed between ``prev`` and ``nxt``.

    Fast transit on either side wins over pedestrian, which wins over the
    default.
    """

    modes = {classify_mode(prev.activity_type), classify_mode(nxt.activity_type)}
    if MODE_FAST_TRANSIT in modes:
        return GAP_FAST_TRANSIT_MINUTES * _MINUTE_MS
    if MODE_PEDESTRIAN in modes:
        return GAP_PEDESTRIAN_MINUTES * _MINUTE_MS
    return GAP_DEFAULT_MINUTES * _MINUTE_MS


def same_position(
    a: Sequence[float], b: Sequence[float], tolerance: float = COORDINATE_TOLERANCE_DEG
) -> bool:
    """True when two ``(lat, lon)`` pairs differ by less than ``tolerance``."""

    return abs(a[0] - b[0]) < tolerance and abs(a[1] - b[1]) < tolerance


def dedupe_consecutive(coordinates: Iterable[CoordT]) -> List[CoordT]:
    """Drop coordinates at the same position as the previously kept one."""

    kept: List[CoordT] = []
    for coord in coordinates:
        if kept and same_position(kept[-1], coord):
            continue
        kept.append(coord)
    return kept


def segment(points: Iterable[CanonicalPoint]) -> List[Segment]:
    """Split points into time-contiguous segments of at least two points.

    Points are re-sorted by time, stationary re-samples (same position as the
    last retained point, across segment boundaries too) are dropped, and a new
    segment starts whenever the gap to the previous buffered point exceeds
    :func:`gap_threshold_ms`.
    """

    ordered = sorted(points, key=lambda p: p.timestamp_ms)
    segments: List[Segment] = []
    current: Segment = []
    last_retained: Optional[LatLon] = None

    for point in ordered:
        position = point.latlon
        if last_retained is not None and same_position(last_retained, position):
            continue
        if current:
            previous = current[-1]
            time_diff = point.timestamp_ms - previous.timestamp_ms
            if time_diff > gap_threshold_ms(previous, point):
                if len(current) >= 2:
                    segments.append(current)
                current = [point]
            else:
                current.append(point)
        else:
            current.append(point)
        last_retained = position

    if len(current) >= 2:
        segments.append(current)

    LOGGER.debug(
        "Segmented %d points into %d segments (%s)",
        len(ordered),
        len(segments),
        ", ".join(str(len(s)) for s in segments) or "none",
    )
    return segments
