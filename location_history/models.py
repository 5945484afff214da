from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from .errors import PointRejected
from .utils import datetime_to_ms, timestamp_in_range
from .config import (
    DEFAULT_LINE_COLOR,
    DEFAULT_LINE_WIDTH,
    DEFAULT_SHOW_LABELS,
    DEFAULT_SHOW_TICKMARKS,
    DEFAULT_SHOW_TRACKPOINTS,
    DISPLAY_TIMEZONE,
)

E7 = 10_000_000
MAX_LAT_E7 = 90 * E7
MAX_LON_E7 = 180 * E7

LatLon = Tuple[float, float]


class SourceTag(str, Enum):
    RAW = "raw"
    ACTIVITY_PATH = "activity_path"
    VISIT = "visit"


@dataclass(frozen=True, slots=True)
class CanonicalPoint:
    """A single location sample in microdegree-integer encoding.

    Attributes:
        lat_e7: Latitude in degrees multiplied by 1e7.
        lon_e7: Longitude in degrees multiplied by 1e7.
        timestamp_ms: Unix epoch milliseconds.
        source: Which input shape produced the point.
        activity_type: Classified activity for timeline path points.
    """

    lat_e7: int
    lon_e7: int
    timestamp_ms: int
    source: SourceTag = SourceTag.RAW
    activity_type: Optional[str] = None

    def __post_init__(self) -> None:
        if abs(self.lat_e7) > MAX_LAT_E7 or abs(self.lon_e7) > MAX_LON_E7:
            raise PointRejected(
                f"Coordinate out of range: lat_e7={self.lat_e7} lon_e7={self.lon_e7}"
            )
        if not timestamp_in_range(self.timestamp_ms):
            raise PointRejected(f"Timestamp out of range: {self.timestamp_ms}")

    @property
    def latitude(self) -> float:
        return self.lat_e7 / E7

    @property
    def longitude(self) -> float:
        return self.lon_e7 / E7

    @property
    def latlon(self) -> LatLon:
        return (self.latitude, self.longitude)


Segment = List[CanonicalPoint]


@dataclass
class Period:
    id: int
    start_date: datetime
    end_date: datetime

    @property
    def start_ms(self) -> int:
        return datetime_to_ms(self.start_date)

    @property
    def end_ms(self) -> int:
        return datetime_to_ms(self.end_date)


@dataclass
class StyleOptions:
    line_color: str = DEFAULT_LINE_COLOR
    line_width: int = DEFAULT_LINE_WIDTH
    show_labels: bool = DEFAULT_SHOW_LABELS
    show_tickmarks: bool = DEFAULT_SHOW_TICKMARKS
    show_trackpoints: bool = DEFAULT_SHOW_TRACKPOINTS
    timezone: str = DISPLAY_TIMEZONE

    @property
    def shows_points(self) -> bool:
        return self.show_labels or self.show_tickmarks or self.show_trackpoints


@dataclass
class MatchOutcome:
    """Resolved geometry plus the tier that produced it."""

    coordinates: Optional[List[LatLon]]
    tier: str
    diagnostics: dict = field(default_factory=dict)
