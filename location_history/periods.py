"""Time-window selection and period bookkeeping.

``select`` is the single filter used for record counts, export and preview, so
all three always agree on which points belong to a period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import CanonicalPoint, Period
from .utils import ensure_aware, ms_to_datetime

LOGGER = logging.getLogger(__name__)

DateRange = Tuple[datetime, datetime]
_PERIOD_FIELDS = ("start_date", "end_date")


def select(points: Iterable[CanonicalPoint], period: Period) -> List[CanonicalPoint]:
    """Return points with ``start <= timestamp <= end`` in input order."""

    start_ms, end_ms = period.start_ms, period.end_ms
    return [p for p in points if start_ms <= p.timestamp_ms <= end_ms]


def count_in_period(points: Iterable[CanonicalPoint], period: Period) -> int:
    return len(select(points, period))


def dataset_range(points: Sequence[CanonicalPoint]) -> Optional[DateRange]:
    """Return the (min, max) timestamps of ``points`` as UTC datetimes."""

    if not points:
        return None
    timestamps = [p.timestamp_ms for p in points]
    return ms_to_datetime(min(timestamps)), ms_to_datetime(max(timestamps))


@dataclass(slots=True)
class PeriodSummary:
    period: Period
    records: int


class PeriodManager:
    """Ordered, contiguously numbered set of periods bounded by a dataset range.

    Periods are numbered from 1. Removing a period renumbers every later one.
    Every edit is clamped to the dataset range and keeps ``start <= end``.
    """

    def __init__(
        self,
        points: Sequence[CanonicalPoint],
        bounds: Optional[DateRange] = None,
    ) -> None:
        self._points = list(points)
        self._bounds = bounds or dataset_range(self._points)
        self._periods: List[Period] = []

    @property
    def bounds(self) -> Optional[DateRange]:
        return self._bounds

    @property
    def periods(self) -> List[Period]:
        return list(self._periods)

    def __len__(self) -> int:
        return len(self._periods)

    def _clamp(self, value: datetime) -> datetime:
        value = ensure_aware(value)
        if self._bounds is None:
            return value
        lo, hi = self._bounds
        return min(max(value, lo), hi)

    def add(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Period:
        """Append a period; missing bounds default to the full dataset range."""

        if start_date is None or end_date is None:
            if self._bounds is not None:
                start_date, end_date = self._bounds
            else:
                start_date = end_date = datetime.now(timezone.utc)
        start = self._clamp(start_date)
        end = self._clamp(end_date)
        if end < start:
            end = start
        period = Period(id=len(self._periods) + 1, start_date=start, end_date=end)
        self._periods.append(period)
        LOGGER.debug("Added period %s: %s -> %s", period.id, start, end)
        return period

    def get(self, period_id: int) -> Period:
        for period in self._periods:
            if period.id == period_id:
                return period
        raise ValueError(f"No period with id {period_id}")

    def remove(self, period_id: int) -> None:
        period = self.get(period_id)
        self._periods.remove(period)
        for index, remaining in enumerate(self._periods, start=1):
            remaining.id = index

    def update(self, period_id: int, field_name: str, value: datetime) -> Period:
        """Set ``start_date`` or ``end_date`` and re-validate the period.

        When the edit inverts the period, the opposite bound is moved onto the
        edited one.
        """

        if field_name not in _PERIOD_FIELDS:
            raise ValueError(f"Unknown period field {field_name!r}")
        period = self.get(period_id)
        setattr(period, field_name, self._clamp(value))
        if period.end_date < period.start_date:
            if field_name == "start_date":
                period.end_date = period.start_date
            else:
                period.start_date = period.end_date
        return period

    def select(self, period_id: int) -> List[CanonicalPoint]:
        return select(self._points, self.get(period_id))

    def summaries(self) -> List[PeriodSummary]:
        return [
            PeriodSummary(period=p, records=count_in_period(self._points, p))
            for p in self._periods
        ]


def parse_period_bound(text: str) -> datetime:
    """Parse an ISO date or date-time period bound (naive values are UTC)."""

    return ensure_aware(datetime.fromisoformat(text.strip()))
