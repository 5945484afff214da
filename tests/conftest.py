"""Global pytest fixtures & helpers.

Adds project root to path and provides point factories shared by the
normalizer, segmenter, resolver and serializer tests.
"""
from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timezone

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from location_history.models import E7, CanonicalPoint, SourceTag


# --- Factory helpers -------------------------------------------------
def ts(year, month, day, hour=0, minute=0, second=0):
    """Epoch milliseconds for a UTC wall time."""
    return int(datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc).timestamp() * 1000)


def make_point(lat, lon, timestamp_ms, source=SourceTag.RAW, activity_type=None):
    return CanonicalPoint(
        lat_e7=int(round(lat * E7)),
        lon_e7=int(round(lon * E7)),
        timestamp_ms=timestamp_ms,
        source=source,
        activity_type=activity_type,
    )


def make_track(start_ms, count, step_s=60, lat=52.0, lon=13.0, delta=0.001, **kwargs):
    return [
        make_point(lat + i * delta, lon + i * delta, start_ms + i * step_s * 1000, **kwargs)
        for i in range(count)
    ]


def make_location_entry(lat, lon, timestamp_ms):
    return {
        "latitudeE7": int(round(lat * E7)),
        "longitudeE7": int(round(lon * E7)),
        "timestampMs": str(timestamp_ms),
    }


class FakeResp:
    """Minimal fake response matching needed parts of requests.Response."""

    def __init__(self, status_code=200, data=None, headers=None, url=""):
        self.status_code = status_code
        self._data = data if data is not None else {}
        self.headers = headers or {}
        self.url = url

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data

    @property
    def text(self):
        try:
            return json.dumps(self._data)
        except Exception:
            return str(self._data)


def geojson(latlons):
    """GeoJSON LineString from (lat, lon) pairs."""
    return {"type": "LineString", "coordinates": [[lon, lat] for lat, lon in latlons]}


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def morning_track():
    return make_track(ts(2024, 3, 1, 8), 5)


@pytest.fixture
def point_list_document():
    base = ts(2024, 3, 1, 8)
    return {
        "locations": [
            make_location_entry(52.0, 13.0, base),
            make_location_entry(52.001, 13.001, base + 60_000),
            make_location_entry(52.002, 13.002, base + 120_000),
        ]
    }


@pytest.fixture
def timeline_document():
    return [
        {
            "startTime": "2024-03-01T10:00:00.000Z",
            "endTime": "2024-03-01T10:10:00.000Z",
            "activity": {
                "topCandidate": {"type": "walking"},
                "timelinePath": [
                    {"point": "geo:52.000000,13.000000", "durationMinutesOffsetFromStartTime": "0"},
                    {"point": "geo:52.001000,13.001000", "durationMinutesOffsetFromStartTime": "5"},
                    {"point": "geo:52.002000,13.002000", "durationMinutesOffsetFromStartTime": "10"},
                ],
            },
        },
        {
            "startTime": "2024-03-01T10:15:00.000+01:00",
            "endTime": "2024-03-01T11:00:00.000+01:00",
            "visit": {"topCandidate": {"placeLocation": "geo:52.010000,13.010000"}},
        },
    ]
