"""Client for the Mapbox Map Matching API (v5)."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence
from urllib.parse import quote

from requests import Session

from ..config import (
    MAPBOX_BASE_URL,
    MAPBOX_PROFILE,
    MAPBOX_SEARCH_RADIUS_M,
    REQUEST_TIMEOUT,
)
from ..errors import ProviderEmptyResult, ProviderHTTPError, QuotaExceeded
from ..models import LatLon
from .response_handling import get_json
from .session import get_default_session

LOGGER = logging.getLogger(__name__)

PROVIDER_NAME = "Mapbox"


def format_coordinates(coordinates: Sequence[LatLon]) -> str:
    """Join ``(lat, lon)`` pairs into the ``lon,lat;lon,lat`` path form."""

    return ";".join(f"{lon:.6f},{lat:.6f}" for lat, lon in coordinates)


def _is_coordinate(value: Any, limit: float) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and -limit <= value <= limit
    )


def parse_geometry(geometry: Any) -> List[LatLon]:
    """Convert a GeoJSON LineString geometry into ``(lat, lon)`` tuples."""

    if not isinstance(geometry, dict):
        return []
    coordinates = geometry.get("coordinates")
    if not isinstance(coordinates, list):
        return []
    points: List[LatLon] = []
    for pair in coordinates:
        if not isinstance(pair, (list, tuple)) or len(pair) < 2:
            continue
        lon, lat = pair[0], pair[1]
        if not (_is_coordinate(lat, 90) and _is_coordinate(lon, 180)):
            LOGGER.debug("Skipping malformed geometry vertex %r", pair)
            continue
        points.append((float(lat), float(lon)))
    return points


class MapboxMatcher:
    """Snap a coordinate sequence to the road network with Mapbox."""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = MAPBOX_BASE_URL,
        profile: str = MAPBOX_PROFILE,
        radius_m: int = MAPBOX_SEARCH_RADIUS_M,
        session: Optional[Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._profile = profile
        self._radius_m = radius_m
        self._session = session or get_default_session()
        self._timeout = timeout

    def build_url(
        self,
        coordinates: Sequence[LatLon],
        timestamps_s: Optional[Sequence[int]] = None,
    ) -> str:
        """Return the full request URL (token included) for ``coordinates``."""

        url = (
            f"{self._base_url}/matching/v5/{self._profile}/"
            f"{format_coordinates(coordinates)}"
            f"?access_token={quote(self._access_token, safe='')}"
        )
        if timestamps_s is not None and len(timestamps_s) == len(coordinates):
            url += "&timestamps=" + ";".join(str(int(ts)) for ts in timestamps_s)
        radiuses = ";".join(str(self._radius_m) for _ in coordinates)
        url += f"&geometries=geojson&overview=full&tidy=true&radiuses={radiuses}"
        return url

    def match(
        self,
        coordinates: Sequence[LatLon],
        timestamps_s: Optional[Sequence[int]] = None,
    ) -> List[LatLon]:
        """Return the matched geometry of the best matching as ``(lat, lon)``.

        Raises:
            QuotaExceeded: When Mapbox rejects the call with HTTP 429.
            ProviderHTTPError: On other transport or HTTP failures.
            ProviderEmptyResult: When no usable geometry comes back.
        """

        url = self.build_url(coordinates, timestamps_s)
        try:
            data = get_json(
                self._session, url, provider=PROVIDER_NAME, timeout=self._timeout
            )
        except ProviderHTTPError as exc:
            if exc.status_code == 429:
                raise QuotaExceeded(str(exc)) from exc
            raise

        matchings = data.get("matchings") if isinstance(data, dict) else None
        if not isinstance(matchings, list) or not matchings:
            code = data.get("code") if isinstance(data, dict) else None
            raise ProviderEmptyResult(
                f"No matching results from {PROVIDER_NAME} (code={code})"
            )
        best = matchings[0]
        if not isinstance(best, dict):
            raise ProviderEmptyResult(f"{PROVIDER_NAME} returned a malformed matching")
        matched = parse_geometry(best.get("geometry"))
        if len(matched) < 2:
            raise ProviderEmptyResult(f"{PROVIDER_NAME} returned an empty geometry")
        LOGGER.debug(
            "%s matched %d input points to %d vertices",
            PROVIDER_NAME,
            len(coordinates),
            len(matched),
        )
        return matched


__all__ = ["MapboxMatcher", "format_coordinates", "parse_geometry"]
