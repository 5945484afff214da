"""Client for the OSRM ``match`` and ``route`` services."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from requests import Session

from ..config import OSRM_BASE_URL, OSRM_PROFILE, REQUEST_TIMEOUT
from ..errors import ProviderEmptyResult, ProviderHTTPError
from ..models import LatLon
from .mapbox import format_coordinates, parse_geometry
from .response_handling import get_json
from .session import get_default_session

LOGGER = logging.getLogger(__name__)

PROVIDER_NAME = "OSRM"

# OSRM answers "could not match" with HTTP 400 and one of these codes.
NO_MATCH_CODES = frozenset({"NoMatch", "NoSegment", "NoRoute"})


class OsrmMatcher:
    """Match or route coordinate chunks against an OSRM server."""

    def __init__(
        self,
        *,
        base_url: str = OSRM_BASE_URL,
        profile: str = OSRM_PROFILE,
        session: Optional[Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._profile = profile
        self._session = session or get_default_session()
        self._timeout = timeout

    def match_url(self, coordinates: Sequence[LatLon]) -> str:
        return (
            f"{self._base_url}/match/v1/{self._profile}/"
            f"{format_coordinates(coordinates)}"
            "?geometries=geojson&overview=full&annotations=nodes"
        )

    def route_url(self, coordinates: Sequence[LatLon]) -> str:
        return (
            f"{self._base_url}/route/v1/{self._profile}/"
            f"{format_coordinates(coordinates)}"
            "?geometries=geojson&overview=full"
        )

    def _get(self, url: str) -> Any:
        try:
            return get_json(
                self._session, url, provider=PROVIDER_NAME, timeout=self._timeout
            )
        except ProviderHTTPError as exc:
            if exc.error_code in NO_MATCH_CODES:
                raise ProviderEmptyResult(str(exc)) from exc
            raise

    def match(self, coordinates: Sequence[LatLon]) -> List[LatLon]:
        """Return the concatenated geometry of every matching as ``(lat, lon)``.

        Raises:
            ProviderEmptyResult: When OSRM finds no matching for the chunk.
            ProviderHTTPError: On transport or HTTP failures.
        """

        data = self._get(self.match_url(coordinates))
        matchings = data.get("matchings") if isinstance(data, dict) else None
        if not isinstance(matchings, list) or not matchings:
            raise ProviderEmptyResult(f"No matchings from {PROVIDER_NAME}")
        merged: List[LatLon] = []
        for matching in matchings:
            if isinstance(matching, dict):
                merged.extend(parse_geometry(matching.get("geometry")))
        if len(merged) < 2:
            raise ProviderEmptyResult(f"{PROVIDER_NAME} matchings carry no geometry")
        return merged

    def route(self, coordinates: Sequence[LatLon]) -> List[LatLon]:
        """Return the first route's geometry through ``coordinates``."""

        data = self._get(self.route_url(coordinates))
        routes = data.get("routes") if isinstance(data, dict) else None
        if not isinstance(routes, list) or not routes:
            raise ProviderEmptyResult(f"No routes from {PROVIDER_NAME}")
        if not isinstance(routes[0], dict):
            raise ProviderEmptyResult(f"{PROVIDER_NAME} returned a malformed route")
        routed = parse_geometry(routes[0].get("geometry"))
        if not routed:
            raise ProviderEmptyResult(f"{PROVIDER_NAME} route carries no geometry")
        return routed


__all__ = ["OsrmMatcher", "NO_MATCH_CODES"]
