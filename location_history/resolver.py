"""Tiered map-matching for segment preview geometry.

Each request walks a small state machine, every tier returning either geometry
or ``None``:

1. ``native``: requests made mostly of timeline path points are returned as-is.
2. ``primary``: Mapbox, only while configured and under quota.
3. ``secondary``: OSRM in fixed-size chunks, each chunk falling back to a
   route request and then to its raw coordinates.

If every tier fails the resolver returns ``None`` and the caller draws the raw
points. Provider faults never escape :meth:`MapMatchingResolver.resolve`.
"""

from __future__ import annotations

import logging
import threading
from typing import Hashable, List, Optional, Sequence, Tuple

from cachetools import TTLCache

from .config import (
    ACTIVITY_PATH_SHARE_THRESHOLD,
    MATCH_CACHE_SIZE,
    MATCH_CACHE_TTL_SECONDS,
    OSRM_CHUNK_SIZE,
)
from .errors import ProviderEmptyResult, ProviderError
from .models import CanonicalPoint, LatLon, MatchOutcome, SourceTag
from .providers.mapbox import MapboxMatcher
from .providers.osrm import OsrmMatcher
from .quota import QuotaStore
from .segmentation import dedupe_consecutive

LOGGER = logging.getLogger(__name__)

TIER_NATIVE = "native"
TIER_PRIMARY = "primary"
TIER_SECONDARY = "secondary"
TIER_RAW = "raw"
TIER_CANCELLED = "cancelled"
TIER_CACHED = "cached"

_CacheKey = Tuple[Hashable, ...]


def activity_path_share(points: Sequence[CanonicalPoint]) -> float:
    if not points:
        return 0.0
    native = sum(1 for p in points if p.source is SourceTag.ACTIVITY_PATH)
    return native / len(points)


def chunked(items: Sequence[LatLon], size: int) -> List[Sequence[LatLon]]:
    if size < 2:
        raise ValueError("chunk size must be >= 2")
    return [items[i : i + size] for i in range(0, len(items), size)]


class _Cancelled(Exception):
    """Internal signal: the caller abandoned the resolution."""


class MapMatchingResolver:
    """Resolve segment geometry through native → primary → secondary tiers."""

    def __init__(
        self,
        quota: Optional[QuotaStore] = None,
        *,
        primary: Optional[MapboxMatcher] = None,
        secondary: Optional[OsrmMatcher] = None,
        chunk_size: int = OSRM_CHUNK_SIZE,
        path_share_threshold: float = ACTIVITY_PATH_SHARE_THRESHOLD,
        cache_size: int = MATCH_CACHE_SIZE,
        cache_ttl_seconds: int = MATCH_CACHE_TTL_SECONDS,
    ) -> None:
        if chunk_size < 2:
            raise ValueError("chunk_size must be >= 2")
        self._quota = quota
        if primary is None and quota is not None and quota.api_key:
            primary = MapboxMatcher(quota.api_key)
        self._primary = primary
        self._secondary = secondary or OsrmMatcher()
        self._chunk_size = chunk_size
        self._path_share_threshold = path_share_threshold
        self._cache: Optional[TTLCache[_CacheKey, List[LatLon]]] = (
            TTLCache(maxsize=cache_size, ttl=cache_ttl_seconds)
            if cache_size > 0
            else None
        )
        self._cache_lock = threading.RLock()

    # -- public API ---------------------------------------------------------
    def resolve(
        self,
        points: Sequence[CanonicalPoint],
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[List[LatLon]]:
        """Return ``(lat, lon)`` geometry for ``points`` or ``None`` for "use raw"."""

        return self.resolve_outcome(points, cancel_event=cancel_event).coordinates

    def resolve_outcome(
        self,
        points: Sequence[CanonicalPoint],
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> MatchOutcome:
        """Like :meth:`resolve` but also reports which tier produced the result."""

        ordered = sorted(points, key=lambda p: p.timestamp_ms)
        if len(ordered) < 2:
            return MatchOutcome(coordinates=None, tier=TIER_RAW)

        native = self._attempt_native(ordered)
        if native is not None:
            return MatchOutcome(coordinates=native, tier=TIER_NATIVE)

        key = self._cache_key(ordered)
        cached = self._cache_get(key)
        if cached is not None:
            return MatchOutcome(
                coordinates=list(cached), tier=TIER_CACHED, diagnostics={"cached": True}
            )

        coordinates = [p.latlon for p in ordered]
        try:
            self._check_cancelled(cancel_event)
            primary = self._attempt_primary(coordinates, ordered)
            if primary is not None:
                self._cache_put(key, primary)
                return MatchOutcome(coordinates=primary, tier=TIER_PRIMARY)

            secondary = self._attempt_secondary(coordinates, cancel_event)
        except _Cancelled:
            LOGGER.info("Map matching cancelled; discarding partial results")
            return MatchOutcome(coordinates=None, tier=TIER_CANCELLED)

        if secondary is not None:
            self._cache_put(key, secondary)
            return MatchOutcome(coordinates=secondary, tier=TIER_SECONDARY)

        LOGGER.warning(
            "All map matching tiers failed for %d points; using raw path",
            len(ordered),
        )
        return MatchOutcome(coordinates=None, tier=TIER_RAW)

    # -- tiers --------------------------------------------------------------
    def _attempt_native(
        self, ordered: Sequence[CanonicalPoint]
    ) -> Optional[List[LatLon]]:
        share = activity_path_share(ordered)
        if share < self._path_share_threshold:
            return None
        LOGGER.debug(
            "Native timeline path share %.0f%%; skipping map matching", share * 100
        )
        return [p.latlon for p in ordered]

    def _attempt_primary(
        self,
        coordinates: Sequence[LatLon],
        ordered: Sequence[CanonicalPoint],
    ) -> Optional[List[LatLon]]:
        if self._primary is None or self._quota is None:
            return None
        if not self._quota.try_acquire():
            return None
        timestamps_s = [p.timestamp_ms // 1000 for p in ordered]
        committed = False
        try:
            matched = self._primary.match(coordinates, timestamps_s)
            usage = self._quota.commit()
            committed = True
        except ProviderError as exc:
            LOGGER.warning("Mapbox matching failed, falling back to OSRM: %s", exc)
            return None
        finally:
            # Every reservation ends in exactly one commit or release.
            if not committed:
                self._quota.release()
        LOGGER.info(
            "Mapbox matched %d points to %d vertices (usage=%d)",
            len(coordinates),
            len(matched),
            usage,
        )
        return matched

    def _attempt_secondary(
        self,
        coordinates: Sequence[LatLon],
        cancel_event: Optional[threading.Event],
    ) -> Optional[List[LatLon]]:
        snapped: List[LatLon] = []
        for index, chunk in enumerate(chunked(coordinates, self._chunk_size)):
            self._check_cancelled(cancel_event)
            if len(chunk) < 2:
                snapped.extend(chunk)
                continue
            try:
                snapped.extend(self._secondary.match(chunk))
                continue
            except ProviderEmptyResult as exc:
                LOGGER.debug("OSRM chunk %d not matched (%s); trying route", index, exc)
            except ProviderError as exc:
                LOGGER.warning("OSRM matching failed on chunk %d: %s", index, exc)
                return None
            try:
                snapped.extend(self._secondary.route(chunk))
            except ProviderError as exc:
                LOGGER.debug("OSRM route fallback failed on chunk %d: %s", index, exc)
                snapped.extend(chunk)

        result = dedupe_consecutive(snapped)
        if len(result) < 2:
            return None
        LOGGER.info("OSRM resolved %d points to %d vertices", len(coordinates), len(result))
        return result

    # -- helpers ------------------------------------------------------------
    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _Cancelled()

    @staticmethod
    def _cache_key(ordered: Sequence[CanonicalPoint]) -> _CacheKey:
        return tuple((p.lat_e7, p.lon_e7, p.timestamp_ms) for p in ordered)

    def _cache_get(self, key: _CacheKey) -> Optional[List[LatLon]]:
        if self._cache is None:
            return None
        with self._cache_lock:
            return self._cache.get(key)

    def _cache_put(self, key: _CacheKey, value: List[LatLon]) -> None:
        if self._cache is None:
            return
        with self._cache_lock:
            self._cache[key] = list(value)


__all__ = [
    "MapMatchingResolver",
    "activity_path_share",
    "chunked",
    "TIER_NATIVE",
    "TIER_PRIMARY",
    "TIER_SECONDARY",
    "TIER_RAW",
    "TIER_CANCELLED",
    "TIER_CACHED",
]
