"""Usage accounting for the primary map-matching provider.

The store keeps ``{apiKey, usageCount}`` plus the month the counter was last
reset in a small JSON file. The count survives restarts within a calendar
month and resets to zero when the month rolls over.

Concurrent resolutions reserve a slot with :meth:`QuotaStore.try_acquire`
before calling the provider. The eligibility check counts in-flight
reservations, so two callers cannot both slip under the threshold; the network
call itself runs outside the lock. A successful call is committed (increment +
persist), a failed one released.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from os import PathLike
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .config import (
    MAPBOX_FALLBACK_THRESHOLD,
    MAPBOX_MONTHLY_LIMIT,
    MAPBOX_TOKEN_PLACEHOLDER,
)

LOGGER = logging.getLogger(__name__)

MonthClock = Callable[[], str]


def current_month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


@dataclass
class ProviderQuotaState:
    usage_count: int = 0
    monthly_limit: int = MAPBOX_MONTHLY_LIMIT
    fallback_threshold_ratio: float = MAPBOX_FALLBACK_THRESHOLD

    @property
    def usage_ratio(self) -> float:
        return self.usage_count / self.monthly_limit

    def is_eligible(self, pending: int = 0) -> bool:
        return (self.usage_count + pending) / self.monthly_limit < (
            self.fallback_threshold_ratio
        )


class QuotaStore:
    """Thread-safe, optionally file-backed quota counter for one API key."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        path: Optional[str | PathLike[str]] = None,
        monthly_limit: int = MAPBOX_MONTHLY_LIMIT,
        fallback_threshold_ratio: float = MAPBOX_FALLBACK_THRESHOLD,
        month_clock: MonthClock = current_month,
    ) -> None:
        if monthly_limit <= 0:
            raise ValueError("monthly_limit must be > 0")
        key = (api_key or "").strip()
        self._api_key = key if key and key != MAPBOX_TOKEN_PLACEHOLDER else None
        self._path = Path(path) if path is not None else None
        self._month_clock = month_clock
        self._lock = threading.Lock()
        self._state = ProviderQuotaState(
            monthly_limit=monthly_limit,
            fallback_threshold_ratio=fallback_threshold_ratio,
        )
        self._month = month_clock()
        self._pending = 0

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    @property
    def usage_count(self) -> int:
        with self._lock:
            self._roll_month_locked()
            return self._state.usage_count

    def snapshot(self) -> Dict[str, Any]:
        """Return current counters (used by tests and diagnostics)."""

        with self._lock:
            self._roll_month_locked()
            return {
                "usage_count": self._state.usage_count,
                "monthly_limit": self._state.monthly_limit,
                "usage_ratio": self._state.usage_ratio,
                "pending": self._pending,
                "month": self._month,
            }

    # -- persistence --------------------------------------------------------
    def load(self) -> "QuotaStore":
        """Reload the persisted counter (no-op without a path or file)."""

        if self._path is None:
            return self
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            return self
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable quota file %s: %s", self._path, exc)
            return self
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring malformed quota file %s", self._path)
            return self
        with self._lock:
            stored_key = payload.get("apiKey")
            if self._api_key is None and isinstance(stored_key, str):
                # No key from the environment: fall back to the stored one.
                key = stored_key.strip()
                if key and key != MAPBOX_TOKEN_PLACEHOLDER:
                    self._api_key = key
            if stored_key == self._api_key:
                try:
                    self._state.usage_count = max(0, int(payload.get("usageCount", 0)))
                except (TypeError, ValueError):
                    self._state.usage_count = 0
            else:
                self._state.usage_count = 0
            self._month = str(payload.get("lastResetMonth") or self._month_clock())
            self._roll_month_locked()
        LOGGER.info(
            "Loaded Mapbox usage %s/%s from %s",
            self._state.usage_count,
            self._state.monthly_limit,
            self._path,
        )
        return self

    def persist(self) -> None:
        with self._lock:
            self._persist_locked()

    def close(self) -> None:
        """Teardown hook: flush the counter to disk."""

        self.persist()

    def _persist_locked(self) -> None:
        if self._path is None:
            return
        payload = {
            "apiKey": self._api_key,
            "usageCount": self._state.usage_count,
            "lastResetMonth": self._month,
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._path.with_suffix(".tmp")
            with temp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=True, indent=2)
            temp_path.replace(self._path)
        except OSError as exc:
            LOGGER.warning("Failed to persist quota file %s: %s", self._path, exc)

    def _roll_month_locked(self) -> None:
        month = self._month_clock()
        if month != self._month:
            LOGGER.info(
                "New usage month %s (was %s); resetting Mapbox usage count",
                month,
                self._month,
            )
            self._month = month
            self._state.usage_count = 0
            self._persist_locked()

    # -- accounting ---------------------------------------------------------
    def is_eligible(self) -> bool:
        """Return True while the primary provider may be called."""

        if not self.configured:
            return False
        with self._lock:
            self._roll_month_locked()
            return self._state.is_eligible(self._pending)

    def try_acquire(self) -> bool:
        """Reserve one primary call if the provider is configured and under quota."""

        if not self.configured:
            return False
        with self._lock:
            self._roll_month_locked()
            if not self._state.is_eligible(self._pending):
                LOGGER.warning(
                    "Mapbox usage %s/%s reached the %.0f%% threshold",
                    self._state.usage_count,
                    self._state.monthly_limit,
                    self._state.fallback_threshold_ratio * 100,
                )
                return False
            self._pending += 1
            return True

    def commit(self) -> int:
        """Record one successful primary call and persist the new count."""

        with self._lock:
            self._pending = max(0, self._pending - 1)
            self._roll_month_locked()
            self._state.usage_count += 1
            self._persist_locked()
            return self._state.usage_count

    def release(self) -> None:
        """Drop a reservation whose call failed."""

        with self._lock:
            self._pending = max(0, self._pending - 1)


__all__ = ["ProviderQuotaState", "QuotaStore", "current_month"]
