"""Central configuration for the Location History to KML converter.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import os

from dotenv import load_dotenv


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env from the current directory or any parent folder.
load_dotenv()


# ---------------------------------------------------------------------------
# Input/Output
# ---------------------------------------------------------------------------
# Directory (absolute or relative) receiving period KML files and previews.
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "kml_output")

# Inputs above this size are still processed but logged with a warning.
LARGE_INPUT_WARNING_BYTES = 100 * 1024 * 1024

# Threads used to process periods in parallel.
MAX_WORKERS = _env_int("MAX_WORKERS", 4)


# ---------------------------------------------------------------------------
# Primary map-matching provider (Mapbox)
# ---------------------------------------------------------------------------
# Access token pulled from the environment. Do not hardcode secrets.
MAPBOX_ACCESS_TOKEN = os.getenv("MAPBOX_ACCESS_TOKEN", "")

# Value shipped in the sample configuration; treated the same as "unset".
MAPBOX_TOKEN_PLACEHOLDER = "YOUR_MAPBOX_ACCESS_TOKEN_HERE"

MAPBOX_BASE_URL = os.getenv("MAPBOX_BASE_URL", "https://api.mapbox.com")
MAPBOX_PROFILE = os.getenv("MAPBOX_PROFILE", "mapbox/driving")

# Free tier allowance for the Map Matching API.
MAPBOX_MONTHLY_LIMIT = _env_int("MAPBOX_MONTHLY_LIMIT", 100_000)

# Stop using Mapbox once this share of the monthly allowance is consumed.
MAPBOX_FALLBACK_THRESHOLD = _env_float("MAPBOX_FALLBACK_THRESHOLD", 0.9)

# Per-coordinate search radius (metres) sent with every match request.
MAPBOX_SEARCH_RADIUS_M = _env_int("MAPBOX_SEARCH_RADIUS_M", 25)

# JSON file holding {apiKey, usageCount, lastResetMonth}. Reloaded at start-up
# and rewritten after every successful Mapbox call.
QUOTA_STATE_FILE = os.getenv("QUOTA_STATE_FILE", "mapbox_usage.json")


# ---------------------------------------------------------------------------
# Secondary map-matching provider (OSRM)
# ---------------------------------------------------------------------------
OSRM_BASE_URL = os.getenv("OSRM_BASE_URL", "https://router.project-osrm.org")
OSRM_PROFILE = os.getenv("OSRM_PROFILE", "driving")

# The public OSRM server rejects requests above 100 coordinates.
OSRM_CHUNK_SIZE = _env_int("OSRM_CHUNK_SIZE", 90)


# ---------------------------------------------------------------------------
# HTTP settings
# ---------------------------------------------------------------------------
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10

# The public OSRM demo server rejects requests without an identifying agent.
USER_AGENT = os.getenv("LOCATION_HISTORY_USER_AGENT", "location-history-kml/0.1.0")

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 15)

# A failed provider request moves on to the next tier instead of retrying in
# place, so transport-level retries are off unless explicitly requested.
PROVIDER_HTTP_RETRIES = _env_int("PROVIDER_HTTP_RETRIES", 0)

# Resolved geometry cache (entries keyed by the request coordinates).
# Set MATCH_CACHE_SIZE to 0 to disable.
MATCH_CACHE_SIZE = _env_int("MATCH_CACHE_SIZE", 128)
MATCH_CACHE_TTL_SECONDS = _env_int("MATCH_CACHE_TTL_SECONDS", 3600)


# ---------------------------------------------------------------------------
# Segmentation and matching policy
# ---------------------------------------------------------------------------
# Two coordinates closer than this (degrees, both axes) are the same position.
COORDINATE_TOLERANCE_DEG = 1e-7

# Requests made mostly of native timeline path points skip map matching.
ACTIVITY_PATH_SHARE_THRESHOLD = _env_float("ACTIVITY_PATH_SHARE_THRESHOLD", 0.5)

# Maximum time gap (minutes) between consecutive points of one segment.
GAP_DEFAULT_MINUTES = _env_int("GAP_DEFAULT_MINUTES", 30)
GAP_FAST_TRANSIT_MINUTES = _env_int("GAP_FAST_TRANSIT_MINUTES", 180)
GAP_PEDESTRIAN_MINUTES = _env_int("GAP_PEDESTRIAN_MINUTES", 10)

# Activity type fragments, matched as lower-case substrings.
FAST_TRANSIT_MODES = (
    "in passenger vehicle",
    "in vehicle",
    "driving",
    "train",
    "subway",
    "tram",
    "bus",
    "ferry",
)
PEDESTRIAN_MODES = ("walking", "on foot", "running")


# ---------------------------------------------------------------------------
# KML defaults
# ---------------------------------------------------------------------------
DEFAULT_LINE_COLOR = os.getenv("DEFAULT_LINE_COLOR", "blue")
DEFAULT_LINE_WIDTH = _env_int("DEFAULT_LINE_WIDTH", 6)
DEFAULT_SHOW_LABELS = _env_bool("DEFAULT_SHOW_LABELS", True)
DEFAULT_SHOW_TICKMARKS = _env_bool("DEFAULT_SHOW_TICKMARKS", True)
DEFAULT_SHOW_TRACKPOINTS = _env_bool("DEFAULT_SHOW_TRACKPOINTS", True)

# IANA zone used for human-readable labels (placemark names, summaries).
DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "UTC")


# ---------------------------------------------------------------------------
# Excel formatting
# ---------------------------------------------------------------------------
# Automatically size columns after writing the summary sheet (openpyxl only).
EXCEL_AUTOSIZE_COLUMNS = True
EXCEL_AUTOSIZE_MAX_WIDTH = 50  # characters
EXCEL_AUTOSIZE_MIN_WIDTH = 6  # characters
EXCEL_AUTOSIZE_PADDING = 2  # extra characters added to the detected max
EXCEL_AUTOSIZE_MAX_ROWS = (
    5000  # skip autosize for very large sheets (performance guard)
)
