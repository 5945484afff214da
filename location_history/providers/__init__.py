"""Map-matching provider clients (session, response handling, Mapbox, OSRM)."""

from .mapbox import MapboxMatcher  # noqa: F401
from .osrm import OsrmMatcher  # noqa: F401
from .session import (  # noqa: F401
    close_default_session,
    create_default_session,
    get_default_session,
)
