"""Shared HTTP session for map-matching provider calls."""

from __future__ import annotations

import logging
import threading
from typing import Optional

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import (
    HTTP_POOL_CONNECTIONS,
    HTTP_POOL_MAXSIZE,
    PROVIDER_HTTP_RETRIES,
    USER_AGENT,
)

__all__ = ["close_default_session", "create_default_session", "get_default_session"]

LOGGER = logging.getLogger(__name__)

_RETRY_STATUSES = (500, 502, 503, 504)


def _build_retry(retries: int) -> Retry:
    # The final 5xx response is returned, not raised.
    return Retry(
        total=retries,
        backoff_factor=1.0,
        status_forcelist=_RETRY_STATUSES,
        allowed_methods=["GET"],
        raise_on_status=False,
    )


def create_default_session(
    *,
    retries: int = PROVIDER_HTTP_RETRIES,
    pool_size: int = HTTP_POOL_MAXSIZE,
    user_agent: str = USER_AGENT,
) -> Session:
    """Return a pooled session for Mapbox and OSRM requests."""

    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=pool_size,
        max_retries=_build_retry(retries),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "User-Agent": user_agent,
        }
    )
    return session


_DEFAULT_SESSION: Optional[Session] = None
_DEFAULT_LOCK = threading.Lock()


def get_default_session() -> Session:
    """Return the shared provider session, creating it on first use."""

    global _DEFAULT_SESSION
    with _DEFAULT_LOCK:
        if _DEFAULT_SESSION is None:
            LOGGER.debug("Creating shared provider session (agent=%s)", USER_AGENT)
            _DEFAULT_SESSION = create_default_session()
        return _DEFAULT_SESSION


def close_default_session() -> None:
    """Close the shared session; the next caller gets a fresh one."""

    global _DEFAULT_SESSION
    with _DEFAULT_LOCK:
        session, _DEFAULT_SESSION = _DEFAULT_SESSION, None
    if session is not None:
        session.close()
