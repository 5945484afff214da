"""Shared HTTP response helpers for map-matching provider calls."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Type

import requests
from requests import Session

from ..config import REQUEST_TIMEOUT
from ..errors import ProviderHTTPError

RequestsJSONDecodeError: Type[Exception] = requests.exceptions.JSONDecodeError

LOGGER = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"(access_token=)[^&]+")

__all__ = [
    "extract_error",
    "get_json",
    "redact_url",
]


def redact_url(url: str) -> str:
    """Mask access tokens before a URL is logged."""

    return _TOKEN_PATTERN.sub(r"\1***", url)


def get_json(
    session: Session,
    url: str,
    *,
    provider: str,
    params: Optional[Mapping[str, Any]] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> Any:
    """Perform a GET and return the decoded JSON body.

    Raises:
        ProviderHTTPError: On transport failures, non-2xx statuses, or bodies
            that are not JSON.
    """

    LOGGER.debug("%s GET %s", provider, redact_url(url))
    try:
        response = session.get(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise ProviderHTTPError(f"{provider} request failed: {exc}") from exc

    status = response.status_code
    if not 200 <= status < 300:
        detail = extract_error(response)
        message = f"{provider} API error: HTTP {status}"
        if detail:
            message = f"{message} | {detail}"
        raise ProviderHTTPError(
            message, status_code=status, error_code=_error_code(response)
        )

    try:
        return response.json()
    except (ValueError, RequestsJSONDecodeError) as exc:
        raise ProviderHTTPError(
            f"{provider} returned a non-JSON body", status_code=status
        ) from exc


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return compact string with provider error info (code + message) if present."""

    if resp is None:
        return None
    data = _safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    parts = _collect_error_parts(data)
    return " | ".join(parts) if parts else None


def _safe_json(resp: requests.Response) -> Optional[Any]:
    """Safely parse JSON; return None if parsing fails."""

    try:
        return resp.json()
    except (
        ValueError,
        RequestsJSONDecodeError,
    ) as exc:  # pragma: no cover - logging path
        LOGGER.debug(
            "Failed to decode JSON from %s: %s",
            redact_url(str(getattr(resp, "url", "?"))),
            exc,
        )
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    """Best-effort plain-text extraction when JSON parsing fails."""

    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed


def _collect_error_parts(data: Dict[str, Any]) -> List[str]:
    """Build error snippets from Mapbox/OSRM error bodies ({code, message})."""

    parts: List[str] = []
    code = data.get("code")
    if code and code != "Ok":
        parts.append(str(code))
    message = data.get("message")
    if message:
        parts.append(str(message))
    return parts


def _error_code(resp: requests.Response) -> Optional[str]:
    data = _safe_json(resp)
    if isinstance(data, dict) and isinstance(data.get("code"), str):
        return data["code"]
    return None
