"""Central error types used across the application."""

from __future__ import annotations


class FormatError(ValueError):
    """Raised when an input document matches none of the supported shapes."""


class PointRejected(ValueError):
    """Raised when a single coordinate or timestamp fails validation."""


class ProviderError(RuntimeError):
    """Base error for map-matching provider failures."""


class ProviderHTTPError(ProviderError):
    """Raised on transport failures or non-success HTTP responses."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ProviderEmptyResult(ProviderError):
    """Raised when a provider answers successfully but without geometry."""


class QuotaExceeded(ProviderError):
    """Raised when the primary provider is called past its usage threshold."""


__all__ = [
    "FormatError",
    "PointRejected",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderEmptyResult",
    "QuotaExceeded",
]
