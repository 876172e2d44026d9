"""Named failure outcomes of the flight-search pipeline.

Routes and LLM tools pick a user-facing message from the exception type alone,
without looking at raw upstream payloads.
"""

from typing import Optional


class FlightSearchError(Exception):
    """Base class for every pipeline failure."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(FlightSearchError):
    """Caller input is malformed. Never retried, never sent upstream."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class AuthError(FlightSearchError):
    """Credential exchange failed, or the provider refused our credentials."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class UpstreamError(FlightSearchError):
    def __init__(self, message: str, status_code: Optional[int] = None, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class UpstreamTransientError(UpstreamError):
    """Network failure or retriable status that outlived the retry budget."""


class RequestDeadlineExceeded(UpstreamTransientError):
    """The per-request time ceiling ran out while retrying."""


class UpstreamRejectedError(UpstreamError):
    """Non-retriable 4xx from the provider."""


class NotFoundOrExpired(FlightSearchError):
    """Cache miss. Never distinguishes 'never existed' from 'expired'."""

    def __init__(self, message: str = "Cached flight offers not found or expired"):
        super().__init__(message)


class CachePersistenceError(FlightSearchError):
    """Writing a search result to the cache failed. Non-fatal for the search."""
