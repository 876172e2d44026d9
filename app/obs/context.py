"""Request context helpers using ContextVars.

Holds request-scoped identifiers (request_id and the flight-offers cache
handle presented by the caller) so log lines can carry them implicitly.
"""

from contextvars import ContextVar
from typing import Optional


# Public ContextVars (names are stable API)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
cache_handle_var: ContextVar[Optional[str]] = ContextVar("cache_handle", default=None)


def clear_context() -> None:
    """Reset context variables to defaults."""
    request_id_var.set(None)
    cache_handle_var.set(None)
