"""Structured JSON logging to stdout.

Low overhead, minimal dependencies, safe for production stdout collectors.
"""

from typing import Any, Dict
from datetime import datetime, timezone
import json

from app.obs.context import request_id_var, cache_handle_var

# Cache handles are bearer capabilities; never log them in full.
_HANDLE_KEYS = ("handle", "cache_key", "cache_handle")


def _redact_handle(value: Any) -> Any:
    s = str(value) if value is not None else ""
    if not s:
        return None
    if len(s) <= 4:
        return "***"
    return f"***{s[-4:]}"


def log_event(event: str, **fields: Any) -> None:
    now = datetime.now(timezone.utc).isoformat()
    payload: Dict[str, Any] = {
        "ts": now,
        "level": fields.pop("level", "INFO"),
        "event": event,
        "request_id": request_id_var.get(),
    }
    if not any(k in fields for k in _HANDLE_KEYS):
        payload["cache_handle"] = _redact_handle(cache_handle_var.get())

    # Merge remaining fields
    for k, v in fields.items():
        if k in _HANDLE_KEYS:
            payload["cache_handle"] = _redact_handle(v)
        else:
            payload[k] = v

    try:
        print(json.dumps(payload, separators=(",", ":"), default=str))
    except Exception:
        # As a last resort, avoid crashing the app due to logging
        pass
