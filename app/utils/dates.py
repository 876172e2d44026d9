import dateparser
from datetime import datetime, date, timezone
from typing import Optional
import pytz
import re

_DURATION_RE = re.compile(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?")


def get_current_datetime(tz: str = "UTC") -> datetime:
    """Get current datetime with timezone"""
    return datetime.now(pytz.timezone(tz))


def parse_iso_date(text: str) -> Optional[str]:
    """
    Strict parse of 'YYYY-MM-DD' or an ISO datetime; returns the date part or None.
    """
    if not text or not isinstance(text, str):
        return None
    candidate = text.strip()[:10]
    try:
        return date.fromisoformat(candidate).isoformat()
    except ValueError:
        return None


def to_iso_date(text: str, tz: str = "UTC") -> str:
    """Convert free text ("next Friday", "10 March 2025") to an ISO date, '' if hopeless"""
    strict = parse_iso_date(text)
    if strict:
        return strict

    base_date = get_current_datetime(tz)
    text_lower = text.lower().strip()
    if text_lower == 'today':
        return base_date.date().isoformat()

    dt = dateparser.parse(text, settings={
        "RELATIVE_BASE": base_date.replace(tzinfo=None),
        "PREFER_DATES_FROM": "future",
    })
    if dt:
        return dt.date().isoformat()
    return ""


def iso_duration_to_minutes(dur: Optional[str]) -> int:
    """'PT11H30M' -> 690. Missing components count as zero; garbage is zero."""
    if not dur:
        return 0
    m = _DURATION_RE.search(dur)
    if not m:
        return 0
    days, hours, minutes = (int(g) if g else 0 for g in m.groups())
    return days * 24 * 60 + hours * 60 + minutes


def format_duration_minutes(total_minutes: int) -> str:
    """
    Convert duration in minutes to a compact human string, e.g. 85 -> "1h 25m".
    """
    if total_minutes is None or total_minutes <= 0:
        return "N/A"
    h = total_minutes // 60
    m = total_minutes % 60
    if h and m:
        return f"{h}h {m}m"
    if h:
        return f"{h}h"
    return f"{m}m"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """ISO timestamp -> naive UTC-comparable datetime (accepts a trailing 'Z')."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def to_utc_iso(epoch_seconds: float) -> str:
    """Epoch seconds -> '2025-03-10T08:00:00.000Z'"""
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def relative_time(created_at: str, now: Optional[datetime] = None) -> str:
    """'just now', '5 minutes ago', '2 hours ago', '3 days ago'"""
    past = parse_timestamp(created_at)
    if past is None:
        return ""
    if now is None:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
    minutes = int((now - past).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'' if minutes == 1 else 's'} ago"
    if hours < 24:
        return f"{hours} hour{'' if hours == 1 else 's'} ago"
    return f"{days} day{'' if days == 1 else 's'} ago"
