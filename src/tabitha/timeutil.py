"""Millisecond-epoch helpers shared by the index, router and pipeline."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable

Clock = Callable[[], float]

MS_PER_DAY = 24 * 60 * 60 * 1000


def now_ms(clock: Clock = time.time) -> int:
    """Return the current time from *clock* (seconds) as integer milliseconds."""
    return round(clock() * 1000)


def ms_to_iso(ms: float) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_time_ms(value: Any) -> int | None:
    """Accept epoch milliseconds or an ISO date/datetime string; return ms or None.

    Naive ISO strings are read as UTC. Unparseable values yield None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return int(text)
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def format_age(ms: float) -> str:
    """Compact age label: today, 1d..6d, 1w..3w, 1mo..11mo, 1y+."""
    days = int(ms // MS_PER_DAY)
    weeks = days // 7
    months = days // 30
    if days <= 0:
        return "today"
    if days < 7:
        return f"{days}d"
    if weeks < 4:
        return f"{weeks}w"
    if months < 12:
        return f"{max(months, 1)}mo"
    return "1y+"
