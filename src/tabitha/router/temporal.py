"""Temporal phrase detection for time gating.

``detect_temporal`` finds the first time reference in an utterance and turns
it into a ``[since, until)`` window in epoch milliseconds. Day boundaries are
computed in the local timezone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from tabitha.timeutil import ms_to_iso

_NUMBER_WORDS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10, "few": 3, "couple": 2,
    "several": 3,
}

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_MONTH_RE = r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"

_AGO_RE = re.compile(
    r"\b(\d+|a|an|one|two|three|four|five|six|seven|eight|nine|ten|few|couple|several)"
    r"(?:\s+of)?\s+(minute|min|hour|hr|day|week)s?\s+ago\b"
)
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_MONTH_DAY_RE = re.compile(r"\b" + _MONTH_RE + r"\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b")
_DAY_MONTH_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?" + _MONTH_RE + r"\b")
_WEEKDAY_RE = re.compile(r"\b(last\s+|on\s+)?(" + "|".join(_WEEKDAYS) + r")\b")

_UNIT_MS = {
    "minute": 60_000,
    "min": 60_000,
    "hour": 3_600_000,
    "hr": 3_600_000,
    "day": 86_400_000,
    "week": 7 * 86_400_000,
}


@dataclass
class TemporalMatch:
    """A detected time reference and the window it implies."""

    phrase: str
    since_ms: int
    until_ms: int | None = None

    @property
    def reason(self) -> str:
        return f"user said '{self.phrase}'"

    @property
    def since_iso(self) -> str:
        return ms_to_iso(self.since_ms)

    @property
    def until_iso(self) -> str | None:
        return ms_to_iso(self.until_ms) if self.until_ms is not None else None


def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _day_window(phrase: str, day: datetime) -> TemporalMatch:
    start = _midnight(day)
    return TemporalMatch(phrase, _ms(start), _ms(start + timedelta(days=1)))


def _month_number(token: str) -> int:
    return _MONTHS[token[:3]]


def _dated(phrase: str, now: datetime, year: int, month: int, day: int) -> TemporalMatch | None:
    try:
        target = datetime(year, month, day)
    except ValueError:
        return None
    if target > now:
        try:
            target = target.replace(year=year - 1)
        except ValueError:
            return None
    return _day_window(phrase, target)


def detect_temporal(text: str, now_ms: int) -> TemporalMatch | None:
    """Return the first temporal reference in *text*, or None.

    Args:
        text: Raw or canonical utterance.
        now_ms: Current epoch milliseconds.
    """
    lower = (text or "").lower()
    if not lower:
        return None
    now = datetime.fromtimestamp(now_ms / 1000)
    today = _midnight(now)

    if re.search(r"\blast\s+night\b", lower):
        start = today - timedelta(days=1) + timedelta(hours=18)
        return TemporalMatch("last night", _ms(start), _ms(today + timedelta(hours=6)))
    if re.search(r"\byesterday\b", lower):
        return _day_window("yesterday", today - timedelta(days=1))
    if re.search(r"\bthis\s+morning\b", lower):
        return TemporalMatch("this morning", _ms(today), _ms(today + timedelta(hours=12)))
    if re.search(r"\b(earlier\s+)?today\b", lower):
        return TemporalMatch("today", _ms(today))

    match = _AGO_RE.search(lower)
    if match:
        count_token, unit = match.group(1), match.group(2)
        count = int(count_token) if count_token.isdigit() else _NUMBER_WORDS[count_token]
        if unit == "day":
            return _day_window(match.group(0), today - timedelta(days=count))
        span = _UNIT_MS[unit]
        return TemporalMatch(match.group(0), now_ms - (count + 1) * span)

    if re.search(r"\blast\s+week\b", lower):
        return TemporalMatch("last week", _ms(today - timedelta(days=7)))
    if re.search(r"\bthis\s+week\b", lower):
        return TemporalMatch("this week", _ms(today - timedelta(days=today.weekday())))
    if re.search(r"\blast\s+month\b", lower):
        return TemporalMatch("last month", _ms(today - timedelta(days=30)))
    if re.search(r"\bthis\s+month\b", lower):
        return TemporalMatch("this month", _ms(today.replace(day=1)))

    match = _ISO_DATE_RE.search(lower)
    if match:
        found = _dated(match.group(0), now, int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if found:
            return found
    match = _MONTH_DAY_RE.search(lower)
    if match:
        found = _dated(match.group(0), now, now.year, _month_number(match.group(1)), int(match.group(2)))
        if found:
            return found
    match = _DAY_MONTH_RE.search(lower)
    if match:
        found = _dated(match.group(0), now, now.year, _month_number(match.group(2)), int(match.group(1)))
        if found:
            return found

    match = _WEEKDAY_RE.search(lower)
    if match:
        wanted = _WEEKDAYS.index(match.group(2))
        back = (today.weekday() - wanted) % 7
        if back == 0 and match.group(1) and match.group(1).strip() == "last":
            back = 7
        return _day_window(match.group(0).strip(), today - timedelta(days=back))

    if re.search(r"\bearlier\b", lower):
        return TemporalMatch("earlier", _ms(today))
    if re.search(r"\brecent(ly)?\b", lower):
        return TemporalMatch("recently", _ms(today - timedelta(days=3)))
    return None


def has_temporal_reference(text: str, now_ms: int) -> bool:
    return detect_temporal(text, now_ms) is not None
