"""Validation and normalization of model-produced intent JSON.

The model's output is never trusted: legacy field names are coerced, enums
validated, dates round-tripped to ISO strings, and time gating is re-derived
from the utterance itself.
"""

from __future__ import annotations

import re
from typing import Any

from tabitha.router.intent import OPERATIONS, SCOPES, Constraints, DateRange, Intent, IntentKind
from tabitha.router.temporal import detect_temporal
from tabitha.timeutil import ms_to_iso, parse_time_ms

_EMOJI_RE = re.compile(
    "[\U0001F300-\U0001FAFF\U00002600-\U000027BF\U0001F000-\U0001F2FF\uFE0F]+",
    re.UNICODE,
)
_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_SPACE_RE = re.compile(r"\s+")


def canonical_query(text: str | None) -> str:
    """Lowercase, strip emoji, turn punctuation into spaces, collapse whitespace."""
    lowered = (text or "").lower()
    lowered = _EMOJI_RE.sub("", lowered)
    lowered = _PUNCT_RE.sub(" ", lowered)
    return _SPACE_RE.sub(" ", lowered).strip()


def _as_list(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip().lower() for v in value if v and str(v).strip()]
    return [str(value).strip().lower()]


def _date_field(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return ms_to_iso(value)
    ms = parse_time_ms(value)
    return ms_to_iso(ms) if ms is not None else None


def _limit(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or None
    return None


def apply_time_gating(intent: Intent, text: str, now_ms: int) -> Intent:
    """Set ``resultMustBeOpen`` from whether *text* carries a time reference.

    A temporal utterance gets ``resultMustBeOpen = False``, a ``dateRange``
    (the model's if it gave one, otherwise the detected window) and a
    ``time_reason``. Everything else addresses live tabs only.
    """
    found = detect_temporal(text, now_ms) or detect_temporal(intent.canonical_query, now_ms)
    c = intent.constraints
    if found is None:
        c.result_must_be_open = True
        c.date_range = None
        intent.time_reason = None
        return intent
    c.result_must_be_open = False
    if c.date_range is None or c.date_range.since is None:
        c.date_range = DateRange(since=found.since_iso, until=found.until_iso)
    intent.time_reason = intent.time_reason or found.reason
    return intent


def uncertain_intent(text: str, now_ms: int) -> Intent:
    """``find_open`` over the whole utterance, asking for disambiguation."""
    intent = Intent(
        intent=IntentKind.FIND_OPEN,
        canonical_query=canonical_query(text),
        disambiguation_needed=True,
        notes="parse_uncertain",
    )
    return apply_time_gating(intent, text, now_ms)


def normalize_intent(parsed: Any, text: str, now_ms: int) -> Intent | None:
    """Turn the model's JSON object into an :class:`Intent`.

    Args:
        parsed: Decoded JSON from the model.
        text: The utterance the model was asked about.
        now_ms: Current epoch milliseconds.

    Returns:
        The normalized intent, or None when the object lacks a valid intent
        or any query field.
    """
    if not isinstance(parsed, dict):
        return None
    kind = IntentKind.parse(parsed.get("intent"))
    has_query = isinstance(parsed.get("canonical_query"), str) or isinstance(parsed.get("query"), str)
    if kind is None or not has_query:
        return None

    raw_c = parsed.get("constraints")
    raw_c = dict(raw_c) if isinstance(raw_c, dict) else {}

    include = raw_c.get("includeApps")
    if include is None and "app" in raw_c:
        include = raw_c.get("app")
    include_apps = _as_list(include)
    exclude_apps = _as_list(raw_c.get("excludeApps"))
    if not exclude_apps and raw_c.get("exclude"):
        exclude_apps = _as_list(raw_c.get("exclude"))

    scope = raw_c.get("scope")
    scope = scope if scope in SCOPES else None

    date_range = None
    raw_range = raw_c.get("dateRange")
    if isinstance(raw_range, dict):
        since = _date_field(raw_range.get("since"))
        until = _date_field(raw_range.get("until"))
        if since or until:
            date_range = DateRange(since=since, until=until)

    operation = parsed.get("operation")
    operation = operation if operation in OPERATIONS else None
    op_args = parsed.get("operation_args")

    query_text = parsed.get("canonical_query")
    if not isinstance(query_text, str):
        query_text = parsed.get("query")

    if "disambiguationOkay" in parsed:
        disambiguation = not bool(parsed.get("disambiguationOkay"))
    else:
        disambiguation = bool(parsed.get("disambiguationNeeded", False))

    hints = parsed.get("hints")
    group = raw_c.get("group")

    intent = Intent(
        intent=kind,
        canonical_query=canonical_query(query_text),
        constraints=Constraints(
            scope=scope,
            date_range=date_range,
            include_apps=include_apps,
            exclude_apps=exclude_apps,
            group=str(group).strip() if group else None,
            limit=_limit(raw_c.get("limit")),
        ),
        operation=operation,
        operation_args=op_args if isinstance(op_args, dict) else None,
        folder_name=parsed.get("folderName") or None,
        disambiguation_needed=disambiguation,
        hints=[h for h in hints if isinstance(h, dict)][:5] if isinstance(hints, list) else [],
        anaphora_of=parsed.get("anaphora_of") or None,
        time_reason=parsed.get("time_reason") or None,
        notes=parsed.get("notes") or None,
    )
    return apply_time_gating(intent, text, now_ms)
