"""Deterministic intent parsing used when the language model is unavailable.

Leading-word regexes pick the intent; an app table maps product names to
domains; ``except``/``but not`` clauses become ``excludeApps``.
"""

from __future__ import annotations

import re
from typing import Any

from tabitha.router.intent import Constraints, Intent, IntentKind
from tabitha.router.normalize import apply_time_gating, canonical_query

FALLBACK_MESSAGE = "I'll show likely matches while AI warms up."

_POLITE_RE = re.compile(
    r"^(?:(?:can|could|would|will)\s+you\s+|please\s+|i\s+(?:want|need|would\s+like)\s+to\s+|hey\s+tabitha,?\s+)+"
)

# Checked in order; first match wins.
_LEADING_INTENTS: list[tuple[re.Pattern[str], IntentKind]] = [
    (re.compile(r"^(?:what|how|when|where|which|tell me)\b"), IntentKind.ASK),
    (re.compile(r"^(?:open|go to|jump to|switch to|take me to|navigate to|launch|activate)\b"), IntentKind.OPEN),
    (re.compile(r"^(?:reopen|restore|bring back)\b"), IntentKind.REOPEN),
    (re.compile(r"^(?:close|remove|delete|get rid of|dismiss)\b"), IntentKind.CLOSE),
    (re.compile(r"^(?:find|locate|where)\b"), IntentKind.FIND_OPEN),
    (re.compile(r"^(?:save|bookmark)\b"), IntentKind.SAVE),
    (re.compile(r"^(?:list|show|display)\b"), IntentKind.LIST),
    (re.compile(r"^unmute\b"), IntentKind.UNMUTE),
    (re.compile(r"^(?:mute|silence)\b"), IntentKind.MUTE),
    (re.compile(r"^unpin\b"), IntentKind.UNPIN),
    (re.compile(r"^pin\b"), IntentKind.PIN),
    (re.compile(r"^(?:reload|refresh)\b"), IntentKind.RELOAD),
    (re.compile(r"^(?:discard|sleep|suspend|snooze)\b"), IntentKind.DISCARD),
]

_GROUP_OPERATIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^rename\b"), "rename"),
    (re.compile(r"^move\b.*\bwindow\b"), "move_to_window"),
    (re.compile(r"^collapse\b"), "collapse"),
    (re.compile(r"^expand\b"), "expand"),
]

_ACTION_WORDS_RE = re.compile(
    r"\b(?:open|close|find|locate|show|list|display|save|bookmark|go to|jump to|switch to|"
    r"take me to|navigate to|reopen|restore|bring back|mute|unmute|pin|unpin|reload|refresh|"
    r"discard|remove|delete)\b"
)
_FILLER_RE = re.compile(r"\b(?:my|the|all|every|of|tabs?|for me|please)\b")
_LIMIT_RE = re.compile(r"\b(?:top|first|these|those)\s+(\d+|one|two|three|four|five|ten)\b")
_LIMIT_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "ten": 10}
_EXCEPT_RE = re.compile(r"\b(?:except(?:\s+for)?|but\s+not|other\s+than|besides)\s+(.+)$")
_GROUP_WORD_RE = re.compile(r"^(.*?)\bgroup\b")
_RENAME_TO_RE = re.compile(r"\bgroup\s+(?:to|as)\s+['\"]?(.+?)['\"]?(\s+and\s+collapse(?:\s+it)?)?$")
_FOLDER_RE = re.compile(
    r"\b(?:as|into|to|in)\s+(?:a\s+|the\s+)?['\"]?([\w][\w\s-]*?)['\"]?(?:\s+folder)?$"
)

_GROUP_STOP = frozenset(
    """
    the my a an to in into from on focus switch go jump open close save collapse
    expand rename move ungroup show list tab tabs find
    """.split()
)

APP_DOMAINS: list[tuple[re.Pattern[str], list[str]]] = [
    (re.compile(r"\b(?:gmail|mail|email|inbox)\b"), ["mail.google.com", "gmail.com"]),
    (re.compile(r"\bcalendar\b"), ["calendar.google.com"]),
    (re.compile(r"\b(?:docs?|documents?)\b"), ["docs.google.com"]),
    (re.compile(r"\b(?:sheets?|spreadsheets?)\b"), ["docs.google.com"]),
    (re.compile(r"\b(?:slides?|presentations?)\b"), ["docs.google.com"]),
    (re.compile(r"\bdrive\b"), ["drive.google.com"]),
    (re.compile(r"\bzoom\b"), ["zoom.us"]),
    (re.compile(r"\bmeet\b"), ["meet.google.com"]),
    (re.compile(r"\byoutube\b"), ["youtube.com", "music.youtube.com"]),
    (re.compile(r"\bnotion\b"), ["notion.so"]),
    (re.compile(r"\bsubstack\b"), ["substack.com"]),
    (re.compile(r"\b(?:github|git)\b"), ["github.com"]),
    (re.compile(r"\bslack\b"), ["slack.com"]),
    (re.compile(r"\bfigma\b"), ["figma.com"]),
    (re.compile(r"\blinear\b"), ["linear.app"]),
    (re.compile(r"\bjira\b"), ["atlassian.net"]),
]


def strip_politeness(text: str) -> str:
    return _POLITE_RE.sub("", text.strip().lower()).strip()


def leading_intent(text: str) -> IntentKind:
    """Intent from the utterance's leading words; ``find_open`` when none match."""
    lowered = strip_politeness(text)
    for pattern, kind in _LEADING_INTENTS:
        if pattern.search(lowered):
            return kind
    return IntentKind.FIND_OPEN


def apps_in(text: str) -> list[str]:
    """Domains for every product name mentioned in *text*, de-duplicated in order."""
    out: list[str] = []
    lowered = text.lower()
    for pattern, domains in APP_DOMAINS:
        if pattern.search(lowered):
            out.extend(d for d in domains if d not in out)
    return out


def _exclusions(clause: str) -> list[str]:
    apps = apps_in(clause)
    if apps:
        return apps
    return [w for w in canonical_query(clause).split() if w not in ("and", "or", "the", "tabs", "tab")]


def _group_name(body: str) -> str | None:
    match = _GROUP_WORD_RE.search(body)
    if not match:
        return None
    kept: list[str] = []
    for word in reversed(canonical_query(match.group(1)).split()):
        if word in _GROUP_STOP:
            break
        kept.append(word)
    return " ".join(reversed(kept)) or None


def _group_operation(body: str) -> tuple[str | None, dict[str, Any] | None]:
    for pattern, operation in _GROUP_OPERATIONS:
        if not pattern.search(body):
            continue
        if operation != "rename":
            return operation, None
        match = _RENAME_TO_RE.search(body)
        if not match:
            return None, None
        return operation, {"rename_to": match.group(1).strip(), "collapse": bool(match.group(2))}
    return None, None


def fallback_intent(text: str, now_ms: int) -> Intent:
    """Parse *text* with regexes only."""
    lowered = strip_politeness(text)
    kind = leading_intent(lowered)

    exclude_apps: list[str] = []
    body = lowered
    match = _EXCEPT_RE.search(body)
    if match:
        exclude_apps = _exclusions(match.group(1))
        body = body[: match.start()]

    group = None if kind is IntentKind.ASK else _group_name(body)
    operation, operation_args = _group_operation(body) if group else (None, None)
    if operation:
        kind = IntentKind.LIST

    folder_name = None
    if kind is IntentKind.SAVE:
        match = _FOLDER_RE.search(body)
        if match:
            folder_name = match.group(1).strip()
            body = body[: match.start()]

    limit = None
    match = _LIMIT_RE.search(body)
    if match:
        token = match.group(1)
        limit = int(token) if token.isdigit() else _LIMIT_WORDS[token]

    if group:
        query = group
    elif kind is IntentKind.ASK:
        query = canonical_query(body)
    else:
        stripped = _LIMIT_RE.sub(" ", _ACTION_WORDS_RE.sub(" ", body))
        query = canonical_query(_FILLER_RE.sub(" ", stripped))
    if not query and not exclude_apps and limit is None:
        query = canonical_query(lowered)

    intent = Intent(
        intent=kind,
        canonical_query=query,
        constraints=Constraints(
            scope="group" if group else None,
            include_apps=[] if group else apps_in(body),
            exclude_apps=exclude_apps,
            group=group,
            limit=limit,
        ),
        operation=operation,
        operation_args=operation_args,
        folder_name=folder_name,
        notes="fallback parsing",
    )
    return apply_time_gating(intent, text, now_ms)
