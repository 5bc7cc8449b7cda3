"""Error kinds shared across component boundaries.

Components never raise across their public edge; they return a result with
``ok=False`` and one of these kinds in ``error`` (or ``reason`` for pipeline
outcomes). The enum subclasses ``str`` so kinds serialise as plain strings.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    BAD_REQUEST = "bad_request"
    CARD_NOT_FOUND = "card_not_found"
    CARD_NOT_FOUND_OR_NO_URL = "card_not_found_or_no_url"
    NO_MATCHING_TABS = "no_matching_tabs"
    NO_CANDIDATES = "no_candidates"
    TOO_MANY_CANDIDATES = "too_many_candidates"
    INVALID_INTENT = "invalid_intent"
    PARSE_FAILED = "parse_failed"
    SEMANTIC_RERANK_TIMEOUT = "semantic_rerank_timeout"
    INTENT_PARSE_TIMEOUT = "intent_parse_timeout"
    OFFSCREEN_UNAVAILABLE = "offscreen_unavailable"
    UNDO_EXPIRED = "undo_expired"
    UNKNOWN_INTENT = "unknown_intent"
    ACTION_ALREADY_IN_FLIGHT = "action_already_in_flight"

    EMPTY_QUERY = "empty_query"
    EMPTY_TEXT = "empty_text"
    GROUP_NOT_FOUND = "group_not_found"
    GROUP_NOT_FOUND_OR_EMPTY = "group_not_found_or_empty"
    NO_TABS_FOUND = "no_tabs_found"
    NO_VALID_CARDS = "no_valid_cards"
    NO_OPEN_TABS_TO_GROUP = "no_open_tabs_to_group"
    NO_UNDO_AVAILABLE = "no_undo_available"
    MISSING_FILTERS_OR_TAB_IDS = "missing_filters_or_tab_ids"
    NO_RESPONSE = "no_response"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class BrowserError(RuntimeError):
    """Raised by a browser surface when a call cannot be completed.

    Typical causes are an unknown tab, window or group id. The Action
    Executor catches it and reports ``str(exc)`` in the result's ``error``.
    """
