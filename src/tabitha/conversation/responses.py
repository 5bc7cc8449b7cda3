"""User-visible text for every pipeline outcome.

Each generator asks the language model for a short message and falls back to
a fixed template when the model is unavailable, slow, or returns nothing.
Model output is capped per call: 150 characters for conversational and error
text, 100 for success, 200 for disambiguation lists.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from tabitha.lm.client import LanguageModel
from tabitha.pipeline.models import Candidate
from tabitha.timeutil import Clock

LOGGER = logging.getLogger(__name__)

RESPONSE_CACHE_TTL_S = 300.0
CONVERSATIONAL_CAP = 150
SUCCESS_CAP = 100
ERROR_CAP = 150
DISAMBIGUATION_CAP = 200

_CONVERSATIONAL_PROMPT = """\
You are Tabitha, a friendly tab assistant. Generate a short, natural response (at most 20 words).

User intent: {intent}
Query: "{query}"
Candidates found: {count}
Domain: {domain}

Context:
{context}

Examples:
- Found 1 match: "Found it! Opening {first_title}..."
- Found multiple: "I found {count} matching tabs. Which one would you like?"
- No matches: "I couldn't find any tabs matching "{query}". Should I search your history?"

Generate a friendly response:"""

_SUCCESS_PROMPT = """\
You are Tabitha. Generate a short, friendly success message (at most 15 words).

Action: {action}
Tab title: {title}
Count: {count}

Examples:
- Opened tab: "Opened {title}!"
- Closed tabs: "Closed {count} tabs."
- Found tab: "Jumped to {title}!"

Generate response:"""

_ERROR_PROMPT = """\
You are Tabitha. Generate a helpful error message with a suggestion (at most 20 words).

Intent: {intent}
Query: "{query}"
Reason: {reason}

Generate helpful response:"""

_DISAMBIGUATION_PROMPT = """\
You are Tabitha. Generate a disambiguation message (at most 25 words).

Intent: {intent}
Candidates: {count}
Domain: {domain}
{format_hint}

Candidates:
{listing}

Generate {format} response:"""


def _title(candidate: Candidate | None, default: str = "that tab") -> str:
    if candidate is None:
        return default
    return candidate.card.title or candidate.card.url or default


def _plural(count: int, word: str = "tab") -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def shared_domain(candidates: list[Candidate]) -> str | None:
    domains = {c.card.domain for c in candidates if c.card.domain}
    return domains.pop() if len(domains) == 1 and candidates else None


def disambiguation_prompt(candidates: list[Candidate]) -> str:
    """The chat header shown above a shortlist."""
    count = len(candidates)
    if count == 1:
        return f"I found 1 match — {_title(candidates[0], 'Untitled')}?"
    return f"You have {count} {shared_domain(candidates) or 'matching tabs'} open — which one?"


def conversational_template(candidates: list[Candidate], query: str) -> str:
    if not candidates:
        return f'I couldn\'t find any tabs matching "{query}". Should I search your history?'
    if len(candidates) == 1:
        return f"Found it! Opening {_title(candidates[0])}..."
    return f"I found {len(candidates)} matching tabs — which one would you like?"


def success_template(intent: str, result: dict[str, Any], candidate: Candidate | None = None) -> str:
    title = _title(candidate, "tab")
    count = int(result.get("count") or result.get("restored") or result.get("saved") or 1)
    group = result.get("groupTitle") or result.get("groupName") or "the group"
    if intent == "open":
        return f"Opened {title}!"
    if intent == "find_open":
        if result.get("action") == "propose_open":
            return f"{title} isn't open. Want me to open it?"
        return f"Jumped to {title}!"
    if intent == "close":
        return f"Closed {_plural(count)}."
    if intent == "save":
        if result.get("mode") == "group":
            return f"Grouped {_plural(count)} as {result.get('groupTitle')}."
        return f"Saved {_plural(count)} to {result.get('folderName') or 'bookmarks'}!"
    if intent in ("reopen", "undo"):
        return f"Restored {_plural(count)}!"
    if intent == "mute":
        return f"Muted {_plural(count)}."
    if intent == "unmute":
        return f"Unmuted {_plural(count)}."
    if intent == "pin":
        return f"Pinned {_plural(count)}."
    if intent == "unpin":
        return f"Unpinned {_plural(count)}."
    if intent == "reload":
        return f"Reloaded {_plural(count)}."
    if intent == "discard":
        return f"Put {_plural(count)} to sleep."
    if intent == "focus_group":
        return f"Switched to {group}."
    if intent == "close_group":
        return f"Closed {group} ({_plural(count)})."
    if intent == "save_group":
        return f"Saved {group} to bookmarks!"
    if intent == "move_group_to_window":
        return f"Moved {_plural(int(result.get('movedCount') or count))} to a new window."
    if intent == "rename_group":
        return f"Renamed the group to {result.get('newName')}."
    if intent == "collapse_group":
        return "Collapsed the group." if result.get("collapsed", True) else "Expanded the group."
    if intent == "ungroup":
        return f"Ungrouped {_plural(count)}."
    if intent == "ask":
        return str(result.get("answer") or "Done!")
    return "Done!"


def error_template(reason: str, query: str = "") -> str:
    """Error text with a suggestion for each known reason."""
    if reason in ("no_tabs", "no_tabs_found"):
        return "You don't have any tabs open right now."
    if reason in ("parse_failed", "invalid_intent", "unknown_intent"):
        return "Sorry, I didn't understand that. Could you rephrase?"
    if reason in ("no_matches", "no_candidates", "no_matching_tabs"):
        return f'I couldn\'t find any tabs matching "{query}". Should I search your history?'
    if reason in ("not_found", "card_not_found", "card_not_found_or_no_url"):
        return "Couldn't find a tab like that. Want me to open it?"
    if reason in ("ask_failed", "no_response"):
        return "I couldn't answer that question right now. Try asking something else."
    if reason == "unknown_error":
        return "Sorry, something went wrong. Could you try again?"
    if reason in ("empty_group", "group_not_found", "group_not_found_or_empty"):
        return f"Group '{query}' is empty." if reason == "empty_group" else f"I couldn't find a group called '{query}'."
    if reason in ("undo_expired", "no_undo_available"):
        return "Sorry, couldn't undo. The undo window may have expired."
    return f"Sorry, something went wrong: {reason}. Could you try again?"


def preview_template(result: dict[str, Any]) -> str:
    """Confirmation question for a close preview."""
    count = int(result.get("count") or 0)
    if result.get("reason") == "close_group":
        return f"Close the {result.get('groupTitle') or 'group'} group ({_plural(count)})? Say yes to confirm."
    if result.get("reason") == "pinned_tab" and count == 1:
        tabs = result.get("tabs") or [{}]
        return f"{tabs[0].get('title') or 'That tab'} is pinned. Close it anyway?"
    return f"Close {_plural(count)}? Say yes to confirm."


def disambiguation_template(candidates: list[Candidate], fmt: str = "chat") -> str:
    """Chat header, or a voice list: descriptive up to three, numbered from four."""
    if len(candidates) <= 1 or fmt != "voice":
        return disambiguation_prompt(candidates)
    if len(candidates) <= 3:
        lead = ("One is", "Another is", "The third is")
        return " ".join(f"{lead[i]} {_title(c, 'Untitled')}." for i, c in enumerate(candidates[:3]))
    return " ".join(f"Number {i}: {_title(c, 'Untitled')}." for i, c in enumerate(candidates[:5], start=1))


@dataclass
class _CachedText:
    text: str
    stored_at: float


class ResponseGenerator:
    """Model-written text with template fallbacks and a small response cache.

    Args:
        model: Language model, or ``None`` for templates only.
        cache_ttl_s: Lifetime of a cached conversational response.
        timeout_s: Budget per generation; past it the template is used.
        clock: Wall-clock seconds source.
    """

    def __init__(
        self,
        model: LanguageModel | None = None,
        *,
        cache_ttl_s: float = RESPONSE_CACHE_TTL_S,
        timeout_s: float = 10.0,
        clock: Clock = time.time,
    ) -> None:
        self._model = model
        self._cache_ttl_s = cache_ttl_s
        self._timeout_s = timeout_s
        self._clock = clock
        self._cache: dict[tuple[str, int, str], _CachedText] = {}

    def invalidate(self) -> None:
        self._cache.clear()

    async def _generate(self, prompt: str, cap: int) -> str | None:
        if self._model is None or not await self._model.available():
            return None
        response = await self._model.run(prompt, max_tokens=80, timeout_s=self._timeout_s)
        if not response.ok:
            LOGGER.debug("response generation fell back to template (%s)", response.error)
            return None
        return response.text.strip().strip('"')[:cap] or None

    async def conversational(
        self, intent: str, candidates: list[Candidate], query: str, context: str = ""
    ) -> str:
        """Cached by ``(intent, candidate count, top domain)``."""
        top_domain = candidates[0].card.domain if candidates else ""
        key = (intent, len(candidates), top_domain or "any")
        cached = self._cache.get(key)
        now = self._clock()
        if cached is not None and now - cached.stored_at <= self._cache_ttl_s:
            return cached.text

        text = await self._generate(
            _CONVERSATIONAL_PROMPT.format(
                intent=intent,
                query=query,
                count=len(candidates),
                domain=top_domain or "various",
                context=context or "No previous conversation",
                first_title=_title(candidates[0] if candidates else None),
            ),
            CONVERSATIONAL_CAP,
        )
        if text is None:
            return conversational_template(candidates, query)
        self._cache[key] = _CachedText(text, now)
        return text

    async def success(
        self, intent: str, result: dict[str, Any], candidate: Candidate | None = None
    ) -> str:
        if intent == "ask":
            return success_template(intent, result, candidate)
        count = result.get("count") or result.get("restored") or 1
        text = await self._generate(
            _SUCCESS_PROMPT.format(action=intent, title=_title(candidate, "tab"), count=count),
            SUCCESS_CAP,
        )
        return text or success_template(intent, result, candidate)

    async def error(self, intent: str, query: str, reason: str) -> str:
        text = await self._generate(
            _ERROR_PROMPT.format(intent=intent, query=query, reason=reason), ERROR_CAP
        )
        return text or error_template(reason, query)

    async def disambiguation_list(self, intent: str, candidates: list[Candidate], fmt: str = "chat") -> str:
        listing = "\n".join(
            f"{i}. {_title(c, 'Untitled')} ({c.card.domain or 'unknown'})"
            for i, c in enumerate(candidates[:5], start=1)
        )
        hint = (
            "Format for speech: numbered list for 4+ items, descriptive for 2-3 items."
            if fmt == "voice"
            else "Format for chat: short, clear question asking which one."
        )
        text = await self._generate(
            _DISAMBIGUATION_PROMPT.format(
                intent=intent,
                count=len(candidates),
                domain=shared_domain(candidates) or "various",
                format_hint=hint,
                listing=listing,
                format=fmt,
            ),
            DISAMBIGUATION_CAP,
        )
        return text or disambiguation_template(candidates, fmt)
