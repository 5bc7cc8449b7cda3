"""Prompt templates for intent routing and query preprocessing."""

from __future__ import annotations

from typing import Any

ROUTER_SYSTEM = "You are Tabitha, a smart browser assistant. Parse user queries into structured actions."

_ROUTER_RULES = """\
## Intent Selection Rules
ACTION REQUESTS (use action intents):
- "Can you open...", "Please open...", "Open...", "Jump to...", "Switch to..." -> "open"
- "Close...", "Remove...", "Delete..." -> "close"
- "Save...", "Bookmark..." -> "save"
QUESTIONS (use "ask"):
- "What...", "How...", "When...", "Where...", "Which..." -> "ask"
"Can you open X" is an action request: use "open", not "ask".

## Intents (enum)
open | find_open | close | reopen | save | list | ask | mute | unmute | pin | unpin | reload | discard

- open: activate/open a tab (open tabs only unless a time is mentioned)
- find_open: locate open tabs without switching yet
- close: close matching tabs (open tabs only)
- reopen: restore recently closed tabs
- save: bookmark tabs, optionally into a named folder or group
- list: list tabs with summaries; also used for group operations
- ask: answer questions about browsing activity
- mute / unmute / pin / unpin / reload / discard: bulk tab state changes; honour excludeApps

## Output schema
{
  "intent": "<intent>",
  "canonical_query": "<normalized text>",
  "constraints": {
    "scope": "tab|group|null",
    "resultMustBeOpen": true|false,
    "dateRange": {"since": "YYYY-MM-DD"|null, "until": "YYYY-MM-DD"|null} | null,
    "includeApps": ["domain"],
    "excludeApps": ["domain"],
    "group": "<group name>|null",
    "limit": 1|3|5|10|null
  },
  "operation": "move_to_window|rename|collapse|expand|null",
  "operation_args": {"rename_to": "<name>", "collapse": true|false} | null,
  "folderName": "<bookmark folder>|null",
  "disambiguationNeeded": true|false,
  "hints": [{"title": "<short>", "domain": "<base-domain>"}],
  "anaphora_of": "<previous query id>|null",
  "time_reason": "<why history allowed>|null",
  "notes": "<brief rationale>"
}

## Time gating
- resultMustBeOpen = true by default.
- Set it to false only if the user mentions a time (yesterday, last night, 2 days ago,
  last week, a date). Then fill dateRange.since with an ISO date and set time_reason.

## App mapping
"gmail" -> ["mail.google.com","gmail.com"], "calendar" -> ["calendar.google.com"],
"docs" -> ["docs.google.com"], "zoom" -> ["zoom.us"], "meet" -> ["meet.google.com"],
"youtube" -> ["youtube.com","music.youtube.com"], "drive" -> ["drive.google.com"],
"notion" -> ["notion.so"], "substack" -> ["substack.com"], "github" -> ["github.com"].

## Group operations
Use intent "list" with scope "group" and set operation (move_to_window, rename,
collapse, expand) plus operation_args.

EXAMPLES:
Input: "close all youtube tabs"
Output: {"intent":"close","canonical_query":"youtube","constraints":{"scope":null,"resultMustBeOpen":true,"dateRange":null,"includeApps":["youtube.com","music.youtube.com"],"excludeApps":[],"group":null,"limit":null},"operation":null,"operation_args":null,"folderName":null,"disambiguationNeeded":true,"hints":[],"anaphora_of":null,"time_reason":null,"notes":"bulk close"}

Input: "mute all except zoom"
Output: {"intent":"mute","canonical_query":"","constraints":{"scope":null,"resultMustBeOpen":true,"dateRange":null,"includeApps":[],"excludeApps":["zoom.us"],"group":null,"limit":null},"operation":null,"operation_args":null,"folderName":null,"disambiguationNeeded":false,"hints":[],"anaphora_of":null,"time_reason":null,"notes":"exclude zoom"}

Input: "what google doc was i working on yesterday?"
Output: {"intent":"ask","canonical_query":"google doc worked yesterday","constraints":{"scope":null,"resultMustBeOpen":false,"dateRange":{"since":"2025-01-14","until":null},"includeApps":["docs.google.com"],"excludeApps":[],"group":null,"limit":null},"operation":null,"operation_args":null,"folderName":null,"disambiguationNeeded":false,"hints":[],"anaphora_of":null,"time_reason":"user said 'yesterday'","notes":"history allowed"}

Input: "rename 'Misc' group to 'Parking Lot' and collapse it"
Output: {"intent":"list","canonical_query":"misc","constraints":{"scope":"group","resultMustBeOpen":true,"dateRange":null,"includeApps":[],"excludeApps":[],"group":"misc","limit":null},"operation":"rename","operation_args":{"rename_to":"parking lot","collapse":true},"folderName":null,"disambiguationNeeded":false,"hints":[],"anaphora_of":null,"time_reason":null,"notes":"group rename"}

Input: "open the cover letter doc"
Output: {"intent":"open","canonical_query":"cover letter doc","constraints":{"scope":null,"resultMustBeOpen":true,"dateRange":null,"includeApps":["docs.google.com"],"excludeApps":[],"group":null,"limit":null},"operation":null,"operation_args":null,"folderName":null,"disambiguationNeeded":false,"hints":[],"anaphora_of":null,"time_reason":null,"notes":"specific document"}
"""


def build_router_prompt(
    text: str,
    *,
    conversation: str = "",
    candidates: list[dict[str, Any]] | None = None,
    cleaned: str | None = None,
) -> str:
    """Assemble the routing prompt for *text*.

    Args:
        text: Raw utterance.
        conversation: Formatted recent turns, possibly empty.
        candidates: Last disambiguation candidates, included for anaphora.
        cleaned: Preprocessed (translated/proofread) utterance, when it differs.
    """
    parts = [ROUTER_SYSTEM, ""]
    if conversation:
        parts += ["Previous conversation:", conversation, ""]
    if candidates:
        parts.append("Previous candidates:")
        for i, c in enumerate(candidates, start=1):
            parts.append(f'{i}. cardId: {c.get("cardId")}, title: "{c.get("title", "")}", domain: {c.get("domain", "")}')
        parts.append("")
    if cleaned and cleaned != text:
        parts += [f'User input (raw): "{text}"', f'User input (cleaned): "{cleaned}"', ""]
    parts.append(_ROUTER_RULES)
    parts.append(f'User text: "{cleaned or text}"')
    parts.append("")
    parts.append("JSON:")
    return "\n".join(parts)


PREPROCESS_PROMPT = """\
Detect the language of the user's request to a browser-tab assistant. If it is
not English, translate it to English. Then fix spelling and grammar without
changing its meaning. Keep product and site names as written.

Respond with JSON only: {{"language": "<iso code>", "text": "<english request>"}}

Request: "{text}"
"""
