"""Follow-up understanding: what did "the first one" or "yes" refer to?"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from tabitha.conversation.slots import SlotCandidate
from tabitha.lm.client import LanguageModel
from tabitha.lm.jsonparse import extract_json

LOGGER = logging.getLogger(__name__)

ACTIONS = ("select", "confirm", "specify", "cancel", "unclear")

# Follow-ups are short replies to "which one?". Longer utterances are new requests.
FOLLOW_UP_MAX_WORDS = 6

_ORDINALS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5}
_NUMBER_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5}
_PICK = r"(?:(?:open|pick|choose|select|take|use|close|save|go with|switch to)\s+)?"
_NOUN = r"(?:\s+(?:one|tab|option|link|result))?"
_SELECT_RE = re.compile(
    rf"^{_PICK}(?:(?:the|number|option|tab|no\.?|#)\s*)?"
    rf"(?:(?P<digit>\d{{1,2}})(?:st|nd|rd|th)?|(?P<ordinal>first|second|third|fourth|fifth)|(?P<word>one|two|three|four|five))"
    rf"{_NOUN}$"
)
_LAST_RE = re.compile(rf"^{_PICK}the last{_NOUN}$")
_AFFIRMATIVE_RE = re.compile(
    r"^(?:yes|yeah|yep|yup|ok|okay|sure|confirm|do it|go ahead)"
    r"(?:[\s,]+(?:yes|please|do it|go ahead|thanks|confirm|sure))*$"
)
_NEGATIVE_RE = re.compile(
    r"^(?:no|nope|cancel|nevermind|never mind|stop|don't|forget it)"
    r"(?:[\s,]+(?:thanks|thank you|please|never mind|cancel|forget it|don't))*$"
)
_DEICTIC_WORDS = frozenset({"one", "ones", "it", "that", "this", "those", "them", "these", "other"})
_FILLER_RE = re.compile(r"\b(the|one|tab|that|this|please|open|i mean|mean)\b")

_FOLLOWUP_PROMPT = """\
You are Tabitha. Parse the user's follow-up message and return ONLY a JSON object.

Previous query: "{previous_query}"
Previous response: "{previous_response}"
Available options (with cardIds):
{options}

User's new message: "{message}"

Return JSON:
{{"action": "select" | "confirm" | "specify" | "cancel", "cardId": "<cardId from options above>", "tabNumber": 1-{count}, "folderName": "<string if saving>", "confirmation": true|false}}

Use the cardId from the options above. "the first one" means option 1, "number 2" means option 2.

JSON only:"""


@dataclass
class FollowUp:
    action: str
    card_id: str | None = None
    tab_number: int | None = None
    confirmation: bool | None = None
    folder_name: str | None = None

    @property
    def ok(self) -> bool:
        return self.action != "unclear"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok, "action": self.action}
        if self.card_id is not None:
            out["cardId"] = self.card_id
        if self.tab_number is not None:
            out["tabNumber"] = self.tab_number
        if self.confirmation is not None:
            out["confirmation"] = self.confirmation
        if self.folder_name:
            out["folderName"] = self.folder_name
        return out


def _with_card(follow_up: FollowUp, candidates: list[SlotCandidate]) -> FollowUp:
    if follow_up.card_id is None and follow_up.tab_number is not None:
        if 1 <= follow_up.tab_number <= len(candidates):
            follow_up.card_id = candidates[follow_up.tab_number - 1].card_id
    return follow_up


def _normalize(message: str) -> str:
    return " ".join((message or "").lower().strip(" .!?").split())


def _ordinal(text: str, count: int) -> int | None:
    match = _SELECT_RE.match(text)
    if match:
        if match.group("digit"):
            return int(match.group("digit"))
        if match.group("ordinal"):
            return _ORDINALS[match.group("ordinal")]
        return _NUMBER_WORDS[match.group("word")]
    if _LAST_RE.match(text) and count:
        return count
    return None


def parse_follow_up(message: str, candidates: list[SlotCandidate]) -> FollowUp:
    """Deterministic classification into select / confirm / specify / cancel / unclear."""
    text = _normalize(message)
    if not text:
        return FollowUp("unclear")

    number = _ordinal(text, len(candidates))
    if number is not None and 1 <= number <= (len(candidates) or 5):
        return _with_card(FollowUp("select", tab_number=number), candidates)

    if _AFFIRMATIVE_RE.match(text):
        return FollowUp("confirm", confirmation=True)
    if _NEGATIVE_RE.match(text):
        return FollowUp("cancel", confirmation=False)

    core = " ".join(_FILLER_RE.sub(" ", text).split())
    for c in candidates:
        title = c.title.lower()
        domain = c.domain.lower()
        fields = [f for f in (title, domain) if f and f not in ("untitled", "unknown")]
        if any(f in text for f in fields) or (len(core) >= 3 and any(core in f for f in fields)):
            return _with_card(FollowUp("specify", tab_number=c.index), candidates)

    return FollowUp("unclear")


def looks_like_follow_up(message: str, candidates: list[SlotCandidate]) -> bool:
    """True when *message* reads as a reply to a pending "which one?".

    Short ordinal, yes/no or title-naming replies, and short utterances
    pointing back with words like "that" or "the other one".
    """
    text = _normalize(message)
    words = text.replace(",", " ").split()
    if not words or len(words) > FOLLOW_UP_MAX_WORDS:
        return False
    if parse_follow_up(text, candidates).ok:
        return True
    return any(w in _DEICTIC_WORDS for w in words)


def _from_model(parsed: dict[str, Any], candidates: list[SlotCandidate]) -> FollowUp | None:
    action = str(parsed.get("action") or "").lower()
    if action not in ACTIONS or action == "unclear":
        return None
    known = {c.card_id for c in candidates}
    card_id = parsed.get("cardId")
    card_id = card_id if isinstance(card_id, str) and card_id in known else None
    number = parsed.get("tabNumber")
    if isinstance(number, bool) or not isinstance(number, (int, float)):
        number = None
    elif not 1 <= int(number) <= len(candidates):
        number = None
    if action in ("select", "specify") and card_id is None and number is None:
        return None
    confirmation = parsed.get("confirmation")
    folder = parsed.get("folderName")
    return _with_card(
        FollowUp(
            action,
            card_id=card_id,
            tab_number=int(number) if number is not None else None,
            confirmation=confirmation if isinstance(confirmation, bool) else None,
            folder_name=str(folder) if folder else None,
        ),
        candidates,
    )


async def understand_follow_up(
    model: LanguageModel | None,
    previous_query: str,
    previous_response: str,
    candidates: list[SlotCandidate],
    message: str,
) -> FollowUp:
    """Ask the model first; fall back to :func:`parse_follow_up` on any doubt."""
    if model is not None and await model.available():
        options = "\n".join(
            f'{c.index}. cardId: {c.card_id}, title: "{c.title}", domain: {c.domain}' for c in candidates[:5]
        )
        response = await model.run(
            _FOLLOWUP_PROMPT.format(
                previous_query=previous_query,
                previous_response=previous_response,
                options=options,
                message=message,
                count=len(candidates) or 5,
            ),
            max_tokens=120,
        )
        if response.ok:
            parsed = extract_json(response.text)
            if isinstance(parsed, dict):
                follow_up = _from_model(parsed, candidates)
                if follow_up is not None:
                    return follow_up
            LOGGER.info("follow-up model output unusable; using regex parse")
    return parse_follow_up(message, candidates)
