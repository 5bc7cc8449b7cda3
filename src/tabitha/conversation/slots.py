"""Disambiguation slots: the last shortlist offered to each session."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from tabitha.pipeline.models import Candidate
from tabitha.router.intent import Intent
from tabitha.timeutil import Clock

LOGGER = logging.getLogger(__name__)

SLOT_TTL_S = 300.0


@dataclass
class SlotCandidate:
    card_id: str
    title: str
    domain: str
    index: int  # 1-based position in the list shown to the user

    def to_dict(self) -> dict[str, Any]:
        return {"cardId": self.card_id, "title": self.title, "domain": self.domain, "index": self.index}

    @classmethod
    def from_any(cls, item: Any, index: int) -> SlotCandidate:
        """Accept a :class:`Candidate`, a ``{card: {...}}`` dict or a flat card dict."""
        if isinstance(item, Candidate):
            card = item.card
            return cls(card.card_id, card.title or "Untitled", card.domain or "unknown", index)
        data = item.get("card") if isinstance(item.get("card"), dict) else item
        return cls(
            card_id=str(data.get("cardId") or ""),
            title=str(data.get("title") or "Untitled"),
            domain=str(data.get("domain") or "unknown"),
            index=index,
        )


@dataclass
class DisambiguationSlot:
    candidates: list[SlotCandidate]
    intent: Intent | None
    timestamp: float
    query: str = ""
    prompt: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def card_id_at(self, number: int) -> str | None:
        if 1 <= number <= len(self.candidates):
            return self.candidates[number - 1].card_id
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidates": [c.to_dict() for c in self.candidates],
            "intent": self.intent.to_dict() if self.intent else None,
            "timestamp": int(self.timestamp * 1000),
            "query": self.query,
        }


class SlotStore:
    """One slot per session, overwritten by the next disambiguation.

    A slot older than ``ttl_s`` is dropped on read and reported as absent.
    """

    def __init__(self, ttl_s: float = SLOT_TTL_S, *, clock: Clock = time.time) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._slots: dict[str, DisambiguationSlot] = {}

    def store(
        self,
        session_id: str,
        candidates: list[Any],
        intent: Intent | None,
        *,
        query: str = "",
        prompt: str = "",
    ) -> DisambiguationSlot:
        slot = DisambiguationSlot(
            candidates=[SlotCandidate.from_any(c, i) for i, c in enumerate(candidates, start=1)],
            intent=intent,
            timestamp=self._clock(),
            query=query,
            prompt=prompt,
        )
        self._slots[session_id] = slot
        LOGGER.debug("stored %d disambiguation candidates for %s", len(slot.candidates), session_id)
        return slot

    def get(self, session_id: str) -> DisambiguationSlot | None:
        slot = self._slots.get(session_id)
        if slot is None:
            return None
        if self._clock() - slot.timestamp > self._ttl_s:
            del self._slots[session_id]
            LOGGER.debug("disambiguation slot for %s expired", session_id)
            return None
        return slot

    def clear(self, session_id: str) -> None:
        self._slots.pop(session_id, None)
