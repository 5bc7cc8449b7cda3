"""Conversation Manager: history, disambiguation slots, follow-ups and responses."""

from __future__ import annotations

import time
from typing import Any

from tabitha.config import ConversationCfg
from tabitha.conversation.followup import FollowUp, understand_follow_up
from tabitha.conversation.history import ConversationHistory
from tabitha.conversation.responses import ResponseGenerator
from tabitha.conversation.slots import DisambiguationSlot, SlotStore
from tabitha.lm.client import LanguageModel
from tabitha.router.intent import Intent
from tabitha.timeutil import Clock


class ConversationManager:
    """Owns all short-term conversational state for every session.

    Args:
        model: Language model for follow-ups and responses (optional).
        config: ``conversation`` config section.
        clock: Wall-clock seconds source shared by history, slots and cache.
    """

    def __init__(
        self,
        model: LanguageModel | None = None,
        config: ConversationCfg | None = None,
        *,
        clock: Clock = time.time,
    ) -> None:
        cfg = config or ConversationCfg()
        self._model = model
        self.history = ConversationHistory(cfg.history_cap, context_ttl_s=cfg.context_ttl_s, clock=clock)
        self.slots = SlotStore(cfg.slot_ttl_s, clock=clock)
        self.responses = ResponseGenerator(model, cache_ttl_s=cfg.response_cache_ttl_s, clock=clock)

    # History

    def add_user(self, session_id: str, content: str) -> None:
        self.history.add(session_id, "user", content)

    def add_assistant(self, session_id: str, content: str, results: list[Any] | None = None) -> None:
        self.history.add(session_id, "assistant", content, results)

    def add_action_result(
        self, session_id: str, intent: str, result: dict[str, Any], candidates: list[Any] | None = None
    ) -> bool:
        return self.history.add_action_result(session_id, intent, result, candidates)

    def context(self, session_id: str) -> str:
        return self.history.format_for_prompt(session_id)

    # Disambiguation slot

    def store_candidates(
        self, session_id: str, candidates: list[Any], intent: Intent | None, *, query: str = "", prompt: str = ""
    ) -> DisambiguationSlot:
        return self.slots.store(session_id, candidates, intent, query=query, prompt=prompt)

    def last_candidates(self, session_id: str) -> DisambiguationSlot | None:
        return self.slots.get(session_id)

    def clear_candidates(self, session_id: str) -> None:
        self.slots.clear(session_id)

    # Follow-ups

    async def understand_follow_up(self, session_id: str, message: str) -> FollowUp | None:
        """Classify *message* against the live slot; None when there is no slot."""
        slot = self.slots.get(session_id)
        if slot is None:
            return None
        previous_query = slot.query
        if not previous_query:
            last_user = self.history.last(session_id, "user")
            previous_query = last_user.content if last_user else ""
        last_reply = self.history.last(session_id, "assistant")
        previous_response = slot.prompt or (last_reply.content if last_reply else "")
        return await understand_follow_up(
            self._model, previous_query, previous_response, slot.candidates, message
        )
