"""Utterance orchestration: one chat message in, one reply out.

The data flow for a fresh utterance:

    user text ─┬─ IntentRouter.parse_intent ─┐
               └─ TabIndex.lexical_search ───┴─> CandidatePipeline ─> ActionExecutor
                                                        │
                                         disambiguation slot <┘ (≥ 2 candidates)

When a disambiguation slot is live, the message is first offered to the
follow-up parser ("the first one", "yes", "cancel"); only an ``unclear``
follow-up falls through to the full flow.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from tabitha.actions.executor import ActionExecutor, ActionRequest
from tabitha.actions.inflight import InFlightGuard
from tabitha.actions.results import ActionResult
from tabitha.conversation.followup import FollowUp, looks_like_follow_up
from tabitha.conversation.manager import ConversationManager
from tabitha.conversation.responses import disambiguation_prompt, preview_template
from tabitha.conversation.slots import DisambiguationSlot
from tabitha.db.models import Card
from tabitha.errors import BrowserError, ErrorKind
from tabitha.index.scoring import score_card
from tabitha.index.tab_index import LexicalSearchResult, ScoredCard, TabIndex
from tabitha.index.tokenizer import unigrams
from tabitha.pipeline.candidates import CandidatePipeline
from tabitha.pipeline.filters import card_passes
from tabitha.pipeline.models import Candidate
from tabitha.router.intent import NAVIGATION_INTENTS, TOGGLE_INTENTS, Intent, IntentKind
from tabitha.router.parser import IntentRouter
from tabitha.timeutil import Clock, now_ms

LOGGER = logging.getLogger(__name__)

THINKING_HINT = "Still thinking..."
CANCELLED_TEXT = "Okay, never mind."
BROWSER_FAILED_TEXT = "Sorry, the browser couldn't do that."


class UtteranceCancelled(Exception):
    """Raised at a suspension point once the utterance was cancelled."""


@dataclass
class Reply:
    """What the chat surface shows for one utterance."""

    ok: bool
    text: str
    kind: str = "action"
    intent: Intent | None = None
    candidates: list[Candidate] = field(default_factory=list)
    result: dict[str, Any] | None = None
    error: str | None = None
    fallback: bool = False
    request_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok, "text": self.text, "kind": self.kind}
        if self.intent is not None:
            out["intent"] = self.intent.to_dict()
        if self.candidates:
            out["candidates"] = [c.to_dict() for c in self.candidates]
        if self.result is not None:
            out["result"] = self.result
        if self.error:
            out["error"] = self.error
        if self.fallback:
            out["fallback"] = True
        if self.request_id:
            out["requestId"] = self.request_id
        return out


def _scored(cards: list[Card], query: str, now: int, group: str | None = None) -> list[ScoredCard]:
    """Score cards that did not come from the index (closed tabs, history)."""
    q = (query or "").strip().lower()
    words = unigrams(q)
    out = []
    for card in cards:
        haystack = (card.domain.lower(), card.title.lower(), card.url.lower())
        matched = sum(1 for w in words if any(w in h for h in haystack))
        if words and matched == 0:
            continue
        out.append(ScoredCard(card, score_card(card, q, words, matched, now, group=group)))
    out.sort(key=lambda s: (s.score, s.card.last_visited_at), reverse=True)
    return out


class Assistant:
    """Run the whole query-to-action flow for chat utterances.

    Args:
        index: Tab Index, booted lazily on the first utterance.
        router: Intent Router.
        pipeline: Candidate Pipeline.
        executor: Action Executor.
        conversation: Conversation Manager.
        in_flight: Guard against re-entry for the same request id.
        thinking_hint_s: Delay before ``on_thinking`` fires.
        lexical_limit: Result cap for each lexical search.
        clock: Wall-clock seconds source.
    """

    def __init__(
        self,
        index: TabIndex,
        router: IntentRouter,
        pipeline: CandidatePipeline,
        executor: ActionExecutor,
        conversation: ConversationManager,
        *,
        in_flight: InFlightGuard | None = None,
        thinking_hint_s: float = 1.5,
        lexical_limit: int = 20,
        clock: Clock = time.time,
    ) -> None:
        self._index = index
        self._router = router
        self._pipeline = pipeline
        self._executor = executor
        self._conversation = conversation
        self._in_flight = in_flight or InFlightGuard()
        self._thinking_hint_s = thinking_hint_s
        self._lexical_limit = lexical_limit
        self._clock = clock
        self._cancelled: set[str] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self, request_id: str) -> bool:
        """Mark *request_id* cancelled. False when it is not in flight."""
        if not self._in_flight.is_in_flight(request_id):
            return False
        self._cancelled.add(request_id)
        LOGGER.info("utterance %s cancelled", request_id)
        return True

    async def handle_utterance(
        self,
        text: str,
        session_id: str = "default",
        request_id: str | None = None,
        *,
        voice: bool = False,
        on_thinking: Callable[[str], Any] | None = None,
    ) -> Reply:
        """Answer one chat message.

        Args:
            text: What the user typed or said.
            session_id: Conversation to read and extend.
            request_id: Caller-chosen id; a random one is generated if omitted.
            voice: Format disambiguation lists for speech.
            on_thinking: Called once with a hint if the reply takes longer
                than ``thinking_hint_s``.
        """
        rid = request_id or uuid.uuid4().hex
        if not (text or "").strip():
            return Reply(ok=False, text="", kind="error", error=ErrorKind.EMPTY_TEXT.value, request_id=rid)
        if not self._in_flight.mark_started(rid, "utterance"):
            return Reply(
                ok=False, text="", kind="error", error=ErrorKind.ACTION_ALREADY_IN_FLIGHT.value, request_id=rid
            )

        hint = None
        if on_thinking is not None:
            hint = asyncio.get_running_loop().call_later(self._thinking_hint_s, on_thinking, THINKING_HINT)
        try:
            reply = await self._run(text.strip(), session_id, rid, voice)
        except UtteranceCancelled:
            reply = Reply(ok=False, text=CANCELLED_TEXT, kind="cancelled", error=ErrorKind.CANCELLED.value)
        except BrowserError as exc:
            LOGGER.warning("utterance %s failed in the browser: %s", rid, exc)
            reply = Reply(ok=False, text=BROWSER_FAILED_TEXT, kind="error", error=str(exc))
        finally:
            if hint is not None:
                hint.cancel()
            self._in_flight.mark_completed(rid)
            self._cancelled.discard(rid)
        reply.request_id = rid
        return reply

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    def _checkpoint(self, rid: str) -> None:
        if rid in self._cancelled:
            raise UtteranceCancelled(rid)

    async def _search(self, query: str) -> LexicalSearchResult:
        await self._index.refresh_open_tabs()
        return self._index.lexical_search(query, self._lexical_limit)

    async def _run(self, text: str, session: str, rid: str, voice: bool) -> Reply:
        if not self._index.booted:
            await self._index.init(start_timer=False)
            self._checkpoint(rid)
        self._conversation.add_user(session, text)

        slot = self._conversation.last_candidates(session)
        if slot is not None and looks_like_follow_up(text, slot.candidates):
            follow_up = await self._conversation.understand_follow_up(session, text)
            self._checkpoint(rid)
            if follow_up is not None and follow_up.ok:
                reply = await self._follow_up(slot, follow_up, session, rid)
                return self._record(session, reply)
            LOGGER.debug("follow-up unclear; treating %r as a new utterance", text)

        parsed, search = await asyncio.gather(self._router.parse_intent(text, session), self._search(text))
        self._checkpoint(rid)
        if slot is not None:
            # the parser has read the slot for anaphora; a new request supersedes it
            self._conversation.clear_candidates(session)
        intent = parsed.intent
        if intent is None:
            error = parsed.error or ErrorKind.PARSE_FAILED.value
            message = await self._conversation.responses.error("unknown", text, error)
            return self._record(session, Reply(ok=False, text=message, kind="error", error=error))

        query = intent.canonical_query or text
        if query.lower() != text.lower():
            canonical = self._index.lexical_search(query, self._lexical_limit)
            if canonical.ok and canonical.results:
                search = canonical
        lexical = search.results if search.ok else []

        reply = await self._dispatch(intent, query, text, lexical, session, rid, voice)
        self._checkpoint(rid)
        reply.intent = intent
        reply.fallback = parsed.fallback
        return self._record(session, reply)

    async def _dispatch(
        self,
        intent: Intent,
        query: str,
        text: str,
        lexical: list[ScoredCard],
        session: str,
        rid: str,
        voice: bool,
    ) -> Reply:
        kind = intent.intent
        constraints = intent.constraints
        has_apps = bool(constraints.include_apps or constraints.exclude_apps)

        if kind is IntentKind.ASK:
            request = ActionRequest(
                intent, query=text, conversation=self._conversation.context(session), request_id=rid
            )
            return await self._act(request, session, kind="answer")

        if constraints.scope == "group" and constraints.group and kind not in TOGGLE_INTENTS:
            return await self._act(ActionRequest(intent, request_id=rid), session)

        if kind in TOGGLE_INTENTS:
            if has_apps or not intent.canonical_query:
                return await self._act(ActionRequest(intent, request_id=rid), session)
            cards = self._matching(intent, lexical)
            if not cards:
                return await self._failure(intent, query, ErrorKind.NO_MATCHING_TABS.value)
            return await self._act(ActionRequest(intent, card_ids=[c.card_id for c in cards], request_id=rid), session)

        if kind is IntentKind.CLOSE:
            if has_apps or not intent.canonical_query:
                return await self._act(ActionRequest(intent, request_id=rid), session)
            return await self._via_pipeline(intent, query, lexical, session, rid, voice, single_ok=True)

        if kind is IntentKind.SAVE:
            cards = self._matching(intent, lexical)
            if not cards:
                return await self._failure(intent, query, ErrorKind.NO_VALID_CARDS.value)
            request = ActionRequest(
                intent,
                card_ids=[c.card_id for c in cards],
                cards={c.card_id: c for c in cards},
                request_id=rid,
            )
            return await self._act(request, session)

        if kind is IntentKind.LIST:
            return await self._list(intent, lexical, session, rid)

        if kind is IntentKind.REOPEN:
            return await self._reopen(intent, query, session, rid, voice)

        pool: list[ScoredCard] = list(lexical)
        if intent.is_temporal:
            history = await self._executor.history_cards(intent)
            self._checkpoint(rid)
            pool.extend(_scored(history, query, now_ms(self._clock), constraints.group))
        return await self._via_pipeline(intent, query, pool, session, rid, voice)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _matching(self, intent: Intent, lexical: list[ScoredCard]) -> list[Card]:
        """Open-tab cards for a bulk action: the lexical hits, or every tab."""
        if intent.canonical_query:
            cards = [r.card for r in lexical]
        else:
            cards = self._index.query({"source": "tab"}, limit=max(len(self._index.all_cards()), 1))
        cards = [c for c in cards if c.is_open_tab and card_passes(c, intent.constraints)]
        if intent.constraints.limit:
            cards = cards[: intent.constraints.limit]
        return cards

    async def _via_pipeline(
        self,
        intent: Intent,
        query: str,
        pool: list[ScoredCard],
        session: str,
        rid: str,
        voice: bool,
        *,
        single_ok: bool = False,
    ) -> Reply:
        outcome = await self._pipeline.process(pool, intent, query, session)
        self._checkpoint(rid)

        if outcome.ok and (outcome.auto_execute or (single_ok and len(outcome.candidates) == 1)):
            chosen = outcome.candidate or outcome.candidates[0]
            request = ActionRequest(
                intent,
                card_ids=[chosen.card.card_id],
                cards={chosen.card.card_id: chosen.card},
                request_id=rid,
            )
            return await self._act(request, session, candidate=chosen)

        if outcome.ok:
            return await self._disambiguate(
                intent, query, outcome.candidates, session, voice, outcome.followup_question
            )

        if outcome.reason == ErrorKind.TOO_MANY_CANDIDATES.value:
            return Reply(
                ok=False,
                text=outcome.clarifier or "Which one did you mean?",
                kind="clarify",
                candidates=outcome.candidates,
                error=outcome.reason,
            )
        return await self._failure(intent, query, outcome.reason or ErrorKind.NO_CANDIDATES.value)

    async def _disambiguate(
        self,
        intent: Intent,
        query: str,
        candidates: list[Candidate],
        session: str,
        voice: bool,
        question: str | None = None,
    ) -> Reply:
        if voice:
            text = await self._conversation.responses.disambiguation_list(intent.intent.value, candidates, "voice")
        else:
            text = question or disambiguation_prompt(candidates)
        slot = self._conversation.store_candidates(session, candidates, intent, query=query, prompt=text)
        slot.extra["cards"] = {c.card.card_id: c.card for c in candidates}
        return Reply(ok=True, text=text, kind="disambiguation", candidates=candidates)

    async def _list(self, intent: Intent, lexical: list[ScoredCard], session: str, rid: str) -> Reply:
        cards = self._matching(intent, lexical)
        if not cards:
            return await self._failure(intent, intent.canonical_query, ErrorKind.NO_MATCHING_TABS.value)
        result = await self._executor.execute(ActionRequest(intent, card_ids=[c.card_id for c in cards], request_id=rid))
        self._checkpoint(rid)
        candidates = [Candidate(card=c, score=0.0) for c in cards]
        lines = "\n".join(f"{i}. {c.title or c.url} ({c.domain})" for i, c in enumerate(cards[:10], start=1))
        text = f"You have {len(cards)} matching tab{'s' if len(cards) != 1 else ''} open:\n{lines}"
        slot = self._conversation.store_candidates(
            session, candidates, replace(intent, intent=IntentKind.OPEN), query=intent.canonical_query, prompt=text
        )
        slot.extra["cards"] = {c.card_id: c for c in cards}
        return Reply(ok=result.ok, text=text, kind="list", candidates=candidates, result=result.to_dict())

    async def _reopen(self, intent: Intent, query: str, session: str, rid: str, voice: bool) -> Reply:
        closed = await self._executor.closed_cards()
        self._checkpoint(rid)
        if not closed:
            return await self._failure(intent, query, ErrorKind.NO_CANDIDATES.value)
        if not intent.canonical_query:
            card = closed[0]
            return await self._act(
                ActionRequest(intent, card_ids=[card.card_id], cards={card.card_id: card}, request_id=rid),
                session,
                candidate=Candidate(card=card, score=1.0),
            )
        scored = _scored(closed, query, now_ms(self._clock))
        if not scored:
            return await self._failure(intent, query, ErrorKind.NO_CANDIDATES.value)
        if len(scored) == 1 or scored[0].score > scored[1].score:
            card = scored[0].card
            return await self._act(
                ActionRequest(intent, card_ids=[card.card_id], cards={card.card_id: card}, request_id=rid),
                session,
                candidate=Candidate(card=card, score=1.0),
            )
        candidates = [Candidate(card=s.card, score=0.0) for s in scored[:5]]
        return await self._disambiguate(intent, query, candidates, session, voice)

    async def _follow_up(self, slot: DisambiguationSlot, follow_up: FollowUp, session: str, rid: str) -> Reply:
        confirm: ActionRequest | None = slot.extra.get("confirm")
        if follow_up.action == "cancel":
            self._conversation.clear_candidates(session)
            return Reply(ok=True, text=CANCELLED_TEXT, kind="cancelled", intent=slot.intent)

        if follow_up.action == "confirm" and confirm is not None:
            self._conversation.clear_candidates(session)
            request = replace(confirm, confirmed=True, request_id=rid)
            reply = await self._act(request, session)
            reply.intent = request.intent
            return reply

        card_id = follow_up.card_id
        if card_id is None and follow_up.action == "confirm" and len(slot.candidates) == 1:
            card_id = slot.candidates[0].card_id
        if card_id is None or slot.intent is None:
            return Reply(
                ok=False,
                text="Sorry, which one? Say a number or part of the title.",
                kind="clarify",
                intent=slot.intent,
                error=ErrorKind.BAD_REQUEST.value,
            )

        self._conversation.clear_candidates(session)
        cards: dict[str, Card] = slot.extra.get("cards") or {}
        chosen = cards.get(card_id)
        request = ActionRequest(
            slot.intent,
            card_ids=[card_id],
            cards={card_id: chosen} if chosen is not None else {},
            folder_name=follow_up.folder_name,
            request_id=rid,
        )
        reply = await self._act(request, session, candidate=Candidate(card=chosen, score=1.0) if chosen else None)
        reply.intent = slot.intent
        return reply

    # ------------------------------------------------------------------
    # Execution and text
    # ------------------------------------------------------------------

    async def _act(
        self,
        request: ActionRequest,
        session: str,
        *,
        candidate: Candidate | None = None,
        kind: str = "action",
    ) -> Reply:
        result = await self._executor.execute(request)
        self._checkpoint(request.request_id or "")
        intent_name = request.intent.intent.value
        responses = self._conversation.responses

        if result.is_preview:
            details = result.to_dict()
            text = preview_template(details)
            tabs = details.get("tabs") or []
            previewed = [
                {"cardId": f"tab:{t['id']}", "title": t.get("title"), "domain": t.get("domain")} for t in tabs
            ]
            slot = self._conversation.store_candidates(
                session, previewed, request.intent, query=request.intent.canonical_query, prompt=text
            )
            slot.extra["confirm"] = request
            return Reply(ok=True, text=text, kind="preview", result=details)

        if not result.ok:
            text = str(result.get("answer") or "") if kind == "answer" else ""
            if not text:
                query = request.query or request.intent.canonical_query
                text = await responses.error(intent_name, query, result.error or ErrorKind.BAD_REQUEST.value)
            return Reply(ok=False, text=text, kind="error", result=result.to_dict(), error=result.error)

        label = self._success_label(request, result)
        text = await responses.success(label, result.to_dict(), candidate)
        return Reply(
            ok=True,
            text=text,
            kind=kind,
            candidates=[candidate] if candidate else [],
            result=result.to_dict(),
        )

    @staticmethod
    def _success_label(request: ActionRequest, result: ActionResult) -> str:
        """Template key: the intent, or the group operation that actually ran."""
        intent = request.intent
        if intent.constraints.scope == "group" and intent.constraints.group and not request.card_ids:
            if intent.intent in NAVIGATION_INTENTS:
                return "focus_group"
            if intent.intent is IntentKind.CLOSE:
                return "close_group"
            if intent.intent is IntentKind.SAVE:
                return "save_group"
            if intent.intent is IntentKind.LIST and intent.operation:
                return {
                    "move_to_window": "move_group_to_window",
                    "rename": "rename_group",
                    "collapse": "collapse_group",
                    "expand": "collapse_group",
                }.get(intent.operation, intent.intent.value)
        return intent.intent.value

    async def _failure(self, intent: Intent, query: str, reason: str) -> Reply:
        text = await self._conversation.responses.error(intent.intent.value, query, reason)
        return Reply(ok=False, text=text, kind="error", error=reason)

    def _record(self, session: str, reply: Reply) -> Reply:
        results = [c.to_dict() for c in reply.candidates] or None
        self._conversation.add_assistant(session, reply.text, results)
        if reply.result is not None and reply.intent is not None:
            self._conversation.add_action_result(session, reply.intent.intent.value, reply.result, results)
        return reply
