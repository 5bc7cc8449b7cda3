"""UI-to-pipeline message routing.

Every message is a dict with a ``type``; every reply is a dict with ``ok``.
Failures come back as ``{ok: false, error: <kind>}``. Nothing raised inside
a handler escapes :meth:`MessageRouter.handle`.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from tabitha.actions.executor import ActionRequest
from tabitha.boundary.app import TabithaApp
from tabitha.conversation.followup import understand_follow_up
from tabitha.conversation.slots import SlotCandidate
from tabitha.db.models import Card
from tabitha.errors import BrowserError, ErrorKind
from tabitha.index.intent_cache import url_key
from tabitha.index.tab_index import DEFAULT_QUERY_LIMIT, ScoredCard
from tabitha.pipeline.clarify import format_disambiguation_list, specific_clarifier
from tabitha.pipeline.models import Candidate
from tabitha.pipeline.rerank import semantic_rerank
from tabitha.router.intent import Intent, IntentKind
from tabitha.timeutil import now_ms

LOGGER = logging.getLogger(__name__)

GROUP_FOCUS_CONFIDENCE = 0.80

Message = dict[str, Any]
Handler = Callable[[Message], Awaitable[dict[str, Any]]]


def _fail(error: str, **extra: Any) -> dict[str, Any]:
    return {"ok": False, "error": str(error), **extra}


def candidate_from(item: Any) -> Candidate:
    """Candidate from ``{card, score, ...}`` or a flat card dict."""
    if isinstance(item, Candidate):
        return item
    if not isinstance(item, dict):
        raise TypeError(f"candidate must be an object, got {type(item).__name__}")
    card_data = item["card"] if isinstance(item.get("card"), dict) else item
    score = float(item.get("score") or 0.0)
    return Candidate(
        card=Card.from_dict(card_data),
        score=score,
        lexical_score=float(item.get("lexicalScore") or score),
    )


def intent_from(value: Any) -> Intent | None:
    """An :class:`Intent` from a bare kind name or a full intent object.

    ``"show"`` is accepted as an alias of ``list``. Returns None for an
    unknown name or an object whose ``intent`` is not a known kind.
    """
    if isinstance(value, Intent):
        return value
    if isinstance(value, dict):
        try:
            return Intent.from_dict(value)
        except ValueError as exc:
            LOGGER.info("invalid intent object: %s", exc)
            return None
    name = str(value or "").strip().lower()
    kind = IntentKind.LIST if name == "show" else IntentKind.parse(name)
    return Intent.bare(kind) if kind is not None else None


class MessageRouter:
    """Dispatch boundary messages to the components owned by *app*."""

    def __init__(self, app: TabithaApp) -> None:
        self._app = app
        self._handlers: dict[str, Handler] = {
            "CHAT_OPENED": self._chat_opened,
            "CHAT_MESSAGE": self._chat_message,
            "CANCEL_REQUEST": self._cancel_request,
            "INDEX_COUNTS": self._index_counts,
            "INDEX_QUERY": self._index_query,
            "INDEX_HEALTH": self._index_health,
            "REFRESH_OPEN_TABS": self._refresh_open_tabs,
            "LEXICAL_SEARCH": self._lexical_search,
            "PREPROCESS_QUERY": self._preprocess_query,
            "PARSE_INTENT": self._parse_intent,
            "AI_RANK": self._ai_rank,
            "FILTER_AND_RANK": self._filter_and_rank,
            "FORMAT_DISAMBIGUATION": self._format_disambiguation,
            "GENERATE_CLARIFYING_QUESTION": self._clarifying_question,
            "SAVE_USER_HINT": self._save_user_hint,
            "EXECUTE_ACTION": self._execute_action,
            "EXECUTE_ASK": self._execute_ask,
            "UNDO_CLOSE": self._undo,
            "UNDO_ACTION": self._undo,
            "STORE_DISAMBIGUATION_CANDIDATES": self._store_candidates,
            "GET_LAST_DISAMBIGUATION_CANDIDATES": self._last_candidates,
            "UNDERSTAND_FOLLOW_UP": self._understand_follow_up,
            "GENERATE_CONVERSATIONAL_RESPONSE": self._conversational_response,
            "GENERATE_SUCCESS_RESPONSE": self._success_response,
            "GENERATE_ERROR_RESPONSE": self._error_response,
            "GENERATE_DISAMBIGUATION_LIST_RESPONSE": self._disambiguation_list_response,
            "INTENT_CACHE_GET": self._intent_cache_get,
            "INTENT_CACHE_PUT": self._intent_cache_put,
            "SET_DOMAIN_RULE": self._set_domain_rule,
        }

    @property
    def message_types(self) -> list[str]:
        return sorted(self._handlers)

    async def handle(self, message: Message) -> dict[str, Any]:
        """Route one message; malformed input yields ``bad_request``."""
        if not isinstance(message, dict):
            return _fail(ErrorKind.BAD_REQUEST, message="message must be an object")
        kind = message.get("type")
        handler = self._handlers.get(str(kind))
        if handler is None:
            LOGGER.info("unknown message type %r", kind)
            return _fail(ErrorKind.BAD_REQUEST, message=f"unknown message type: {kind}")
        try:
            return await handler(message)
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("%s rejected: %s", kind, exc)
            return _fail(ErrorKind.BAD_REQUEST, message=str(exc))
        except BrowserError as exc:
            LOGGER.warning("%s failed in the browser: %s", kind, exc)
            return _fail(str(exc))

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    async def _ensure_booted(self) -> None:
        if not self._app.index.booted:
            await self._app.start()

    async def _chat_opened(self, message: Message) -> dict[str, Any]:
        await self._ensure_booted()
        refresh = await self._app.index.refresh_open_tabs()
        return {"ok": True, "counts": self._app.index.counts(), "refresh": refresh.to_dict()}

    async def _index_counts(self, message: Message) -> dict[str, Any]:
        await self._ensure_booted()
        return {"ok": True, "counts": self._app.index.counts()}

    async def _index_query(self, message: Message) -> dict[str, Any]:
        await self._ensure_booted()
        limit = int(message.get("limit") or DEFAULT_QUERY_LIMIT)
        cards = self._app.index.query(message.get("filters") or None, limit)
        return {"ok": True, "cards": [c.to_dict() for c in cards]}

    async def _index_health(self, message: Message) -> dict[str, Any]:
        return self._app.index.health()

    async def _refresh_open_tabs(self, message: Message) -> dict[str, Any]:
        await self._ensure_booted()
        return (await self._app.index.refresh_open_tabs()).to_dict()

    async def _lexical_search(self, message: Message) -> dict[str, Any]:
        await self._ensure_booted()
        limit = int(message.get("limit") or self._app.config.index.lexical_limit)
        result = self._app.index.lexical_search(
            str(message.get("query") or ""), limit, message.get("filters") or None
        )
        return result.to_dict()

    # ------------------------------------------------------------------
    # Router and pipeline
    # ------------------------------------------------------------------

    async def _preprocess_query(self, message: Message) -> dict[str, Any]:
        return (await self._app.router.preprocess(str(message.get("text") or ""))).to_dict()

    async def _parse_intent(self, message: Message) -> dict[str, Any]:
        result = await self._app.router.parse_intent(
            str(message.get("text") or ""), str(message.get("sessionId") or "default")
        )
        return result.to_dict()

    async def _ai_rank(self, message: Message) -> dict[str, Any]:
        intent = intent_from(message.get("intent") or "find_open")
        if intent is None:
            return _fail(ErrorKind.UNKNOWN_INTENT)
        candidates = [candidate_from(c) for c in message.get("candidates") or []]
        if not candidates:
            return _fail(ErrorKind.NO_CANDIDATES)
        session = str(message.get("sessionId") or "default")
        outcome = await semantic_rerank(
            self._app.model,
            candidates[: self._app.config.pipeline.rerank_top_n],
            str(message.get("query") or intent.canonical_query),
            intent,
            conversation=self._app.conversation.context(session),
            timeout_s=self._app.config.pipeline.rerank_timeout_s,
        )
        if not outcome.ok:
            return _fail(outcome.error or ErrorKind.PARSE_FAILED)
        return {
            "ok": True,
            "ranked": [
                {"cardId": cid, "score": outcome.scores[cid], "reason": outcome.reasons.get(cid, "")}
                for cid in outcome.order
            ],
            "confidence": outcome.confidence,
            "needsFollowup": outcome.needs_followup,
            "followupQuestion": outcome.followup_question,
        }

    async def _filter_and_rank(self, message: Message) -> dict[str, Any]:
        intent = intent_from(message.get("intent"))
        if intent is None:
            return _fail(ErrorKind.INVALID_INTENT)
        lexical = [
            ScoredCard(Card.from_dict(r["card"]), float(r.get("score") or 0))
            for r in message.get("lexicalResults") or []
        ]
        result = await self._app.pipeline.process(
            lexical, intent, message.get("query"), str(message.get("sessionId") or "default")
        )
        reply = result.to_dict()

        constraints = intent.constraints
        if (
            constraints.scope == "group"
            and constraints.group
            and result.auto_execute
            and result.confidence >= GROUP_FOCUS_CONFIDENCE
        ):
            focused = await self._app.executor.focus_group(constraints.group)
            reply["groupFocus"] = focused.to_dict()
        return reply

    async def _format_disambiguation(self, message: Message) -> dict[str, Any]:
        candidates = [candidate_from(c) for c in message.get("candidates") or []]
        items = format_disambiguation_list(candidates, now_ms(self._app.clock))
        return {"ok": True, "items": items}

    async def _clarifying_question(self, message: Message) -> dict[str, Any]:
        intent = intent_from(message.get("intent") or "find_open")
        if intent is None:
            return _fail(ErrorKind.UNKNOWN_INTENT)
        candidates = [candidate_from(c) for c in message.get("candidates") or []]
        question = await specific_clarifier(intent, candidates, self._app.model)
        return {"ok": True, "question": question}

    async def _save_user_hint(self, message: Message) -> dict[str, Any]:
        phrase = str(message.get("phrase") or "").strip()
        if not phrase:
            return _fail(ErrorKind.BAD_REQUEST, message="phrase is required")
        self._app.router.save_user_hint(
            phrase, message.get("domain"), message.get("type"), float(message.get("boost") or 1)
        )
        return {"ok": True}

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _execute_action(self, message: Message) -> dict[str, Any]:
        intent = intent_from(message.get("intent"))
        if intent is None:
            return _fail(ErrorKind.UNKNOWN_INTENT)
        request_id = str(message.get("requestId") or "")
        guard = self._app.in_flight
        if request_id and not guard.mark_started(request_id, intent.intent.value):
            return _fail(ErrorKind.ACTION_ALREADY_IN_FLIGHT)
        try:
            request = self._action_request(intent, message, request_id or None)
            result = await self._app.executor.execute(request)
            reply = result.to_dict()
            session = str(message.get("sessionId") or "default")
            if not result.is_preview:
                self._app.conversation.add_action_result(session, intent.intent.value, reply)
            return reply
        finally:
            if request_id:
                guard.mark_completed(request_id)

    def _action_request(self, intent: Intent, message: Message, request_id: str | None) -> ActionRequest:
        card_ids = [str(c) for c in message.get("cardIds") or []]
        if message.get("cardId"):
            card_ids.insert(0, str(message["cardId"]))
        tab_ids = [int(t) for t in message.get("tabIds") or []]
        if message.get("tabId") is not None:
            tab_ids.insert(0, int(message["tabId"]))

        cards: dict[str, Card] = {}
        inline = message.get("cards") or ([message["card"]] if isinstance(message.get("card"), dict) else [])
        for data in inline:
            card = Card.from_dict(data["card"] if isinstance(data.get("card"), dict) else data)
            cards[card.card_id] = card
            if card.card_id not in card_ids:
                card_ids.append(card.card_id)

        session = str(message.get("sessionId") or "default")
        return ActionRequest(
            intent,
            card_ids=card_ids,
            tab_ids=tab_ids or None,
            cards=cards,
            next_to_current=bool(message.get("nextToCurrent")),
            confirmed=bool(message.get("confirmed")),
            filters=message.get("filters") or None,
            folder_name=message.get("folderName"),
            save_as=str(message.get("saveAs") or "bookmark"),
            query=message.get("query"),
            conversation=self._app.conversation.context(session),
            request_id=request_id,
        )

    async def _execute_ask(self, message: Message) -> dict[str, Any]:
        query = str(message.get("query") or "").strip()
        if not query:
            return _fail(ErrorKind.EMPTY_QUERY)
        intent = intent_from(message.get("intent") or "ask")
        if intent is None:
            return _fail(ErrorKind.UNKNOWN_INTENT)
        await self._ensure_booted()
        session = str(message.get("sessionId") or "default")
        result = await self._app.executor.ask(
            query, intent, conversation=self._app.conversation.context(session)
        )
        return result.to_dict()

    async def _undo(self, message: Message) -> dict[str, Any]:
        return (await self._app.executor.undo_last_close()).to_dict()

    async def _chat_message(self, message: Message) -> dict[str, Any]:
        reply = await self._app.assistant.handle_utterance(
            str(message.get("text") or ""),
            str(message.get("sessionId") or "default"),
            message.get("requestId"),
            voice=message.get("format") == "voice",
        )
        return reply.to_dict()

    async def _cancel_request(self, message: Message) -> dict[str, Any]:
        request_id = str(message.get("requestId") or "")
        if not request_id:
            return _fail(ErrorKind.BAD_REQUEST, message="requestId is required")
        return {"ok": True, "cancelled": self._app.assistant.cancel(request_id)}

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def _store_candidates(self, message: Message) -> dict[str, Any]:
        candidates = message.get("candidates") or []
        if not isinstance(candidates, list):
            raise TypeError("candidates must be a list")
        raw_intent = message.get("intent")
        intent = intent_from(raw_intent) if raw_intent else None
        slot = self._app.conversation.store_candidates(
            str(message.get("sessionId") or "default"),
            candidates,
            intent,
            query=str(message.get("query") or ""),
        )
        return {"ok": True, "count": len(slot.candidates)}

    async def _last_candidates(self, message: Message) -> dict[str, Any]:
        slot = self._app.conversation.last_candidates(str(message.get("sessionId") or "default"))
        if slot is None:
            return {"ok": True, "candidates": None}
        return {"ok": True, **slot.to_dict()}

    async def _understand_follow_up(self, message: Message) -> dict[str, Any]:
        session = str(message.get("sessionId") or "default")
        text = str(message.get("message") or message.get("newMessage") or "")
        supplied = message.get("candidates")
        if supplied:
            follow_up = await understand_follow_up(
                self._app.model,
                str(message.get("previousQuery") or ""),
                str(message.get("previousResponse") or ""),
                [SlotCandidate.from_any(c, i) for i, c in enumerate(supplied, start=1)],
                text,
            )
        else:
            follow_up = await self._app.conversation.understand_follow_up(session, text)
            if follow_up is None:
                return _fail(ErrorKind.NO_CANDIDATES, action="unclear")
        return follow_up.to_dict()

    async def _conversational_response(self, message: Message) -> dict[str, Any]:
        candidates = [candidate_from(c) for c in message.get("candidates") or []]
        text = await self._app.conversation.responses.conversational(
            str(message.get("intent") or "open"),
            candidates,
            str(message.get("query") or ""),
            str(message.get("context") or ""),
        )
        return {"ok": True, "text": text}

    async def _success_response(self, message: Message) -> dict[str, Any]:
        raw = message.get("candidate")
        candidate = candidate_from(raw) if raw else None
        text = await self._app.conversation.responses.success(
            str(message.get("intent") or "open"), message.get("result") or {}, candidate
        )
        return {"ok": True, "text": text}

    async def _error_response(self, message: Message) -> dict[str, Any]:
        text = await self._app.conversation.responses.error(
            str(message.get("intent") or "open"),
            str(message.get("query") or ""),
            str(message.get("reason") or message.get("error") or "unknown_error"),
        )
        return {"ok": True, "text": text}

    async def _disambiguation_list_response(self, message: Message) -> dict[str, Any]:
        candidates = [candidate_from(c) for c in message.get("candidates") or []]
        text = await self._app.conversation.responses.disambiguation_list(
            str(message.get("intent") or "open"), candidates, str(message.get("format") or "chat")
        )
        return {"ok": True, "text": text}

    # ------------------------------------------------------------------
    # Intent cache
    # ------------------------------------------------------------------

    async def _intent_cache_get(self, message: Message) -> dict[str, Any]:
        url = str(message.get("url") or "")
        if not url:
            return _fail(ErrorKind.BAD_REQUEST, message="url is required")
        hit = self._app.intent_cache.get(url_key(url), message.get("domain"))
        return {"ok": True, "hit": hit.to_dict() if hit else None}

    async def _intent_cache_put(self, message: Message) -> dict[str, Any]:
        url = str(message.get("url") or "")
        label = str(message.get("intent") or "")
        if not url or not label:
            return _fail(ErrorKind.BAD_REQUEST, message="url and intent are required")
        updated = self._app.intent_cache.put(url_key(url), label, float(message.get("score") or 0))
        return {"ok": True, "updated": updated}

    async def _set_domain_rule(self, message: Message) -> dict[str, Any]:
        domain = str(message.get("domain") or "").strip().lower()
        if not domain:
            return _fail(ErrorKind.BAD_REQUEST, message="domain is required")
        self._app.intent_cache.set_domain_rule(domain, message.get("intent") or None)
        return {"ok": True, "rules": self._app.intent_cache.domain_rules()}
