"""Semantic rerank through the language model, plus hybrid scoring."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tabitha.errors import ErrorKind
from tabitha.lm.client import LanguageModel
from tabitha.lm.jsonparse import extract_json
from tabitha.pipeline.models import Candidate
from tabitha.router.intent import Intent
from tabitha.timeutil import MS_PER_DAY

LOGGER = logging.getLogger(__name__)

SKIP_TOP_SCORE = 0.85
SKIP_GAP = 0.15
UNRANKED_SCORE = 0.3
BARE_LIST_SCORE = 0.7

# Float slack for threshold comparisons on normalized scores.
EPS = 1e-9

_RANKING_HINTS = {
    "open": "Prioritize open tabs over history/bookmarks. Rank by recency and domain match.",
    "close": "Only rank open tabs. Prioritize exact domain/title matches.",
    "find_open": "Only rank open tabs. Exact matches first.",
    "reopen": "Prioritize recently closed items. Rank by recency.",
    "save": "Prioritize open tabs, then frequently visited pages.",
    "list": "Rank by relevance and recency. Include all sources.",
    "ask": "Rank by semantic relevance for answering the question.",
}

_RERANK_PROMPT = """\
You are Tabitha. Rank these candidates by relevance to the query.
{conversation}
Query: "{query}"
Intent: {intent}{hint}

Candidates:
{listing}

CRITICAL RULES:
1. Exact domain match first: for a single-word query like "substack", score substack.com 1.0 and unrelated domains 0.0.
2. If several tabs share the same title on different domains (e.g. "Cover Letter" in Google Docs and Notion), give them similar scores, include all of them, and set needsFollowup to true with a clarifying question.
3. Reject domains that do not contain the query word.

Return JSON only:
{{"ranked": [{{"cardId": "<id>", "score": 0.95, "reason": "<brief>"}}], "confidence": 0.9, "needsFollowup": false, "followupQuestion": null}}

Score range 0.0-1.0 (1.0 = perfect match).
Output:"""


@dataclass
class RerankOutcome:
    ok: bool
    scores: dict[str, float] = field(default_factory=dict)
    reasons: dict[str, str] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    confidence: float = 0.5
    needs_followup: bool = False
    followup_question: str | None = None
    error: str | None = None


def skip_reason(candidates: list[Candidate], enabled: bool) -> str | None:
    """Why semantic rerank should not run, or None when it should."""
    if not enabled:
        return "disabled"
    if len(candidates) <= 2:
        return "few_candidates"
    top = candidates[0].score
    second = candidates[1].score
    if top >= SKIP_TOP_SCORE - EPS and top - second >= SKIP_GAP - EPS:
        return "clear_winner"
    return None


def build_rerank_prompt(candidates: list[Candidate], query: str, intent: Intent, conversation: str = "") -> str:
    kind = intent.intent.value
    hint = f"\nRanking guidance: {_RANKING_HINTS[kind]}" if kind in _RANKING_HINTS else ""
    if intent.constraints.group:
        hint += f'\nGroup hint: "{intent.constraints.group}" - prioritize tabs in this group.'
    listing = "\n".join(
        f'{i}. cardId: {c.card.card_id}, title: "{c.card.title}", domain: {c.card.domain}, '
        f"type: {c.card.type}, source: {c.card.source}"
        for i, c in enumerate(candidates, start=1)
    )
    return _RERANK_PROMPT.format(
        conversation=f"\nPrevious conversation:\n{conversation}\n" if conversation else "",
        query=query,
        intent=kind,
        hint=hint,
        listing=listing,
    )


def parse_rerank(text: str, candidates: list[Candidate]) -> RerankOutcome:
    """Read the model's ranking. Unknown card ids are ignored."""
    parsed = extract_json(text, allow_array=True)
    known = {c.card.card_id for c in candidates}
    outcome = RerankOutcome(ok=True)

    if isinstance(parsed, dict) and isinstance(parsed.get("ranked"), list):
        items = parsed["ranked"]
        try:
            outcome.confidence = float(parsed.get("confidence") or 0.5)
        except (TypeError, ValueError):
            outcome.confidence = 0.5
        outcome.needs_followup = bool(parsed.get("needsFollowup", False))
        question = parsed.get("followupQuestion")
        outcome.followup_question = str(question) if question else None
    elif isinstance(parsed, list):
        items = parsed
        outcome.confidence = BARE_LIST_SCORE
    else:
        return RerankOutcome(ok=False, error=ErrorKind.PARSE_FAILED.value)

    for item in items:
        if isinstance(item, dict):
            card_id = item.get("cardId")
            try:
                score = float(item.get("score", 0.5))
            except (TypeError, ValueError):
                score = 0.5
            reason = str(item.get("reason") or "")
        else:
            card_id, score, reason = item, BARE_LIST_SCORE, ""
        if not isinstance(card_id, str) or card_id not in known or card_id in outcome.scores:
            continue
        outcome.scores[card_id] = max(0.0, min(score, 1.0))
        outcome.reasons[card_id] = reason
        outcome.order.append(card_id)
    return outcome


async def semantic_rerank(
    model: LanguageModel,
    candidates: list[Candidate],
    query: str,
    intent: Intent,
    *,
    conversation: str = "",
    timeout_s: float = 60.0,
) -> RerankOutcome:
    """Ask the model to score *candidates*; never raises."""
    if not candidates:
        return RerankOutcome(ok=True)
    if not await model.available():
        return RerankOutcome(ok=False, error=ErrorKind.OFFSCREEN_UNAVAILABLE.value)
    response = await model.run(
        build_rerank_prompt(candidates, query, intent, conversation), timeout_s=timeout_s
    )
    if not response.ok:
        error = (
            ErrorKind.SEMANTIC_RERANK_TIMEOUT.value
            if response.error == ErrorKind.TIMEOUT.value
            else response.error
        )
        LOGGER.warning("semantic rerank failed (%s); keeping lexical order", error)
        return RerankOutcome(ok=False, error=error)
    outcome = parse_rerank(response.text, candidates)
    if not outcome.ok:
        LOGGER.warning("semantic rerank returned no usable JSON; keeping lexical order")
    return outcome


def hybrid_score(candidate: Candidate, semantic: float, intent: Intent, query: str, now: int) -> float:
    """``0.4·lex + 0.6·sem`` plus tab, group, domain and freshness boosts, capped at 1."""
    card = candidate.card
    score = 0.4 * candidate.lexical_score + 0.6 * semantic
    if card.is_open_tab:
        score += 0.10
    group = intent.constraints.group
    if group and card.group_name and card.group_name.lower() == group.lower():
        score += 0.08
    q = (query or "").strip().lower()
    domain = card.domain.lower()
    if q and (domain == q or domain.startswith(q + ".")):
        score += 0.08
    if card.last_visited_at and now - card.last_visited_at < MS_PER_DAY:
        score += 0.05
    return min(score, 1.0)
