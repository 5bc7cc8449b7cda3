"""Clarifying questions and disambiguation-list formatting."""

from __future__ import annotations

from typing import Any

from tabitha.lm.client import LanguageModel
from tabitha.pipeline.models import Candidate
from tabitha.router.intent import Intent
from tabitha.timeutil import format_age

DEFAULT_CLARIFIER = "Which one did you mean?"

SOURCE_LABELS = {"tab": "Open tab", "bookmark": "Bookmark", "history": "History"}

_CLARIFY_PROMPT = """\
You are Tabitha. Generate a short clarifying question.

Query: "{query}"
Intent: {intent}

Candidates:
{listing}

Generate ONE concise clarifying question. Be specific based on differences.

Question:"""


def _distinct(values: list[str]) -> list[str]:
    out: list[str] = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return out


async def generate_clarifying_question(
    model: LanguageModel | None, intent: Intent, shortlist: list[Candidate]
) -> str | None:
    if model is None or not await model.available():
        return None
    listing = "\n".join(
        f"{i}. {c.card.title} ({c.card.domain}, {c.card.type}, {c.card.source})"
        for i, c in enumerate(shortlist, start=1)
    )
    response = await model.run(
        _CLARIFY_PROMPT.format(query=intent.canonical_query, intent=intent.intent.value, listing=listing),
        max_tokens=60,
    )
    return response.text.strip()[:150] if response.ok else None


async def specific_clarifier(
    intent: Intent, shortlist: list[Candidate], model: LanguageModel | None = None
) -> str:
    """Pick the most useful question to narrow *shortlist*.

    Differing sites first, then differing card types, then time, then a
    model-written question, then a generic one.
    """
    domains = _distinct([c.card.domain for c in shortlist])
    if len(domains) >= 2:
        return f"Which site? {' or '.join(domains[:2])}?"
    types = _distinct([c.card.type for c in shortlist])
    if len(types) >= 2:
        return f"Which type? {' or '.join(types[:2])}?"
    if intent.constraints.date_range is not None:
        return "When roughly, this week or last month?"
    return await generate_clarifying_question(model, intent, shortlist) or DEFAULT_CLARIFIER


def format_disambiguation_list(candidates: list[Candidate], now: int) -> list[dict[str, Any]]:
    """UI rows for a shortlist: title, domain, source label, age and score."""
    rows = []
    for c in candidates:
        card = c.card
        rows.append(
            {
                "cardId": card.card_id,
                "title": card.title or card.url or "Untitled",
                "domain": card.domain,
                "type": card.type or "page",
                "source": card.source,
                "sourceLabel": SOURCE_LABELS.get(card.source, "Closed"),
                "age": format_age(now - card.last_visited_at) if card.last_visited_at else "unknown",
                "score": round(c.score, 4),
                "url": card.url,
            }
        )
    return rows
