"""Additive lexical scoring for cards.

Deliberately simple so ranking is predictable. Raw scores are small integers
(a strong match lands around 20–30); :func:`confidence` maps them onto the
0–1 scale the candidate pipeline gates on.
"""

from __future__ import annotations

from tabitha.db.models import Card
from tabitha.index.urls import last_path_segment, parent_domain
from tabitha.timeutil import MS_PER_DAY

FULL_QUERY_BONUS = 5
SOURCE_PRIOR: dict[str, int] = {"tab": 4, "bookmark": 2, "history": 1}

# Raw score that maps to full confidence.
CONFIDENCE_SCALE = 30.0


def confidence(raw: float) -> float:
    """Normalize a raw lexical score to ``min(raw / 30, 1)``."""
    return min(max(raw, 0.0) / CONFIDENCE_SCALE, 1.0)


def domain_points(token: str, domain: str) -> int:
    """Points for one query token against a card's domain (first rule that fires)."""
    if len(token) < 3 or not domain:
        return 0
    if domain == token or domain in (f"{token}.com", f"{token}.org", f"{token}.net"):
        return 10
    if domain.startswith(f"{token}."):
        return 10
    if f".{token}." in domain or domain.endswith(f".{token}"):
        return 8
    parent = parent_domain(domain)
    if parent == token or parent.startswith(f"{token}."):
        return 5
    if token in domain and len(token) >= 4:
        return 4
    return 0


def group_points(group_name: str | None, group_constraint: str | None) -> int:
    if not group_constraint or not group_name:
        return 0
    g = group_name.lower()
    c = group_constraint.lower()
    if g == c:
        return 6
    if c in g or g in c:
        return 3
    return 0


def recency_points(last_visited_at: int, now: int) -> int:
    if not last_visited_at:
        return 0
    age = now - last_visited_at
    if age < MS_PER_DAY:
        return 5
    if age < 7 * MS_PER_DAY:
        return 3
    if age < 30 * MS_PER_DAY:
        return 1
    return 0


def score_card(
    card: Card,
    query: str,
    tokens: list[str],
    matched: int,
    now: int,
    *,
    group: str | None = None,
) -> int:
    """Return the raw lexical score of *card* for *query*.

    Args:
        card: Card to score.
        query: Full (case-folded) query string.
        tokens: Query unigrams.
        matched: How many query tokens hit this card.
        now: Current time in ms.
        group: Group-name constraint, when the intent carries one.
    """
    title = card.title.lower()
    url = card.url.lower()
    domain = card.domain.lower()
    q = query.lower().strip()

    score = 0
    if q and (q in title or q in url or q in domain):
        score += FULL_QUERY_BONUS

    segment = last_path_segment(card.url)
    for token in tokens:
        if len(token) < 3:
            continue
        score += domain_points(token, domain)
        if segment and token in segment:
            score += 4

    score += group_points(card.group_name, group)

    if matched >= 2:
        score += 3
    elif matched == 1:
        score += 1

    score += recency_points(card.last_visited_at, now)
    score += SOURCE_PRIOR.get(card.source, 0)
    return score
