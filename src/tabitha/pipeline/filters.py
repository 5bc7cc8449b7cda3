"""Constraint filtering shared by the candidate pipeline and bulk actions."""

from __future__ import annotations

from typing import Iterable

from tabitha.db.models import Card
from tabitha.pipeline.models import Candidate
from tabitha.router.intent import Constraints


def _bare(app: str) -> str:
    value = app.strip().lower()
    if value.startswith("www."):
        value = value[4:]
    return value.split("/")[0].split(":")[0]


def app_matches(domain: str, url: str, app: str) -> bool:
    """Whether a card on *domain*/*url* belongs to *app*.

    Checked in order: exact domain, subdomain suffix in either direction, then
    the app string appearing anywhere in the URL.
    """
    target = _bare(app)
    if not target:
        return False
    d = (domain or "").lower()
    if d and d == target:
        return True
    if d and (d.endswith("." + target) or target.endswith("." + d)):
        return True
    return target in (url or "").lower()


def matches_any_app(card: Card, apps: Iterable[str]) -> bool:
    return any(app_matches(card.domain, card.url, app) for app in apps)


def group_matches(group_name: str | None, constraint: str | None) -> bool:
    """Exact, contains (either way) or one shared word."""
    if not constraint:
        return True
    if not group_name:
        return False
    g = group_name.strip().lower()
    c = constraint.strip().lower()
    if g == c or c in g or g in c:
        return True
    return bool(set(g.split()) & set(c.split()))


def card_passes(card: Card, constraints: Constraints) -> bool:
    rng = constraints.date_range
    if rng is not None:
        since, until = rng.since_ms, rng.until_ms
        if since is not None and card.last_visited_at < since:
            return False
        if until is not None and card.last_visited_at > until:
            return False
    if constraints.exclude_apps and matches_any_app(card, constraints.exclude_apps):
        return False
    if constraints.include_apps and not matches_any_app(card, constraints.include_apps):
        return False
    if constraints.result_must_be_open and not card.is_open_tab:
        return False
    if constraints.group and not group_matches(card.group_name, constraints.group):
        return False
    if constraints.scope == "group" and not card.group_name:
        return False
    return True


def filter_candidates(candidates: list[Candidate], constraints: Constraints) -> list[Candidate]:
    return [c for c in candidates if card_passes(c.card, constraints)]
