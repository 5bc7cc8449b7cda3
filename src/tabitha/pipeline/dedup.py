"""Three-key deduplication: tab id, normalized URL, then (domain, title).

Two distinct open tabs are never merged, whatever they share. Multiple open
documents on one host are a normal case.
"""

from __future__ import annotations

import logging

from tabitha.db.models import SOURCE_PRIORITY
from tabitha.index.urls import normalize_url
from tabitha.pipeline.models import Candidate

LOGGER = logging.getLogger(__name__)


def _same_entity(a: Candidate, b: Candidate, url_a: str, url_b: str) -> bool:
    ca, cb = a.card, b.card
    if ca.card_id == cb.card_id:
        return True
    if ca.tab_id is not None and ca.tab_id == cb.tab_id and ca.is_open_tab == cb.is_open_tab:
        return True
    if ca.is_open_tab and cb.is_open_tab:
        return False
    if url_a and url_a == url_b:
        return True
    title_a = ca.title.strip().lower()
    domain_a = ca.domain.strip().lower()
    if title_a and domain_a:
        return title_a == cb.title.strip().lower() and domain_a == cb.domain.strip().lower()
    return False


def _prefer(new: Candidate, existing: Candidate) -> bool:
    """True when *new* should replace *existing*."""
    new_tab, old_tab = new.card.is_open_tab, existing.card.is_open_tab
    if new_tab != old_tab:
        return new_tab
    if new.score != existing.score:
        return new.score > existing.score
    return SOURCE_PRIORITY.get(new.card.source, 0) > SOURCE_PRIORITY.get(existing.card.source, 0)


def dedupe(candidates: list[Candidate]) -> list[Candidate]:
    """Collapse duplicates, keeping first-seen order and the preferred record."""
    kept: list[Candidate] = []
    urls: list[str] = []
    for cand in candidates:
        url = normalize_url(cand.card.url)
        for i, existing in enumerate(kept):
            if _same_entity(cand, existing, url, urls[i]):
                if _prefer(cand, existing):
                    kept[i] = cand
                    urls[i] = url
                break
        else:
            kept.append(cand)
            urls.append(url)
    if len(kept) != len(candidates):
        LOGGER.debug("dedup: %d -> %d", len(candidates), len(kept))
    return kept
