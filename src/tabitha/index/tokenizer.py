"""Shared tokenizer for card indexing and query parsing.

Case-folds, splits on non-word characters, drops stop-words unless the token
is long (≥ 4 chars) or looks like a host fragment, and emits adjacent bigrams
when at least one side is not a stop-word.
"""

from __future__ import annotations

import re

from tabitha.db.models import Card

STOPWORDS: frozenset[str] = frozenset(
    """
    the a an and or but in on at to for of with by from is are was were be been
    being have has had do does did will would should could may might can this
    that these those
    """.split()
)

_SPLIT_RE = re.compile(r"[\W_]+", re.UNICODE)
_HOST_FRAGMENT_RE = re.compile(r"^[a-z0-9-]+\.[a-z0-9.-]+$")


def _keep(token: str) -> bool:
    return token not in STOPWORDS or len(token) >= 4


def unigrams(text: str) -> list[str]:
    """Split *text* into kept unigram tokens, preserving order."""
    if not text:
        return []
    return [t for t in _SPLIT_RE.split(text.lower()) if t and _keep(t)]


def tokenize(text: str) -> list[str]:
    """Return unigrams plus adjacent bigrams (``"cover letter"``), de-duplicated."""
    if not text:
        return []
    raw = [t for t in _SPLIT_RE.split(text.lower()) if t]
    out: list[str] = []
    seen: set[str] = set()
    for token in raw:
        if _keep(token) and token not in seen:
            seen.add(token)
            out.append(token)
    for left, right in zip(raw, raw[1:]):
        if left in STOPWORDS and right in STOPWORDS:
            continue
        bigram = f"{left} {right}"
        if bigram not in seen:
            seen.add(bigram)
            out.append(bigram)
    return out


def card_tokens(card: Card) -> set[str]:
    """Tokens a card is indexed under: title, URL and domain, plus the whole host."""
    tokens: set[str] = set()
    tokens.update(tokenize(card.title))
    tokens.update(unigrams(card.url))
    tokens.update(unigrams(card.domain))
    domain = card.domain.lower()
    if _HOST_FRAGMENT_RE.match(domain):
        tokens.add(domain)
    return tokens
