"""Token → card-id postings with incremental maintenance."""

from __future__ import annotations

from collections import defaultdict


class InvertedIndex:
    """Mapping from token to the set of card ids indexed under it.

    ``add`` replaces a card's previous postings, so callers can re-add a card
    after any change without removing it first.
    """

    def __init__(self) -> None:
        self._postings: dict[str, set[str]] = defaultdict(set)
        self._by_card: dict[str, set[str]] = {}
        self.built_at: int = 0

    def add(self, card_id: str, tokens: set[str]) -> None:
        self.remove(card_id)
        self._by_card[card_id] = set(tokens)
        for token in tokens:
            self._postings[token].add(card_id)

    def remove(self, card_id: str) -> None:
        for token in self._by_card.pop(card_id, set()):
            ids = self._postings.get(token)
            if ids is None:
                continue
            ids.discard(card_id)
            if not ids:
                del self._postings[token]

    def lookup(self, token: str) -> set[str]:
        return set(self._postings.get(token, ()))

    def contains_card(self, card_id: str) -> bool:
        return card_id in self._by_card

    def tokens_for(self, card_id: str) -> set[str]:
        return set(self._by_card.get(card_id, ()))

    def postings_containing(self, card_id: str) -> list[str]:
        """Tokens whose posting set includes *card_id* (full scan; for checks)."""
        return [t for t, ids in self._postings.items() if card_id in ids]

    def clear(self) -> None:
        self._postings.clear()
        self._by_card.clear()

    @property
    def token_count(self) -> int:
        return len(self._postings)

    def __len__(self) -> int:
        return len(self._by_card)
