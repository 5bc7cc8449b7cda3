"""Tab Index: the authoritative card cache for open tabs.

One card per open tab, mirrored into SQLite through a debounced write batch
and into an inverted index that is updated in the same turn as the cache, so
a lexical search issued right after an upsert sees the new postings.

Lifecycle:
  1. init() reads persisted cards, reconciles them against live tabs, and
     subscribes to browser lifecycle events
  2. a background task re-reconciles every ``reconcile_interval_s``
  3. refresh_open_tabs() forces a reconcile, at most once per throttle window
  4. close() cancels the timer and flushes pending writes
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any

from tabitha.browser.surface import NO_GROUP, BrowserSurface, TabEvent, TabGroup
from tabitha.db.models import Card, tab_card_id
from tabitha.db.repository import Repository
from tabitha.errors import BrowserError, ErrorKind
from tabitha.index.inverted import InvertedIndex
from tabitha.index.scoring import score_card
from tabitha.index.tokenizer import card_tokens, tokenize, unigrams
from tabitha.index.urls import card_from_tab, group_label
from tabitha.timeutil import Clock, now_ms

LOGGER = logging.getLogger(__name__)

MAX_LEXICAL_RESULTS = 20
DEFAULT_QUERY_LIMIT = 25


@dataclass
class ScoredCard:
    """A card with its raw lexical score."""

    card: Card
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"card": self.card.to_dict(), "score": self.score}


@dataclass
class LexicalSearchResult:
    ok: bool
    results: list[ScoredCard] = field(default_factory=list)
    tokens: list[str] = field(default_factory=list)
    hits_per_token: dict[str, int] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.ok:
            return {"ok": False, "error": self.error}
        return {
            "ok": True,
            "results": [r.to_dict() for r in self.results],
            "tokens": list(self.tokens),
            "hitsPerToken": dict(self.hits_per_token),
        }


@dataclass
class RefreshResult:
    ok: bool
    skipped: bool = False
    reason: str | None = None
    upserted: int = 0
    removed: int = 0

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok}
        if self.skipped:
            out.update(skipped=True, reason=self.reason)
        else:
            out.update(upserted=self.upserted, removed=self.removed)
        return out


class TabIndex:
    """Keep an accurate, queryable representation of currently open tabs.

    Args:
        browser: Browser surface to read tabs from and subscribe to.
        repo: Persistent card store; ``None`` keeps the index memory-only.
        clock: Wall-clock seconds source.
        write_debounce_ms: Delay before a pending write batch is flushed.
        refresh_throttle_ms: Minimum spacing between refresh_open_tabs() runs.
        reconcile_interval_s: Period of the background reconcile task.
    """

    def __init__(
        self,
        browser: BrowserSurface,
        repo: Repository | None = None,
        *,
        clock: Clock = time.time,
        write_debounce_ms: int = 300,
        refresh_throttle_ms: int = 2_000,
        reconcile_interval_s: float = 120.0,
    ) -> None:
        self._browser = browser
        self._repo = repo
        self._clock = clock
        self._write_debounce_s = write_debounce_ms / 1000
        self._refresh_throttle_ms = refresh_throttle_ms
        self._reconcile_interval_s = reconcile_interval_s

        self._cache: dict[str, Card] = {}
        self._index = InvertedIndex()
        self._pending: dict[str, Card] = {}
        self._flush_task: asyncio.Task | None = None
        self._timer_task: asyncio.Task | None = None
        self._unsubscribe = None
        self._last_refresh_ms: int | None = None
        self.last_reconcile_at: int = 0
        self.booted = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, *, start_timer: bool = True) -> None:
        """Load persisted cards, reconcile with live tabs, register listeners."""
        if self.booted:
            return
        if self._repo is not None:
            try:
                for card in self._repo.list_cards():
                    self._cache[card.card_id] = card
                    self._index_card(card)
            except sqlite3.Error as exc:
                LOGGER.warning("could not read persisted cards: %s", exc)
        await self.reconcile()
        self._unsubscribe = self._browser.subscribe(self.handle_event)
        if start_timer and self._reconcile_interval_s > 0:
            self._timer_task = asyncio.create_task(self._reconcile_loop())
        self.booted = True
        LOGGER.info("tab index booted with %d cards", len(self._cache))

    async def close(self) -> None:
        """Stop the reconcile timer, unsubscribe, and flush pending writes."""
        for task in (self._timer_task, self._flush_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._timer_task = None
        self._flush_task = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.flush()
        self.booted = False

    async def _reconcile_loop(self) -> None:
        while True:
            await asyncio.sleep(self._reconcile_interval_s)
            try:
                await self.reconcile()
            except BrowserError as exc:
                LOGGER.warning("periodic reconcile failed: %s", exc)

    # ------------------------------------------------------------------
    # Card mutation
    # ------------------------------------------------------------------

    def _index_card(self, card: Card) -> None:
        try:
            tokens = card_tokens(card)
        except (TypeError, ValueError, AttributeError) as exc:
            LOGGER.warning("tokenizer failed for %s: %s", card.card_id, exc)
            tokens = set()
        self._index.add(card.card_id, tokens)
        self._index.built_at = now_ms(self._clock)

    def upsert(self, card: Card) -> None:
        """Update cache and postings now; queue the persistent write."""
        self._cache[card.card_id] = card
        self._index_card(card)
        self._pending[card.card_id] = card
        self._schedule_flush()

    def remove(self, card_id: str) -> None:
        """Delete a card from cache, postings and the persistent store."""
        self._cache.pop(card_id, None)
        self._index.remove(card_id)
        self._pending.pop(card_id, None)
        if self._repo is not None:
            try:
                self._repo.delete_card(card_id)
            except sqlite3.Error as exc:
                LOGGER.warning("persistent delete failed for %s: %s", card_id, exc)

    def get(self, card_id: str) -> Card | None:
        return self._cache.get(card_id)

    def get_by_tab(self, tab_id: int) -> Card | None:
        return self._cache.get(tab_card_id(tab_id))

    def _schedule_flush(self) -> None:
        if self._repo is None:
            self._pending.clear()
            return
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._flush_task = loop.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        await asyncio.sleep(self._write_debounce_s)
        self.flush()

    def flush(self) -> int:
        """Write the pending batch. On failure the batch is kept for the next try."""
        if self._repo is None or not self._pending:
            return 0
        batch = list(self._pending.values())
        try:
            written = self._repo.upsert_cards(batch)
        except sqlite3.Error as exc:
            LOGGER.warning("card write batch failed (%d pending): %s", len(batch), exc)
            return 0
        for card in batch:
            if self._pending.get(card.card_id) is card:
                del self._pending[card.card_id]
        return written

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _groups_by_id(self) -> dict[int, TabGroup]:
        return {g.id: g for g in await self._browser.list_groups()}

    async def reconcile(self) -> RefreshResult:
        """Upsert one card per live tab and drop cards for tabs that are gone."""
        now = now_ms(self._clock)
        tabs, groups = await asyncio.gather(
            self._browser.list_tabs(), self._groups_by_id()
        )
        live: set[str] = set()
        for tab in tabs:
            card = card_from_tab(tab, groups.get(tab.group_id), now)
            previous = self._cache.get(card.card_id)
            if previous is not None and not tab.active:
                card.last_visited_at = max(card.last_visited_at, previous.last_visited_at)
            live.add(card.card_id)
            self.upsert(card)
        stale = [cid for cid in self._cache if cid not in live]
        for cid in stale:
            self.remove(cid)
        if self._repo is not None:
            try:
                self._repo.delete_cards_not_in(live)
            except sqlite3.Error as exc:
                LOGGER.warning("reconcile delete failed: %s", exc)
        self.flush()
        self.last_reconcile_at = now
        LOGGER.debug("reconcile: %d live tabs, %d stale cards removed", len(live), len(stale))
        return RefreshResult(ok=True, upserted=len(live), removed=len(stale))

    async def refresh_open_tabs(self) -> RefreshResult:
        """Full reconcile, rate-limited to one run per throttle window."""
        now = now_ms(self._clock)
        if (
            self._last_refresh_ms is not None
            and now - self._last_refresh_ms < self._refresh_throttle_ms
        ):
            return RefreshResult(ok=True, skipped=True, reason="throttled")
        self._last_refresh_ms = now
        return await self.reconcile()

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    async def _group_for(self, group_id: int) -> TabGroup | None:
        if group_id == NO_GROUP:
            return None
        try:
            return await self._browser.get_group(group_id)
        except BrowserError:
            return None

    async def handle_event(self, event: TabEvent) -> None:
        """Apply one browser lifecycle event to the cache and postings."""
        now = now_ms(self._clock)
        kind = event.kind

        if kind == "removed" and event.tab_id is not None:
            self.remove(tab_card_id(event.tab_id))
            return

        if kind in ("created", "updated") and event.tab is not None:
            group = await self._group_for(event.tab.group_id)
            card = card_from_tab(event.tab, group, now)
            previous = self._cache.get(card.card_id)
            if previous is not None and not event.tab.active:
                card.last_visited_at = previous.last_visited_at
            self.upsert(card)
            return

        if kind == "activated" and event.tab_id is not None:
            card = self._cache.get(tab_card_id(event.tab_id))
            if card is None and event.tab is not None:
                card = card_from_tab(event.tab, await self._group_for(event.tab.group_id), now)
            if card is not None:
                card.last_visited_at = now
                card.window_id = event.window_id if event.window_id is not None else card.window_id
                card.updated_at = now
                self.upsert(card)
            return

        if kind in ("attached", "detached") and event.tab_id is not None:
            card = self._cache.get(tab_card_id(event.tab_id))
            if card is not None:
                card.window_id = event.window_id if kind == "attached" else None
                card.updated_at = now
                self.upsert(card)
            return

        if kind == "group_updated" and event.group is not None:
            label = group_label(event.group, event.group.id)
            for tab in await self._browser.list_tabs():
                if tab.group_id != event.group.id:
                    continue
                card = self._cache.get(tab_card_id(tab.id))
                if card is not None and card.group_name != label:
                    card.group_name = label
                    card.updated_at = now
                    self.upsert(card)

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def _purge_non_tabs(self) -> None:
        for cid in [cid for cid, c in self._cache.items() if c.source != "tab"]:
            self.remove(cid)

    def counts(self) -> dict[str, int]:
        self._purge_non_tabs()
        out: dict[str, int] = {}
        for card in self._cache.values():
            out[card.source] = out.get(card.source, 0) + 1
        return out

    def query(self, filters: dict[str, Any] | None = None, limit: int = DEFAULT_QUERY_LIMIT) -> list[Card]:
        """Cards matching *filters* (``source``, ``domain``, ``type``), newest first."""
        self._purge_non_tabs()
        cards = [c for c in self._cache.values() if _matches_filters(c, filters)]
        cards.sort(key=lambda c: c.last_visited_at, reverse=True)
        return cards[:limit]

    def all_cards(self) -> list[Card]:
        return list(self._cache.values())

    def health(self) -> dict[str, Any]:
        return {
            "ok": True,
            "cards": len(self._cache),
            "tokens": self._index.token_count,
            "builtAt": self._index.built_at,
            "lastReconcileAt": self.last_reconcile_at,
            "pendingWrites": self.pending_writes,
        }

    @property
    def inverted(self) -> InvertedIndex:
        return self._index

    # ------------------------------------------------------------------
    # Lexical search
    # ------------------------------------------------------------------

    def lexical_search(
        self,
        query: str,
        limit: int = MAX_LEXICAL_RESULTS,
        filters: dict[str, Any] | None = None,
    ) -> LexicalSearchResult:
        """Score cards for *query* and return the top results.

        Candidates come from the inverted index and from a substring scan
        (domain for tokens of length ≥ 3, title/URL for length ≥ 4). Cards
        that match no query token are skipped.
        """
        q = (query or "").strip().lower()
        if not q:
            return LexicalSearchResult(ok=False, error=ErrorKind.EMPTY_QUERY.value)

        self._purge_non_tabs()
        words = unigrams(q)
        lookup = tokenize(q)
        group = (filters or {}).get("group")

        candidate_ids: set[str] = set()
        hits_per_token: dict[str, int] = {}
        for token in lookup:
            ids = self._index.lookup(token)
            hits_per_token[token] = len(ids)
            candidate_ids |= ids

        for card in self._cache.values():
            domain = card.domain.lower()
            title = card.title.lower()
            url = card.url.lower()
            for token in words:
                if (len(token) >= 3 and token in domain) or (
                    len(token) >= 4 and (token in title or token in url)
                ):
                    candidate_ids.add(card.card_id)
                    break

        now = now_ms(self._clock)
        results: list[ScoredCard] = []
        for cid in candidate_ids:
            card = self._cache.get(cid)
            if card is None or not _matches_filters(card, filters):
                continue
            indexed = self._index.tokens_for(cid)
            haystack = (card.domain.lower(), card.title.lower(), card.url.lower())
            matched = sum(
                1 for t in words if t in indexed or any(t in h for h in haystack)
            )
            if matched == 0:
                continue
            results.append(
                ScoredCard(card=card, score=score_card(card, q, words, matched, now, group=group))
            )

        results.sort(key=lambda r: (r.score, r.card.last_visited_at), reverse=True)
        capped = results[: max(0, min(limit, MAX_LEXICAL_RESULTS))]
        LOGGER.debug("lexical_search %r: %d candidates, %d returned", q, len(results), len(capped))
        return LexicalSearchResult(
            ok=True, results=capped, tokens=lookup, hits_per_token=hits_per_token
        )


def _matches_filters(card: Card, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    if filters.get("source") and card.source != filters["source"]:
        return False
    if filters.get("domain") and card.domain != str(filters["domain"]).lower():
        return False
    if filters.get("type") and card.type != filters["type"]:
        return False
    return True
