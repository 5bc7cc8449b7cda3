"""Action Executor: carry out one intent against the browser.

Every public action returns an :class:`ActionResult` and never raises.
Destructive actions (close, close group) follow a two-step protocol: without
``confirmed`` a bulk or pinned target set comes back as a read-only preview;
with it the tabs are removed and an undo entry is pushed.

The executor is the only component that mutates browser state.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

from tabitha.actions.results import ActionResult
from tabitha.actions.undo import TabInfo, UndoEntry, UndoLog
from tabitha.browser.surface import BookmarkNode, BrowserSurface, Tab, TabGroup
from tabitha.db.models import Card
from tabitha.errors import BrowserError, ErrorKind
from tabitha.index.tab_index import TabIndex
from tabitha.index.urls import card_type, domain_of, normalize_url
from tabitha.lm.client import LanguageModel
from tabitha.pipeline.filters import app_matches, card_passes
from tabitha.router.intent import TOGGLE_INTENTS, Intent, IntentKind
from tabitha.telemetry import Telemetry
from tabitha.timeutil import Clock, format_age, now_ms

LOGGER = logging.getLogger(__name__)

RECENTLY_CLOSED_LIMIT = 25
ASK_TAB_LIMIT = 15
ASK_HISTORY_LIMIT = 5
ROOT_FOLDER = "Tabitha"
DEFAULT_FOLDER = "Chat Saves"
DEFAULT_GROUP_TITLE = "Saved Tabs"
NO_ANSWER = "I couldn't generate an answer. Could you rephrase your question?"

_OTHER_BOOKMARKS_ID = "2"

_ASK_PROMPT = """\
You are Tabitha. Answer questions about browsing activity naturally.

{conversation}
Question: "{query}"
Constraints: {constraints}

Browsing data:
{context}

Answer conversationally. Clearly label "Open tabs" vs "From history". Be specific and concise.

Answer:"""


@dataclass
class ActionRequest:
    """Everything an EXECUTE_ACTION message can carry.

    ``cards`` holds card views sent inline by the caller (history or session
    cards are not in the index), keyed by card id.
    """

    intent: Intent
    card_ids: list[str] = field(default_factory=list)
    tab_ids: list[int] | None = None
    cards: dict[str, Card] = field(default_factory=dict)
    next_to_current: bool = False
    confirmed: bool = False
    filters: dict[str, Any] | None = None
    folder_name: str | None = None
    save_as: str = "bookmark"
    query: str | None = None
    conversation: str = ""
    request_id: str | None = None


def _action(name: str) -> Callable:
    """Convert BrowserError into a failed result and count the outcome."""

    def decorate(fn: Callable[..., Awaitable[ActionResult]]) -> Callable[..., Awaitable[ActionResult]]:
        @functools.wraps(fn)
        async def wrapper(self: ActionExecutor, *args: Any, **kwargs: Any) -> ActionResult:
            try:
                result = await fn(self, *args, **kwargs)
            except BrowserError as exc:
                LOGGER.warning("action %s failed: %s", name, exc)
                result = ActionResult.failure(str(exc))
            if not result.is_preview:
                self._telemetry.record("actions", name, result.ok)
            LOGGER.debug("action_completed %s ok=%s error=%s", name, result.ok, result.error)
            return result

        return wrapper

    return decorate


def tab_view(tab: Tab) -> dict[str, Any]:
    return {
        "id": tab.id,
        "title": tab.title or "Untitled",
        "url": tab.url,
        "domain": domain_of(tab.url),
        "pinned": tab.pinned,
    }


def mini_card(tab: Tab) -> dict[str, Any]:
    return {"tabId": tab.id, "title": tab.title or "Untitled", "url": tab.url}


def group_title_matches(title: str, name: str) -> bool:
    t = (title or "").strip().lower()
    n = (name or "").strip().lower()
    return bool(t and n) and (t == n or n in t or t in n)


def tab_passes_filters(tab: Tab, filters: dict[str, Any]) -> bool:
    """Close filters: ``title``/``url`` substrings, exact ``domain``, app lists."""
    domain = domain_of(tab.url)
    title = filters.get("title")
    if title and str(title).lower() not in (tab.title or "").lower():
        return False
    wanted = filters.get("domain")
    if wanted and domain != str(wanted).lower().removeprefix("www."):
        return False
    url = filters.get("url")
    if url and str(url) not in tab.url:
        return False
    include = filters.get("includeApps") or []
    if include and not any(app_matches(domain, tab.url, a) for a in include):
        return False
    exclude = filters.get("excludeApps") or []
    if exclude and any(app_matches(domain, tab.url, a) for a in exclude):
        return False
    return True


def session_card(session_id: str, tab: Tab, closed_at: int) -> Card:
    return Card(
        card_id=f"session:{session_id}",
        source="session",
        title=tab.title or tab.url,
        url=tab.url,
        domain=domain_of(tab.url),
        type=card_type(tab.url),
        window_id=tab.window_id,
        last_visited_at=closed_at,
        updated_at=closed_at,
    )


class ActionExecutor:
    """Run actions for every :class:`IntentKind`.

    Args:
        browser: Browser surface to act on.
        index: Tab Index, used to resolve card ids and for ``ask`` context.
        model: Language model for ``ask``; ``None`` makes ``ask`` fail softly.
        undo: Undo ring shared with whoever exposes UNDO_CLOSE.
        telemetry: Counter sink for the ``actions`` category.
        clock: Wall-clock seconds source.
        ask_timeout_s: Bound on the ``ask`` model call.
    """

    def __init__(
        self,
        browser: BrowserSurface,
        index: TabIndex,
        model: LanguageModel | None = None,
        *,
        undo: UndoLog | None = None,
        telemetry: Telemetry | None = None,
        clock: Clock = time.time,
        ask_timeout_s: float = 60.0,
    ) -> None:
        self._browser = browser
        self._index = index
        self._model = model
        self._undo = undo if undo is not None else UndoLog()
        self._telemetry = telemetry or Telemetry()
        self._clock = clock
        self._ask_timeout_s = ask_timeout_s
        self._handlers: dict[IntentKind, Callable[[ActionRequest], Awaitable[ActionResult]]] = {
            IntentKind.OPEN: self._handle_open,
            IntentKind.FIND_OPEN: self._handle_find_open,
            IntentKind.CLOSE: self._handle_close,
            IntentKind.REOPEN: self._handle_reopen,
            IntentKind.SAVE: self._handle_save,
            IntentKind.LIST: self._handle_list,
            IntentKind.ASK: self._handle_ask,
            IntentKind.MUTE: self._handle_toggle,
            IntentKind.UNMUTE: self._handle_toggle,
            IntentKind.PIN: self._handle_toggle,
            IntentKind.UNPIN: self._handle_toggle,
            IntentKind.RELOAD: self._handle_toggle,
            IntentKind.DISCARD: self._handle_toggle,
        }
        missing = [k.value for k in IntentKind if k not in self._handlers]
        if missing:
            raise RuntimeError(f"no action handler for intents: {', '.join(missing)}")

    @property
    def undo_log(self) -> UndoLog:
        return self._undo

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(self, request: ActionRequest) -> ActionResult:
        """Run the handler for ``request.intent``."""
        LOGGER.debug(
            "action_started %s request=%s cards=%s", request.intent.intent.value, request.request_id, request.card_ids
        )
        return await self._handlers[request.intent.intent](request)

    def _group_target(self, request: ActionRequest) -> str | None:
        constraints = request.intent.constraints
        if constraints.scope == "group" and constraints.group:
            return constraints.group
        return None

    async def _handle_open(self, request: ActionRequest) -> ActionResult:
        group = self._group_target(request)
        if group and not request.card_ids:
            return await self.focus_group(group)
        card_id = request.card_ids[0] if request.card_ids else ""
        return await self.open(
            card_id,
            next_to_current=request.next_to_current,
            intent=request.intent,
            card=request.cards.get(card_id),
        )

    async def _handle_find_open(self, request: ActionRequest) -> ActionResult:
        group = self._group_target(request)
        if group and not request.card_ids:
            return await self.focus_group(group)
        card_id = request.card_ids[0] if request.card_ids else ""
        return await self.find_open(card_id, card=request.cards.get(card_id))

    async def _handle_close(self, request: ActionRequest) -> ActionResult:
        group = self._group_target(request)
        if group and not request.card_ids and not request.tab_ids:
            return await self.close_group(group, confirmed=request.confirmed, request_id=request.request_id)
        tab_ids = list(request.tab_ids or [])
        if not tab_ids:
            for card_id in request.card_ids:
                card = await self._card(card_id, request.cards.get(card_id))
                if card is not None and card.is_open_tab:
                    tab_ids.append(card.tab_id)  # type: ignore[arg-type]
        filters = request.filters
        constraints = request.intent.constraints
        if not tab_ids and not filters and (constraints.include_apps or constraints.exclude_apps):
            filters = {"includeApps": constraints.include_apps, "excludeApps": constraints.exclude_apps}
        return await self.close(
            tab_ids=tab_ids or None,
            filters=filters,
            confirmed=request.confirmed,
            request_id=request.request_id,
        )

    async def _handle_reopen(self, request: ActionRequest) -> ActionResult:
        card_id = request.card_ids[0] if request.card_ids else ""
        return await self.reopen(card_id, card=request.cards.get(card_id))

    async def _handle_save(self, request: ActionRequest) -> ActionResult:
        folder = request.folder_name or request.intent.folder_name
        group = self._group_target(request)
        if group and not request.card_ids:
            return await self.save_group(group, folder)
        return await self.save(
            request.card_ids, folder_name=folder, save_as=request.save_as, cards=request.cards
        )

    async def _handle_list(self, request: ActionRequest) -> ActionResult:
        intent = request.intent
        group = self._group_target(request)
        if group and intent.operation:
            return await self.group_operation(group, intent.operation, intent.operation_args or {})
        return await self.show(request.card_ids, cards=request.cards)

    async def _handle_ask(self, request: ActionRequest) -> ActionResult:
        query = request.query or request.intent.canonical_query
        return await self.ask(query, request.intent, conversation=request.conversation)

    async def _handle_toggle(self, request: ActionRequest) -> ActionResult:
        return await self.toggle(
            request.intent.intent, request.card_ids, intent=request.intent, cards=request.cards
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _card(self, card_id: str, inline: Card | None = None) -> Card | None:
        if inline is not None:
            return inline
        card = self._index.get(card_id)
        if card is not None:
            return card
        if card_id.startswith("tab:"):
            try:
                tab_id = int(card_id.split(":", 1)[1])
            except ValueError:
                return None
            tab = await self._maybe_tab(tab_id)
            if tab is not None:
                return Card(
                    card_id=card_id,
                    source="tab",
                    tab_id=tab.id,
                    source_id=tab.id,
                    window_id=tab.window_id,
                    title=tab.title,
                    url=tab.url,
                    domain=domain_of(tab.url),
                    type=card_type(tab.url),
                    is_pinned=tab.pinned,
                )
        return None

    async def _maybe_tab(self, tab_id: int | None) -> Tab | None:
        if tab_id is None:
            return None
        try:
            return await self._browser.get_tab(tab_id)
        except BrowserError:
            return None

    async def _activate(self, tab: Tab) -> None:
        await self._browser.update_tab(tab.id, active=True)
        await self._browser.focus_window(tab.window_id)

    async def _find_group(self, name: str) -> TabGroup | None:
        """Equal title first, then contains, then reverse-contains."""
        groups = await self._browser.list_groups()
        wanted = (name or "").strip().lower()
        if not wanted:
            return None
        titled = [g for g in groups if g.title]
        for g in titled:
            if g.title.lower() == wanted:
                return g
        for g in titled:
            if wanted in g.title.lower():
                return g
        for g in titled:
            if g.title.lower() in wanted:
                return g
        return None

    async def _tabs_in_group(self, group_id: int) -> list[Tab]:
        tabs = [t for t in await self._browser.list_tabs() if t.group_id == group_id]
        tabs.sort(key=lambda t: (t.window_id, t.index))
        return tabs

    async def closed_cards(self, limit: int = RECENTLY_CLOSED_LIMIT) -> list[Card]:
        """Recently-closed tabs as ``session`` cards, newest first."""
        try:
            sessions = await self._browser.recently_closed(limit)
        except BrowserError as exc:
            LOGGER.warning("recently closed lookup failed: %s", exc)
            return []
        cards = []
        for session in sessions:
            tabs = [session.tab] if session.tab else session.window_tabs or []
            for tab in tabs[:1]:
                cards.append(session_card(session.session_id, tab, session.closed_at))
        return cards

    # ------------------------------------------------------------------
    # open / find_open
    # ------------------------------------------------------------------

    @_action("open")
    async def open(
        self,
        card_id: str,
        *,
        next_to_current: bool = False,
        intent: Intent | None = None,
        card: Card | None = None,
    ) -> ActionResult:
        group_name = intent.constraints.group if intent else None
        if group_name:
            group = await self._find_group(group_name)
            members = await self._tabs_in_group(group.id) if group else []
            if members:
                wanted = next((t for t in members if f"tab:{t.id}" == card_id), members[0])
                await self._activate(wanted)
                return ActionResult.success(
                    tabId=wanted.id, url=wanted.url, activated=True, groupFocused=True
                )

        card = await self._card(card_id, card)
        if card is None:
            return ActionResult.failure(ErrorKind.CARD_NOT_FOUND)

        active, groups, target = await asyncio.gather(
            self._browser.active_tab(),
            self._browser.list_groups(),
            self._maybe_tab(card.tab_id if card.is_open_tab else None),
        )

        if target is not None:
            await self._activate(target)
            moved = False
            if next_to_current and active is not None and active.id != target.id:
                await self._browser.move_tab(target.id, active.index + 1, window_id=active.window_id)
                moved = True
            group = next((g for g in groups if g.id == target.group_id), None)
            details: dict[str, Any] = {
                "tabId": target.id,
                "url": target.url,
                "activated": True,
                "moved": moved,
            }
            if group is not None and group.title:
                details["groupName"] = group.title
            return ActionResult.success(**details)

        if not card.url:
            return ActionResult.failure(ErrorKind.CARD_NOT_FOUND_OR_NO_URL)

        wanted_url = normalize_url(card.url)
        for tab in await self._browser.list_tabs():
            if normalize_url(tab.url) == wanted_url:
                await self._activate(tab)
                return ActionResult.success(tabId=tab.id, url=tab.url, activated=True, matchedByUrl=True)

        place = next_to_current and active is not None
        created = await self._browser.create_tab(
            card.url,
            index=active.index + 1 if place and active else None,
            window_id=active.window_id if place and active else None,
        )
        return ActionResult.success(tabId=created.id, url=created.url, activated=False, created=True)

    @_action("find_open")
    async def find_open(self, card_id: str, *, card: Card | None = None) -> ActionResult:
        card = await self._card(card_id, card)
        if card is None:
            return ActionResult.failure(ErrorKind.CARD_NOT_FOUND)
        tab = await self._maybe_tab(card.tab_id if card.is_open_tab else None)
        if tab is not None:
            await self._activate(tab)
            return ActionResult.success(found=True, tabId=tab.id, action="activated", card=card.to_dict())
        return ActionResult.success(found=False, tabId=None, action="propose_open", card=card.to_dict())

    # ------------------------------------------------------------------
    # close / undo
    # ------------------------------------------------------------------

    def _close_preview(self, tabs: list[Tab], reason: str, **extra: Any) -> ActionResult:
        return ActionResult.success(
            preview=True,
            count=len(tabs),
            tabs=[tab_view(t) for t in tabs],
            canConfirm=True,
            requiresConfirmation=True,
            reason=reason,
            **extra,
        )

    def _push_undo(self, kind: str, tabs: list[Tab], request_id: str | None, group_name: str | None = None) -> None:
        self._undo.push(
            UndoEntry(
                type=kind,
                tab_info=[TabInfo.from_tab(t) for t in tabs],
                group_name=group_name,
                timestamp=now_ms(self._clock),
                request_id=request_id,
            )
        )

    @_action("close")
    async def close(
        self,
        *,
        tab_ids: list[int] | None = None,
        filters: dict[str, Any] | None = None,
        confirmed: bool = False,
        request_id: str | None = None,
    ) -> ActionResult:
        """Close tabs by id or by filters.

        Bulk (more than one tab) or pinned targets return a preview unless
        *confirmed*. A confirmed close pushes an undo entry holding each tab's
        id, URL, title, window and index.
        """
        if tab_ids:
            found = await asyncio.gather(*(self._maybe_tab(t) for t in tab_ids))
            tabs = [t for t in found if t is not None]
        elif filters:
            tabs = [t for t in await self._browser.list_tabs() if tab_passes_filters(t, filters)]
        else:
            return ActionResult.failure(ErrorKind.MISSING_FILTERS_OR_TAB_IDS)

        if not tabs:
            return ActionResult.failure(ErrorKind.NO_MATCHING_TABS)

        bulk = len(tabs) > 1
        pinned = any(t.pinned for t in tabs)
        if not confirmed and (bulk or pinned):
            LOGGER.info("close needs confirmation for %d tab(s)", len(tabs))
            return self._close_preview(tabs, "bulk_close" if bulk else "pinned_tab")

        ids = [t.id for t in tabs]
        await self._browser.remove_tabs(ids)
        self._push_undo("close", tabs, request_id)
        LOGGER.info("closed %d tab(s)", len(ids))
        return ActionResult.success(count=len(ids), tabIds=ids, undoAvailable=True)

    @_action("undo")
    async def undo_last_close(self) -> ActionResult:
        """Restore every tab of the latest close.

        Each tab is matched to a recently-closed session by URL and original
        tab id; when none match, a closed window of the same size and URLs is
        restored whole; anything left is re-created at its recorded window
        and index, in ascending index order.
        """
        entry = self._undo.latest()
        if entry is None or entry.type not in ("close", "close_group"):
            return ActionResult.failure(ErrorKind.NO_UNDO_AVAILABLE)
        self._undo.pop()

        infos = sorted(entry.tab_info, key=lambda i: (i.window_id, i.index))
        sessions = await self._browser.recently_closed(RECENTLY_CLOSED_LIMIT)
        by_tab = {}
        for s in sessions:
            if s.tab is not None:
                by_tab.setdefault((s.tab.id, s.tab.url), s)
        matched = [by_tab.get((i.tab_id, i.url)) for i in infos]

        if not any(matched):
            urls = sorted(i.url for i in infos)
            for s in sessions:
                if s.window_tabs and sorted(t.url for t in s.window_tabs) == urls:
                    restored = await self._browser.restore_session(s.session_id)
                    return ActionResult.success(
                        restored=len(restored),
                        method="session_restore",
                        tabIds=[t.id for t in restored],
                        urls=[t.url for t in restored],
                    )

        restored_tabs: list[Tab] = []
        methods: set[str] = set()
        for info, session in zip(infos, matched):
            if session is not None:
                try:
                    restored_tabs.extend(await self._browser.restore_session(session.session_id))
                    methods.add("session_restore")
                    continue
                except BrowserError as exc:
                    LOGGER.info("session restore failed for %s: %s", info.url, exc)
            try:
                restored_tabs.append(
                    await self._browser.create_tab(
                        info.url, index=info.index, window_id=info.window_id, active=False
                    )
                )
                methods.add("manual_restore")
            except BrowserError as exc:
                LOGGER.warning("could not re-create %s: %s", info.url, exc)

        if not restored_tabs:
            return ActionResult.failure(ErrorKind.UNDO_EXPIRED)
        method = methods.pop() if len(methods) == 1 else "mixed"
        LOGGER.info("undo restored %d tab(s) via %s", len(restored_tabs), method)
        return ActionResult.success(
            restored=len(restored_tabs),
            method=method,
            tabIds=[t.id for t in restored_tabs],
            urls=[t.url for t in restored_tabs],
        )

    # ------------------------------------------------------------------
    # reopen / save / show
    # ------------------------------------------------------------------

    @_action("reopen")
    async def reopen(self, card_id: str, *, card: Card | None = None) -> ActionResult:
        card = await self._card(card_id, card)
        if card is None or not card.url:
            return ActionResult.failure(ErrorKind.CARD_NOT_FOUND_OR_NO_URL)

        wanted = normalize_url(card.url)
        for session in await self._browser.recently_closed(RECENTLY_CLOSED_LIMIT):
            tabs = [session.tab] if session.tab else session.window_tabs or []
            if any(normalize_url(t.url) == wanted for t in tabs):
                restored = await self._browser.restore_session(session.session_id)
                return ActionResult.success(
                    restored=True,
                    tabId=restored[0].id if restored else None,
                    sessionId=session.session_id,
                )

        tab = await self._browser.create_tab(card.url)
        return ActionResult.success(restored=False, fallback=True, tabId=tab.id)

    async def _ensure_folder(self, path: list[str]) -> BookmarkNode:
        """Find or create ``path`` under the bookmark tree.

        The first element is looked up anywhere in the tree; when missing it
        is created under "Other bookmarks", or the first top-level folder.
        """
        roots = await self._browser.bookmark_tree()
        top = [c for r in roots for c in r.children if c.is_folder]

        def _search(nodes: list[BookmarkNode]) -> BookmarkNode | None:
            for node in nodes:
                if node.is_folder and node.title == path[0]:
                    return node
                found = _search(node.children)
                if found is not None:
                    return found
            return None

        node = _search(roots)
        if node is None:
            parent = next((n for n in top if n.id == _OTHER_BOOKMARKS_ID), top[0] if top else None)
            node = await self._browser.create_bookmark(parent.id if parent else None, path[0])
        for part in path[1:]:
            child = next((c for c in node.children if c.is_folder and c.title == part), None)
            if child is None:
                child = await self._browser.create_bookmark(node.id, part)
            node = child
        return node

    async def _bookmark_all(self, folder: BookmarkNode, items: list[tuple[str, str]]) -> tuple[list[str], int]:
        ids: list[str] = []
        failed = 0
        for title, url in items:
            try:
                node = await self._browser.create_bookmark(folder.id, title, url)
                ids.append(node.id)
            except BrowserError as exc:
                LOGGER.warning("bookmark failed for %s: %s", url, exc)
                failed += 1
        return ids, failed

    @_action("save")
    async def save(
        self,
        card_ids: list[str],
        *,
        folder_name: str | None = None,
        save_as: str = "bookmark",
        cards: dict[str, Card] | None = None,
    ) -> ActionResult:
        """Bookmark cards under ``Tabitha/<folder>`` or group their open tabs."""
        cards = cards or {}
        resolved = [await self._card(cid, cards.get(cid)) for cid in card_ids]
        valid = [c for c in resolved if c is not None and c.url]
        if not valid:
            return ActionResult.failure(ErrorKind.NO_VALID_CARDS)

        if save_as == "group":
            open_tabs = await asyncio.gather(
                *(self._maybe_tab(c.tab_id) for c in valid if c.is_open_tab)
            )
            tab_ids = [t.id for t in open_tabs if t is not None]
            if not tab_ids:
                return ActionResult.failure(ErrorKind.NO_OPEN_TABS_TO_GROUP)
            title = folder_name or DEFAULT_GROUP_TITLE
            group_id = await self._browser.group_tabs(tab_ids)
            await self._browser.update_group(group_id, title=title)
            return ActionResult.success(
                saved=len(tab_ids), mode="group", groupId=group_id, groupTitle=title, tabIds=tab_ids
            )

        name = folder_name or DEFAULT_FOLDER
        folder = await self._ensure_folder([ROOT_FOLDER, name])
        ids, failed = await self._bookmark_all(folder, [(c.title or c.url, c.url) for c in valid])
        return ActionResult.success(
            saved=len(ids),
            failed=failed,
            mode="bookmark",
            folderId=folder.id,
            folderName=name,
            bookmarkIds=ids,
        )

    @_action("show")
    async def show(self, card_ids: list[str], *, cards: dict[str, Card] | None = None) -> ActionResult:
        cards = cards or {}
        resolved = [await self._card(cid, cards.get(cid)) for cid in card_ids]
        return ActionResult.success(cards=[c.to_dict() for c in resolved if c is not None])

    # ------------------------------------------------------------------
    # Toggles
    # ------------------------------------------------------------------

    async def _toggle_targets(
        self, kind: IntentKind, card_ids: list[str], intent: Intent | None, cards: dict[str, Card]
    ) -> list[Tab]:
        if card_ids:
            resolved = [await self._card(cid, cards.get(cid)) for cid in card_ids]
            found = await asyncio.gather(
                *(self._maybe_tab(c.tab_id) for c in resolved if c is not None and c.is_open_tab)
            )
            tabs = [t for t in found if t is not None]
        else:
            constraints = intent.constraints if intent else None
            if kind is IntentKind.RELOAD and constraints is not None and constraints.limit == 1:
                active = await self._browser.active_tab()
                tabs = [active] if active else []
            else:
                tabs = await self._browser.list_tabs()
                if constraints is not None:
                    tabs = [
                        t
                        for t in tabs
                        if tab_passes_filters(
                            t,
                            {"includeApps": constraints.include_apps, "excludeApps": constraints.exclude_apps},
                        )
                    ]
                    if constraints.limit:
                        tabs = tabs[: constraints.limit]
        if kind is IntentKind.DISCARD:
            tabs = [t for t in tabs if not t.pinned and not t.active]
        return tabs

    async def _apply_toggle(self, kind: IntentKind, tab: Tab) -> bool:
        try:
            if kind is IntentKind.MUTE:
                await self._browser.update_tab(tab.id, muted=True)
            elif kind is IntentKind.UNMUTE:
                await self._browser.update_tab(tab.id, muted=False)
            elif kind is IntentKind.PIN:
                await self._browser.update_tab(tab.id, pinned=True)
            elif kind is IntentKind.UNPIN:
                await self._browser.update_tab(tab.id, pinned=False)
            elif kind is IntentKind.RELOAD:
                await self._browser.reload_tab(tab.id)
            else:
                await self._browser.discard_tab(tab.id)
        except BrowserError as exc:
            LOGGER.info("%s skipped tab %s: %s", kind.value, tab.id, exc)
            return False
        return True

    async def toggle(
        self,
        kind: IntentKind,
        card_ids: list[str] | None = None,
        *,
        intent: Intent | None = None,
        cards: dict[str, Card] | None = None,
    ) -> ActionResult:
        """mute / unmute / pin / unpin / reload / discard, issued in parallel."""
        if kind not in TOGGLE_INTENTS:
            raise ValueError(f"{kind} is not a toggle")
        return await self._toggle(kind, list(card_ids or []), intent, cards or {})

    async def _toggle(
        self, kind: IntentKind, card_ids: list[str], intent: Intent | None, cards: dict[str, Card]
    ) -> ActionResult:
        try:
            tabs = await self._toggle_targets(kind, card_ids, intent, cards)
        except BrowserError as exc:
            LOGGER.warning("action %s failed: %s", kind.value, exc)
            self._telemetry.record("actions", kind.value, False)
            return ActionResult.failure(str(exc))
        if not tabs:
            self._telemetry.record("actions", kind.value, False)
            return ActionResult.failure(ErrorKind.NO_TABS_FOUND)
        outcomes = await asyncio.gather(*(self._apply_toggle(kind, t) for t in tabs))
        done = [t.id for t, ok in zip(tabs, outcomes) if ok]
        self._telemetry.record("actions", kind.value, True)
        LOGGER.info("%s applied to %d of %d tab(s)", kind.value, len(done), len(tabs))
        return ActionResult.success(count=len(done), tabIds=done)

    # ------------------------------------------------------------------
    # Group operations
    # ------------------------------------------------------------------

    async def _group_with_tabs(self, name: str) -> tuple[TabGroup | None, list[Tab]]:
        group = await self._find_group(name)
        if group is None:
            return None, []
        return group, await self._tabs_in_group(group.id)

    @_action("focus_group")
    async def focus_group(self, name: str) -> ActionResult:
        group, tabs = await self._group_with_tabs(name)
        if group is None or not tabs:
            return ActionResult.failure(ErrorKind.GROUP_NOT_FOUND)
        if group.collapsed:
            await self._browser.update_group(group.id, collapsed=False)
        await self._activate(tabs[0])
        return ActionResult.success(
            groupId=group.id, groupTitle=group.title, tabId=tabs[0].id, count=len(tabs)
        )

    @_action("close_group")
    async def close_group(
        self, name: str, *, confirmed: bool = False, request_id: str | None = None
    ) -> ActionResult:
        group, tabs = await self._group_with_tabs(name)
        if group is None or not tabs:
            return ActionResult.failure(ErrorKind.GROUP_NOT_FOUND_OR_EMPTY)
        if not confirmed:
            return self._close_preview(tabs, "close_group", groupTitle=group.title)
        ids = [t.id for t in tabs]
        await self._browser.remove_tabs(ids)
        self._push_undo("close_group", tabs, request_id, group_name=group.title)
        return ActionResult.success(
            count=len(ids), tabIds=ids, groupTitle=group.title, undoAvailable=True
        )

    @_action("save_group")
    async def save_group(self, name: str, folder_name: str | None = None) -> ActionResult:
        group, tabs = await self._group_with_tabs(name)
        if group is None or not tabs:
            return ActionResult.failure(ErrorKind.GROUP_NOT_FOUND_OR_EMPTY)
        folder_title = folder_name or DEFAULT_FOLDER
        folder = await self._ensure_folder([ROOT_FOLDER, folder_title])
        ids, failed = await self._bookmark_all(folder, [(t.title or t.url, t.url) for t in tabs])
        return ActionResult.success(
            saved=len(ids),
            failed=failed,
            groupTitle=group.title,
            folderId=folder.id,
            folderName=folder_title,
            bookmarkIds=ids,
            tabs=[mini_card(t) for t in tabs],
        )

    @_action("move_group_to_window")
    async def move_group_to_window(self, name: str) -> ActionResult:
        group, tabs = await self._group_with_tabs(name)
        if group is None or not tabs:
            return ActionResult.failure(ErrorKind.GROUP_NOT_FOUND_OR_EMPTY)
        window_id = await self._browser.create_window(tabs[0].id)
        for tab in tabs[1:]:
            await self._browser.move_tab(tab.id, -1, window_id=window_id)
        ids = [t.id for t in tabs]
        group_id = await self._browser.group_tabs(ids)
        await self._browser.update_group(group_id, title=group.title, color=group.color)
        return ActionResult.success(windowId=window_id, movedCount=len(ids), groupId=group_id)

    @_action("rename_group")
    async def rename_group(self, name: str, new_name: str) -> ActionResult:
        if not (new_name or "").strip():
            return ActionResult.failure(ErrorKind.BAD_REQUEST)
        group = await self._find_group(name)
        if group is None:
            return ActionResult.failure(ErrorKind.GROUP_NOT_FOUND)
        await self._browser.update_group(group.id, title=new_name.strip())
        return ActionResult.success(groupId=group.id, newName=new_name.strip())

    @_action("collapse_group")
    async def collapse_group(self, name: str, collapsed: bool = True) -> ActionResult:
        group = await self._find_group(name)
        if group is None:
            return ActionResult.failure(ErrorKind.GROUP_NOT_FOUND)
        await self._browser.update_group(group.id, collapsed=collapsed)
        return ActionResult.success(groupId=group.id, collapsed=collapsed)

    @_action("ungroup")
    async def ungroup(self, name: str) -> ActionResult:
        group, tabs = await self._group_with_tabs(name)
        if group is None or not tabs:
            return ActionResult.failure(ErrorKind.GROUP_NOT_FOUND_OR_EMPTY)
        await self._browser.ungroup([t.id for t in tabs])
        return ActionResult.success(count=len(tabs), groupTitle=group.title)

    async def group_operation(self, name: str, operation: str, args: dict[str, Any]) -> ActionResult:
        """Dispatch a ``list``/``show`` group operation."""
        if operation == "move_to_window":
            return await self.move_group_to_window(name)
        if operation == "rename":
            new_name = str(args.get("rename_to") or args.get("newName") or "")
            result = await self.rename_group(name, new_name)
            if result.ok and args.get("collapse"):
                collapsed = await self.collapse_group(new_name.strip(), True)
                result.details["collapsed"] = collapsed.ok
            return result
        if operation == "collapse":
            return await self.collapse_group(name, True)
        if operation == "expand":
            return await self.collapse_group(name, False)
        return ActionResult.failure(ErrorKind.BAD_REQUEST, operation=operation)

    # ------------------------------------------------------------------
    # ask
    # ------------------------------------------------------------------

    async def history_cards(self, intent: Intent) -> list[Card]:
        rng = intent.constraints.date_range
        if rng is None:
            return []
        since = rng.since_ms or 0
        try:
            items = await self._browser.search_history(
                "", since, rng.until_ms, max_results=ASK_HISTORY_LIMIT * 4
            )
        except BrowserError as exc:
            LOGGER.warning("history lookup failed: %s", exc)
            return []
        wanted = replace(intent.constraints, result_must_be_open=False)
        cards = [
            Card(
                card_id=f"history:{item.id}",
                source="history",
                title=item.title,
                url=item.url,
                domain=domain_of(item.url),
                type=card_type(item.url),
                last_visited_at=item.last_visit_time,
            )
            for item in items
        ]
        return [c for c in cards if card_passes(c, wanted)][:ASK_HISTORY_LIMIT]

    def _context_lines(self, cards: list[Card], now: int) -> str:
        lines = []
        for i, c in enumerate(cards, start=1):
            age = format_age(now - c.last_visited_at) if c.last_visited_at else "unknown"
            lines.append(
                f'{i}. "{c.title or c.url or "Untitled"}" ({c.domain or "unknown"}) - {c.type or "page"} - {age} ago'
            )
        return "\n".join(lines)

    @_action("ask")
    async def ask(self, query: str, intent: Intent, *, conversation: str = "") -> ActionResult:
        """Answer a question about browsing activity. No browser mutation."""
        now = now_ms(self._clock)
        all_tabs = self._index.all_cards()
        wanted = replace(intent.constraints, result_must_be_open=False)
        open_cards = sorted(
            (c for c in all_tabs if c.is_open_tab and card_passes(c, wanted)),
            key=lambda c: c.last_visited_at,
            reverse=True,
        )[:ASK_TAB_LIMIT]
        history = await self.history_cards(intent) if intent.is_temporal else []

        sections = []
        if open_cards:
            sections.append("OPEN TABS:\n" + self._context_lines(open_cards, now))
        if history:
            sections.append("FROM HISTORY:\n" + self._context_lines(history, now))
        prompt = _ASK_PROMPT.format(
            conversation=f"Previous conversation:\n{conversation}\n" if conversation else "",
            query=query,
            constraints=json.dumps(intent.constraints.to_dict()),
            context="\n\n".join(sections) or "No matching items found.",
        )

        if self._model is None or not await self._model.available():
            return ActionResult.failure(ErrorKind.OFFSCREEN_UNAVAILABLE, answer=NO_ANSWER)
        response = await self._model.run(prompt, timeout_s=self._ask_timeout_s)
        if not response.ok or not response.text.strip():
            return ActionResult.failure(ErrorKind.NO_RESPONSE, answer=NO_ANSWER)
        return ActionResult.success(
            answer=response.text.strip(),
            contextCards=len(open_cards) + len(history),
            totalCards=len(all_tabs),
        )
