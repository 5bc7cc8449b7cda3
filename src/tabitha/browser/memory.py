"""In-process browser: a complete BrowserSurface kept in plain dicts.

Used by the test-suite and by the CLI, which seeds it from a YAML tabs file.
Every mutation emits the same lifecycle events a real browser would.
"""

from __future__ import annotations

import copy
import itertools
import time
from typing import Any

from tabitha.browser.surface import (
    NO_GROUP,
    BookmarkNode,
    BrowserSurface,
    ClosedSession,
    HistoryItem,
    Tab,
    TabEvent,
    TabGroup,
)
from tabitha.errors import BrowserError
from tabitha.timeutil import Clock, now_ms

_BOOKMARKS_BAR_ID = "1"
_OTHER_BOOKMARKS_ID = "2"
_MAX_CLOSED = 25


class InMemoryBrowser(BrowserSurface):
    """Windows, tabs, groups, bookmarks, history and a recently-closed list."""

    def __init__(self, *, clock: Clock = time.time) -> None:
        super().__init__()
        self._clock = clock
        self._tabs: dict[int, Tab] = {}
        self._windows: dict[int, list[int]] = {}
        self._groups: dict[int, TabGroup] = {}
        self._closed: list[ClosedSession] = []
        self._history: list[HistoryItem] = []
        self._focused_window: int | None = None
        self._tab_ids = itertools.count(1)
        self._window_ids = itertools.count(1)
        self._group_ids = itertools.count(1)
        self._session_ids = itertools.count(1)
        self._bookmark_ids = itertools.count(3)
        self._bookmark_root = BookmarkNode(
            id="0",
            title="",
            children=[
                BookmarkNode(id=_BOOKMARKS_BAR_ID, title="Bookmarks bar", parent_id="0"),
                BookmarkNode(id=_OTHER_BOOKMARKS_ID, title="Other bookmarks", parent_id="0"),
            ],
        )
        self.reloaded: list[int] = []

    # ------------------------------------------------------------------
    # Seeding (synchronous, no events)
    # ------------------------------------------------------------------

    def seed_window(self) -> int:
        window_id = next(self._window_ids)
        self._windows[window_id] = []
        if self._focused_window is None:
            self._focused_window = window_id
        return window_id

    def seed_tab(
        self,
        url: str,
        title: str = "",
        *,
        window_id: int | None = None,
        active: bool = False,
        pinned: bool = False,
        muted: bool = False,
        last_accessed: int | None = None,
        tab_id: int | None = None,
    ) -> Tab:
        """Add a tab without emitting events. Creates window 1 on first use."""
        if window_id is None:
            window_id = self._focused_window or self.seed_window()
        elif window_id not in self._windows:
            self._windows[window_id] = []
            self._window_ids = itertools.count(max(self._windows) + 1)
            if self._focused_window is None:
                self._focused_window = window_id
        if tab_id is None:
            tab_id = next(self._tab_ids)
        else:
            self._tab_ids = itertools.count(max(tab_id, *self._tabs.keys(), 0) + 1)
        tab = Tab(
            id=tab_id,
            url=url,
            title=title or url,
            window_id=window_id,
            pinned=pinned,
            muted=muted,
            last_accessed=last_accessed if last_accessed is not None else now_ms(self._clock),
        )
        self._tabs[tab_id] = tab
        self._windows[window_id].append(tab_id)
        self._reindex(window_id)
        if active:
            self._activate(tab_id)
        return copy.deepcopy(tab)

    def seed_group(self, title: str, tab_ids: list[int], *, collapsed: bool = False) -> int:
        group_id = next(self._group_ids)
        window_id = self._tabs[tab_ids[0]].window_id
        self._groups[group_id] = TabGroup(
            id=group_id, window_id=window_id, title=title, collapsed=collapsed
        )
        for tid in tab_ids:
            self._tabs[tid].group_id = group_id
        return group_id

    def seed_history(self, url: str, title: str = "", *, last_visit_time: int) -> HistoryItem:
        item = HistoryItem(
            id=f"h{len(self._history) + 1}",
            url=url,
            title=title or url,
            last_visit_time=last_visit_time,
        )
        self._history.append(item)
        return item

    def seed_closed_tab(self, url: str, title: str = "", *, window_id: int = 1, index: int = 0) -> ClosedSession:
        tab = Tab(id=next(self._tab_ids), url=url, title=title or url, window_id=window_id, index=index)
        session = ClosedSession(
            session_id=f"s{next(self._session_ids)}", closed_at=now_ms(self._clock), tab=tab
        )
        self._closed.insert(0, session)
        return session

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, clock: Clock = time.time) -> InMemoryBrowser:
        """Build a browser from ``{windows: [{tabs: [...], groups: {...}}], history: [...]}``.

        Each tab entry takes ``url``, ``title``, ``active``, ``pinned``, ``muted``,
        ``group`` and ``age_minutes``; history entries take ``url``, ``title``
        and ``age_hours``.
        """
        browser = cls(clock=clock)
        now = now_ms(clock)
        for window in data.get("windows") or [{"tabs": data.get("tabs") or []}]:
            window_id = browser.seed_window()
            grouped: dict[str, list[int]] = {}
            for raw in window.get("tabs") or []:
                tab = browser.seed_tab(
                    str(raw["url"]),
                    str(raw.get("title") or ""),
                    window_id=window_id,
                    active=bool(raw.get("active", False)),
                    pinned=bool(raw.get("pinned", False)),
                    muted=bool(raw.get("muted", False)),
                    last_accessed=now - int(float(raw.get("age_minutes", 0)) * 60_000),
                )
                if raw.get("group"):
                    grouped.setdefault(str(raw["group"]), []).append(tab.id)
            for title, ids in grouped.items():
                browser.seed_group(title, ids)
        for raw in data.get("history") or []:
            browser.seed_history(
                str(raw["url"]),
                str(raw.get("title") or ""),
                last_visit_time=now - int(float(raw.get("age_hours", 0)) * 3_600_000),
            )
        return browser

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_tab(self, tab_id: int) -> Tab:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise BrowserError(f"No tab with id: {tab_id}.")
        return tab

    def _require_group(self, group_id: int) -> TabGroup:
        group = self._groups.get(group_id)
        if group is None:
            raise BrowserError(f"No group with id: {group_id}.")
        return group

    def _reindex(self, window_id: int) -> None:
        for i, tid in enumerate(self._windows.get(window_id, [])):
            self._tabs[tid].index = i

    def _activate(self, tab_id: int) -> None:
        tab = self._tabs[tab_id]
        for tid in self._windows[tab.window_id]:
            self._tabs[tid].active = tid == tab_id
        tab.last_accessed = now_ms(self._clock)

    def _snapshot(self, tab_id: int) -> Tab:
        return copy.deepcopy(self._tabs[tab_id])

    def _drop_empty_groups(self) -> None:
        used = {t.group_id for t in self._tabs.values()}
        for gid in [g for g in self._groups if g not in used]:
            del self._groups[gid]

    def _insert(self, tab_id: int, window_id: int, index: int | None) -> None:
        order = self._windows.setdefault(window_id, [])
        if index is None or index < 0 or index > len(order):
            order.append(tab_id)
        else:
            order.insert(index, tab_id)
        self._tabs[tab_id].window_id = window_id
        self._reindex(window_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_tabs(self, window_id: int | None = None) -> list[Tab]:
        windows = [window_id] if window_id is not None else sorted(self._windows)
        return [self._snapshot(tid) for wid in windows for tid in self._windows.get(wid, [])]

    async def get_tab(self, tab_id: int) -> Tab:
        self._require_tab(tab_id)
        return self._snapshot(tab_id)

    async def active_tab(self, window_id: int | None = None) -> Tab | None:
        wid = window_id if window_id is not None else self._focused_window
        for tid in self._windows.get(wid, []) if wid is not None else []:
            if self._tabs[tid].active:
                return self._snapshot(tid)
        return None

    async def list_groups(self) -> list[TabGroup]:
        return [copy.deepcopy(g) for g in self._groups.values()]

    async def get_group(self, group_id: int) -> TabGroup:
        return copy.deepcopy(self._require_group(group_id))

    async def recently_closed(self, max_results: int = 25) -> list[ClosedSession]:
        return copy.deepcopy(self._closed[:max_results])

    async def bookmark_tree(self) -> list[BookmarkNode]:
        return [copy.deepcopy(self._bookmark_root)]

    async def search_history(
        self,
        text: str = "",
        start_ms: int = 0,
        end_ms: int | None = None,
        max_results: int = 100,
    ) -> list[HistoryItem]:
        needle = text.lower().strip()
        end = end_ms if end_ms is not None else now_ms(self._clock)
        items = [
            h
            for h in self._history
            if start_ms <= h.last_visit_time <= end
            and (not needle or needle in h.title.lower() or needle in h.url.lower())
        ]
        items.sort(key=lambda h: h.last_visit_time, reverse=True)
        return copy.deepcopy(items[:max_results])

    def bookmarks_in(self, folder_id: str) -> list[BookmarkNode]:
        """Children of *folder_id* (test helper)."""
        node = self._find_bookmark(self._bookmark_root, folder_id)
        return copy.deepcopy(node.children) if node else []

    def _find_bookmark(self, node: BookmarkNode, node_id: str) -> BookmarkNode | None:
        if node.id == node_id:
            return node
        for child in node.children:
            found = self._find_bookmark(child, node_id)
            if found:
                return found
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update_tab(
        self,
        tab_id: int,
        *,
        active: bool | None = None,
        muted: bool | None = None,
        pinned: bool | None = None,
    ) -> Tab:
        tab = self._require_tab(tab_id)
        changes: dict[str, Any] = {}
        if muted is not None and tab.muted != muted:
            tab.muted = muted
            changes["muted"] = muted
        if pinned is not None and tab.pinned != pinned:
            tab.pinned = pinned
            changes["pinned"] = pinned
        if changes:
            await self._emit(
                TabEvent("updated", tab_id=tab_id, tab=self._snapshot(tab_id), changes=changes)
            )
        if active:
            self._activate(tab_id)
            await self._emit(
                TabEvent(
                    "activated", tab_id=tab_id, tab=self._snapshot(tab_id), window_id=tab.window_id
                )
            )
        return self._snapshot(tab_id)

    async def focus_window(self, window_id: int) -> None:
        if window_id not in self._windows:
            raise BrowserError(f"No window with id: {window_id}.")
        self._focused_window = window_id

    async def move_tab(self, tab_id: int, index: int, window_id: int | None = None) -> Tab:
        tab = self._require_tab(tab_id)
        old_window = tab.window_id
        new_window = window_id if window_id is not None else old_window
        if new_window not in self._windows:
            raise BrowserError(f"No window with id: {new_window}.")
        self._windows[old_window].remove(tab_id)
        self._reindex(old_window)
        self._insert(tab_id, new_window, index)
        if new_window != old_window:
            tab.active = False
            await self._emit(TabEvent("detached", tab_id=tab_id, window_id=old_window))
            await self._emit(
                TabEvent("attached", tab_id=tab_id, tab=self._snapshot(tab_id), window_id=new_window)
            )
        return self._snapshot(tab_id)

    async def remove_tabs(self, tab_ids: list[int]) -> None:
        # positions are recorded before any removal shifts the window
        snapshots = {tid: copy.deepcopy(self._require_tab(tid)) for tid in tab_ids}
        for tid in tab_ids:
            tab = self._tabs.pop(tid)
            self._windows[tab.window_id].remove(tid)
            self._reindex(tab.window_id)
            self._closed.insert(
                0,
                ClosedSession(
                    session_id=f"s{next(self._session_ids)}",
                    closed_at=now_ms(self._clock),
                    tab=snapshots[tid],
                ),
            )
            del self._closed[_MAX_CLOSED:]
            await self._emit(TabEvent("removed", tab_id=tid, window_id=tab.window_id))
        self._drop_empty_groups()

    async def create_tab(
        self,
        url: str,
        *,
        index: int | None = None,
        window_id: int | None = None,
        active: bool = True,
    ) -> Tab:
        wid = window_id if window_id in self._windows else self._focused_window
        if wid is None:
            wid = self.seed_window()
        tab_id = next(self._tab_ids)
        self._tabs[tab_id] = Tab(
            id=tab_id, url=url, title=url, window_id=wid, last_accessed=now_ms(self._clock)
        )
        self._insert(tab_id, wid, index)
        if active:
            self._activate(tab_id)
        await self._emit(TabEvent("created", tab_id=tab_id, tab=self._snapshot(tab_id)))
        return self._snapshot(tab_id)

    async def reload_tab(self, tab_id: int) -> None:
        self._require_tab(tab_id)
        self.reloaded.append(tab_id)

    async def discard_tab(self, tab_id: int) -> None:
        tab = self._require_tab(tab_id)
        if tab.active:
            raise BrowserError(f"Cannot discard the active tab {tab_id}.")
        tab.discarded = True

    async def group_tabs(self, tab_ids: list[int]) -> int:
        if not tab_ids:
            raise BrowserError("No tabs to group.")
        first = self._require_tab(tab_ids[0])
        group_id = next(self._group_ids)
        self._groups[group_id] = TabGroup(id=group_id, window_id=first.window_id)
        for tid in tab_ids:
            self._require_tab(tid).group_id = group_id
            await self._emit(
                TabEvent("updated", tab_id=tid, tab=self._snapshot(tid), changes={"groupId": group_id})
            )
        self._drop_empty_groups()
        return group_id

    async def ungroup(self, tab_ids: list[int]) -> None:
        for tid in tab_ids:
            self._require_tab(tid).group_id = NO_GROUP
            await self._emit(
                TabEvent("updated", tab_id=tid, tab=self._snapshot(tid), changes={"groupId": NO_GROUP})
            )
        self._drop_empty_groups()

    async def update_group(
        self,
        group_id: int,
        *,
        title: str | None = None,
        color: str | None = None,
        collapsed: bool | None = None,
    ) -> TabGroup:
        group = self._require_group(group_id)
        if title is not None:
            group.title = title
        if color is not None:
            group.color = color
        if collapsed is not None:
            group.collapsed = collapsed
        await self._emit(TabEvent("group_updated", group=copy.deepcopy(group)))
        return copy.deepcopy(group)

    async def create_window(self, tab_id: int | None = None) -> int:
        window_id = next(self._window_ids)
        self._windows[window_id] = []
        self._focused_window = window_id
        if tab_id is not None:
            await self.move_tab(tab_id, -1, window_id=window_id)
            self._activate(tab_id)
        return window_id

    async def create_bookmark(
        self, parent_id: str | None, title: str, url: str | None = None
    ) -> BookmarkNode:
        parent = self._find_bookmark(self._bookmark_root, parent_id or _OTHER_BOOKMARKS_ID)
        if parent is None or not parent.is_folder:
            raise BrowserError(f"Can't find parent bookmark id: {parent_id}.")
        node = BookmarkNode(
            id=str(next(self._bookmark_ids)), title=title, url=url, parent_id=parent.id
        )
        parent.children.append(node)
        return copy.deepcopy(node)

    async def restore_session(self, session_id: str) -> list[Tab]:
        for pos, session in enumerate(self._closed):
            if session.session_id == session_id:
                break
        else:
            raise BrowserError(f"No session with id: {session_id}.")
        del self._closed[pos]
        closed_tabs = [session.tab] if session.tab else sorted(
            session.window_tabs or [], key=lambda t: t.index
        )
        restored: list[Tab] = []
        window_id: int | None = None
        if session.window_tabs:
            window_id = next(self._window_ids)
            self._windows[window_id] = []
        for old in closed_tabs:
            wid = window_id if window_id is not None else old.window_id
            if wid not in self._windows:
                self._windows[wid] = []
            tab_id = next(self._tab_ids)
            self._tabs[tab_id] = Tab(
                id=tab_id,
                url=old.url,
                title=old.title,
                window_id=wid,
                pinned=old.pinned,
                last_accessed=now_ms(self._clock),
            )
            self._insert(tab_id, wid, old.index)
            await self._emit(TabEvent("created", tab_id=tab_id, tab=self._snapshot(tab_id)))
            restored.append(self._snapshot(tab_id))
        return restored
