"""Browser-state surface: the read/write API the index and executor depend on.

The surface is the shared world state. Only the Action Executor calls the
write methods; the Tab Index reads and subscribes to lifecycle events.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

LOGGER = logging.getLogger(__name__)

NO_GROUP = -1


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Tab:
    id: int
    url: str
    title: str = ""
    window_id: int = 1
    index: int = 0
    active: bool = False
    pinned: bool = False
    muted: bool = False
    discarded: bool = False
    group_id: int = NO_GROUP
    last_accessed: int = 0  # ms epoch


@dataclass
class TabGroup:
    id: int
    window_id: int
    title: str = ""
    color: str = "grey"
    collapsed: bool = False


@dataclass
class ClosedSession:
    """A recently-closed tab or window, restorable by ``session_id``.

    ``tab`` keeps the id the tab had while it was open so callers can match a
    closed entry back to what they removed.
    """

    session_id: str
    closed_at: int
    tab: Tab | None = None
    window_tabs: list[Tab] | None = None


@dataclass
class BookmarkNode:
    id: str
    title: str
    url: str | None = None
    parent_id: str | None = None
    children: list[BookmarkNode] = field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.url is None


@dataclass
class HistoryItem:
    id: str
    url: str
    title: str = ""
    last_visit_time: int = 0  # ms epoch
    visit_count: int = 1


@dataclass
class TabEvent:
    """Lifecycle notification delivered to subscribers.

    Attributes:
        kind: created | updated | activated | removed | attached | detached |
            group_updated.
        tab_id: Affected tab (None for group events).
        tab: Snapshot of the tab after the change, when it still exists.
        window_id: New window for attached/activated events.
        group: Snapshot of the group for group_updated events.
        changes: Changed tab fields for updated events.
    """

    kind: str
    tab_id: int | None = None
    tab: Tab | None = None
    window_id: int | None = None
    group: TabGroup | None = None
    changes: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[TabEvent], Union[Awaitable[None], None]]


# ---------------------------------------------------------------------------
# Surface
# ---------------------------------------------------------------------------


class BrowserSurface(ABC):
    """Asynchronous browser API. Implementations raise BrowserError on bad ids."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for lifecycle events. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def _emit(self, event: TabEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # one bad listener must not stop the others
                LOGGER.exception("tab event listener failed for %s", event.kind)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_tabs(self, window_id: int | None = None) -> list[Tab]: ...

    @abstractmethod
    async def get_tab(self, tab_id: int) -> Tab: ...

    @abstractmethod
    async def active_tab(self, window_id: int | None = None) -> Tab | None: ...

    @abstractmethod
    async def list_groups(self) -> list[TabGroup]: ...

    @abstractmethod
    async def get_group(self, group_id: int) -> TabGroup: ...

    @abstractmethod
    async def recently_closed(self, max_results: int = 25) -> list[ClosedSession]: ...

    @abstractmethod
    async def bookmark_tree(self) -> list[BookmarkNode]: ...

    @abstractmethod
    async def search_history(
        self,
        text: str = "",
        start_ms: int = 0,
        end_ms: int | None = None,
        max_results: int = 100,
    ) -> list[HistoryItem]: ...

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @abstractmethod
    async def update_tab(
        self,
        tab_id: int,
        *,
        active: bool | None = None,
        muted: bool | None = None,
        pinned: bool | None = None,
    ) -> Tab: ...

    @abstractmethod
    async def focus_window(self, window_id: int) -> None: ...

    @abstractmethod
    async def move_tab(self, tab_id: int, index: int, window_id: int | None = None) -> Tab: ...

    @abstractmethod
    async def remove_tabs(self, tab_ids: list[int]) -> None: ...

    @abstractmethod
    async def create_tab(
        self,
        url: str,
        *,
        index: int | None = None,
        window_id: int | None = None,
        active: bool = True,
    ) -> Tab: ...

    @abstractmethod
    async def reload_tab(self, tab_id: int) -> None: ...

    @abstractmethod
    async def discard_tab(self, tab_id: int) -> None: ...

    @abstractmethod
    async def group_tabs(self, tab_ids: list[int]) -> int: ...

    @abstractmethod
    async def ungroup(self, tab_ids: list[int]) -> None: ...

    @abstractmethod
    async def update_group(
        self,
        group_id: int,
        *,
        title: str | None = None,
        color: str | None = None,
        collapsed: bool | None = None,
    ) -> TabGroup: ...

    @abstractmethod
    async def create_window(self, tab_id: int | None = None) -> int: ...

    @abstractmethod
    async def create_bookmark(
        self, parent_id: str | None, title: str, url: str | None = None
    ) -> BookmarkNode: ...

    @abstractmethod
    async def restore_session(self, session_id: str) -> list[Tab]: ...
