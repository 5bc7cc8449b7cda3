"""Undo ring buffer for destructive actions."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from tabitha.browser.surface import Tab

UNDO_CAPACITY = 10


@dataclass
class TabInfo:
    """Enough of a closed tab to put it back where it was."""

    tab_id: int
    url: str
    title: str
    window_id: int
    index: int

    @classmethod
    def from_tab(cls, tab: Tab) -> TabInfo:
        return cls(
            tab_id=tab.id, url=tab.url, title=tab.title, window_id=tab.window_id, index=tab.index
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tabId": self.tab_id,
            "url": self.url,
            "title": self.title,
            "windowId": self.window_id,
            "index": self.index,
        }


@dataclass
class UndoEntry:
    type: str  # close | close_group
    tab_info: list[TabInfo] = field(default_factory=list)
    group_name: str | None = None
    timestamp: int = 0
    request_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type,
            "tabInfo": [t.to_dict() for t in self.tab_info],
            "timestamp": self.timestamp,
            "requestId": self.request_id,
        }
        if self.group_name:
            out["groupName"] = self.group_name
        return out


class UndoLog:
    """Most-recent-last buffer; the oldest entry falls off past ``capacity``."""

    def __init__(self, capacity: int = UNDO_CAPACITY) -> None:
        self._entries: deque[UndoEntry] = deque(maxlen=capacity)

    def push(self, entry: UndoEntry) -> None:
        self._entries.append(entry)

    def latest(self) -> UndoEntry | None:
        return self._entries[-1] if self._entries else None

    def pop(self) -> UndoEntry | None:
        return self._entries.pop() if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> list[UndoEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
