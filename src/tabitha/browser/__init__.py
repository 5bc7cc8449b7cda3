"""Browser-state surface and the in-process implementation."""

from tabitha.browser.memory import InMemoryBrowser
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

__all__ = [
    "NO_GROUP",
    "BookmarkNode",
    "BrowserSurface",
    "ClosedSession",
    "HistoryItem",
    "InMemoryBrowser",
    "Tab",
    "TabEvent",
    "TabGroup",
]
