"""Domain models for the Tabitha database layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

SOURCES: tuple[str, ...] = ("tab", "history", "bookmark", "session")

# Tiebreak prior when two non-tab cards collide during dedup.
SOURCE_PRIORITY: dict[str, int] = {"tab": 3, "bookmark": 2, "history": 1, "session": 0}


@dataclass
class Card:
    """The unit of everything searchable. Indexed cards are open tabs only."""

    card_id: str
    source: str
    title: str = ""
    url: str = ""
    domain: str = ""
    type: str = "page"  # page | pdf
    source_id: int | None = None
    tab_id: int | None = None
    window_id: int | None = None
    is_pinned: bool = False
    group_name: str | None = None
    last_visited_at: int = 0
    updated_at: int = 0

    @property
    def is_open_tab(self) -> bool:
        return self.source == "tab" and self.tab_id is not None

    def to_dict(self) -> dict[str, Any]:
        """Message-shaped view (camelCase keys) used at the boundary."""
        return {
            "cardId": self.card_id,
            "source": self.source,
            "sourceId": self.source_id,
            "tabId": self.tab_id,
            "windowId": self.window_id,
            "title": self.title,
            "url": self.url,
            "domain": self.domain,
            "type": self.type,
            "isPinned": self.is_pinned,
            "groupName": self.group_name,
            "lastVisitedAt": self.last_visited_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Card:
        return cls(
            card_id=str(data["cardId"]),
            source=str(data.get("source", "tab")),
            source_id=data.get("sourceId"),
            tab_id=data.get("tabId"),
            window_id=data.get("windowId"),
            title=str(data.get("title") or ""),
            url=str(data.get("url") or ""),
            domain=str(data.get("domain") or ""),
            type=str(data.get("type") or "page"),
            is_pinned=bool(data.get("isPinned", False)),
            group_name=data.get("groupName"),
            last_visited_at=int(data.get("lastVisitedAt") or 0),
            updated_at=int(data.get("updatedAt") or 0),
        )


def tab_card_id(tab_id: int) -> str:
    return f"tab:{tab_id}"
