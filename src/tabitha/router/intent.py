"""Structured intent: the router's output and the executor's input.

An :class:`Intent` is a tagged record. ``intent`` is an :class:`IntentKind`
and the executor keeps one handler per kind, so adding a kind means adding a
handler. ``to_dict``/``from_dict`` use the wire field names the UI and the
language model exchange (``canonical_query``, ``resultMustBeOpen``, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tabitha.timeutil import parse_time_ms


class IntentKind(str, Enum):
    OPEN = "open"
    FIND_OPEN = "find_open"
    CLOSE = "close"
    REOPEN = "reopen"
    SAVE = "save"
    LIST = "list"
    ASK = "ask"
    MUTE = "mute"
    UNMUTE = "unmute"
    PIN = "pin"
    UNPIN = "unpin"
    RELOAD = "reload"
    DISCARD = "discard"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Any) -> IntentKind | None:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


# Intents the candidate pipeline may auto-execute.
NAVIGATION_INTENTS = frozenset({IntentKind.OPEN, IntentKind.FIND_OPEN})

# Bulk state toggles resolved from cardIds or from app filters.
TOGGLE_INTENTS = frozenset(
    {
        IntentKind.MUTE,
        IntentKind.UNMUTE,
        IntentKind.PIN,
        IntentKind.UNPIN,
        IntentKind.RELOAD,
        IntentKind.DISCARD,
    }
)

SCOPES = ("tab", "group")
OPERATIONS = ("move_to_window", "rename", "collapse", "expand")


@dataclass
class DateRange:
    since: str | None = None
    until: str | None = None

    @property
    def since_ms(self) -> int | None:
        return parse_time_ms(self.since)

    @property
    def until_ms(self) -> int | None:
        return parse_time_ms(self.until)

    def to_dict(self) -> dict[str, Any]:
        return {"since": self.since, "until": self.until}

    @classmethod
    def from_dict(cls, data: Any) -> DateRange | None:
        if not isinstance(data, dict):
            return None
        rng = cls(since=data.get("since"), until=data.get("until"))
        if rng.since is None and rng.until is None:
            return None
        return rng


@dataclass
class Constraints:
    scope: str | None = None
    result_must_be_open: bool = True
    date_range: DateRange | None = None
    include_apps: list[str] = field(default_factory=list)
    exclude_apps: list[str] = field(default_factory=list)
    group: str | None = None
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "resultMustBeOpen": self.result_must_be_open,
            "dateRange": self.date_range.to_dict() if self.date_range else None,
            "includeApps": list(self.include_apps),
            "excludeApps": list(self.exclude_apps),
            "group": self.group,
            "limit": self.limit,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Constraints:
        data = data if isinstance(data, dict) else {}
        limit = data.get("limit")
        return cls(
            scope=data.get("scope") if data.get("scope") in SCOPES else None,
            result_must_be_open=bool(data.get("resultMustBeOpen", True)),
            date_range=DateRange.from_dict(data.get("dateRange")),
            include_apps=[str(a) for a in data.get("includeApps") or []],
            exclude_apps=[str(a) for a in data.get("excludeApps") or []],
            group=data.get("group") or None,
            limit=int(limit) if isinstance(limit, (int, float)) and not isinstance(limit, bool) else None,
        )


@dataclass
class Intent:
    """One parsed utterance."""

    intent: IntentKind
    canonical_query: str = ""
    constraints: Constraints = field(default_factory=Constraints)
    operation: str | None = None
    operation_args: dict[str, Any] | None = None
    folder_name: str | None = None
    disambiguation_needed: bool = False
    hints: list[dict[str, Any]] = field(default_factory=list)
    anaphora_of: str | None = None
    time_reason: str | None = None
    notes: str | None = None

    @property
    def is_temporal(self) -> bool:
        return self.time_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent.value,
            "canonical_query": self.canonical_query,
            "constraints": self.constraints.to_dict(),
            "operation": self.operation,
            "operation_args": dict(self.operation_args) if self.operation_args else None,
            "folderName": self.folder_name,
            "disambiguationNeeded": self.disambiguation_needed,
            "hints": list(self.hints),
            "anaphora_of": self.anaphora_of,
            "time_reason": self.time_reason,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Intent:
        """Rebuild an already-normalized intent (e.g. one echoed back by the UI).

        Raises:
            ValueError: If ``intent`` is not a known kind.
        """
        kind = IntentKind.parse(data.get("intent"))
        if kind is None:
            raise ValueError(f"unknown intent {data.get('intent')!r}")
        operation = data.get("operation")
        return cls(
            intent=kind,
            canonical_query=str(data.get("canonical_query") or ""),
            constraints=Constraints.from_dict(data.get("constraints")),
            operation=operation if operation in OPERATIONS else None,
            operation_args=data.get("operation_args") or None,
            folder_name=data.get("folderName") or None,
            disambiguation_needed=bool(data.get("disambiguationNeeded", False)),
            hints=list(data.get("hints") or []),
            anaphora_of=data.get("anaphora_of") or None,
            time_reason=data.get("time_reason") or None,
            notes=data.get("notes") or None,
        )

    @classmethod
    def bare(cls, kind: IntentKind | str, **constraints: Any) -> Intent:
        """Intent of *kind* with only the given constraints set."""
        resolved = kind if isinstance(kind, IntentKind) else IntentKind(kind)
        return cls(intent=resolved, constraints=Constraints(**constraints))
