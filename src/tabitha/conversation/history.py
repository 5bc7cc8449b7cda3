"""Per-session conversation history and its prompt rendering."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from tabitha.timeutil import Clock

HISTORY_CAP = 20
CONTEXT_TURNS = 10
CONTEXT_TTL_S = 30.0


@dataclass
class Message:
    role: str  # user | assistant
    content: str
    timestamp: float
    results: list[Any] | None = None
    action_result: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": int(self.timestamp * 1000),
        }
        if self.results is not None:
            out["results"] = self.results
        if self.action_result is not None:
            out["actionResult"] = self.action_result
        return out


@dataclass
class _CachedContext:
    text: str
    built_at: float


class ConversationHistory:
    """Ordered messages per session, oldest dropped past ``cap``.

    :meth:`format_for_prompt` caches its output for ``context_ttl_s``; any new
    message or action result for the session drops the cached copy.
    """

    def __init__(
        self,
        cap: int = HISTORY_CAP,
        *,
        context_turns: int = CONTEXT_TURNS,
        context_ttl_s: float = CONTEXT_TTL_S,
        clock: Clock = time.time,
    ) -> None:
        self._cap = cap
        self._turns = context_turns
        self._ttl_s = context_ttl_s
        self._clock = clock
        self._sessions: dict[str, list[Message]] = {}
        self._context: dict[str, _CachedContext] = {}

    def add(self, session_id: str, role: str, content: str, results: list[Any] | None = None) -> Message:
        messages = self._sessions.setdefault(session_id, [])
        message = Message(role=role, content=content, timestamp=self._clock(), results=results)
        messages.append(message)
        del messages[: max(0, len(messages) - self._cap)]
        self._context.pop(session_id, None)
        return message

    def add_action_result(
        self,
        session_id: str,
        intent: str,
        result: dict[str, Any],
        candidates: list[Any] | None = None,
    ) -> bool:
        """Attach *result* to the latest assistant message. False when there is none."""
        messages = self._sessions.get(session_id) or []
        if not messages or messages[-1].role != "assistant":
            return False
        messages[-1].action_result = {"intent": intent, "result": result, "candidates": candidates}
        self._context.pop(session_id, None)
        return True

    def recent(self, session_id: str, n: int | None = None) -> list[Message]:
        messages = self._sessions.get(session_id) or []
        return list(messages[-(n or self._turns):])

    def last(self, session_id: str, role: str) -> Message | None:
        for message in reversed(self._sessions.get(session_id) or []):
            if message.role == role:
                return message
        return None

    def format_for_prompt(self, session_id: str) -> str:
        """Render the last turns as ``User:``/``Assistant:`` lines, or ``""``."""
        cached = self._context.get(session_id)
        now = self._clock()
        if cached is not None and now - cached.built_at < self._ttl_s:
            return cached.text

        messages = self.recent(session_id)
        if not messages:
            return ""
        lines = []
        for m in messages:
            line = f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}"
            if m.action_result:
                action = m.action_result
                status = "success" if (action.get("result") or {}).get("ok") else "failed"
                if action.get("candidates"):
                    line += f"\n[Action: {action['intent']}, Result: {status}, Candidates: {len(action['candidates'])} items]"
                else:
                    line += f"\n[Action: {action['intent']}, Result: {status}]"
            if m.results:
                line += f"\n[Results: {len(m.results)} items found]"
            lines.append(line)
        text = "\n".join(lines) + "\n"
        self._context[session_id] = _CachedContext(text=text, built_at=now)
        return text

    def clear(self, session_id: str | None = None) -> None:
        if session_id is None:
            self._sessions.clear()
            self._context.clear()
        else:
            self._sessions.pop(session_id, None)
            self._context.pop(session_id, None)

    def __len__(self) -> int:
        return sum(len(m) for m in self._sessions.values())
