"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from tabitha.browser.memory import InMemoryBrowser
from tabitha.db.connection import Database
from tabitha.db.repository import Repository
from tabitha.db.schema import initialize
from tabitha.errors import BrowserError
from tabitha.lm.client import LanguageModel, LMResponse

# 2026-03-04T12:00:00Z
START_S = 1_772_625_600.0


class FakeClock:
    """Wall clock in seconds that only moves when told to."""

    def __init__(self, start: float = START_S) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 0.0, *, ms: float = 0.0) -> None:
        self.now += seconds + ms / 1000


class ScriptedModel(LanguageModel):
    """Language model that replays canned replies in order and records prompts.

    A reply may be a string (success) or an :class:`LMResponse`. Once the
    script runs out every call fails with ``no_response``.
    """

    def __init__(self, replies: list[str | LMResponse] | None = None, *, available: bool = True) -> None:
        super().__init__("scripted/test")
        self.replies = list(replies or [])
        self.prompts: list[str] = []
        self.is_available = available

    async def available(self) -> bool:
        return self.is_available

    async def run(self, prompt, *, system=None, max_tokens=None, timeout_s=None) -> LMResponse:
        self.prompts.append(prompt)
        if not self.replies:
            return LMResponse(ok=False, error="no_response")
        reply = self.replies.pop(0)
        return reply if isinstance(reply, LMResponse) else LMResponse(ok=True, text=reply)


class FailingBrowser(InMemoryBrowser):
    """In-memory browser whose reads raise once ``broken`` is set."""

    def __init__(self, *, clock) -> None:
        super().__init__(clock=clock)
        self.broken = False

    def _check(self, call: str) -> None:
        if self.broken:
            raise BrowserError(f"{call}: browser disconnected")

    async def list_tabs(self, window_id=None):
        self._check("list_tabs")
        return await super().list_tabs(window_id)

    async def active_tab(self, window_id=None):
        self._check("active_tab")
        return await super().active_tab(window_id)

    async def recently_closed(self, max_results=25):
        self._check("recently_closed")
        return await super().recently_closed(max_results)

    async def search_history(self, text="", start_ms=0, end_ms=None, max_results=100):
        self._check("search_history")
        return await super().search_history(text, start_ms, end_ms, max_results)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".tabitha.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def browser(clock):
    return InMemoryBrowser(clock=clock)


@pytest.fixture
def offline_model():
    """A model that reports itself unavailable: every component uses its fallback."""
    return ScriptedModel(available=False)
