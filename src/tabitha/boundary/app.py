"""Component wiring: one object owning every long-lived piece of state."""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any

from tabitha.actions.executor import ActionExecutor
from tabitha.actions.inflight import InFlightGuard
from tabitha.actions.undo import UndoLog
from tabitha.boundary.assistant import Assistant
from tabitha.browser.surface import BrowserSurface
from tabitha.config import TabithaConfig
from tabitha.conversation.manager import ConversationManager
from tabitha.db.connection import Database
from tabitha.db.repository import Repository
from tabitha.db.schema import initialize
from tabitha.index.intent_cache import IntentCache
from tabitha.index.tab_index import TabIndex
from tabitha.lm.client import LanguageModel
from tabitha.pipeline.candidates import CandidatePipeline
from tabitha.router.parser import IntentRouter
from tabitha.telemetry import Telemetry
from tabitha.timeutil import Clock

LOGGER = logging.getLogger(__name__)


class TabithaApp:
    """Build and own the Tab Index, router, pipeline, executor and conversation.

    Args:
        config: Resolved configuration.
        browser: Browser surface to index and act on.
        model: Language model; built from ``config.model`` when omitted.
        conn: Open SQLite connection; opened from ``config.index.db_path``
            when omitted.
        clock: Wall-clock seconds source shared by every component.
    """

    def __init__(
        self,
        config: TabithaConfig,
        browser: BrowserSurface,
        *,
        model: LanguageModel | None = None,
        conn: sqlite3.Connection | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.config = config
        self.clock = clock
        self.browser = browser
        self._owns_conn = conn is None
        if conn is None:
            conn = Database(config.index.db_path).connect()
        initialize(conn)
        self.conn = conn
        self.repo = Repository(conn)

        self.model = model or LanguageModel(
            config.model.name,
            timeout_s=config.model.timeout_s,
            max_tokens=config.model.max_tokens,
            num_retries=config.model.num_retries,
            availability_ttl_s=config.model.availability_ttl_s,
        )
        self.telemetry = Telemetry(
            self.repo, sample_rate=config.telemetry.sample_rate, enabled=config.telemetry.enabled
        )
        self.index = TabIndex(
            browser,
            self.repo,
            clock=clock,
            write_debounce_ms=config.index.write_debounce_ms,
            refresh_throttle_ms=config.index.refresh_throttle_ms,
            reconcile_interval_s=config.index.reconcile_interval_s,
        )
        self.intent_cache = IntentCache(self.repo, clock=clock)
        self.conversation = ConversationManager(self.model, config.conversation, clock=clock)
        self.router = IntentRouter(
            self.model,
            repo=self.repo,
            telemetry=self.telemetry,
            context_for=self.conversation.context,
            candidates_for=self._slot_candidates,
            timeout_s=config.model.timeout_s,
            clock=clock,
        )
        self.pipeline = CandidatePipeline(
            self.model,
            telemetry=self.telemetry,
            semantic_rerank=config.pipeline.semantic_rerank,
            rerank_top_n=config.pipeline.rerank_top_n,
            rerank_timeout_s=config.pipeline.rerank_timeout_s,
            context_for=self.conversation.context,
            clock=clock,
        )
        self.undo = UndoLog()
        self.executor = ActionExecutor(
            browser,
            self.index,
            self.model,
            undo=self.undo,
            telemetry=self.telemetry,
            clock=clock,
            ask_timeout_s=config.model.timeout_s,
        )
        self.in_flight = InFlightGuard()
        self.assistant = Assistant(
            self.index,
            self.router,
            self.pipeline,
            self.executor,
            self.conversation,
            in_flight=self.in_flight,
            thinking_hint_s=config.pipeline.thinking_hint_s,
            lexical_limit=config.index.lexical_limit,
            clock=clock,
        )

    def _slot_candidates(self, session_id: str) -> list[dict[str, Any]]:
        slot = self.conversation.last_candidates(session_id)
        return [c.to_dict() for c in slot.candidates] if slot else []

    async def start(self, *, start_timer: bool = True) -> None:
        """Boot the Tab Index (load, reconcile, subscribe)."""
        await self.index.init(start_timer=start_timer)

    async def close(self) -> None:
        """Stop background work, flush the index, close an owned connection."""
        await self.index.close()
        if self._owns_conn:
            self.conn.close()
        LOGGER.debug("tabitha app closed")
