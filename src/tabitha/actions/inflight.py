"""Duplicate-request guard for the Action Executor."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from tabitha.timeutil import Clock

LOGGER = logging.getLogger(__name__)

IN_FLIGHT_TTL_S = 30.0


@dataclass
class InFlightEntry:
    type: str
    started_at: float


class InFlightGuard:
    """``requestId -> {type, startedAt}``; entries expire after ``ttl_s`` seconds.

    A request id that is still in flight cannot be started again. Expired
    entries are dropped lazily on every lookup.
    """

    def __init__(self, ttl_s: float = IN_FLIGHT_TTL_S, *, clock: Clock = time.monotonic) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, InFlightEntry] = {}

    def _purge(self) -> None:
        now = self._clock()
        for request_id in [r for r, e in self._entries.items() if now - e.started_at >= self._ttl_s]:
            LOGGER.debug("in-flight entry %s expired", request_id)
            del self._entries[request_id]

    def is_in_flight(self, request_id: str) -> bool:
        self._purge()
        return request_id in self._entries

    def mark_started(self, request_id: str, action_type: str) -> bool:
        """Register *request_id*. Returns False when it is already in flight."""
        if self.is_in_flight(request_id):
            return False
        self._entries[request_id] = InFlightEntry(type=action_type, started_at=self._clock())
        LOGGER.debug("action_started %s (%s)", request_id, action_type)
        return True

    def mark_completed(self, request_id: str) -> None:
        if self._entries.pop(request_id, None) is not None:
            LOGGER.debug("action_completed %s", request_id)

    def __len__(self) -> int:
        self._purge()
        return len(self._entries)
