"""Success/failure counters per category, sampled into SQLite."""

from __future__ import annotations

import logging
import random
import sqlite3
from collections import defaultdict
from typing import Callable

from tabitha.db.repository import Repository

LOGGER = logging.getLogger(__name__)

CATEGORIES = ("actions", "parsing", "search")


class Telemetry:
    """In-memory counters with best-effort sampled persistence.

    Args:
        repo: Repository to persist samples into; ``None`` disables persistence.
        sample_rate: Probability that one record is written to the database.
        enabled: When False, ``record`` is a no-op.
        rng: Random source returning floats in [0, 1).
    """

    def __init__(
        self,
        repo: Repository | None = None,
        *,
        sample_rate: float = 0.1,
        enabled: bool = True,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._repo = repo
        self._sample_rate = sample_rate
        self._enabled = enabled
        self._rng = rng
        self._counts: dict[str, dict[str, dict[str, int]]] = defaultdict(dict)

    def record(self, category: str, name: str, success: bool | None = None) -> None:
        """Count one event. ``success=None`` counts a plain occurrence."""
        if not self._enabled:
            return
        bucket = self._counts[category].setdefault(
            name, {"success": 0, "failed": 0, "total": 0}
        )
        bucket["total"] += 1
        if success is True:
            bucket["success"] += 1
        elif success is False:
            bucket["failed"] += 1

        if self._repo is None or self._rng() >= self._sample_rate:
            return
        try:
            self._repo.record_telemetry(category, name, success)
        except sqlite3.Error as exc:
            LOGGER.warning("telemetry write failed: %s", exc)

    def snapshot(self) -> dict[str, dict[str, dict[str, int]]]:
        return {cat: {n: dict(c) for n, c in names.items()} for cat, names in self._counts.items()}

    def reset(self) -> None:
        self._counts.clear()
