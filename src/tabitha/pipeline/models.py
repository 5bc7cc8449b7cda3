"""Candidate and pipeline-outcome records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tabitha.db.models import Card


@dataclass
class Candidate:
    """A card under consideration, with its current normalized score."""

    card: Card
    score: float
    lexical_score: float = 0.0
    semantic_score: float | None = None
    ai_reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "card": self.card.to_dict(),
            "score": round(self.score, 4),
            "lexicalScore": round(self.lexical_score, 4),
        }
        if self.semantic_score is not None:
            out["semanticScore"] = round(self.semantic_score, 4)
            out["aiReason"] = self.ai_reason
        return out


@dataclass
class PipelineResult:
    """Exactly one of: auto-execute, disambiguate, or refuse.

    ``ok=True, auto_execute=True`` carries ``candidate``;
    ``ok=True, auto_execute=False`` carries ``candidates`` (at most 5);
    ``ok=False`` carries ``reason`` plus ``closest_matches`` or ``clarifier``.
    """

    ok: bool
    auto_execute: bool = False
    candidate: Candidate | None = None
    confidence: float = 0.0
    candidates: list[Candidate] = field(default_factory=list)
    needs_followup: bool = False
    followup_question: str | None = None
    reason: str | None = None
    closest_matches: list[Candidate] = field(default_factory=list)
    clarifier: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if not self.ok:
            out: dict[str, Any] = {"ok": False, "reason": self.reason}
            if self.closest_matches:
                out["closestMatches"] = [c.to_dict() for c in self.closest_matches]
            if self.clarifier:
                out["clarifier"] = self.clarifier
            if self.candidates:
                out["candidates"] = [c.to_dict() for c in self.candidates]
            return out
        if self.auto_execute and self.candidate is not None:
            return {
                "ok": True,
                "autoExecute": True,
                "candidate": self.candidate.to_dict(),
                "confidence": round(self.confidence, 4),
                "metadata": dict(self.metadata),
            }
        return {
            "ok": True,
            "autoExecute": False,
            "candidates": [c.to_dict() for c in self.candidates],
            "needsFollowup": self.needs_followup,
            "followupQuestion": self.followup_question,
            "metadata": dict(self.metadata),
        }
