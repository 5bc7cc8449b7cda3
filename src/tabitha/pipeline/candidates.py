"""Candidate Pipeline: lexical hits + intent → act, ask, or refuse.

Stages, in order:
   1. open-tab filter
   2. high-confidence short-circuit (single hit ≥ 0.90)
   3. three-key dedup
   4. constraint filter
   5. single-candidate early exit (≥ 0.40, open tab)
   6. semantic rerank, unless skipped
   7. hybrid scoring (only when the rerank produced scores)
   8. final dedup
   9. auto-execute gate
  10. clustering override
  11. overflow → clarifier

All scores here are normalized to 0–1; raw lexical scores are mapped with
:func:`tabitha.index.scoring.confidence` on entry.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from tabitha.errors import ErrorKind
from tabitha.index.scoring import confidence
from tabitha.index.tab_index import ScoredCard
from tabitha.lm.client import LanguageModel
from tabitha.pipeline.clarify import specific_clarifier
from tabitha.pipeline.dedup import dedupe
from tabitha.pipeline.filters import filter_candidates
from tabitha.pipeline.models import Candidate, PipelineResult
from tabitha.pipeline.rerank import EPS, UNRANKED_SCORE, hybrid_score, semantic_rerank, skip_reason
from tabitha.router.intent import NAVIGATION_INTENTS, Intent
from tabitha.telemetry import Telemetry
from tabitha.timeutil import Clock, now_ms

LOGGER = logging.getLogger(__name__)

SHORT_CIRCUIT_SCORE = 0.90
EARLY_EXIT_SCORE = 0.40
SINGLE_MATCH_SCORE = 0.50
MULTI_MATCH_SCORE = 0.75
SAME_DOMAIN_SCORE = 0.85
MIN_GAP = 0.05
OVERFLOW_LIMIT = 10
SHORTLIST_MAX = 5
SHORTLIST_MIN = 3


def same_title_different_domains(candidates: list[Candidate]) -> bool:
    """True when the top two share a non-empty title but live on different domains."""
    if len(candidates) < 2:
        return False
    a, b = candidates[0].card, candidates[1].card
    title = a.title.strip().lower()
    return bool(title) and title == b.title.strip().lower() and a.domain.lower() != b.domain.lower()


def auto_execute_threshold(count: int, all_same_domain: bool) -> float:
    if count == 1:
        return SINGLE_MATCH_SCORE
    return SAME_DOMAIN_SCORE if all_same_domain else MULTI_MATCH_SCORE


class CandidatePipeline:
    """Rank and gate candidates for one intent.

    Args:
        model: Language model for rerank and clarifiers; ``None`` disables both.
        telemetry: Counter sink for the ``search`` category.
        semantic_rerank: Master switch for stage 6.
        rerank_top_n: Candidates sent to the reranker.
        rerank_timeout_s: Bound on the rerank call.
        context_for: ``session_id -> formatted conversation`` for the rerank prompt.
        clock: Wall-clock seconds source.
    """

    def __init__(
        self,
        model: LanguageModel | None = None,
        *,
        telemetry: Telemetry | None = None,
        semantic_rerank: bool = True,
        rerank_top_n: int = 15,
        rerank_timeout_s: float = 60.0,
        context_for: Callable[[str], str] | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._model = model
        self._telemetry = telemetry or Telemetry()
        self._rerank_enabled = semantic_rerank and model is not None
        self._top_n = rerank_top_n
        self._rerank_timeout_s = rerank_timeout_s
        self._context_for = context_for
        self._clock = clock

    async def process(
        self,
        lexical_results: list[ScoredCard] | list[Candidate],
        intent: Intent,
        query: str | None = None,
        session_id: str = "default",
    ) -> PipelineResult:
        """Run every stage over *lexical_results* and return one outcome."""
        query = query if query is not None else intent.canonical_query
        constraints = intent.constraints
        navigating = intent.intent in NAVIGATION_INTENTS
        self._telemetry.record("search", "lexical")

        pool = [_as_candidate(r) for r in lexical_results]
        pool.sort(key=lambda c: c.score, reverse=True)
        lexical_pool = list(pool)

        # 1. open-tab filter
        if constraints.result_must_be_open:
            pool = [c for c in pool if c.card.is_open_tab]

        # 2. high-confidence short-circuit
        if (
            navigating
            and len(pool) == 1
            and pool[0].card.is_open_tab
            and pool[0].score >= SHORT_CIRCUIT_SCORE - EPS
        ):
            LOGGER.debug("auto_execute: high-confidence single match %s", pool[0].card.card_id)
            return _auto(pool[0], {"skipSemanticRerank": True, "stage": "short_circuit"})

        # 3. dedup, 4. constraints
        deduped = dedupe(pool)
        filtered = filter_candidates(deduped, constraints)

        # 5. single-candidate early exit
        if (
            navigating
            and len(filtered) == 1
            and filtered[0].card.is_open_tab
            and filtered[0].score >= EARLY_EXIT_SCORE - EPS
        ):
            LOGGER.debug("auto_execute: single candidate after filters %s", filtered[0].card.card_id)
            return _auto(filtered[0], {"skipSemanticRerank": True, "earlyExit": True})

        if not filtered:
            self._telemetry.record("search", "no_candidates", False)
            LOGGER.info("no candidates for %s %r (%d lexical)", intent.intent.value, query, len(lexical_pool))
            return PipelineResult(
                ok=False, reason=ErrorKind.NO_CANDIDATES.value, closest_matches=lexical_pool[:5]
            )

        ranked = filtered[: self._top_n]
        metadata: dict = {"beforeFilters": len(lexical_pool), "afterFilters": len(filtered)}

        # 6. semantic rerank, 7. hybrid scoring
        skipped = skip_reason(ranked, self._rerank_enabled)
        needs_followup = False
        followup_question = None
        if skipped:
            LOGGER.debug("rerank_skipped: %s", skipped)
            metadata["skipSemanticRerank"] = skipped
        else:
            self._telemetry.record("search", "semantic_rerank")
            conversation = self._context_for(session_id) if self._context_for else ""
            outcome = await semantic_rerank(
                self._model,  # type: ignore[arg-type]
                ranked,
                query,
                intent,
                conversation=conversation,
                timeout_s=self._rerank_timeout_s,
            )
            if outcome.ok and outcome.scores:
                now = now_ms(self._clock)
                for cand in ranked:
                    sem = outcome.scores.get(cand.card.card_id, UNRANKED_SCORE)
                    cand.semantic_score = sem
                    cand.ai_reason = outcome.reasons.get(cand.card.card_id, "")
                    cand.score = hybrid_score(cand, sem, intent, query, now)
                ranked.sort(key=lambda c: c.score, reverse=True)
                needs_followup = outcome.needs_followup
                followup_question = outcome.followup_question
                metadata.update(hybridSearch=True, rerankConfidence=outcome.confidence)
            else:
                metadata["rerankError"] = outcome.error

        # 8. final dedup
        final = dedupe(ranked)

        # 9. auto-execute gate
        top = final[0].score
        second = final[1].score if len(final) > 1 else 0.0
        gap = top - second
        same_title = same_title_different_domains(final)
        all_same_domain = len(final) >= 2 and len({c.card.domain for c in final[:5]}) == 1
        threshold = auto_execute_threshold(len(final), all_same_domain)
        can_auto = (
            navigating
            and len(final) == 1
            and final[0].card.is_open_tab
            and not same_title
            and top >= threshold - EPS
        )

        # 10. clustering override
        clustered = len(final) > 1 and (top <= second + MIN_GAP + EPS or same_title)
        if clustered:
            can_auto = False
            LOGGER.debug("scores clustered (top=%.3f second=%.3f); forcing disambiguation", top, second)

        metadata.update(
            topScore=round(top, 4),
            secondScore=round(second, 4),
            scoreGap=round(gap, 4),
            threshold=threshold,
            scoresClustered=clustered,
            sameTitleDifferentDomains=same_title,
        )

        # 11. overflow
        if len(filtered) > OVERFLOW_LIMIT and not can_auto:
            self._telemetry.record("search", "too_many_candidates", False)
            clarifier = await specific_clarifier(intent, final[:OVERFLOW_LIMIT], self._model)
            LOGGER.info("too many candidates (%d); clarifier %r", len(filtered), clarifier)
            return PipelineResult(
                ok=False,
                reason=ErrorKind.TOO_MANY_CANDIDATES.value,
                clarifier=clarifier,
                candidates=final[:OVERFLOW_LIMIT],
                metadata=metadata,
            )

        if can_auto:
            LOGGER.debug("auto_execute: %s at %.3f", final[0].card.card_id, top)
            return _auto(final[0], metadata)

        size = min(SHORTLIST_MAX, max(SHORTLIST_MIN, len(final)))
        return PipelineResult(
            ok=True,
            auto_execute=False,
            candidates=final[:size],
            needs_followup=needs_followup or same_title,
            followup_question=followup_question,
            metadata=metadata,
        )


def _as_candidate(item: ScoredCard | Candidate) -> Candidate:
    if isinstance(item, Candidate):
        return item
    norm = confidence(item.score)
    return Candidate(card=item.card, score=norm, lexical_score=norm)


def _auto(candidate: Candidate, metadata: dict) -> PipelineResult:
    return PipelineResult(
        ok=True,
        auto_execute=True,
        candidate=candidate,
        confidence=candidate.score,
        metadata=dict(metadata),
    )
