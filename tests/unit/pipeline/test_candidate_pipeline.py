"""Tests for the candidate pipeline stages and decision boundaries."""

from __future__ import annotations

import pytest

from conftest import ScriptedModel
from tabitha.db.models import Card
from tabitha.index.tab_index import ScoredCard
from tabitha.lm.client import LMResponse
from tabitha.pipeline.candidates import CandidatePipeline, auto_execute_threshold
from tabitha.pipeline.models import Candidate
from tabitha.router.intent import Constraints, Intent, IntentKind


def _tab(i, title=None, domain=None, **kwargs):
    domain = domain or f"site{i}.example"
    return Card(
        card_id=f"tab:{i}",
        source="tab",
        tab_id=i,
        title=title or f"Page {i}",
        url=f"https://{domain}/page/{i}",
        domain=domain,
        **kwargs,
    )


def _hist(i, title=None, domain=None):
    domain = domain or f"old{i}.example"
    return Card(
        card_id=f"history:{i}",
        source="history",
        title=title or f"Old page {i}",
        url=f"https://{domain}/old/{i}",
        domain=domain,
    )


def _cand(card, score):
    return Candidate(card=card, score=score, lexical_score=score)


def _open_intent(**constraints):
    return Intent(intent=IntentKind.OPEN, constraints=Constraints(**constraints))


# ------------------------------------------------------------------
# Short-circuit and early exit
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_high_confidence_single_match_short_circuits():
    result = await CandidatePipeline(None).process([_cand(_tab(1), 0.9)], _open_intent())
    assert result.ok and result.auto_execute
    assert result.candidate.card.card_id == "tab:1"
    assert result.metadata["stage"] == "short_circuit"


@pytest.mark.asyncio
async def test_single_candidate_early_exit_at_040():
    result = await CandidatePipeline(None).process([_cand(_tab(1), 0.40)], _open_intent())
    assert result.auto_execute
    assert result.metadata["earlyExit"] is True


@pytest.mark.asyncio
async def test_weak_single_candidate_is_offered_not_executed():
    result = await CandidatePipeline(None).process([_cand(_tab(1), 0.3)], _open_intent())
    assert result.ok
    assert not result.auto_execute
    assert [c.card.card_id for c in result.candidates] == ["tab:1"]


@pytest.mark.asyncio
async def test_non_navigation_intent_never_auto_executes():
    intent = Intent(intent=IntentKind.CLOSE)
    result = await CandidatePipeline(None).process([_cand(_tab(1), 0.99)], intent)
    assert result.ok
    assert not result.auto_execute
    assert len(result.candidates) == 1


@pytest.mark.asyncio
async def test_raw_lexical_scores_are_normalized():
    result = await CandidatePipeline(None).process([ScoredCard(_tab(1), 15)], _open_intent())
    assert result.auto_execute
    assert result.confidence == pytest.approx(0.5)


# ------------------------------------------------------------------
# Filters
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_closed_cards_dropped_when_result_must_be_open():
    pool = [_cand(_hist(1), 0.9), _cand(_tab(2), 0.6)]
    result = await CandidatePipeline(None).process(pool, _open_intent())
    assert result.auto_execute
    assert result.candidate.card.card_id == "tab:2"


@pytest.mark.asyncio
async def test_no_candidates_after_constraints():
    pool = [_cand(_tab(1, domain="github.com"), 0.8)]
    result = await CandidatePipeline(None).process(pool, _open_intent(include_apps=["gitlab.com"]))
    assert not result.ok
    assert result.reason == "no_candidates"
    assert [c.card.card_id for c in result.closest_matches] == ["tab:1"]


@pytest.mark.asyncio
async def test_history_allowed_when_not_gated():
    pool = [_cand(_hist(1), 0.7), _cand(_hist(2), 0.3)]
    intent = _open_intent(result_must_be_open=False)
    result = await CandidatePipeline(None).process(pool, intent)
    assert result.ok
    assert not result.auto_execute
    assert [c.card.card_id for c in result.candidates] == ["history:1", "history:2"]


# ------------------------------------------------------------------
# Semantic rerank
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rerank_skipped_for_clear_winner_at_boundary(clock):
    model = ScriptedModel(['{"ranked": []}'])
    pool = [_cand(_tab(1), 0.85), _cand(_tab(2), 0.70), _cand(_tab(3), 0.5)]
    result = await CandidatePipeline(model, clock=clock).process(pool, _open_intent())
    assert model.prompts == []
    assert result.metadata["skipSemanticRerank"] == "clear_winner"


@pytest.mark.asyncio
async def test_rerank_runs_just_below_gap(clock):
    model = ScriptedModel(['{"ranked": []}'])
    pool = [_cand(_tab(1), 0.85), _cand(_tab(2), 0.71), _cand(_tab(3), 0.5)]
    await CandidatePipeline(model, clock=clock).process(pool, _open_intent())
    assert len(model.prompts) == 1


@pytest.mark.asyncio
async def test_hybrid_scoring_reorders(clock):
    model = ScriptedModel(
        ['{"ranked": [{"cardId": "tab:2", "score": 0.95, "reason": "best"}], "confidence": 0.8}']
    )
    pool = [_cand(_tab(1), 0.6), _cand(_tab(2), 0.5), _cand(_tab(3), 0.4)]
    result = await CandidatePipeline(model, clock=clock).process(pool, _open_intent())
    ids = [c.card.card_id for c in result.candidates]
    assert ids == ["tab:2", "tab:1", "tab:3"]
    best, unranked = result.candidates[0], result.candidates[1]
    assert best.score == pytest.approx(0.87)
    assert best.ai_reason == "best"
    assert unranked.semantic_score == 0.3
    assert result.metadata["hybridSearch"] is True
    assert result.metadata["rerankConfidence"] == 0.8


@pytest.mark.asyncio
async def test_rerank_timeout_keeps_lexical_order(clock):
    model = ScriptedModel([LMResponse(ok=False, error="timeout")])
    pool = [_cand(_tab(1), 0.6), _cand(_tab(2), 0.5), _cand(_tab(3), 0.4)]
    result = await CandidatePipeline(model, clock=clock).process(pool, _open_intent())
    assert [c.card.card_id for c in result.candidates] == ["tab:1", "tab:2", "tab:3"]
    assert result.metadata["rerankError"] == "semantic_rerank_timeout"


# ------------------------------------------------------------------
# Gates
# ------------------------------------------------------------------

def test_auto_execute_thresholds():
    assert auto_execute_threshold(1, False) == 0.50
    assert auto_execute_threshold(3, False) == 0.75
    assert auto_execute_threshold(3, True) == 0.85


@pytest.mark.asyncio
async def test_clustered_scores_force_disambiguation():
    pool = [_cand(_tab(1), 0.62), _cand(_tab(2), 0.58)]
    result = await CandidatePipeline(None).process(pool, _open_intent())
    assert result.ok and not result.auto_execute
    assert result.metadata["scoresClustered"] is True


@pytest.mark.asyncio
async def test_same_title_on_different_domains_needs_followup():
    pool = [
        _cand(_tab(1, title="Cover Letter", domain="docs.google.com"), 0.8),
        _cand(_tab(2, title="Cover Letter", domain="notion.so"), 0.5),
    ]
    result = await CandidatePipeline(None).process(pool, _open_intent())
    assert not result.auto_execute
    assert result.needs_followup
    assert result.metadata["sameTitleDifferentDomains"] is True


@pytest.mark.asyncio
async def test_distinct_open_tabs_on_one_host_are_not_merged():
    pool = [
        _cand(_tab(1, title="Q3 plan", domain="docs.google.com"), 0.6),
        _cand(_tab(2, title="Q3 plan", domain="docs.google.com"), 0.5),
    ]
    result = await CandidatePipeline(None).process(pool, _open_intent())
    assert len(result.candidates) == 2


# ------------------------------------------------------------------
# Overflow
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ten_candidates_give_a_shortlist_of_five():
    pool = [_cand(_tab(i), 0.9 - i * 0.05) for i in range(1, 11)]
    result = await CandidatePipeline(None).process(pool, Intent(intent=IntentKind.FIND_OPEN))
    assert result.ok
    assert len(result.candidates) == 5


@pytest.mark.asyncio
async def test_eleven_candidates_overflow_to_site_clarifier():
    pool = [_cand(_tab(i), 0.9 - i * 0.05) for i in range(1, 12)]
    result = await CandidatePipeline(None).process(pool, Intent(intent=IntentKind.FIND_OPEN))
    assert not result.ok
    assert result.reason == "too_many_candidates"
    assert result.clarifier == "Which site? site1.example or site2.example?"
    assert len(result.candidates) == 10


@pytest.mark.asyncio
async def test_overflow_on_one_site_asks_about_type():
    pool = [_cand(_tab(i, domain="arxiv.org"), 0.5) for i in range(1, 12)]
    pool[0].card.url = "https://arxiv.org/pdf/2401.00001.pdf"
    pool[0].card.type = "pdf"
    result = await CandidatePipeline(None).process(pool, Intent(intent=IntentKind.FIND_OPEN))
    assert result.reason == "too_many_candidates"
    assert result.clarifier == "Which type? pdf or page?"
