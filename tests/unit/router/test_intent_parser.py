"""Tests for IntentRouter.parse_intent with a scripted model."""

from __future__ import annotations

import json

import pytest

from conftest import ScriptedModel
from tabitha.lm.client import LMResponse
from tabitha.router.fallback import FALLBACK_MESSAGE
from tabitha.router.intent import IntentKind
from tabitha.router.parser import IntentRouter, is_anaphoric, needs_preprocessing
from tabitha.telemetry import Telemetry

OPEN_GMAIL = json.dumps(
    {
        "intent": "open",
        "canonical_query": "gmail",
        "constraints": {"includeApps": ["mail.google.com"]},
        "notes": "app",
    }
)


def _router(model, clock, **kwargs):
    return IntentRouter(model, clock=clock, **kwargs)


def test_is_anaphoric():
    assert is_anaphoric("those, please")
    assert not is_anaphoric("Close them")
    assert not is_anaphoric("")


def test_needs_preprocessing():
    assert not needs_preprocessing("open gmail")
    assert needs_preprocessing("öffne gmail")
    assert needs_preprocessing("x" * 51)
    assert needs_preprocessing("translate this to french")


@pytest.mark.asyncio
async def test_model_parse(clock):
    model = ScriptedModel([f"Sure!\n```json\n{OPEN_GMAIL}\n```"])
    telemetry = Telemetry()
    result = await _router(model, clock, telemetry=telemetry).parse_intent("open gmail")
    assert result.ok
    assert not result.fallback
    assert result.intent.intent is IntentKind.OPEN
    assert result.intent.constraints.include_apps == ["mail.google.com"]
    assert telemetry.snapshot()["parsing"]["prompt_api"]["success"] == 1


@pytest.mark.asyncio
async def test_offline_model_uses_fallback(clock, offline_model):
    result = await _router(offline_model, clock).parse_intent("close all youtube tabs")
    assert not result.ok
    assert result.fallback
    assert result.error == "offscreen_unavailable"
    assert result.message == FALLBACK_MESSAGE
    assert result.intent.intent is IntentKind.CLOSE
    assert offline_model.prompts == []


@pytest.mark.asyncio
async def test_timeout_maps_to_parse_timeout(clock):
    model = ScriptedModel([LMResponse(ok=False, error="timeout")])
    result = await _router(model, clock).parse_intent("open gmail")
    assert result.fallback
    assert result.error == "intent_parse_timeout"
    assert result.intent.intent is IntentKind.OPEN


@pytest.mark.asyncio
async def test_no_json_falls_back(clock):
    model = ScriptedModel(["I think you want your email."])
    result = await _router(model, clock).parse_intent("open gmail")
    assert result.fallback
    assert result.error == "parse_failed"


@pytest.mark.asyncio
async def test_invalid_intent_asks_for_disambiguation(clock):
    model = ScriptedModel(['{"intent": "teleport", "canonical_query": "mars"}'])
    result = await _router(model, clock).parse_intent("beam me to mars")
    assert result.ok
    assert result.intent.intent is IntentKind.FIND_OPEN
    assert result.intent.disambiguation_needed
    assert result.intent.notes == "parse_uncertain"


@pytest.mark.asyncio
async def test_empty_text(clock):
    result = await _router(ScriptedModel(), clock).parse_intent("   ")
    assert not result.ok
    assert result.error == "empty_text"
    assert result.intent is None


@pytest.mark.asyncio
async def test_anaphora_includes_previous_candidates(clock):
    model = ScriptedModel(['{"intent": "close", "canonical_query": "those"}'])
    router = _router(
        model,
        clock,
        context_for=lambda session: "User: find my github tabs",
        candidates_for=lambda session: [{"cardId": "tab:7", "title": "PR #42", "domain": "github.com"}],
    )
    await router.parse_intent("those ones", "s1")
    prompt = model.prompts[0]
    assert "Previous conversation:" in prompt
    assert 'cardId: tab:7, title: "PR #42"' in prompt


@pytest.mark.asyncio
async def test_long_text_is_preprocessed_first(clock):
    model = ScriptedModel(
        [
            '{"language": "de", "text": "open my email from the office please, the one with the report"}',
            OPEN_GMAIL,
        ]
    )
    result = await _router(model, clock).parse_intent(
        "öffne bitte meine E-Mail aus dem Büro, die mit dem Bericht drin"
    )
    assert result.ok
    assert len(model.prompts) == 2
    assert "User input (cleaned)" in model.prompts[1]


@pytest.mark.asyncio
async def test_preprocess_failure_keeps_text(clock):
    model = ScriptedModel(["not json"])
    result = await _router(model, clock).preprocess("hola")
    assert not result.ok
    assert result.query == "hola"
    assert result.error == "parse_failed"


@pytest.mark.asyncio
async def test_user_hint_fills_app_in_fallback(repo, clock, offline_model):
    router = _router(offline_model, clock, repo=repo)
    router.save_user_hint("team wiki", "confluence.acme.io")
    router.save_user_hint("team wiki", "confluence.acme.io")
    assert router.hinted_domain("open the team wiki") == "confluence.acme.io"
    result = await router.parse_intent("open the team wiki")
    assert result.intent.constraints.include_apps == ["confluence.acme.io"]
