"""Tests for the LiteLLM client wrapper and the prompt RPC."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tabitha.lm.client import LanguageModel, acomplete, validate_api_key


def _response(content):
    mock_response = MagicMock()
    mock_response.choices[0].message.content = content
    return mock_response


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/gpt-4o-mini")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/gpt-4o-mini")


def test_validate_api_key_anthropic(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="ANTHROPIC_API_KEY"):
        validate_api_key("anthropic/claude-3-5-haiku-latest")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama3")


def test_validate_api_key_bare_model_treated_as_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError):
        validate_api_key("gpt-4o-mini")


# ------------------------------------------------------------------
# acomplete()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_acomplete_passes_params_to_litellm():
    mock = AsyncMock(return_value=_response("ok"))
    with patch("tabitha.lm.client.litellm.acompletion", mock):
        result = await acomplete(
            "openai/gpt-4o-mini", [{"role": "user", "content": "Hi"}], max_tokens=64, num_retries=0
        )

    assert result == "ok"
    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "openai/gpt-4o-mini"
    assert kwargs["max_tokens"] == 64
    assert kwargs["num_retries"] == 0
    assert kwargs["temperature"] == 0.0


@pytest.mark.asyncio
async def test_acomplete_none_content_is_empty_string():
    with patch("tabitha.lm.client.litellm.acompletion", AsyncMock(return_value=_response(None))):
        assert await acomplete("openai/gpt-4o-mini", []) == ""


# ------------------------------------------------------------------
# LanguageModel.available()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_available_follows_api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    assert await LanguageModel("openai/gpt-4o-mini").available() is True

    monkeypatch.delenv("OPENAI_API_KEY")
    assert await LanguageModel("openai/gpt-4o-mini").available() is False


@pytest.mark.asyncio
async def test_available_is_cached_for_ttl(monkeypatch):
    now = [0.0]
    model = LanguageModel("openai/gpt-4o-mini", availability_ttl_s=60, clock=lambda: now[0])
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert await model.available() is False

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    now[0] = 59.0
    assert await model.available() is False
    now[0] = 60.0
    assert await model.available() is True


@pytest.mark.asyncio
async def test_invalidate_forces_recheck(monkeypatch):
    model = LanguageModel("openai/gpt-4o-mini", clock=lambda: 0.0)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert await model.available() is False

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    model.invalidate()
    assert await model.available() is True


# ------------------------------------------------------------------
# LanguageModel.run()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_returns_stripped_text():
    mock = AsyncMock(return_value=_response("  hello  \n"))
    with patch("tabitha.lm.client.litellm.acompletion", mock):
        result = await LanguageModel("openai/gpt-4o-mini").run("Hi", system="Be brief.")

    assert result.ok is True
    assert result.text == "hello"
    messages = mock.call_args.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "Be brief."}
    assert messages[1] == {"role": "user", "content": "Hi"}


@pytest.mark.asyncio
async def test_run_uses_default_and_override_max_tokens():
    mock = AsyncMock(return_value=_response("x"))
    model = LanguageModel("openai/gpt-4o-mini", max_tokens=300)
    with patch("tabitha.lm.client.litellm.acompletion", mock):
        await model.run("a")
        assert mock.call_args.kwargs["max_tokens"] == 300
        await model.run("b", max_tokens=20)
        assert mock.call_args.kwargs["max_tokens"] == 20


@pytest.mark.asyncio
async def test_run_empty_output_is_no_response():
    with patch("tabitha.lm.client.litellm.acompletion", AsyncMock(return_value=_response("   "))):
        result = await LanguageModel("openai/gpt-4o-mini").run("Hi")

    assert result.ok is False
    assert result.error == "no_response"


@pytest.mark.asyncio
async def test_run_provider_error_is_unavailable():
    failing = AsyncMock(side_effect=RuntimeError("rate limited"))
    with patch("tabitha.lm.client.litellm.acompletion", failing):
        result = await LanguageModel("openai/gpt-4o-mini").run("Hi")

    assert result.ok is False
    assert result.error == "offscreen_unavailable"


@pytest.mark.asyncio
async def test_run_timeout():
    async def _slow(**kwargs):
        await asyncio.sleep(1)
        return _response("late")

    with patch("tabitha.lm.client.litellm.acompletion", _slow):
        result = await LanguageModel("openai/gpt-4o-mini").run("Hi", timeout_s=0.01)

    assert result.ok is False
    assert result.error == "timeout"
