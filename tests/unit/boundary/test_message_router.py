"""Tests for boundary message dispatch."""

from __future__ import annotations

import pytest

from conftest import FailingBrowser
from tabitha.boundary.app import TabithaApp
from tabitha.boundary.router import MessageRouter, candidate_from, intent_from
from tabitha.config import TabithaConfig
from tabitha.pipeline.models import Candidate
from tabitha.router.intent import IntentKind


def _router(browser, tmp_db, clock, model) -> MessageRouter:
    browser.seed_tab("https://mail.google.com/mail/u/0/", "Inbox - Gmail", active=True)
    browser.seed_tab("https://github.com/acme/parser/pull/41", "Fix tokenizer")
    browser.seed_tab("https://docs.google.com/document/d/abc/edit", "Quarterly report")
    app = TabithaApp(TabithaConfig(), browser, model=model, conn=tmp_db, clock=clock)
    return MessageRouter(app)


async def _booted(browser, tmp_db, clock, model) -> MessageRouter:
    router = _router(browser, tmp_db, clock, model)
    await router._app.start(start_timer=False)
    return router


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_intent_from_accepts_names_and_objects():
    assert intent_from("show").intent is IntentKind.LIST
    assert intent_from("close").intent is IntentKind.CLOSE
    assert intent_from({"intent": "mute", "constraints": {"includeApps": ["youtube.com"]}}).constraints.include_apps == [
        "youtube.com"
    ]
    assert intent_from("teleport") is None
    assert intent_from({"intent": "teleport"}) is None


def test_candidate_from_nested_and_flat():
    nested = candidate_from({"card": {"cardId": "tab:1", "source": "tab", "title": "A"}, "score": 0.7})
    flat = candidate_from({"cardId": "tab:2", "source": "tab"})
    assert isinstance(nested, Candidate)
    assert nested.score == pytest.approx(0.7)
    assert nested.lexical_score == pytest.approx(0.7)
    assert flat.card.card_id == "tab:2"
    with pytest.raises(TypeError):
        candidate_from("tab:3")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_malformed_messages(browser, tmp_db, clock, offline_model):
    router = _router(browser, tmp_db, clock, offline_model)
    assert (await router.handle(["not", "a", "dict"]))["error"] == "bad_request"
    unknown = await router.handle({"type": "NOPE"})
    assert unknown == {"ok": False, "error": "bad_request", "message": "unknown message type: NOPE"}


@pytest.mark.asyncio
async def test_handler_value_errors_become_bad_request(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle({"type": "EXECUTE_ACTION", "intent": "close", "tabIds": ["x"]})
    assert reply["ok"] is False
    assert reply["error"] == "bad_request"


@pytest.mark.asyncio
async def test_browser_errors_become_error_replies(tmp_db, clock, offline_model):
    browser = FailingBrowser(clock=clock)
    router = await _booted(browser, tmp_db, clock, offline_model)
    browser.broken = True
    reply = await router.handle({"type": "REFRESH_OPEN_TABS"})
    assert reply == {"ok": False, "error": "list_tabs: browser disconnected"}

    muted = await router.handle({"type": "EXECUTE_ACTION", "intent": "mute"})
    assert muted["ok"] is False
    assert muted["error"] == "list_tabs: browser disconnected"


def test_every_message_type_is_routed(browser, tmp_db, clock, offline_model):
    router = _router(browser, tmp_db, clock, offline_model)
    assert {"CHAT_MESSAGE", "EXECUTE_ACTION", "UNDO_CLOSE", "FILTER_AND_RANK", "INTENT_CACHE_GET"} <= set(
        router.message_types
    )
    assert len(router.message_types) == 29


# ---------------------------------------------------------------------------
# Index messages
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chat_opened_boots_the_index(browser, tmp_db, clock, offline_model):
    router = _router(browser, tmp_db, clock, offline_model)
    reply = await router.handle({"type": "CHAT_OPENED"})
    assert reply["ok"]
    assert reply["counts"] == {"tab": 3}
    assert router._app.index.booted
    await router._app.close()


@pytest.mark.asyncio
async def test_lexical_search_and_query(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    search = await router.handle({"type": "LEXICAL_SEARCH", "query": "quarterly report"})
    assert search["ok"]
    assert search["results"][0]["card"]["cardId"] == "tab:3"

    empty = await router.handle({"type": "LEXICAL_SEARCH", "query": ""})
    assert empty["error"] == "empty_query"

    query = await router.handle({"type": "INDEX_QUERY", "filters": {"domain": "github.com"}})
    assert [c["cardId"] for c in query["cards"]] == ["tab:2"]

    health = await router.handle({"type": "INDEX_HEALTH"})
    assert health["cards"] == 3
    await router._app.close()


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_execute_close_preview_confirm_and_undo(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    preview = await router.handle({"type": "EXECUTE_ACTION", "intent": "close", "tabIds": [2, 3]})
    assert preview["preview"] is True
    assert preview["count"] == 2

    done = await router.handle(
        {"type": "EXECUTE_ACTION", "intent": "close", "tabIds": [2, 3], "confirmed": True, "requestId": "r1"}
    )
    assert done["ok"]
    assert done["tabIds"] == [2, 3]
    assert not router._app.in_flight.is_in_flight("r1")

    undone = await router.handle({"type": "UNDO_CLOSE"})
    assert undone["restored"] == 2
    again = await router.handle({"type": "UNDO_ACTION"})
    assert again == {"ok": False, "error": "no_undo_available"}
    await router._app.close()


@pytest.mark.asyncio
async def test_execute_with_inline_history_card(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle(
        {
            "type": "EXECUTE_ACTION",
            "intent": "open",
            "card": {"cardId": "history:h1", "source": "history", "url": "https://rust-lang.org/"},
        }
    )
    assert reply["created"] is True
    await router._app.close()


@pytest.mark.asyncio
async def test_execute_rejects_duplicate_request(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    router._app.in_flight.mark_started("r1", "close")
    reply = await router.handle({"type": "EXECUTE_ACTION", "intent": "close", "tabIds": [2], "requestId": "r1"})
    assert reply["error"] == "action_already_in_flight"
    assert len(await browser.list_tabs()) == 3
    await router._app.close()


@pytest.mark.asyncio
async def test_execute_unknown_intent(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle({"type": "EXECUTE_ACTION", "intent": "teleport"})
    assert reply["error"] == "unknown_intent"
    await router._app.close()


@pytest.mark.asyncio
async def test_execute_ask_needs_a_query(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    assert (await router.handle({"type": "EXECUTE_ASK", "query": " "}))["error"] == "empty_query"
    reply = await router.handle({"type": "EXECUTE_ASK", "query": "what is open"})
    assert reply["error"] == "offscreen_unavailable"
    await router._app.close()


@pytest.mark.asyncio
async def test_chat_message_and_cancel(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle({"type": "CHAT_MESSAGE", "text": "open gmail", "requestId": "r9"})
    assert reply["ok"]
    assert reply["requestId"] == "r9"
    assert (await router.handle({"type": "CANCEL_REQUEST", "requestId": "r9"})) == {"ok": True, "cancelled": False}
    assert (await router.handle({"type": "CANCEL_REQUEST"}))["error"] == "bad_request"
    await router._app.close()


# ---------------------------------------------------------------------------
# Pipeline messages
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_filter_and_rank_single_candidate(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle(
        {
            "type": "FILTER_AND_RANK",
            "intent": "open",
            "query": "report",
            "lexicalResults": [
                {"card": {"cardId": "tab:3", "source": "tab", "tabId": 3, "title": "Quarterly report"}, "score": 18}
            ],
        }
    )
    assert reply["ok"]
    assert reply["autoExecute"] is True
    await router._app.close()


@pytest.mark.asyncio
async def test_filter_and_rank_invalid_intent(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle({"type": "FILTER_AND_RANK", "intent": "teleport", "lexicalResults": []})
    assert reply["error"] == "invalid_intent"
    await router._app.close()


@pytest.mark.asyncio
async def test_ai_rank_requires_candidates(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle({"type": "AI_RANK", "query": "report", "candidates": []})
    assert reply["error"] == "no_candidates"
    await router._app.close()


@pytest.mark.asyncio
async def test_format_disambiguation(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle(
        {
            "type": "FORMAT_DISAMBIGUATION",
            "candidates": [
                {"card": {"cardId": "tab:1", "source": "tab", "title": "Inbox", "domain": "mail.google.com"}},
                {"card": {"cardId": "tab:2", "source": "tab", "title": "Fix tokenizer", "domain": "github.com"}},
            ],
        }
    )
    assert reply["ok"]
    assert len(reply["items"]) == 2
    await router._app.close()


# ---------------------------------------------------------------------------
# Conversation messages
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_store_and_read_disambiguation_slot(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    stored = await router.handle(
        {
            "type": "STORE_DISAMBIGUATION_CANDIDATES",
            "sessionId": "s1",
            "intent": "open",
            "query": "github",
            "candidates": [{"cardId": "tab:2", "title": "Fix tokenizer", "domain": "github.com"}],
        }
    )
    assert stored == {"ok": True, "count": 1}

    last = await router.handle({"type": "GET_LAST_DISAMBIGUATION_CANDIDATES", "sessionId": "s1"})
    assert last["query"] == "github"
    assert last["candidates"][0]["cardId"] == "tab:2"

    follow_up = await router.handle({"type": "UNDERSTAND_FOLLOW_UP", "sessionId": "s1", "message": "1"})
    assert follow_up["cardId"] == "tab:2"

    clock.advance(301)
    expired = await router.handle({"type": "GET_LAST_DISAMBIGUATION_CANDIDATES", "sessionId": "s1"})
    assert expired == {"ok": True, "candidates": None}
    missing = await router.handle({"type": "UNDERSTAND_FOLLOW_UP", "sessionId": "s1", "message": "1"})
    assert missing["error"] == "no_candidates"
    await router._app.close()


@pytest.mark.asyncio
async def test_follow_up_with_supplied_candidates(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle(
        {
            "type": "UNDERSTAND_FOLLOW_UP",
            "newMessage": "the report",
            "candidates": [
                {"cardId": "tab:2", "title": "Fix tokenizer", "domain": "github.com"},
                {"cardId": "tab:3", "title": "Quarterly report", "domain": "docs.google.com"},
            ],
        }
    )
    assert reply["action"] == "specify"
    assert reply["cardId"] == "tab:3"
    await router._app.close()


@pytest.mark.asyncio
async def test_response_messages_use_templates_offline(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    success = await router.handle({"type": "GENERATE_SUCCESS_RESPONSE", "intent": "close", "result": {"count": 2}})
    assert success == {"ok": True, "text": "Closed 2 tabs."}
    error = await router.handle({"type": "GENERATE_ERROR_RESPONSE", "reason": "no_undo_available"})
    assert error["text"] == "Sorry, couldn't undo. The undo window may have expired."
    await router._app.close()


# ---------------------------------------------------------------------------
# Intent cache messages
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_intent_cache_round_trip(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    put = await router.handle(
        {"type": "INTENT_CACHE_PUT", "url": "https://example.com/a?utm_source=x", "intent": "reading", "score": 0.6}
    )
    assert put == {"ok": True, "updated": True}
    hit = await router.handle({"type": "INTENT_CACHE_GET", "url": "https://example.com/a"})
    assert hit["hit"]["intent"] == "reading"
    assert hit["hit"]["source"] == "cache"

    assert (await router.handle({"type": "INTENT_CACHE_GET"}))["error"] == "bad_request"
    await router._app.close()


@pytest.mark.asyncio
async def test_domain_rules(browser, tmp_db, clock, offline_model):
    router = await _booted(browser, tmp_db, clock, offline_model)
    reply = await router.handle({"type": "SET_DOMAIN_RULE", "domain": "Example.com", "intent": "work"})
    assert reply == {"ok": True, "rules": {"example.com": "work"}}
    hit = await router.handle({"type": "INTENT_CACHE_GET", "url": "https://example.com/x", "domain": "example.com"})
    assert hit["hit"]["score"] == pytest.approx(0.95)

    cleared = await router.handle({"type": "SET_DOMAIN_RULE", "domain": "example.com"})
    assert cleared["rules"] == {}
    await router._app.close()
