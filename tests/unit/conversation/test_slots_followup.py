"""Tests for disambiguation slots and follow-up understanding."""

from __future__ import annotations

import pytest

from conftest import ScriptedModel
from tabitha.conversation.followup import looks_like_follow_up, parse_follow_up, understand_follow_up
from tabitha.conversation.manager import ConversationManager
from tabitha.conversation.slots import SlotCandidate, SlotStore
from tabitha.db.models import Card
from tabitha.pipeline.models import Candidate
from tabitha.router.intent import Intent, IntentKind

CANDIDATES = [
    SlotCandidate("tab:1", "Inbox (3)", "mail.google.com", 1),
    SlotCandidate("tab:2", "acme/parser pull request", "github.com", 2),
    SlotCandidate("tab:3", "Quarterly report", "docs.google.com", 3),
]


def _candidate(card_id: str, title: str, domain: str) -> Candidate:
    return Candidate(Card(card_id=card_id, source="tab", title=title, domain=domain), 0.5)


# ---------------------------------------------------------------------------
# SlotStore
# ---------------------------------------------------------------------------

def test_slot_lives_for_five_minutes(clock):
    store = SlotStore(clock=clock)
    store.store("s1", [_candidate("tab:1", "A", "a.com")], Intent.bare(IntentKind.OPEN), query="a")
    clock.advance(300)
    assert store.get("s1") is not None
    clock.advance(ms=1)
    assert store.get("s1") is None
    assert store.get("s1") is None


def test_slot_accepts_candidates_and_dicts(clock):
    store = SlotStore(clock=clock)
    slot = store.store(
        "s1",
        [
            _candidate("tab:1", "", ""),
            {"card": {"cardId": "tab:2", "title": "Two", "domain": "two.com"}},
            {"cardId": "tab:3"},
        ],
        None,
    )
    assert [(c.card_id, c.title, c.domain, c.index) for c in slot.candidates] == [
        ("tab:1", "Untitled", "unknown", 1),
        ("tab:2", "Two", "two.com", 2),
        ("tab:3", "Untitled", "unknown", 3),
    ]
    assert slot.card_id_at(2) == "tab:2"
    assert slot.card_id_at(4) is None


def test_new_slot_replaces_old(clock):
    store = SlotStore(clock=clock)
    store.store("s1", [_candidate("tab:1", "A", "a.com")], None)
    store.store("s1", [_candidate("tab:9", "Z", "z.com")], None)
    assert store.get("s1").card_id_at(1) == "tab:9"
    store.clear("s1")
    assert store.get("s1") is None


# ---------------------------------------------------------------------------
# parse_follow_up
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "message,number",
    [
        ("the first one", 1),
        ("2", 2),
        ("open the 3rd", 3),
        ("number two", 2),
        ("two", 2),
        ("the last one", 3),
        ("Second!", 2),
    ],
)
def test_select_by_position(message, number):
    follow_up = parse_follow_up(message, CANDIDATES)
    assert follow_up.action == "select"
    assert follow_up.tab_number == number
    assert follow_up.card_id == CANDIDATES[number - 1].card_id


def test_number_words_only_count_alone():
    assert parse_follow_up("close two tabs please", CANDIDATES).action == "unclear"


def test_out_of_range_number_is_unclear():
    assert parse_follow_up("6", CANDIDATES).action == "unclear"


@pytest.mark.parametrize(
    "message", ["what was I reading last week?", "what did I read 2 days ago", "reopen the last closed tab"]
)
def test_numbers_and_last_inside_requests_are_unclear(message):
    assert parse_follow_up(message, CANDIDATES).action == "unclear"


@pytest.mark.parametrize("message", ["yes", "Yeah, do it", "ok", "go ahead"])
def test_confirm(message):
    follow_up = parse_follow_up(message, CANDIDATES)
    assert follow_up.action == "confirm"
    assert follow_up.confirmation is True


@pytest.mark.parametrize("message", ["no", "cancel", "never mind"])
def test_cancel(message):
    follow_up = parse_follow_up(message, CANDIDATES)
    assert follow_up.action == "cancel"
    assert follow_up.confirmation is False


def test_specify_by_domain_or_title():
    assert parse_follow_up("the github one", CANDIDATES).card_id == "tab:2"
    assert parse_follow_up("quarterly report", CANDIDATES).card_id == "tab:3"
    assert parse_follow_up("the github one", CANDIDATES).action == "specify"


def test_empty_message_is_unclear():
    follow_up = parse_follow_up("   ", CANDIDATES)
    assert not follow_up.ok
    assert follow_up.to_dict() == {"ok": False, "action": "unclear"}


@pytest.mark.parametrize(
    "message,expected",
    [
        ("the second one", True),
        ("yes", True),
        ("the github one", True),
        ("that one", True),
        ("no, the other one", True),
        ("what was I reading last week?", False),
        ("what did I read 2 days ago", False),
        ("open gmail", False),
        ("close that tab and the other one in my work window", False),
    ],
)
def test_looks_like_follow_up(message, expected):
    assert looks_like_follow_up(message, CANDIDATES) is expected


# ---------------------------------------------------------------------------
# Model-assisted follow-ups
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_model_selection_is_used():
    model = ScriptedModel(['{"action": "select", "cardId": "tab:3"}'])
    follow_up = await understand_follow_up(model, "open report", "Which one?", CANDIDATES, "the doc")
    assert follow_up.action == "select"
    assert follow_up.card_id == "tab:3"
    assert 'cardId: tab:2, title: "acme/parser pull request"' in model.prompts[0]


@pytest.mark.asyncio
async def test_model_tab_number_resolves_card():
    model = ScriptedModel(['{"action": "specify", "tabNumber": 1}'])
    follow_up = await understand_follow_up(model, "", "", CANDIDATES, "mail")
    assert follow_up.card_id == "tab:1"


@pytest.mark.asyncio
async def test_unknown_card_from_model_falls_back_to_regex():
    model = ScriptedModel(['{"action": "select", "cardId": "tab:99"}'])
    follow_up = await understand_follow_up(model, "", "", CANDIDATES, "the second one")
    assert follow_up.card_id == "tab:2"


@pytest.mark.asyncio
async def test_offline_model_uses_regex(offline_model):
    follow_up = await understand_follow_up(offline_model, "", "", CANDIDATES, "yes")
    assert follow_up.action == "confirm"
    assert offline_model.prompts == []


# ---------------------------------------------------------------------------
# ConversationManager
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_manager_follow_up_needs_a_live_slot(clock):
    manager = ConversationManager(clock=clock)
    assert await manager.understand_follow_up("s1", "the first one") is None

    manager.store_candidates(
        "s1",
        [_candidate("tab:1", "A", "a.com"), _candidate("tab:2", "B", "b.com")],
        Intent.bare(IntentKind.OPEN),
    )
    follow_up = await manager.understand_follow_up("s1", "the second one")
    assert follow_up.card_id == "tab:2"

    clock.advance(301)
    assert await manager.understand_follow_up("s1", "the second one") is None


@pytest.mark.asyncio
async def test_manager_passes_previous_turn_to_model(clock):
    model = ScriptedModel(['{"action": "cancel", "confirmation": false}'])
    manager = ConversationManager(model, clock=clock)
    manager.add_user("s1", "open my docs")
    manager.add_assistant("s1", "You have 2 docs open. Which one?")
    manager.store_candidates(
        "s1", [_candidate("tab:1", "A", "a.com"), _candidate("tab:2", "B", "b.com")], None
    )
    follow_up = await manager.understand_follow_up("s1", "forget it")
    assert follow_up.action == "cancel"
    assert 'Previous query: "open my docs"' in model.prompts[0]
    assert 'Previous response: "You have 2 docs open. Which one?"' in model.prompts[0]
