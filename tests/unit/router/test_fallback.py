"""Tests for the deterministic fallback parser."""

from __future__ import annotations

import pytest

from tabitha.router.fallback import apps_in, fallback_intent, leading_intent, strip_politeness
from tabitha.router.intent import IntentKind

NOW_MS = 1_772_625_600_000


@pytest.mark.parametrize(
    "text, kind",
    [
        ("Can you open gmail", IntentKind.OPEN),
        ("please switch to slack", IntentKind.OPEN),
        ("what did I read about rust", IntentKind.ASK),
        ("close youtube", IntentKind.CLOSE),
        ("bring back the tab I closed", IntentKind.REOPEN),
        ("bookmark these", IntentKind.SAVE),
        ("show my tabs", IntentKind.LIST),
        ("unmute spotify", IntentKind.UNMUTE),
        ("mute everything", IntentKind.MUTE),
        ("unpin docs", IntentKind.UNPIN),
        ("pin gmail", IntentKind.PIN),
        ("refresh the dashboard", IntentKind.RELOAD),
        ("snooze reddit", IntentKind.DISCARD),
        ("gmail", IntentKind.FIND_OPEN),
    ],
)
def test_leading_intent(text, kind):
    assert leading_intent(text) is kind


def test_strip_politeness():
    assert strip_politeness("Hey Tabitha, could you please open docs") == "open docs"


def test_apps_in_dedupes_domains():
    assert apps_in("my docs and sheets") == ["docs.google.com"]
    assert apps_in("gmail") == ["mail.google.com", "gmail.com"]
    assert apps_in("the quarterly plan") == []


def test_close_all_except_app():
    intent = fallback_intent("close all tabs except gmail", NOW_MS)
    assert intent.intent is IntentKind.CLOSE
    assert intent.constraints.exclude_apps == ["mail.google.com", "gmail.com"]
    assert intent.constraints.include_apps == []
    assert intent.canonical_query == ""
    assert intent.notes == "fallback parsing"


def test_mute_app_tabs():
    intent = fallback_intent("mute all youtube tabs", NOW_MS)
    assert intent.intent is IntentKind.MUTE
    assert intent.constraints.include_apps == ["youtube.com", "music.youtube.com"]
    assert intent.canonical_query == "youtube"


def test_save_into_folder():
    intent = fallback_intent("save these tabs to research folder", NOW_MS)
    assert intent.intent is IntentKind.SAVE
    assert intent.folder_name == "research"


def test_group_operation_becomes_list():
    intent = fallback_intent("collapse the research group", NOW_MS)
    assert intent.intent is IntentKind.LIST
    assert intent.operation == "collapse"
    assert intent.constraints.scope == "group"
    assert intent.constraints.group == "research"
    assert intent.canonical_query == "research"


def test_group_rename_args():
    intent = fallback_intent("rename the research group to papers and collapse it", NOW_MS)
    assert intent.operation == "rename"
    assert intent.operation_args == {"rename_to": "papers", "collapse": True}


def test_limit_and_app():
    intent = fallback_intent("open the first 3 github tabs", NOW_MS)
    assert intent.constraints.limit == 3
    assert intent.constraints.include_apps == ["github.com"]
    assert intent.canonical_query == "github"


def test_time_reference_opens_history():
    intent = fallback_intent("reopen the tab I closed yesterday", NOW_MS)
    assert intent.intent is IntentKind.REOPEN
    assert intent.constraints.result_must_be_open is False
    assert intent.time_reason == "user said 'yesterday'"


def test_ask_keeps_whole_question():
    intent = fallback_intent("What was I reading about rust?", NOW_MS)
    assert intent.intent is IntentKind.ASK
    assert intent.canonical_query == "what was i reading about rust"
