"""Tests for constraint filtering and three-key dedup."""

from __future__ import annotations

from tabitha.db.models import Card
from tabitha.pipeline.dedup import dedupe
from tabitha.pipeline.filters import app_matches, card_passes, group_matches
from tabitha.pipeline.models import Candidate
from tabitha.router.intent import Constraints, DateRange

DAY_MS = 86_400_000
T0 = 1_772_625_600_000


def _card(card_id, source="tab", tab_id=None, url="https://example.com/a", title="A", domain="example.com", **kw):
    return Card(card_id=card_id, source=source, tab_id=tab_id, url=url, title=title, domain=domain, **kw)


def test_app_matches():
    assert app_matches("mail.google.com", "", "mail.google.com")
    assert app_matches("music.youtube.com", "", "youtube.com")
    assert app_matches("github.com", "", "www.github.com")
    assert app_matches("localhost", "http://localhost:3000/zoom.us", "zoom.us")
    assert not app_matches("github.com", "https://github.com/x", "gitlab.com")
    assert not app_matches("github.com", "", "")


def test_group_matches():
    assert group_matches("Research", None)
    assert group_matches("Research papers", "research")
    assert group_matches("Q3 planning", "planning docs")
    assert not group_matches(None, "research")
    assert not group_matches("Shopping", "research")


def test_card_passes_excludes_beat_includes():
    card = _card("tab:1", tab_id=1, domain="zoom.us", url="https://zoom.us/j/1")
    constraints = Constraints(include_apps=["zoom.us"], exclude_apps=["zoom.us"])
    assert not card_passes(card, constraints)


def test_card_passes_date_range():
    card = _card("history:1", source="history", last_visited_at=T0 - 2 * DAY_MS)
    inside = Constraints(result_must_be_open=False, date_range=DateRange(since=str(T0 - 3 * DAY_MS)))
    outside = Constraints(result_must_be_open=False, date_range=DateRange(since=str(T0 - DAY_MS)))
    assert card_passes(card, inside)
    assert not card_passes(card, outside)


def test_card_passes_open_and_group_scope():
    closed = _card("history:1", source="history")
    assert not card_passes(closed, Constraints())
    ungrouped = _card("tab:1", tab_id=1)
    assert not card_passes(ungrouped, Constraints(scope="group"))
    grouped = _card("tab:2", tab_id=2, group_name="Research")
    assert card_passes(grouped, Constraints(scope="group", group="research"))


def test_dedupe_prefers_open_tab_over_history():
    hist = Candidate(_card("history:1", source="history", url="https://example.com/a?utm_source=x"), 0.9)
    tab = Candidate(_card("tab:1", tab_id=1, url="https://example.com/a"), 0.4)
    kept = dedupe([hist, tab])
    assert [c.card.card_id for c in kept] == ["tab:1"]


def test_dedupe_matches_domain_and_title():
    bookmark = Candidate(_card("bookmark:1", source="bookmark", url="https://example.com/b"), 0.5)
    history = Candidate(_card("history:1", source="history", url="https://example.com/c"), 0.5)
    kept = dedupe([history, bookmark])
    assert [c.card.card_id for c in kept] == ["bookmark:1"]


def test_dedupe_keeps_distinct_open_tabs():
    a = Candidate(_card("tab:1", tab_id=1), 0.5)
    b = Candidate(_card("tab:2", tab_id=2), 0.5)
    assert len(dedupe([a, b])) == 2
