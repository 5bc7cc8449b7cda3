"""Tests for lenient JSON extraction from model output."""

from __future__ import annotations

import pytest

from tabitha.lm.jsonparse import balanced_object, extract_json


# ------------------------------------------------------------------
# extract_json
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "text",
    [
        '{"intent": "open"}',
        '```json\n{"intent": "open"}\n```',
        '```\n{"intent": "open"}\n```',
        'Sure! Here it is: {"intent": "open"} Hope that helps.',
        '{"intent": "open",}',
        '```JSON\n{"intent": "open"}\n```',
    ],
)
def test_extract_json_object_variants(text):
    assert extract_json(text) == {"intent": "open"}


def test_extract_json_nested_and_braces_in_strings():
    text = 'Result: {"query": "find {x}", "constraints": {"apps": ["a", "b",]}} done'
    assert extract_json(text) == {"query": "find {x}", "constraints": {"apps": ["a", "b"]}}


def test_extract_json_fence_with_prose_inside():
    text = '```json\nHere you go:\n{"selected": 2}\n```'
    assert extract_json(text) == {"selected": 2}


@pytest.mark.parametrize("text", ["", "no json here", "{broken", '"just a string"'])
def test_extract_json_returns_none(text):
    assert extract_json(text) is None


def test_extract_json_array_rejected_by_default():
    assert extract_json("[1, 2, 3]") is None


def test_extract_json_array_when_allowed():
    assert extract_json("[3, 1, 2]", allow_array=True) == [3, 1, 2]
    assert extract_json("Ranking: [2, 0] (best first)", allow_array=True) == [2, 0]


def test_extract_json_prefers_object_over_array():
    assert extract_json('[1] then {"a": 1}', allow_array=True) == {"a": 1}


# ------------------------------------------------------------------
# balanced_object
# ------------------------------------------------------------------


def test_balanced_object_escaped_quote():
    text = r'x {"a": "say \"}\" now"} y'
    assert balanced_object(text) == r'{"a": "say \"}\" now"}'


def test_balanced_object_unbalanced():
    assert balanced_object('{"a": {"b": 1}') is None
    assert balanced_object("nothing") is None
