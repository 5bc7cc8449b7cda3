"""Tests for the per-URL intent cache."""

from __future__ import annotations

import pytest

from tabitha.index.intent_cache import (
    CACHE_KEY,
    IntentCache,
    canonicalize_url,
    url_key,
)


@pytest.fixture
def cache(repo, clock):
    return IntentCache(repo, clock=clock)


def test_url_key_strips_benign_params_and_fragment():
    assert url_key("https://www.Example.com/a/?utm_source=x&page=2#frag") == "www.example.com/a"


def test_canonicalize_keeps_meaningful_params():
    assert canonicalize_url("https://shop.example/item?id=5&gclid=zz") == "https://shop.example/item?id=5"


def test_canonicalize_unparseable_returns_input():
    assert canonicalize_url("just words") == "just words"


def test_domain_override_wins(cache):
    cache.put("github.com/acme", "Shopping", 0.9)
    hit = cache.get("github.com/acme", "www.github.com")
    assert hit.intent == "Dev Tools"
    assert hit.score == 1.0
    assert hit.source == "override"


def test_user_domain_rule(cache):
    cache.set_domain_rule("etsy.com", "Shopping")
    hit = cache.get("etsy.com/listing/1", "etsy.com")
    assert hit.intent == "Shopping"
    assert hit.score == 0.95
    assert cache.domain_rules() == {"etsy.com": "Shopping"}

    cache.set_domain_rule("etsy.com", None)
    assert cache.get("etsy.com/listing/1", "etsy.com") is None


def test_put_then_get(cache):
    assert cache.put("example.com/a", "Reading & Reference", 0.6)
    hit = cache.get("example.com/a")
    assert hit.intent == "Reading & Reference"
    assert hit.source == "cache"


def test_stability_margin_blocks_small_improvements(cache):
    assert cache.put("example.com/a", "Comms", 0.5)
    assert not cache.put("example.com/a", "Media", 0.6)
    assert not cache.put("example.com/a", "Comms", 0.6)
    assert cache.get("example.com/a").intent == "Comms"
    assert cache.put("example.com/a", "Media", 0.7)
    assert cache.get("example.com/a").intent == "Media"


def test_entries_expire_after_thirty_days(cache, repo, clock):
    cache.put("example.com/a", "Comms", 0.9)
    clock.advance(30 * 86_400)
    assert cache.get("example.com/a") is not None
    clock.advance(1)
    assert cache.get("example.com/a") is None
    assert "example.com/a" not in repo.get_kv(CACHE_KEY)
    # an expired label no longer blocks a weaker one
    assert cache.put("example.com/a", "Media", 0.2)


def test_clear(cache):
    cache.put("example.com/a", "Comms", 0.9)
    cache.put("example.com/b", "Comms", 0.9)
    cache.clear("example.com/a")
    assert cache.get("example.com/a") is None
    assert cache.get("example.com/b") is not None
    cache.clear()
    assert cache.get("example.com/b") is None
