"""Per-URL intent labels with domain overrides and a stability rule.

Labels are the organizer buckets ("Deep Work", "Comms", ...). Lookup order:
built-in domain overrides, then user domain rules, then the URL cache.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from tabitha.db.repository import Repository
from tabitha.timeutil import MS_PER_DAY, Clock, now_ms

LOGGER = logging.getLogger(__name__)

CACHE_KEY = "tabitha_intentCache"
DOMAIN_RULES_KEY = "tabitha_domainRules"

EXPIRY_MS = 30 * MS_PER_DAY
STABILITY_MARGIN = 0.15
OVERRIDE_SCORE = 1.0
RULE_SCORE = 0.95

_CANONICAL_DROP: frozenset[str] = frozenset(
    [
        "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
        "gclid", "gclsrc", "fbclid", "ref", "source", "medium",
        "_ga", "_gid", "icid", "cid", "ncid",
        "fb_action_ids", "fb_action_types", "fb_source",
        "mc_cid", "mc_eid", "_hsenc", "_hsmi",
    ]
)

DOMAIN_OVERRIDES: dict[str, str] = {
    "colab.research.google.com": "Dev Tools",
    "research.google.com": "Dev Tools",
    "github.com": "Dev Tools",
    "gitlab.com": "Dev Tools",
    "stackoverflow.com": "Reading & Reference",
    "mail.google.com": "Comms",
    "gmail.com": "Comms",
    "slack.com": "Comms",
    "teams.microsoft.com": "Comms",
    "zoom.us": "Comms",
    "meet.google.com": "Comms",
    "youtube.com": "Media",
    "spotify.com": "Media",
    "docs.google.com": "Deep Work",
    "sheets.google.com": "Deep Work",
    "notion.so": "Deep Work",
}


def canonicalize_url(url: str) -> str:
    """Lowercase host, drop fragment and benign params, trim a trailing ``/``.

    Returns *url* unchanged when it cannot be parsed.
    """
    try:
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return url
        query = [
            (k, v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if k.lower() not in _CANONICAL_DROP
        ]
        path = parts.path
        if len(path) > 1 and path.endswith("/"):
            path = path[:-1]
        return urlunsplit(
            (parts.scheme, parts.netloc.lower(), path, urlencode(query), "")
        )
    except ValueError:
        LOGGER.debug("could not canonicalize %r", url)
        return url


def url_key(url: str) -> str:
    """Cache key for *url*: host plus path of the canonical form."""
    canonical = canonicalize_url(url)
    try:
        parts = urlsplit(canonical)
    except ValueError:
        return url
    if not parts.netloc:
        return url
    return f"{(parts.hostname or '').lower()}{parts.path}"


def domain_override(domain: str | None) -> str | None:
    if not domain:
        return None
    d = domain.lower()
    if d.startswith("www."):
        d = d[4:]
    return DOMAIN_OVERRIDES.get(d)


@dataclass
class CachedIntent:
    intent: str
    score: float
    updated_at: int
    source: str  # "cache" | "override"

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent,
            "score": self.score,
            "updatedAt": self.updated_at,
            "source": self.source,
        }


class IntentCache:
    """Intent labels keyed by :func:`url_key`, stored in the ``kv`` table.

    Args:
        repo: Repository whose key-value slots hold the cache and rules.
        clock: Wall-clock seconds source.
    """

    def __init__(self, repo: Repository, *, clock: Clock = time.time) -> None:
        self._repo = repo
        self._clock = clock

    def _load(self, key: str) -> dict[str, Any]:
        try:
            value = self._repo.get_kv(key, {})
        except sqlite3.Error as exc:
            LOGGER.warning("could not load %s: %s", key, exc)
            return {}
        return value if isinstance(value, dict) else {}

    def _save(self, key: str, value: dict[str, Any]) -> None:
        try:
            self._repo.set_kv(key, value)
        except sqlite3.Error as exc:
            LOGGER.warning("could not save %s: %s", key, exc)

    def get(self, key: str, domain: str | None = None) -> CachedIntent | None:
        """Cached intent for *key*; overrides and user rules win over the cache."""
        now = now_ms(self._clock)
        forced = domain_override(domain)
        if forced:
            return CachedIntent(forced, OVERRIDE_SCORE, now, "override")

        if domain:
            rule = self._load(DOMAIN_RULES_KEY).get(domain)
            if rule:
                return CachedIntent(rule, RULE_SCORE, now, "override")

        cache = self._load(CACHE_KEY)
        entry = cache.get(key)
        if not entry:
            return None
        if now - int(entry.get("updatedAt", 0)) > EXPIRY_MS:
            del cache[key]
            self._save(CACHE_KEY, cache)
            return None
        return CachedIntent(entry["intent"], float(entry["score"]), int(entry["updatedAt"]), "cache")

    def put(self, key: str, intent: str, score: float) -> bool:
        """Store a label. An existing entry is replaced only when *score* beats it by 0.15.

        The margin applies whether or not the intent label changed; expired
        entries are dropped on read, which is what eventually frees a stale label.

        Returns:
            True when the cache was updated.
        """
        cache = self._load(CACHE_KEY)
        existing = cache.get(key)
        if existing and score < float(existing.get("score", 0.0)) + STABILITY_MARGIN:
            return False
        cache[key] = {"intent": intent, "score": score, "updatedAt": now_ms(self._clock)}
        self._save(CACHE_KEY, cache)
        return True

    def set_domain_rule(self, domain: str, intent: str | None) -> None:
        rules = self._load(DOMAIN_RULES_KEY)
        if intent:
            rules[domain] = intent
        else:
            rules.pop(domain, None)
        self._save(DOMAIN_RULES_KEY, rules)

    def domain_rules(self) -> dict[str, str]:
        return dict(self._load(DOMAIN_RULES_KEY))

    def clear(self, key: str | None = None) -> None:
        if key is None:
            try:
                self._repo.delete_kv(CACHE_KEY)
            except sqlite3.Error as exc:
                LOGGER.warning("could not clear intent cache: %s", exc)
            return
        cache = self._load(CACHE_KEY)
        if cache.pop(key, None) is not None:
            self._save(CACHE_KEY, cache)
