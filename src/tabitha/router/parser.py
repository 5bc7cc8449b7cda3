"""Intent Router: free text in, validated :class:`Intent` out.

parse_intent():
  1. preprocess long or non-ASCII text (translate + proofread, one model call)
  2. check model availability (cached by the model wrapper)
  3. prompt the model with conversation context and, for anaphora, the last
     disambiguation candidates
  4. extract JSON, validate, normalize
  5. on any failure return the regex fallback, flagged so the UI can say so
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Callable

from tabitha.db.repository import Repository
from tabitha.errors import ErrorKind
from tabitha.lm.client import LanguageModel
from tabitha.lm.jsonparse import extract_json
from tabitha.router.fallback import FALLBACK_MESSAGE, fallback_intent
from tabitha.router.intent import Intent
from tabitha.router.normalize import normalize_intent, uncertain_intent
from tabitha.router.prompts import PREPROCESS_PROMPT, build_router_prompt
from tabitha.telemetry import Telemetry
from tabitha.timeutil import Clock, now_ms

LOGGER = logging.getLogger(__name__)

ANAPHORA_WORDS = frozenset({"it", "that", "those", "them", "these", "this"})
USER_HINTS_KEY = "tabitha_userHints"

_PREPROCESS_TRIGGER_RE = re.compile(r"\b(translate|proofread|rewrite)\b", re.IGNORECASE)


def is_anaphoric(text: str) -> bool:
    """True when *text* is, or starts with, a pronoun like ``those``."""
    words = (text or "").strip().lower().split()
    return bool(words) and words[0].strip(".,!?") in ANAPHORA_WORDS


def needs_preprocessing(text: str) -> bool:
    return len(text) > 50 or not text.isascii() or bool(_PREPROCESS_TRIGGER_RE.search(text))


@dataclass
class PreprocessResult:
    ok: bool
    query: str
    language: str = "en"
    was_translated: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": self.ok,
            "query": self.query,
            "metadata": {"detectedLanguage": self.language, "wasTranslated": self.was_translated},
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class ParseResult:
    """Router outcome.

    ``ok=False`` with ``fallback=True`` still carries the regex-derived
    ``intent`` so the caller can continue with likely matches.
    """

    ok: bool
    intent: Intent | None = None
    fallback: bool = False
    error: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok}
        if self.intent is not None:
            out["intent"] = self.intent.to_dict()
        if self.fallback:
            out["fallback"] = True
        if self.error:
            out["error"] = self.error
        if self.message:
            out["message"] = self.message
        return out


class IntentRouter:
    """Turn utterances into intents, deterministically when the model is absent.

    Args:
        model: Language-model runtime.
        repo: Store for user hints; ``None`` disables hints.
        telemetry: Counter sink for the ``parsing`` category.
        context_for: ``session_id -> formatted recent conversation``.
        candidates_for: ``session_id -> last disambiguation candidates``.
        timeout_s: Bound on the routing call.
        clock: Wall-clock seconds source.
    """

    def __init__(
        self,
        model: LanguageModel,
        *,
        repo: Repository | None = None,
        telemetry: Telemetry | None = None,
        context_for: Callable[[str], str] | None = None,
        candidates_for: Callable[[str], list[dict[str, Any]]] | None = None,
        timeout_s: float = 60.0,
        clock: Clock = time.time,
    ) -> None:
        self._model = model
        self._repo = repo
        self._telemetry = telemetry or Telemetry()
        self._context_for = context_for
        self._candidates_for = candidates_for
        self._timeout_s = timeout_s
        self._clock = clock

    # ------------------------------------------------------------------
    # Preprocessing
    # ------------------------------------------------------------------

    async def preprocess(self, text: str) -> PreprocessResult:
        """Translate and proofread *text*; returns it unchanged on any failure."""
        query = (text or "").strip()
        if not query:
            return PreprocessResult(ok=False, query=query, error=ErrorKind.EMPTY_QUERY.value)
        response = await self._model.run(PREPROCESS_PROMPT.format(text=query), max_tokens=200)
        if not response.ok:
            return PreprocessResult(ok=False, query=query, error=response.error)
        parsed = extract_json(response.text)
        if not isinstance(parsed, dict) or not str(parsed.get("text") or "").strip():
            return PreprocessResult(ok=False, query=query, error=ErrorKind.PARSE_FAILED.value)
        language = str(parsed.get("language") or "en").lower()
        return PreprocessResult(
            ok=True,
            query=str(parsed["text"]).strip(),
            language=language,
            was_translated=language != "en",
        )

    async def _maybe_preprocess(self, text: str) -> PreprocessResult:
        if not needs_preprocessing(text):
            return PreprocessResult(ok=False, query=text)
        return await self.preprocess(text)

    # ------------------------------------------------------------------
    # User hints
    # ------------------------------------------------------------------

    def save_user_hint(self, phrase: str, domain: str | None, type_: str | None = None, boost: float = 1) -> None:
        """Remember that *phrase* points at *domain* (and/or card *type_*)."""
        if self._repo is None or not phrase:
            return
        hints = self._load_hints()
        entry = hints.setdefault(phrase.strip().lower(), {"domains": {}, "types": {}})
        if domain:
            entry["domains"][domain] = entry["domains"].get(domain, 0) + boost
        if type_:
            entry["types"][type_] = entry["types"].get(type_, 0) + boost
        try:
            self._repo.set_kv(USER_HINTS_KEY, hints)
        except sqlite3.Error as exc:
            LOGGER.warning("could not save user hint: %s", exc)

    def _load_hints(self) -> dict[str, Any]:
        if self._repo is None:
            return {}
        try:
            hints = self._repo.get_kv(USER_HINTS_KEY, {})
        except sqlite3.Error as exc:
            LOGGER.warning("could not load user hints: %s", exc)
            return {}
        return hints if isinstance(hints, dict) else {}

    def hinted_domain(self, text: str) -> str | None:
        """Highest-boost domain among hints whose phrase appears in *text*."""
        lowered = f" {(text or '').lower()} "
        totals: dict[str, float] = {}
        for phrase, entry in self._load_hints().items():
            if f" {phrase} " not in lowered:
                continue
            for domain, boost in (entry.get("domains") or {}).items():
                totals[domain] = totals.get(domain, 0) + float(boost)
        if not totals:
            return None
        return max(totals.items(), key=lambda kv: kv[1])[0]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _fallback(self, text: str, error: str) -> ParseResult:
        intent = fallback_intent(text, now_ms(self._clock))
        if not intent.constraints.include_apps:
            hinted = self.hinted_domain(text)
            if hinted:
                intent.constraints.include_apps = [hinted]
        self._telemetry.record("parsing", "fallback", True)
        return ParseResult(ok=False, intent=intent, fallback=True, error=error, message=FALLBACK_MESSAGE)

    async def parse_intent(self, text: str, session_id: str = "default") -> ParseResult:
        """Parse *text* into an intent.

        Returns:
            ``ParseResult(ok=True, intent)`` on a validated model parse, or on
            an uncertain parse (``find_open`` with disambiguation requested).
            ``ParseResult(ok=False, fallback=True, intent=<regex parse>)``
            when the model is unavailable, times out, or returns no JSON.
        """
        raw = (text or "").strip()
        if not raw:
            return ParseResult(ok=False, error=ErrorKind.EMPTY_TEXT.value)

        pre, available = await asyncio.gather(self._maybe_preprocess(raw), self._model.available())
        cleaned = pre.query if pre.ok else raw
        if not available:
            LOGGER.info("router: model unavailable, using fallback")
            return self._fallback(cleaned, ErrorKind.OFFSCREEN_UNAVAILABLE.value)

        conversation = self._context_for(session_id) if self._context_for else ""
        candidates = None
        if is_anaphoric(raw) and self._candidates_for is not None:
            candidates = self._candidates_for(session_id) or None
        prompt = build_router_prompt(
            raw, conversation=conversation, candidates=candidates, cleaned=cleaned if pre.ok else None
        )

        response = await self._model.run(prompt, timeout_s=self._timeout_s)
        if not response.ok:
            self._telemetry.record("parsing", "prompt_api", False)
            error = (
                ErrorKind.INTENT_PARSE_TIMEOUT.value
                if response.error == ErrorKind.TIMEOUT.value
                else (response.error or ErrorKind.PARSE_FAILED.value)
            )
            LOGGER.warning("router: model call failed (%s)", error)
            return self._fallback(cleaned, error)

        parsed = extract_json(response.text)
        if parsed is None:
            self._telemetry.record("parsing", "prompt_api", False)
            LOGGER.warning("router: no JSON in model output")
            return self._fallback(cleaned, ErrorKind.PARSE_FAILED.value)

        now = now_ms(self._clock)
        intent = normalize_intent(parsed, raw, now)
        if intent is None:
            self._telemetry.record("parsing", "failed", False)
            LOGGER.info("router: invalid intent object, asking for disambiguation")
            return ParseResult(ok=True, intent=uncertain_intent(cleaned, now))

        self._telemetry.record("parsing", "prompt_api", True)
        LOGGER.debug("router: parsed %s %r", intent.intent.value, intent.canonical_query)
        return ParseResult(ok=True, intent=intent)
