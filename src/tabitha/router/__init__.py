"""Intent Router: utterance → structured Intent."""

from tabitha.router.fallback import FALLBACK_MESSAGE, fallback_intent
from tabitha.router.intent import Constraints, DateRange, Intent, IntentKind
from tabitha.router.normalize import canonical_query, normalize_intent
from tabitha.router.parser import IntentRouter, ParseResult, PreprocessResult, is_anaphoric
from tabitha.router.temporal import TemporalMatch, detect_temporal

__all__ = [
    "FALLBACK_MESSAGE",
    "Constraints",
    "DateRange",
    "Intent",
    "IntentKind",
    "IntentRouter",
    "ParseResult",
    "PreprocessResult",
    "TemporalMatch",
    "canonical_query",
    "detect_temporal",
    "fallback_intent",
    "is_anaphoric",
    "normalize_intent",
]
