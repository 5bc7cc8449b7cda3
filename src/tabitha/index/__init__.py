"""Tab Index: card cache, inverted index, lexical search and intent cache."""

from tabitha.index.intent_cache import IntentCache, canonicalize_url, url_key
from tabitha.index.inverted import InvertedIndex
from tabitha.index.scoring import confidence, score_card
from tabitha.index.tab_index import LexicalSearchResult, RefreshResult, ScoredCard, TabIndex
from tabitha.index.tokenizer import card_tokens, tokenize, unigrams
from tabitha.index.urls import domain_of, normalize_url

__all__ = [
    "IntentCache",
    "InvertedIndex",
    "LexicalSearchResult",
    "RefreshResult",
    "ScoredCard",
    "TabIndex",
    "canonicalize_url",
    "card_tokens",
    "confidence",
    "domain_of",
    "normalize_url",
    "score_card",
    "tokenize",
    "unigrams",
    "url_key",
]
