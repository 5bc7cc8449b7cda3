"""Language-model runtime access."""

from tabitha.lm.client import LanguageModel, LMResponse, validate_api_key
from tabitha.lm.jsonparse import extract_json

__all__ = ["LanguageModel", "LMResponse", "extract_json", "validate_api_key"]
