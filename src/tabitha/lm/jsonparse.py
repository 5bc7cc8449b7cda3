"""Lenient JSON extraction for language-model output.

Strategies, in order:
  1. the whole text parses as JSON
  2. a ```json fenced block
  3. a bare ``` fenced block
  4. the first balanced ``{...}`` object (string- and escape-aware)
Trailing commas before ``]`` / ``}`` are removed before each parse attempt.
"""

from __future__ import annotations

import json
import re
from typing import Any

_JSON_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_BARE_FENCE_RE = re.compile(r"```\s*([\s\S]*?)\s*```")
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")


def _loads(text: str) -> Any:
    try:
        return json.loads(_TRAILING_COMMA_RE.sub(r"\1", text.strip()))
    except (ValueError, TypeError):
        return None


def balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring of *text*, or None."""
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json(text: str, *, allow_array: bool = False) -> Any:
    """Return the first JSON object found in *text*, or None.

    Args:
        text: Raw model output.
        allow_array: Also accept a top-level JSON array.
    """
    if not text:
        return None

    accepted = (dict, list) if allow_array else (dict,)

    direct = _loads(text)
    if isinstance(direct, accepted):
        return direct

    for pattern in (_JSON_FENCE_RE, _BARE_FENCE_RE):
        match = pattern.search(text)
        if match:
            fenced = _loads(match.group(1))
            if isinstance(fenced, accepted):
                return fenced
            inner = balanced_object(match.group(1))
            if inner:
                parsed = _loads(inner)
                if isinstance(parsed, dict):
                    return parsed

    candidate = balanced_object(text)
    if candidate:
        parsed = _loads(candidate)
        if isinstance(parsed, dict):
            return parsed

    if allow_array:
        start, end = text.find("["), text.rfind("]")
        if 0 <= start < end:
            parsed = _loads(text[start : end + 1])
            if isinstance(parsed, list):
                return parsed
    return None
