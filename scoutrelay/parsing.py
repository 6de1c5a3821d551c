"""
Lenient JSON extraction from model output.

Models wrap JSON in markdown fences, prose, or leave trailing commas.
extract_json_object() takes the greedy {...} span and tries a couple of
cleanups before giving up. Callers decide what a failure degrades to.
"""

import json
import logging
import re

logger = logging.getLogger(__name__)

_OBJECT_SPAN = re.compile(r"\{.*\}", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def _try_parse(s: str) -> dict | None:
    """json.loads with trailing-comma cleanup. Only dicts count."""
    for candidate in (s, _TRAILING_COMMA.sub(r"\1", s)):
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        return value if isinstance(value, dict) else None
    return None


def extract_json_object(text: str) -> dict | None:
    """Return the first JSON object embedded in text, or None."""
    if not text:
        return None
    m = _OBJECT_SPAN.search(text)
    if not m:
        return None
    result = _try_parse(m.group())
    if result is None:
        logger.debug("Could not parse JSON from model output: %.200s", text)
    return result


def truncate(text: str, limit: int = 100, ellipsis: str = "...") -> str:
    """First `limit` characters, with an ellipsis only if something was cut."""
    return text[:limit] + (ellipsis if len(text) > limit else "")
