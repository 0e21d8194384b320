from __future__ import annotations
import json
import re
from typing import Any, Optional, Tuple

from iris_backend.errors import ParseError

# Greedy: first "{" through last "}" across newlines
_BRACES_RE = re.compile(r"\{[\s\S]*\}")

TIER_STRICT = "strict"
TIER_BRACES = "braces"


def _braces_slice(s: str) -> Optional[str]:
    m = _BRACES_RE.search(s)
    return m.group(0) if m else None


def try_parse_json(text: str) -> Tuple[Optional[Any], Optional[str]]:
    """Two-tier leniency layer for model output.

    Tier 1 parses the whole text strictly. Tier 2 salvages the first
    balanced-looking ``{...}`` region, for models that wrap JSON in prose or
    code fences despite instructions. Returns ``(obj, tier)`` or
    ``(None, None)``; only JSON objects count as a hit.
    """
    if not text:
        return None, None

    try:
        obj = json.loads(text)
        if isinstance(obj, dict):
            return obj, TIER_STRICT
    except ValueError:
        pass

    sliced = _braces_slice(text)
    if sliced:
        try:
            obj = json.loads(sliced)
            if isinstance(obj, dict):
                return obj, TIER_BRACES
        except ValueError:
            pass

    return None, None


def parse_model_json(text: str, log=None) -> dict:
    """Parse a model reply into a dict or raise ParseError."""
    obj, tier = try_parse_json(text)
    if obj is None:
        preview = (text or "")[:200]
        raise ParseError(f"No JSON found in model response: {preview!r}")
    if log is not None:
        if tier == TIER_STRICT:
            log("JSON parsed (strict)")
        else:
            log("JSON recovered from surrounding text (fallback)", "warn")
    return obj
