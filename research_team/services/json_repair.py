# =============================================================================
# Tolerant Structured-Output Parser
# =============================================================================
#
# Model output that should be JSON often arrives decorated (markdown fences,
# leading prose) or truncated mid-generation when the token limit hits.
# `parse_structured` tries, in order:
#
#   1. strict json.loads
#   2. strip ```json / ``` fences and retry
#   3. substring from the first "{" to the last "}" and retry
#   4. balance the cleaned text: close an open string literal, then close
#      every unclosed "{" / "[" innermost first, and retry
#
# Strategy 4 completes the JSON skeleton of a truncated response instead of
# discarding it. When every strategy fails, UnparsableOutput is raised; no
# partial or default value is ever returned.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from typing import Any

from research_team.errors import UnparsableOutput

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers and surrounding whitespace."""
    return _FENCE_RE.sub("", text).strip()


def balance_json(text: str) -> str:
    """
    Complete a truncated JSON document.

    Scans character by character tracking string-literal state (with
    backslash escapes) and a stack of open brackets. Stray closers that do
    not match the innermost opener are ignored. At the end an unterminated
    string is closed, then the missing closers are appended in LIFO order.

    Example:
        >>> balance_json('{"steps": [{"title": "Rev')
        '{"steps": [{"title": "Rev"}]}'
    """
    stack: list[str] = []
    in_string = False
    escaped = False

    processed = text.strip()

    for char in processed:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if stack and stack[-1] == char:
                stack.pop()

    if in_string:
        # A trailing lone backslash would escape the quote we add.
        if escaped:
            processed = processed[:-1]
        processed += '"'
    while stack:
        processed += stack.pop()

    return processed


def _try_loads(candidate: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return False, None


def parse_structured(text: str | None) -> Any:
    """
    Recover a JSON value from model output.

    Raises:
        UnparsableOutput: The text is empty or no strategy produced valid JSON.
    """
    if not text or not text.strip():
        raise UnparsableOutput("Empty response text")

    # Strategy 1: direct parse
    ok, value = _try_loads(text)
    if ok:
        return value

    # Strategy 2: remove markdown code blocks
    cleaned = strip_code_fences(text)
    ok, value = _try_loads(cleaned)
    if ok:
        return value

    first_open = cleaned.find("{")
    first_array = cleaned.find("[")
    # True when the first object is the opening element of an array payload
    # (`[{...}, ...`); its substring would drop the remaining elements.
    opens_array = (
        first_array != -1
        and first_open > first_array
        and not cleaned[first_array + 1:first_open].strip()
    )

    # Strategy 3: extract the substring from the first "{" to the last "}"
    last_close = cleaned.rfind("}")
    if not opens_array and first_open != -1 and last_close > first_open:
        ok, value = _try_loads(cleaned[first_open:last_close + 1])
        if ok:
            return value

    # Strategy 4: balance the cleaned string (truncated output)
    starts = [0]
    for index in sorted(i for i in (first_array, first_open) if i > 0):
        starts.append(index)
    for start in starts:
        ok, value = _try_loads(balance_json(cleaned[start:]))
        if ok:
            logger.info("Recovered truncated JSON output by bracket balancing")
            return value

    logger.warning(
        "Unable to parse JSON from model output (%d chars): %r",
        len(text), text[:120],
    )
    raise UnparsableOutput("Unable to parse JSON structure from response.")
