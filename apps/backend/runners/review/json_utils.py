"""
JSON Extraction Utilities
=========================

Pull a JSON object out of free-form LLM output. Responses may wrap the
object in a markdown fence, surround it with prose, or be truncated
mid-object, so extraction tries several strategies before giving up.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from .errors import ResponseParseError

logger = logging.getLogger(__name__)

_CODE_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_TRAILING_COMMA_PATTERN = re.compile(r",(\s*[}\]])")


def _balanced_object(text: str, start: int) -> str | None:
    """Return the brace-balanced object starting at text[start], ignoring braces in strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def repair_json(json_str: str) -> str:
    """
    Attempt to repair truncated or malformed JSON.

    Handles unclosed strings, unclosed arrays and objects, and trailing
    commas. Returns the input unchanged when the repair does not produce
    valid JSON.
    """
    repaired = json_str.strip()
    try:
        json.loads(repaired)
        return repaired
    except json.JSONDecodeError:
        pass

    # Truncated string
    if repaired.count('"') % 2 != 0:
        repaired += '"'

    # Close whatever is still open, innermost first
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in repaired:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()
    repaired += "".join(reversed(stack))

    repaired = _TRAILING_COMMA_PATTERN.sub(r"\1", repaired)

    try:
        json.loads(repaired)
        logger.debug("[JSONParser] Repaired malformed JSON")
        return repaired
    except json.JSONDecodeError:
        return json_str


def _loads_object(candidate: str) -> dict[str, Any] | None:
    try:
        data = json.loads(repair_json(candidate))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_json(text: str) -> dict[str, Any]:
    """
    Extract the first well-formed JSON object from text.

    Strategies, in order:
    1. A fenced markdown code block
    2. The first brace-balanced object in the text
    3. Everything from the first '{' onward, repaired

    Raises:
        ResponseParseError: If no JSON object can be recovered
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty response", text or "")

    for match in _CODE_BLOCK_PATTERN.finditer(text):
        block = match.group(1).strip()
        if block.startswith("{"):
            data = _loads_object(block)
            if data is not None:
                return data

    start = text.find("{")
    while start != -1:
        candidate = _balanced_object(text, start)
        if candidate is None:
            break
        data = _loads_object(candidate)
        if data is not None:
            return data
        start = text.find("{", start + 1)

    first = text.find("{")
    if first != -1:
        last = text.rfind("}")
        tail = text[first : last + 1] if last > first else text[first:]
        data = _loads_object(tail)
        if data is not None:
            return data
        if last > first:
            # Truncated after a closed inner object
            data = _loads_object(text[first:])
            if data is not None:
                return data

    raise ResponseParseError("No JSON object found in response", text)
