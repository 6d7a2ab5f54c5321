"""
Lenient extraction of a JSON object from model output.
"""

import json
import re
from typing import Any

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def extract_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` block, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
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
                    return text[start:index + 1]
        # Unbalanced from here; try the next opening brace.
        start = text.find("{", start + 1)
    return None


def parse_analysis_text(text: str | None) -> dict[str, Any] | None:
    """Parse summarizer output that should contain a JSON object.

    Tries, in order: the whole text as JSON, the contents of a fenced code
    block, and the first balanced ``{...}`` block found in surrounding prose.

    Args:
        text: Raw model output.

    Returns:
        The decoded object, or None when no object can be recovered.
    """
    if not text or not text.strip():
        return None
    stripped = text.strip()

    parsed = _loads_object(stripped)
    if parsed is not None:
        return parsed

    for block in _FENCE_PATTERN.findall(stripped):
        parsed = _loads_object(block.strip())
        if parsed is not None:
            return parsed

    candidate = extract_balanced_object(stripped)
    if candidate is not None:
        return _loads_object(candidate)
    return None
