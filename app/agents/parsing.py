"""Locating JSON payloads inside free-form model output.

Models often wrap the requested JSON in prose or markdown fences, and
sometimes stop mid-object.  ``extract_json_object`` finds the first
balanced top-level object and parses it; it never guesses at malformed
input and raises ``ModelResponseFormatError`` instead.
"""

from __future__ import annotations

import json
import re
from typing import Any

from app.core.errors import ModelResponseFormatError

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block that looks like JSON, else *text*."""
    stripped = text.strip()
    for match in _FENCE_RE.finditer(stripped):
        body = match.group(1).strip()
        if body.startswith("{"):
            return body
    # Unterminated opening fence (truncated output)
    if stripped.startswith("```"):
        lines = stripped.splitlines()
        return "\n".join(line for line in lines[1:] if not line.strip().startswith("```")).strip()
    return stripped


def find_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` span of *text*, or ``None``.

    Braces inside string literals (including escaped quotes) are ignored.
    """
    start = text.find("{")
    if start == -1:
        return None
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
    # Unbalanced from this brace to the end: output was truncated
    return None


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Parse the first top-level JSON object found in *raw_text*.

    Raises:
        ModelResponseFormatError: no balanced object, or it is not valid JSON.
    """
    if not raw_text or not raw_text.strip():
        raise ModelResponseFormatError("Model returned an empty response", raw_text or "")

    candidate = find_balanced_object(strip_code_fences(raw_text))
    if candidate is None:
        candidate = find_balanced_object(raw_text)
    if candidate is None:
        raise ModelResponseFormatError("No complete JSON object found in model response", raw_text)

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ModelResponseFormatError(f"Invalid JSON in model response: {exc}", raw_text) from exc
    if not isinstance(payload, dict):
        raise ModelResponseFormatError("Model response JSON is not an object", raw_text)
    return payload
