"""Best-effort repair of hand-edited JSON files, built on ``json_repair``.

Valid JSON is never rewritten.  A document that stops before its closing
bracket is treated as truncated and left alone rather than completed
with invented values.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import json_repair

from app.core.logging import get_logger

logger = get_logger("tools.json_repair")

REPAIRED_SYNTAX = "repaired syntax"


@dataclass
class RepairResult:
    """Outcome of :func:`repair_json`."""
    content: str
    changed: bool = False
    valid: bool = False
    fixes: list[str] = field(default_factory=list)
    error: str = ""


def is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def json_error(text: str) -> str:
    """Human-readable parse error, or ``""`` when *text* parses."""
    try:
        json.loads(text)
    except json.JSONDecodeError as exc:
        return f"{exc.msg} (line {exc.lineno}, column {exc.colno})"
    return ""


def _is_complete(text: str) -> bool:
    stripped = text.strip()
    return bool(stripped) and stripped[0] in "{[" and stripped[-1] in "}]"


def repair_json(content: str) -> RepairResult:
    """Try to turn *content* into valid JSON.

    The repaired document is re-serialised with two-space indentation.
    Returns a result whose ``valid`` flag tells whether the (possibly
    unchanged) content now parses.
    """
    if is_valid_json(content):
        return RepairResult(content=content, valid=True)

    error = json_error(content)
    if not _is_complete(content):
        return RepairResult(content=content, error=f"{error}; document looks truncated")

    try:
        data = json_repair.loads(content)
    except (ValueError, RecursionError) as exc:
        logger.warning("json_repair could not parse document: %s", exc)
        return RepairResult(content=content, error=error)

    # json_repair returns "" (or a scalar) when it finds no usable structure
    if not isinstance(data, (dict, list)):
        return RepairResult(content=content, error=error)

    repaired = json.dumps(data, indent=2, ensure_ascii=False)
    if content.endswith("\n"):
        repaired += "\n"
    return RepairResult(content=repaired, changed=True, valid=True, fixes=[REPAIRED_SYNTAX])
