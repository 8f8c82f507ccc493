"""Keyword-level intent analysis and the user/project insight heuristics.

Everything here is deterministic string inspection; no model calls.  The
results feed the chat prompt and are persisted into
``AgentMemory.user_preferences`` / ``AgentMemory.project_insights``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from app.core.models import (
    ConversationTurn,
    IndexedFile,
    ProjectInsights,
    Task,
    TaskStatus,
    UserPreferences,
    utc_now_iso,
)

_FILE_EXT_RE = re.compile(r"\.\w+")
_TECH_RE = re.compile(r"\b(react|next|typescript|javascript|api|component|hook)\b", re.IGNORECASE)

_POSITIVE_WORDS = ("good", "great", "awesome", "perfect", "excellent", "thanks")
_NEGATIVE_WORDS = ("bad", "error", "problem", "issue", "wrong", "failed")

_REQUEST_KEYWORDS = (
    ("implement", "implementation"),
    ("create", "creation"),
    ("fix", "fixing"),
    ("deploy", "deployment"),
    ("explain", "explanation"),
)

_TECHNICAL_SCORES = (
    (("typescript", "javascript"), 2),
    (("api", "endpoint"), 2),
    (("component", "hook"), 2),
    (("deploy", "build"), 1),
    (("async", "promise"), 3),
    (("interface", "type"), 3),
)


@dataclass
class UserIntent:
    type: str = "general"
    confidence: float = 0.5
    suggested_actions: list[str] = field(default_factory=list)
    context_clues: list[str] = field(default_factory=list)
    entities: list[str] = field(default_factory=list)
    sentiment: str = "neutral"
    needs_web_search: bool = False

    @property
    def requires_action(self) -> bool:
        return self.confidence > 0.7


def _has_any(text: str, words: Iterable[str]) -> bool:
    return any(word in text for word in words)


def needs_web_search(message: str) -> bool:
    """Heuristic: does the message ask for outside information?"""
    lower = message.lower()
    return (
        _has_any(lower, ("search", "look up", "find information", "what is"))
        or ("how to" in lower and "how to implement" not in lower)
    )


def analyze_user_intent(message: str) -> UserIntent:
    """Classify *message*.  Later categories take precedence over earlier ones."""
    lower = message.lower()
    intent = UserIntent(
        entities=_FILE_EXT_RE.findall(message) + _TECH_RE.findall(message),
        needs_web_search=needs_web_search(message),
    )

    if _has_any(lower, ("create", "add")) and "task" in lower:
        intent.type, intent.confidence = "task_creation", 0.9
        intent.suggested_actions += ["create_task", "analyze_requirements"]
        intent.context_clues.append("task_creation_request")

    if _has_any(lower, ("implement", "build", "develop", "code")):
        intent.type, intent.confidence = "implementation", 0.8
        intent.suggested_actions += ["implement_code", "analyze_codebase", "generate_files"]
        intent.context_clues.append("implementation_request")
        if _has_any(lower, ("create", "new")):
            intent.suggested_actions.append("create_files")
        if _has_any(lower, ("update", "modify", "change")):
            intent.suggested_actions.append("update_files")
        if _has_any(lower, ("delete", "remove")):
            intent.suggested_actions.append("delete_files")

    if _has_any(lower, ("how", "what", "explain", "show", "list")):
        intent.type, intent.confidence = "information_seeking", 0.7
        intent.suggested_actions += ["provide_information", "analyze_codebase", "list_files"]
        intent.context_clues.append("information_request")
        if _has_any(lower, ("files", "ls", "dir")):
            intent.confidence = 0.9

    if _has_any(lower, ("error", "bug", "fix", "problem", "issue")):
        intent.type, intent.confidence = "problem_solving", 0.8
        intent.suggested_actions += ["analyze_error", "suggest_fix", "debug_code"]
        intent.context_clues.append("problem_report")

    if _has_any(lower, ("file", "folder", "directory")):
        intent.type, intent.confidence = "file_operation", 0.7
        intent.suggested_actions += ["file_operations", "browse_files"]
        intent.context_clues.append("file_operation_request")

    if "deploy" in lower:
        intent.type, intent.confidence = "deployment", 0.9
        intent.suggested_actions += ["deploy_project", "check_deployment"]
        intent.context_clues.append("deployment_request")

    if _has_any(lower, _POSITIVE_WORDS):
        intent.sentiment = "positive"
    elif _has_any(lower, _NEGATIVE_WORDS):
        intent.sentiment = "negative"

    intent.suggested_actions = list(dict.fromkeys(intent.suggested_actions))
    return intent


# ---------------------------------------------------------------------------
# User preferences
# ---------------------------------------------------------------------------


def _user_messages(history: list[ConversationTurn]) -> list[str]:
    return [turn.content for turn in history if turn.role == "user"]


def _style_for(messages: list[str], default: str) -> str:
    if not messages:
        return default
    average = sum(len(m) for m in messages) / len(messages)
    if average > 100:
        return "detailed"
    if average < 30:
        return "concise"
    return default


def _common_requests(messages: list[str]) -> list[str]:
    found: list[str] = []
    for message in messages:
        lower = message.lower()
        found.extend(label for keyword, label in _REQUEST_KEYWORDS if keyword in lower)
    return list(dict.fromkeys(found))


def _technical_level(messages: list[str]) -> str:
    if not messages:
        return "beginner"
    score = 0
    for message in messages:
        lower = message.lower()
        score += sum(points for words, points in _TECHNICAL_SCORES if _has_any(lower, words))
    average = score / len(messages)
    if average >= 3:
        return "expert"
    if average >= 1.5:
        return "intermediate"
    return "beginner"


def analyze_user_preferences(history: list[ConversationTurn], current: UserPreferences | None = None) -> UserPreferences:
    messages = _user_messages(history)
    preferences = (current or UserPreferences()).model_copy()
    preferences.preferred_response_style = _style_for(messages, "balanced")
    preferences.common_requests = _common_requests(messages)
    preferences.technical_level = _technical_level(messages)
    preferences.interaction_patterns = {
        "preferredActions": [r for r in _common_requests(messages) if r != "deployment"],
        "communicationStyle": _style_for(messages, "direct"),
        "messageCount": len(messages),
    }
    return preferences


# ---------------------------------------------------------------------------
# Project insights
# ---------------------------------------------------------------------------


def _count(tasks: list[Task], status: TaskStatus) -> int:
    return sum(1 for t in tasks if t.status == status)


def project_patterns(files: dict[str, IndexedFile]) -> list[str]:
    patterns: list[str] = []
    paths = list(files)
    for marker, label in (
        ("components", "Component-based architecture"),
        ("hooks", "Custom hooks pattern"),
        ("api", "API-first design"),
        ("types", "Type-safe development"),
    ):
        if any(marker in p for p in paths):
            patterns.append(label)
    return patterns


def improvement_areas(tasks: list[Task], files: dict[str, IndexedFile]) -> list[str]:
    areas: list[str] = []
    failed = _count(tasks, TaskStatus.FAILED)
    if failed:
        areas.append(f"{failed} failed tasks need attention")
    languages = [f.language for f in files.values()]
    if languages.count("javascript") > languages.count("typescript"):
        areas.append("Consider migrating JavaScript files to TypeScript")
    return areas


def next_steps(tasks: list[Task], intent: UserIntent) -> list[str]:
    steps: list[str] = []
    pending = _count(tasks, TaskStatus.PENDING)
    if pending:
        steps.append(f"Implement {pending} pending tasks")
    if intent.type == "implementation":
        steps.append("Focus on core functionality implementation")
    return steps


def analyze_project_insights(
    tasks: list[Task],
    files: dict[str, IndexedFile],
    intent: UserIntent,
    current: ProjectInsights | None = None,
) -> ProjectInsights:
    insights = (current or ProjectInsights()).model_copy()
    insights.last_analysis = utc_now_iso()
    insights.key_patterns = project_patterns(files)
    insights.improvement_areas = improvement_areas(tasks, files)
    insights.next_steps = next_steps(tasks, intent)
    return insights


def contextual_insights(tasks: list[Task], files: dict[str, IndexedFile], learnings: dict, intent: UserIntent) -> list[str]:
    """Short status lines for the chat prompt."""
    lines: list[str] = []
    total = len(tasks)
    rate = 100 * _count(tasks, TaskStatus.COMPLETED) / total if total else 0.0
    lines.append(f"Project health: {rate:.1f}% task completion rate")

    if files:
        typed = sum(1 for f in files.values() if f.language == "typescript")
        lines.append(f"Codebase: {typed}/{len(files)} TypeScript files ({100 * typed / len(files):.1f}% typed)")

    recent = list(learnings)[-3:]
    if recent:
        lines.append(f"Recent focus: {', '.join(recent)}")

    if intent.type == "implementation" and total:
        lines.append(f"Ready for implementation: {_count(tasks, TaskStatus.PENDING)} pending tasks available")
    return lines


def offered_actions(reply: str) -> list[str]:
    """Which kinds of action a reply promises (``I'll ...`` / ``I can ...``)."""
    if "I'll" not in reply and "I can" not in reply:
        return []
    return [
        label
        for keyword, label in (
            ("implement", "implementation"),
            ("create", "creation"),
            ("fix", "fixing"),
            ("deploy", "deployment"),
            ("search", "search"),
            ("analyze", "analysis"),
        )
        if keyword in reply
    ]
