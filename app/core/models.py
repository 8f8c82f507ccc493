"""Persisted document models.

Every document lives as one JSON blob under ``.prodev/`` in the target
repository.  Field names are stored in camelCase so documents written by
earlier versions of the agent stay readable; Python code uses snake_case.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision (``...Z``)."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DocumentModel(BaseModel):
    """Base for stored documents: camelCase on disk, unknown keys preserved."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskType(StrEnum):
    AI_GENERATED = "ai-generated"
    MANUAL = "manual"


class Task(DocumentModel):
    """A single unit of planned work."""

    id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    task_type: TaskType = Field(default=TaskType.MANUAL, alias="type")
    estimated_time: str = ""
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    files: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    technical_notes: str = ""
    operations: list[str] = Field(default_factory=list)
    context: str = ""
    error: str = ""

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in {"low", "medium", "high"}:
            return value.strip().lower()
        return TaskPriority.MEDIUM


# ---------------------------------------------------------------------------
# Project metadata / config / deployment logs
# ---------------------------------------------------------------------------


class ProjectStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class ProjectMetadata(DocumentModel):
    name: str
    description: str = ""
    framework: str = ""
    progress: int = 0
    status: ProjectStatus = ProjectStatus.ACTIVE
    repository: str = ""
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    deployment_url: str | None = None
    deployment_platform: str | None = None


class RepoConfig(DocumentModel):
    """Marker document written when the repository is first initialised."""

    version: str = "1.0.0"
    platform: str = "prodev"
    created_at: str = Field(default_factory=utc_now_iso)


class DeploymentLog(DocumentModel):
    project_id: str
    platform: str
    status: str
    message: str = ""
    deployment_url: str | None = None
    error: str | None = None
    timestamp: str = Field(default_factory=utc_now_iso)


# ---------------------------------------------------------------------------
# Codebase index
# ---------------------------------------------------------------------------


class IndexedFile(DocumentModel):
    """Lexical metadata for one tracked file."""

    language: str = "text"
    imports: list[str] = Field(default_factory=list)
    exports: list[str] = Field(default_factory=list)
    functions: list[str] = Field(default_factory=list)
    classes: list[str] = Field(default_factory=list)
    last_modified: str = Field(default_factory=utc_now_iso)
    size: int = 0
    complexity: float = 1.0


# ---------------------------------------------------------------------------
# Agent memory
# ---------------------------------------------------------------------------


class ConversationTurn(DocumentModel):
    role: str
    content: str
    timestamp: str = Field(default_factory=utc_now_iso)
    reply_to: str | None = None


class UserPreferences(DocumentModel):
    preferred_response_style: str = "balanced"
    common_requests: list[str] = Field(default_factory=list)
    technical_level: str = "beginner"
    interaction_patterns: dict[str, Any] = Field(default_factory=dict)


class ProjectInsights(DocumentModel):
    last_analysis: str = ""
    key_patterns: list[str] = Field(default_factory=list)
    improvement_areas: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


MAX_CONVERSATION_HISTORY = 50
MAX_CODE_CONTEXT = 50


class AgentMemory(DocumentModel):
    """The durable per-project record of conversation, learnings and context."""

    project_id: str = ""
    conversation_history: list[ConversationTurn] = Field(default_factory=list)
    task_history: list[Task] = Field(default_factory=list)
    code_context: list[dict[str, Any]] = Field(default_factory=list)
    learnings: dict[str, dict[str, Any]] = Field(default_factory=dict)
    current_focus: str = ""
    last_update: str = Field(default_factory=utc_now_iso)
    file_cache: dict[str, dict[str, Any]] = Field(default_factory=dict)
    codebase_index: dict[str, IndexedFile] = Field(default_factory=dict)
    user_preferences: UserPreferences = Field(default_factory=UserPreferences)
    project_insights: ProjectInsights = Field(default_factory=ProjectInsights)

    @field_validator("codebase_index", mode="before")
    @classmethod
    def _unwrap_legacy_index(cls, value: Any) -> Any:
        # Older documents stored {"files": {...}, "dependencies": {...}, ...}
        if isinstance(value, dict) and isinstance(value.get("files"), dict):
            return value["files"]
        if not isinstance(value, dict):
            return {}
        return value

    @field_validator("file_cache", mode="before")
    @classmethod
    def _drop_cached_content(cls, value: Any) -> Any:
        # Only modification times are durable; older documents also stored content
        if not isinstance(value, dict):
            return {}
        return {
            path: {"lastModified": entry["lastModified"]} if "lastModified" in entry else {}
            for path, entry in value.items()
            if isinstance(entry, dict)
        }

    @field_validator("user_preferences", "project_insights", mode="before")
    @classmethod
    def _empty_to_default(cls, value: Any) -> Any:
        return value or {}

    def append_turns(self, turns: list[ConversationTurn], limit: int = MAX_CONVERSATION_HISTORY) -> None:
        """Append turns and keep only the most recent *limit* entries (FIFO)."""
        history = [*self.conversation_history, *turns]
        self.conversation_history = history[-limit:] if limit > 0 else []
        self.last_update = utc_now_iso()

    def append_code_context(self, entries: list[dict[str, Any]], limit: int = MAX_CODE_CONTEXT) -> None:
        self.code_context = [*self.code_context, *entries][-limit:]
