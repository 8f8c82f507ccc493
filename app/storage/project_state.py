"""Typed access to the per-project documents under ``.prodev/``.

``ProjectState`` owns the read-modify-write cycles for tasks, metadata,
agent memory and deployment logs.  Every mutation reloads the whole
document, changes it and writes it back in one commit.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from app.core.errors import TaskNotFoundError
from app.core.logging import get_logger
from app.core.models import (
    MAX_CONVERSATION_HISTORY,
    AgentMemory,
    ConversationTurn,
    DeploymentLog,
    ProjectMetadata,
    RepoConfig,
    Task,
    TaskStatus,
    utc_now_iso,
)
from app.storage.repo_store import (
    CONFIG_PATH,
    DEPLOYMENT_LOGS_PATH,
    MEMORY_PATH,
    METADATA_PATH,
    TASKS_PATH,
    RepoStateStore,
)

logger = get_logger("storage.project_state")

MAX_DEPLOYMENT_LOGS = 100

# Fields callers may never overwrite through update_task
_PROTECTED_TASK_FIELDS = {"id", "created_at", "createdAt"}


class ProjectState:
    """Document-level operations for one project."""

    def __init__(
        self,
        store: RepoStateStore,
        history_limit: int = MAX_CONVERSATION_HISTORY,
        deployment_log_limit: int = MAX_DEPLOYMENT_LOGS,
    ) -> None:
        self.store = store
        self.history_limit = history_limit
        self.deployment_log_limit = deployment_log_limit

    @property
    def project_id(self) -> str:
        return self.store.repo

    # ── Config marker ────────────────────────────────────────────────

    async def get_config(self) -> RepoConfig | None:
        data = await self.store.get_document(CONFIG_PATH)
        if not isinstance(data, dict):
            return None
        return RepoConfig.model_validate(data)

    # ── Tasks ────────────────────────────────────────────────────────

    async def get_tasks(self) -> list[Task]:
        data = await self.store.get_document(TASKS_PATH)
        if not isinstance(data, list):
            return []
        tasks: list[Task] = []
        for item in data:
            try:
                tasks.append(Task.model_validate(item))
            except ValidationError as exc:
                logger.warning("Skipping malformed task in %s: %s", self.project_id, exc.errors()[:1])
        return tasks

    async def save_tasks(self, tasks: list[Task], message: str = "Update tasks") -> None:
        await self.store.save_document(TASKS_PATH, [t.to_document() for t in tasks], message)

    async def get_task(self, task_id: str) -> Task:
        for task in await self.get_tasks():
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id)

    async def create_task(self, task: Task) -> Task:
        tasks = await self.get_tasks()
        if any(t.id == task.id for t in tasks):
            raise ValueError(f"Task id already exists: {task.id}")
        tasks.append(task)
        await self.save_tasks(tasks, f"Add task: {task.title}")
        return task

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Task:
        """Apply *changes* to one task and advance its ``updatedAt``.

        Keys may be camelCase or snake_case.  Unchanged fields are kept as
        stored.
        """
        tasks = await self.get_tasks()
        for index, task in enumerate(tasks):
            if task.id != task_id:
                continue
            merged = task.to_document()
            for key, value in changes.items():
                if key in _PROTECTED_TASK_FIELDS:
                    continue
                merged[_alias(key)] = value
            merged["updatedAt"] = _later_than(task.updated_at)
            updated = Task.model_validate(merged)
            tasks[index] = updated
            await self.save_tasks(tasks, f"Update task: {updated.title}")
            return updated
        raise TaskNotFoundError(task_id)

    async def delete_task(self, task_id: str) -> None:
        tasks = await self.get_tasks()
        remaining = [t for t in tasks if t.id != task_id]
        if len(remaining) == len(tasks):
            raise TaskNotFoundError(task_id)
        await self.save_tasks(remaining, f"Delete task: {task_id}")

    async def reset_task(self, task_id: str) -> Task:
        """Move a failed task back to pending so it is picked up again."""
        task = await self.get_task(task_id)
        if task.status != TaskStatus.FAILED:
            raise ValueError(f"Only failed tasks can be reset (task {task_id} is {task.status.value})")
        return await self.update_task(task_id, {"status": TaskStatus.PENDING.value, "error": ""})

    # ── Metadata ─────────────────────────────────────────────────────

    async def get_metadata(self) -> ProjectMetadata | None:
        data = await self.store.get_document(METADATA_PATH)
        if not isinstance(data, dict):
            return None
        try:
            return ProjectMetadata.model_validate(data)
        except ValidationError as exc:
            logger.warning("Ignoring malformed metadata in %s: %s", self.project_id, exc.errors()[:1])
            return None

    async def save_metadata(self, metadata: ProjectMetadata) -> None:
        metadata.updated_at = utc_now_iso()
        await self.store.save_document(METADATA_PATH, metadata.to_document(), "Update project metadata")

    async def ensure_metadata(self, defaults: ProjectMetadata) -> ProjectMetadata:
        existing = await self.get_metadata()
        if existing is not None:
            return existing
        if not defaults.repository:
            defaults.repository = self.project_id
        await self.save_metadata(defaults)
        return defaults

    async def recompute_progress(self) -> int:
        """Set ``progress`` to the share of completed tasks (0-100)."""
        tasks = await self.get_tasks()
        completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
        progress = round(100 * completed / len(tasks)) if tasks else 0

        metadata = await self.get_metadata()
        if metadata is None or metadata.progress == progress:
            return progress
        metadata.progress = progress
        await self.save_metadata(metadata)
        return progress

    # ── Agent memory ─────────────────────────────────────────────────

    async def get_memory(self) -> AgentMemory:
        data = await self.store.get_document(MEMORY_PATH)
        if isinstance(data, dict):
            try:
                return AgentMemory.model_validate(data)
            except ValidationError as exc:
                logger.warning("Starting fresh memory for %s: %s", self.project_id, exc.errors()[:1])
        return AgentMemory(project_id=self.project_id)

    async def save_memory(self, memory: AgentMemory, message: str = "Update agent memory") -> None:
        if not memory.project_id:
            memory.project_id = self.project_id
        memory.last_update = utc_now_iso()
        await self.store.save_document(MEMORY_PATH, memory.to_document(), message)

    async def append_conversation(self, turns: list[ConversationTurn]) -> AgentMemory:
        memory = await self.get_memory()
        memory.append_turns(turns, limit=self.history_limit)
        await self.save_memory(memory, "Update conversation history")
        return memory

    # ── Deployment logs ──────────────────────────────────────────────

    async def get_deployment_logs(self) -> list[DeploymentLog]:
        data = await self.store.get_document(DEPLOYMENT_LOGS_PATH)
        if not isinstance(data, list):
            return []
        logs: list[DeploymentLog] = []
        for item in data:
            try:
                logs.append(DeploymentLog.model_validate(item))
            except ValidationError:
                logger.debug("Skipping malformed deployment log entry")
        return logs

    async def append_deployment_log(self, entry: DeploymentLog) -> list[DeploymentLog]:
        logs = [*await self.get_deployment_logs(), entry][-self.deployment_log_limit:]
        await self.store.save_document(
            DEPLOYMENT_LOGS_PATH,
            [log.to_document() for log in logs],
            f"Deployment log: {entry.platform} {entry.status}",
        )
        return logs


def _alias(key: str) -> str:
    field = Task.model_fields.get(key)
    if field is not None and field.alias:
        return field.alias
    return key


def _later_than(previous: str) -> str:
    """A fresh timestamp that sorts strictly after *previous*."""
    now = utc_now_iso()
    if now > previous:
        return now
    # Same millisecond as the stored value: bump by one millisecond
    head, _, tail = previous.rstrip("Z").rpartition(".")
    millis = int(tail or 0) + 1
    if millis < 1000:
        return f"{head}.{millis:03d}Z"
    return now
