"""BatchRunner: implements a bounded number of pending tasks per invocation.

The runner owns the status-transition contract around
``TaskImplementer.implement_task``: ``in-progress`` is persisted before the
call, ``completed`` / ``failed`` after it returns or raises.  A crash in
between leaves the task visibly stuck in ``in-progress``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.agents.implementer import TaskImplementer
from app.core.errors import ProdevError
from app.core.events import EventRecorder
from app.core.logging import get_logger
from app.core.models import ProjectMetadata, Task, TaskStatus
from app.storage.project_state import ProjectState
from infra.host import HostError

logger = get_logger("agents.batch")


@dataclass
class TaskOutcome:
    task_id: str
    title: str
    status: TaskStatus
    files: int = 0
    message: str = ""
    error: str = ""
    applied: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "taskId": self.task_id,
            "title": self.title,
            "status": self.status.value,
            "files": self.files,
        }
        if self.message:
            data["message"] = self.message
        if self.error:
            data["error"] = self.error
        if self.applied:
            data["applied"] = list(self.applied)
        return data


@dataclass
class BatchResult:
    results: list[TaskOutcome] = field(default_factory=list)
    remaining: int = 0

    @property
    def completed(self) -> int:
        return sum(1 for r in self.results if r.status == TaskStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == TaskStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "completed": self.completed,
            "failed": self.failed,
            "remaining": self.remaining,
        }


class BatchRunner:
    """Sequential, capped execution of pending tasks."""

    def __init__(
        self,
        state: ProjectState,
        implementer: TaskImplementer,
        events: EventRecorder | None = None,
    ) -> None:
        self.state = state
        self.implementer = implementer
        self.events = events or implementer.events

    async def implement_all(self, tasks: list[Task] | None = None, cap: int = 5) -> BatchResult:
        """Implement at most *cap* pending tasks, in list order.

        *tasks* defaults to the stored task list.  Pending tasks beyond the
        cap are left untouched for a later invocation.
        """
        if cap < 1:
            raise ValueError(f"cap must be at least 1, got {cap}")

        if tasks is None:
            tasks = await self.state.get_tasks()
        pending = [t for t in tasks if t.status == TaskStatus.PENDING]
        selected = pending[:cap]
        result = BatchResult(remaining=len(pending) - len(selected))

        if not selected:
            self.events.status("batch", "No pending tasks found to implement")
            return result

        self.events.status(
            "batch",
            f"Found {len(pending)} pending tasks, implementing {len(selected)}",
            pending=len(pending),
            cap=cap,
        )
        metadata = await self.state.get_metadata()
        for task in selected:
            result.results.append(await self._run(task, metadata))

        await self.state.recompute_progress()
        logger.info(
            "Batch done | %s | completed=%d failed=%d remaining=%d",
            self.state.project_id, result.completed, result.failed, result.remaining,
        )
        self.events.completion(
            "batch",
            f"Implementation completed: {result.completed}/{len(selected)} tasks successful",
            completed=result.completed,
            failed=result.failed,
        )
        return result

    async def run_task(self, task_id: str) -> TaskOutcome:
        """Implement one task by id with the same status contract.

        Raises:
            TaskNotFoundError: no such task.
        """
        task = await self.state.get_task(task_id)
        outcome = await self._run(task, await self.state.get_metadata())
        await self.state.recompute_progress()
        return outcome

    async def _run(self, task: Task, metadata: ProjectMetadata | None) -> TaskOutcome:
        try:
            await self.state.update_task(task.id, {"status": TaskStatus.IN_PROGRESS.value, "error": ""})
        except (ProdevError, HostError) as exc:
            logger.error("Task %s could not be started: %s", task.id, exc)
            return await self._fail(task, f"Could not mark task in progress: {exc}")

        try:
            implementation = await self.implementer.implement_task(task, metadata)
        except (ProdevError, HostError) as exc:
            logger.error("Task %s failed: %s", task.id, exc)
            return await self._fail(task, str(exc), list(getattr(exc, "applied", [])))

        try:
            await self.state.update_task(task.id, {"status": TaskStatus.COMPLETED.value})
        except (ProdevError, HostError) as exc:
            # Files are committed; the task stays visibly in-progress
            logger.error("Task %s applied but its status was not saved: %s", task.id, exc)
            self.events.error("batch", f"Status of {task.title} not saved: {exc}", task.id)
            return TaskOutcome(
                task_id=task.id,
                title=task.title,
                status=TaskStatus.FAILED,
                files=len(implementation.files),
                message=implementation.message,
                error=f"Changes applied but status not saved: {exc}",
                applied=list(implementation.applied),
            )

        return TaskOutcome(
            task_id=task.id,
            title=task.title,
            status=TaskStatus.COMPLETED,
            files=len(implementation.files),
            message=implementation.message,
            applied=list(implementation.applied),
        )

    async def _fail(self, task: Task, error: str, applied: list[dict[str, str]] | None = None) -> TaskOutcome:
        try:
            await self.state.update_task(task.id, {"status": TaskStatus.FAILED.value, "error": error})
        except (ProdevError, HostError) as exc:
            logger.error("Failed status of %s not saved: %s", task.id, exc)
            self.events.error("batch", f"Status of {task.title} not saved: {exc}", task.id)
        return TaskOutcome(
            task_id=task.id,
            title=task.title,
            status=TaskStatus.FAILED,
            error=error,
            applied=applied or [],
        )
