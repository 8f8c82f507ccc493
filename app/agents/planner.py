"""TaskPlanner: turns a project description into a task backlog.

One model call, strict JSON out.  The planner never persists anything;
the caller appends the returned tasks through ``ProjectState``.
"""

from __future__ import annotations

import time
from typing import Any

from app.agents.models import ModelClient
from app.agents.parsing import extract_json_object
from app.agents.prompts import PLANNER_PROMPT, PLANNER_SYSTEM
from app.core.errors import ModelResponseFormatError
from app.core.events import EventRecorder
from app.core.logging import get_logger
from app.core.models import Task, TaskStatus, TaskType, utc_now_iso

logger = get_logger("agents.planner")

MIN_TASKS = 8
MAX_TASKS = 15


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


class TaskPlanner:
    """Asks for 8-15 pending tasks for a project in one model call."""

    def __init__(self, model: ModelClient, events: EventRecorder | None = None) -> None:
        self.model = model
        self.events = events or EventRecorder()

    async def generate_tasks(
        self,
        description: str,
        framework: str,
        existing_context: dict[str, Any] | None = None,
    ) -> list[Task]:
        """Return normalised tasks.

        ``existing_context`` may carry ``tasks`` (list[Task]), ``progress``,
        ``index_summary`` and ``user_context``.

        Raises:
            ModelResponseFormatError: output is not a JSON object with a
                non-empty ``tasks`` array of task objects.
        """
        context = existing_context or {}
        existing: list[Task] = context.get("tasks") or []
        self.events.status("planner", "Analyzing project requirements and generating tasks")

        prompt = PLANNER_PROMPT.format(
            description=description,
            framework=framework or "unspecified",
            user_context=context.get("user_context") or "No specific context provided",
            task_count=len(existing),
            completed_count=sum(1 for t in existing if t.status == TaskStatus.COMPLETED),
            progress=context.get("progress", 0),
            index_summary=context.get("index_summary") or "No files indexed yet.",
        )
        raw = await self.model.generate(prompt, system=PLANNER_SYSTEM)

        try:
            tasks = self._normalise(extract_json_object(raw), context.get("user_context") or "")
        except ModelResponseFormatError as exc:
            logger.warning("Planner output rejected: %s | raw=%r", exc, raw[:300])
            self.events.error("planner", f"Error generating tasks: {exc}")
            raise

        logger.info("Generated %d tasks for framework=%s", len(tasks), framework)
        self.events.completion("planner", f"Generated {len(tasks)} development tasks", task_count=len(tasks))
        return tasks

    @staticmethod
    def _normalise(payload: dict[str, Any], user_context: str) -> list[Task]:
        items = payload.get("tasks")
        if not isinstance(items, list):
            raise ModelResponseFormatError("Planner response has no 'tasks' array", str(payload)[:2000])

        stamp = int(time.time() * 1000)
        now = utc_now_iso()
        tasks: list[Task] = []
        for index, item in enumerate(items):
            if not isinstance(item, dict) or not str(item.get("title", "")).strip():
                logger.warning("Dropping planner item %d without a title: %r", index, item)
                continue
            tasks.append(Task(
                id=f"task_{stamp}_{len(tasks)}",
                title=str(item["title"]).strip(),
                description=str(item.get("description") or ""),
                status=TaskStatus.PENDING,
                priority=item.get("priority"),
                task_type=TaskType.AI_GENERATED,
                estimated_time=str(item.get("estimatedTime") or item.get("estimated_time") or ""),
                created_at=now,
                updated_at=now,
                files=_str_list(item.get("files")),
                dependencies=_str_list(item.get("dependencies")),
                operations=_str_list(item.get("operations")) or ["read"],
                acceptance_criteria=_str_list(item.get("acceptanceCriteria") or item.get("acceptance_criteria")),
                technical_notes=str(item.get("technicalNotes") or item.get("technical_notes") or ""),
                context=str(item.get("context") or user_context),
            ))

        if not tasks:
            raise ModelResponseFormatError("Planner response contains no valid tasks", str(payload)[:2000])
        if not MIN_TASKS <= len(tasks) <= MAX_TASKS:
            logger.warning("Planner returned %d tasks, expected %d-%d", len(tasks), MIN_TASKS, MAX_TASKS)
        return tasks
