"""Tests for BatchRunner's cap and status transitions."""

from __future__ import annotations

import json

import pytest

from app.agents.batch import BatchRunner
from app.agents.implementer import TaskImplementer
from app.core.errors import ModelTimeoutError
from app.core.models import ProjectMetadata, Task, TaskStatus
from app.storage.repo_store import TASKS_PATH
from infra.host import HostError
from tests.fakes import ScriptedModel


def _ok(path: str) -> str:
    return json.dumps({
        "files": [{"path": path, "content": f"// {path}", "operation": "create"}],
        "message": f"Created {path}",
        "commitMessage": f"feat: {path}",
    })


async def _seed(state, count: int, **kwargs) -> list[Task]:
    await state.ensure_metadata(ProjectMetadata(name="shop"))
    tasks = [Task(id=f"task_{i}", title=f"Task {i}", **kwargs) for i in range(count)]
    await state.save_tasks(tasks)
    return tasks


@pytest.mark.asyncio
async def test_cap_limits_work_and_leaves_rest_pending(state):
    await _seed(state, 7)
    model = ScriptedModel([_ok(f"src/f{i}.ts") for i in range(7)])

    result = await BatchRunner(state, TaskImplementer(state, model)).implement_all(cap=5)

    assert len(result.results) == 5
    assert result.completed == 5
    assert result.remaining == 2
    assert len(model.prompts) == 5
    statuses = {t.id: t.status for t in await state.get_tasks()}
    assert [statuses[f"task_{i}"] for i in range(5)] == [TaskStatus.COMPLETED] * 5
    assert [statuses[f"task_{i}"] for i in (5, 6)] == [TaskStatus.PENDING] * 2
    assert (await state.get_metadata()).progress == 71


@pytest.mark.asyncio
async def test_failure_marks_task_failed_and_continues(state):
    await _seed(state, 3)
    model = ScriptedModel([_ok("src/a.ts"), "no json here", ModelTimeoutError("timed out after 120s")])

    result = await BatchRunner(state, TaskImplementer(state, model)).implement_all(cap=5)

    assert [r.status for r in result.results] == [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.FAILED]
    tasks = {t.id: t for t in await state.get_tasks()}
    assert tasks["task_1"].status == TaskStatus.FAILED
    assert "JSON" in tasks["task_1"].error
    assert "timed out" in tasks["task_2"].error
    assert result.to_dict()["failed"] == 2


@pytest.mark.asyncio
async def test_only_pending_tasks_selected(state):
    await state.save_tasks([
        Task(id="done", title="Done", status=TaskStatus.COMPLETED),
        Task(id="failed", title="Failed", status=TaskStatus.FAILED),
        Task(id="todo", title="Todo"),
    ])
    model = ScriptedModel([_ok("src/todo.ts")])

    result = await BatchRunner(state, TaskImplementer(state, model)).implement_all()

    assert [r.task_id for r in result.results] == ["todo"]
    assert result.remaining == 0


@pytest.mark.asyncio
async def test_no_pending_tasks(state):
    result = await BatchRunner(state, TaskImplementer(state, ScriptedModel())).implement_all()
    assert result.results == []
    assert result.remaining == 0


@pytest.mark.asyncio
async def test_invalid_cap(state):
    with pytest.raises(ValueError):
        await BatchRunner(state, TaskImplementer(state, ScriptedModel())).implement_all(cap=0)


@pytest.mark.asyncio
async def test_run_single_task(state):
    await _seed(state, 2)
    runner = BatchRunner(state, TaskImplementer(state, ScriptedModel([_ok("src/one.ts")])))

    outcome = await runner.run_task("task_1")

    assert outcome.status == TaskStatus.COMPLETED
    assert outcome.files == 1
    assert (await state.get_task("task_0")).status == TaskStatus.PENDING
    assert (await state.get_metadata()).progress == 50


@pytest.mark.asyncio
async def test_status_write_conflict_fails_only_that_task(state, host):
    await _seed(state, 2)
    host.fail_writes[TASKS_PATH] = [HostError("tasks.json does not match", status_code=409)]
    model = ScriptedModel([_ok("src/one.ts")])

    result = await BatchRunner(state, TaskImplementer(state, model)).implement_all(cap=5)

    assert [r.status for r in result.results] == [TaskStatus.FAILED, TaskStatus.COMPLETED]
    assert "in progress" in result.results[0].error
    assert len(model.prompts) == 1
    tasks = {t.id: t for t in await state.get_tasks()}
    assert tasks["task_0"].status == TaskStatus.FAILED
    assert tasks["task_1"].status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_lost_completion_write_is_reported(state, host):
    await _seed(state, 1)
    runner = BatchRunner(state, TaskImplementer(state, ScriptedModel([_ok("src/one.ts")])))
    # in-progress succeeds, completed is rejected, failed succeeds
    host.fail_writes[TASKS_PATH] = []

    async def reject_completion(*args, **kwargs):
        host.fail_writes[TASKS_PATH] = [HostError("server error", status_code=500)]
        return await original(*args, **kwargs)

    original = runner.implementer.implement_task
    runner.implementer.implement_task = reject_completion

    result = await runner.implement_all()

    outcome = result.results[0]
    assert outcome.status == TaskStatus.FAILED
    assert "status not saved" in outcome.error
    assert outcome.applied == [{"path": "src/one.ts", "operation": "create"}]
    assert (await state.get_task("task_0")).status == TaskStatus.IN_PROGRESS
