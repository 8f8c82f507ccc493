"""Tests for the autonomous follow-up loop."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from app.agents.batch import BatchRunner
from app.agents.followup import ActionKind, AutonomousFollowUpLoop
from app.agents.implementer import TaskImplementer
from app.core.models import ProjectMetadata, Task, TaskStatus
from app.storage.project_state import ProjectState
from app.storage.repo_store import RepoStateStore
from infra.deploy import DeployResult, DeploymentClient
from infra.search import WebSearch
from tests.fakes import InMemoryFileHost, ScriptedModel

BROKEN_PACKAGE = '{\n  "name": "shop",\n  "private": true,\n}\n'


def _loop(state: ProjectState, model: ScriptedModel | None = None, deploy: DeployResult | None = None, **kwargs):
    search = AsyncMock(spec=WebSearch)
    search.search.return_value = "Search Results:\n1. Edge Config docs"
    deployer = AsyncMock(spec=DeploymentClient)
    deployer.deploy.return_value = deploy or DeployResult(success=True, url="https://shop.vercel.app")
    batch = BatchRunner(state, TaskImplementer(state, model or ScriptedModel()))
    return AutonomousFollowUpLoop(state, batch, search, deployer, **kwargs), search, deployer


def _ok(i: int) -> str:
    return json.dumps({
        "files": [{"path": f"src/f{i}.ts", "content": "export const x = 1", "operation": "create"}],
        "message": "done",
        "commitMessage": f"feat: f{i}",
    })


class TestDetectAction:
    @pytest.mark.parametrize("message, kind", [
        ("I'll check package.json for errors", ActionKind.CHECK),
        ("I’ll examine tsconfig.json now", ActionKind.CHECK),
        ("I'll implement the remaining tasks", ActionKind.IMPLEMENT),
        ("Shall I implement all of them?", ActionKind.IMPLEMENT),
        ("I'll fix the build errors", ActionKind.FIX),
        ("I'll validate the config", ActionKind.FIX),
        ("I'll redeploy once that's done", ActionKind.DEPLOY),
        ("I'll look up the Vercel limits", ActionKind.SEARCH),
        ("Here is a summary of your project", ActionKind.STATUS),
        ("I'll check the overall structure", ActionKind.STATUS),
    ])
    def test_priority_order(self, state, message, kind):
        loop, _, _ = _loop(state)
        assert loop.detect_action(message)[0] == kind

    def test_search_query_extracted(self, state):
        loop, _, _ = _loop(state)
        assert loop.detect_action("I'll search for vercel edge config. Then deploy.") == (
            ActionKind.SEARCH, "vercel edge config",
        )
        assert loop.detect_action("I'll search now")[1] == "deployment best practices"

    def test_longest_known_path_wins(self, state):
        loop, _, _ = _loop(state)
        assert loop.detect_action("I'll check .prodev/config.json")[1] == ".prodev/config.json"


class TestActions:
    @pytest.mark.asyncio
    async def test_check_reports_json_issue(self):
        state = ProjectState(RepoStateStore(InMemoryFileHost(files={"package.json": BROKEN_PACKAGE})))
        loop, _, _ = _loop(state)

        result = await loop.execute_action("I'll check package.json for errors")

        assert "JSON parsing issue" in result.result_text
        assert "Valid JSON: No" in result.result_text
        assert result.needs_more_follow_up is True
        assert result.focus_paths == ["package.json"]

    @pytest.mark.asyncio
    async def test_check_valid_file(self):
        state = ProjectState(RepoStateStore(InMemoryFileHost(files={"package.json": '{"name": "shop"}'})))
        loop, _, _ = _loop(state)
        result = await loop.execute_action("I'll check package.json")
        assert "Valid JSON: Yes" in result.result_text
        assert result.needs_more_follow_up is False

    @pytest.mark.asyncio
    async def test_check_missing_file(self, state):
        loop, _, _ = _loop(state)
        result = await loop.execute_action("I'll check vercel.json")
        assert "was not found" in result.result_text

    @pytest.mark.asyncio
    async def test_fix_repairs_recent_json(self):
        host = InMemoryFileHost(files={"tsconfig.json": "{'strict': true}", "src/a.ts": "x"})
        state = ProjectState(RepoStateStore(host))
        memory = await state.get_memory()
        memory.append_code_context([{"path": "tsconfig.json", "operation": "update"}])
        await state.save_memory(memory)
        loop, _, _ = _loop(state)

        result = await loop.execute_action("I'll fix the config")

        assert json.loads(host.content("tsconfig.json")) == {"strict": True}
        assert "Applied 1 fixes" in result.result_text
        assert result.needs_more_follow_up is False

    @pytest.mark.asyncio
    async def test_deploy_success_updates_metadata(self, state):
        await state.ensure_metadata(ProjectMetadata(name="shop", deployment_platform="netlify"))
        loop, _, deployer = _loop(state, deploy=DeployResult(success=True, url="https://shop.netlify.app"))

        result = await loop.execute_action("I'll deploy now")

        deployer.deploy.assert_awaited_once_with("acme/shop", "netlify")
        assert "https://shop.netlify.app" in result.result_text
        assert (await state.get_metadata()).deployment_url == "https://shop.netlify.app"
        logs = await state.get_deployment_logs()
        assert [(log.platform, log.status) for log in logs] == [("netlify", "success")]

    @pytest.mark.asyncio
    async def test_deploy_failure_asks_for_fix(self, state):
        loop, _, deployer = _loop(state, deploy=DeployResult(success=False, error="Build failed"))

        result = await loop.execute_action("I'll deploy now")

        deployer.deploy.assert_awaited_once_with("acme/shop", "vercel")
        assert "I'll fix the build errors before redeploying" in result.result_text
        assert result.needs_more_follow_up is True
        assert (await state.get_deployment_logs())[0].error == "Build failed"

    @pytest.mark.asyncio
    async def test_search(self, state):
        loop, search, _ = _loop(state)
        result = await loop.execute_action("I'll search for edge config.")
        search.search.assert_awaited_once_with("edge config")
        assert "Edge Config docs" in result.result_text

    @pytest.mark.asyncio
    async def test_status_counts_pending(self, state):
        await state.save_tasks([Task(id="a", title="A"), Task(id="b", title="B", status=TaskStatus.COMPLETED)])
        loop, _, _ = _loop(state)
        result = await loop.execute_action("Thanks!")
        assert "I found 1 pending tasks" in result.result_text

    @pytest.mark.asyncio
    async def test_errors_become_text(self, state):
        loop, _, _ = _loop(state)
        loop.state.get_tasks = AsyncMock(side_effect=ValueError("tasks.json unreadable"))
        result = await loop.execute_action("I'll implement everything")
        assert result.result_text == "❌ Error during autonomous follow-up: tasks.json unreadable"


class TestRun:
    @pytest.mark.asyncio
    async def test_check_then_fix_chain(self):
        host = InMemoryFileHost(files={"package.json": BROKEN_PACKAGE})
        state = ProjectState(RepoStateStore(host))
        loop, _, _ = _loop(state)

        run = await loop.run("I'll check package.json for errors")

        assert run.iterations == 2
        assert "JSON parsing issue" in run.steps[0]
        assert "Fixed JSON syntax in package.json" in run.steps[1]
        assert run.needs_more_follow_up is False
        assert run.stopped_by_limit is False
        assert json.loads(host.content("package.json")) == {"name": "shop", "private": True}

    @pytest.mark.asyncio
    async def test_implement_runs_one_capped_batch(self, state):
        await state.save_tasks([Task(id=f"task_{i}", title=f"Task {i}") for i in range(7)])
        model = ScriptedModel([_ok(i) for i in range(7)])
        loop, _, _ = _loop(state, model)

        run = await loop.run("I'll implement all the tasks")

        assert run.iterations == 1
        assert run.needs_more_follow_up is False
        assert len(model.prompts) == 2
        statuses = [t.status for t in await state.get_tasks()]
        assert statuses.count(TaskStatus.COMPLETED) == 2
        assert statuses.count(TaskStatus.PENDING) == 5
        assert "5 tasks are still pending" in run.response

    @pytest.mark.asyncio
    async def test_failed_deploy_chains_into_fix(self, state):
        loop, _, deployer = _loop(state, deploy=DeployResult(success=False, error="Build failed"))

        run = await loop.run("I'll redeploy now")

        assert run.iterations == 2
        assert "Deployment failed" in run.steps[0]
        assert "Applying fixes" in run.steps[1]
        assert run.stopped_by_limit is False
        deployer.deploy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stops_at_iteration_ceiling(self):
        host = InMemoryFileHost(files={"package.json": BROKEN_PACKAGE})
        state = ProjectState(RepoStateStore(host))
        loop, _, _ = _loop(state, max_iterations=1)

        run = await loop.run("I'll check package.json for errors")

        assert run.iterations == 1
        assert run.needs_more_follow_up is True
        assert run.stopped_by_limit is True
        assert host.content("package.json") == BROKEN_PACKAGE

    def test_invalid_ceiling(self, state):
        with pytest.raises(ValueError):
            _loop(state, max_iterations=0)
