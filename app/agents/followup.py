"""AutonomousFollowUpLoop: carries out what the agent said it would do.

After a chat reply, the last agent message is scanned for trigger phrases
("I'll check package.json", "I'll implement", "I'll fix", ...).  The
matching action runs and returns an ``ActionResult``.  When the action asks
for more follow-up, its result text becomes the new last message and the
loop goes round again.

The loop is a compiled langgraph ``StateGraph`` with an explicit iteration
counter in its state.  It stops in ``done`` when an action needs no further
follow-up, or when ``max_iterations`` is reached (``stopped_by_limit``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from app.agents.batch import BatchRunner
from app.agents.chat_tools import WELL_KNOWN_FILES
from app.analysis.codebase_index import CodebaseIndexer
from app.core.errors import ProdevError
from app.core.events import EventRecorder
from app.core.logging import get_logger
from app.core.models import DeploymentLog, TaskStatus
from app.storage.project_state import ProjectState
from app.storage.repo_store import STATE_DIR
from app.tools.json_repair import json_error, repair_json
from infra.deploy import DeploymentClient
from infra.host import HostError
from infra.search import WebSearch

logger = get_logger("agents.followup")

DEFAULT_SEARCH_QUERY = "deployment best practices"

# Files the fix action will open; only JSON is repaired
_SCANNABLE_EXTENSIONS = (".json", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")

_SEARCH_FOR_RE = re.compile(r"search.*?for\s+(.+?)(?:\.(?:\s|$)|\n|$)", re.IGNORECASE)
_LOOK_UP_RE = re.compile(r"look up\s+(.+?)(?:\.(?:\s|$)|\n|$)", re.IGNORECASE)


class FollowUpPhase(StrEnum):
    IDLE = "idle"
    AWAITING_ACTION = "awaiting-action"
    DONE = "done"


class ActionKind(StrEnum):
    CHECK = "check"
    IMPLEMENT = "implement"
    FIX = "fix"
    DEPLOY = "deploy"
    SEARCH = "search"
    STATUS = "status"


@dataclass
class ActionResult:
    result_text: str
    needs_more_follow_up: bool = False
    focus_paths: list[str] = field(default_factory=list)


@dataclass
class FollowUpRun:
    steps: list[str]
    iterations: int
    needs_more_follow_up: bool
    stopped_by_limit: bool

    @property
    def response(self) -> str:
        return "\n\n".join(self.steps)

    def to_dict(self) -> dict:
        return {
            "response": self.response,
            "steps": list(self.steps),
            "iterations": self.iterations,
            "needsMoreFollowUp": self.needs_more_follow_up,
            "stoppedByLimit": self.stopped_by_limit,
        }


class FollowUpState(BaseModel):
    """State passed between the loop's graph nodes."""

    last_message: str = ""
    phase: FollowUpPhase = FollowUpPhase.IDLE
    action: ActionKind | None = None
    action_arg: str = ""
    iteration: int = 0
    max_iterations: int = 5
    steps: list[str] = Field(default_factory=list)
    needs_more_follow_up: bool = False
    focus_paths: list[str] = Field(default_factory=list)


def _normalise(text: str) -> str:
    return text.replace("’", "'").lower()


def _scannable(path: str) -> bool:
    return bool(path) and path.endswith(_SCANNABLE_EXTENSIONS) and not path.startswith(STATE_DIR + "/")


class AutonomousFollowUpLoop:
    """Bounded chain of concrete follow-up actions."""

    def __init__(
        self,
        state: ProjectState,
        batch: BatchRunner,
        search: WebSearch,
        deployer: DeploymentClient,
        indexer: CodebaseIndexer | None = None,
        events: EventRecorder | None = None,
        max_iterations: int = 5,
        implement_cap: int = 2,
        fix_scan_limit: int = 5,
        default_platform: str = "vercel",
    ) -> None:
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")
        self.state = state
        self.batch = batch
        self.search = search
        self.deployer = deployer
        self.indexer = indexer or CodebaseIndexer()
        self.events = events or EventRecorder()
        self.max_iterations = max_iterations
        self.implement_cap = implement_cap
        self.fix_scan_limit = fix_scan_limit
        self.default_platform = default_platform
        self._graph = self._build_graph().compile()

    # ── Graph ────────────────────────────────────────────────────────

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(FollowUpState)
        graph.add_node("detect", self._detect_node)
        graph.add_node("act", self._act_node)
        graph.set_entry_point("detect")
        graph.add_edge("detect", "act")
        graph.add_conditional_edges("act", self._route_after_act, {"detect": "detect", "done": END})
        return graph

    def _detect_node(self, state: FollowUpState) -> dict:
        kind, arg = self.detect_action(state.last_message)
        logger.info("follow-up %d/%d | action=%s %s", state.iteration + 1, state.max_iterations, kind.value, arg)
        return {"phase": FollowUpPhase.AWAITING_ACTION, "action": kind, "action_arg": arg}

    async def _act_node(self, state: FollowUpState) -> dict:
        result = await self._execute(state.action or ActionKind.STATUS, state.action_arg, state.focus_paths)
        return {
            "iteration": state.iteration + 1,
            "steps": [*state.steps, result.result_text],
            "last_message": result.result_text,
            "needs_more_follow_up": result.needs_more_follow_up,
            "focus_paths": result.focus_paths,
            "phase": FollowUpPhase.AWAITING_ACTION if result.needs_more_follow_up else FollowUpPhase.DONE,
        }

    @staticmethod
    def _route_after_act(state: FollowUpState) -> str:
        if state.needs_more_follow_up and state.iteration < state.max_iterations:
            return "detect"
        return "done"

    async def run(self, last_message: str) -> FollowUpRun:
        """Execute follow-up actions for *last_message* until done or the ceiling is hit."""
        self.events.status("followup", "Autonomous follow-up triggered")
        final = await self._graph.ainvoke(
            FollowUpState(last_message=last_message, max_iterations=self.max_iterations),
            config={"recursion_limit": 2 * self.max_iterations + 4},
        )
        iterations = final["iteration"]
        needs_more = final["needs_more_follow_up"]
        run = FollowUpRun(
            steps=list(final["steps"]),
            iterations=iterations,
            needs_more_follow_up=needs_more,
            stopped_by_limit=needs_more and iterations >= self.max_iterations,
        )
        if run.stopped_by_limit:
            logger.warning("Follow-up stopped after %d iterations (limit reached)", iterations)
        self.events.completion("followup", f"Autonomous follow-up finished after {iterations} step(s)")
        return run

    # ── Trigger detection ────────────────────────────────────────────

    def detect_action(self, message: str) -> tuple[ActionKind, str]:
        """Return the first matching action in priority order, plus its argument."""
        text = _normalise(message)

        if "i'll check" in text or "i'll examine" in text:
            path = self._find_known_file(message)
            if path:
                return ActionKind.CHECK, path
        if "i'll implement" in text or "implement all" in text:
            return ActionKind.IMPLEMENT, ""
        if "i'll fix" in text or "i'll validate" in text:
            return ActionKind.FIX, ""
        if "i'll deploy" in text or "i'll redeploy" in text:
            return ActionKind.DEPLOY, ""
        if "i'll search" in text or "i'll look up" in text:
            match = _SEARCH_FOR_RE.search(message) or _LOOK_UP_RE.search(message)
            query = match.group(1).strip() if match else ""
            return ActionKind.SEARCH, query or DEFAULT_SEARCH_QUERY
        return ActionKind.STATUS, ""

    def _find_known_file(self, message: str) -> str:
        # Longest names first so ".prodev/config.json" wins over "config.json"
        candidates = sorted({*WELL_KNOWN_FILES, *self.indexer.files}, key=len, reverse=True)
        for path in candidates:
            if path in message:
                return path
        return ""

    # ── Actions ──────────────────────────────────────────────────────

    async def execute_action(self, message: str) -> ActionResult:
        """Detect and run a single action for *message* (one loop iteration)."""
        kind, arg = self.detect_action(message)
        return await self._execute(kind, arg, [])

    async def _execute(self, kind: ActionKind, arg: str, focus_paths: list[str]) -> ActionResult:
        self.events.progress("followup", f"Executing follow-up action: {kind.value}")
        try:
            if kind == ActionKind.CHECK:
                return await self._check_file(arg)
            if kind == ActionKind.IMPLEMENT:
                return await self._implement()
            if kind == ActionKind.FIX:
                return await self._fix(focus_paths)
            if kind == ActionKind.DEPLOY:
                return await self._deploy()
            if kind == ActionKind.SEARCH:
                return await self._search(arg)
            return await self._status()
        except (ProdevError, HostError, ValueError) as exc:
            logger.error("Follow-up action %s failed: %s", kind.value, exc)
            self.events.error("followup", f"Follow-up action {kind.value} failed: {exc}")
            return ActionResult(f"❌ Error during autonomous follow-up: {exc}")

    async def _check_file(self, path: str) -> ActionResult:
        content = await self.state.store.get_file_content(path)
        if content is None:
            return ActionResult(f"❌ {path} was not found in the repository.")

        if not path.endswith(".json"):
            return ActionResult(f"✅ Examined {path}:\n- File exists: Yes\n- Size: {len(content)} characters")

        error = json_error(content)
        text = (
            f"✅ Examined {path}:\n- File exists: Yes\n- Valid JSON: {'No' if error else 'Yes'}\n"
            f"- Size: {len(content)} characters"
        )
        if not error:
            return ActionResult(text)
        text += f"\n\n❌ Found JSON parsing issue in {path} ({error}). I'll fix this now..."
        return ActionResult(text, needs_more_follow_up=True, focus_paths=[path])

    async def _implement(self) -> ActionResult:
        text = "🔨 Starting task implementation...\n\n"
        tasks = await self.state.get_tasks()
        pending = [t for t in tasks if t.status == TaskStatus.PENDING]
        if not pending:
            return ActionResult(text + "ℹ️ No pending tasks found to implement.")

        text += f"📋 Found {len(pending)} pending tasks. Implementing now...\n\n"
        result = await self.batch.implement_all(tasks, cap=self.implement_cap)
        for outcome in result.results:
            if outcome.status == TaskStatus.COMPLETED:
                text += f"✅ Completed: {outcome.title} ({outcome.files} files)\n"
            else:
                text += f"❌ Failed: {outcome.title} - {outcome.error}\n"
        text += f"\n🎉 Implementation completed: {result.completed}/{len(result.results)} tasks successful"

        if result.remaining:
            text += f"\n\n📋 {result.remaining} tasks are still pending. Ask me to continue when you're ready."
        return ActionResult(text)

    async def _fix_candidates(self, focus_paths: list[str]) -> list[str]:
        memory = await self.state.get_memory()
        ordered: list[str] = list(focus_paths)
        ordered.extend(entry.get("path", "") for entry in reversed(memory.code_context))
        recent = sorted(self.indexer.files.items(), key=lambda kv: kv[1].last_modified, reverse=True)
        ordered.extend(path for path, _ in recent)

        candidates = [p for p in dict.fromkeys(ordered) if _scannable(p)]
        if len(candidates) < self.fix_scan_limit:
            listed = await self.state.store.list_all_files()
            candidates.extend(p for p in listed if _scannable(p) and p not in candidates)
        return candidates[: self.fix_scan_limit]

    async def _fix(self, focus_paths: list[str]) -> ActionResult:
        text = "🔧 Applying fixes to the codebase...\n\n"
        store = self.state.store
        fixes = 0
        for path in await self._fix_candidates(focus_paths):
            if not path.endswith(".json"):
                continue
            content = await store.get_file_content(path)
            if content is None:
                continue
            repaired = repair_json(content)
            if not repaired.changed:
                if not repaired.valid:
                    text += f"❌ Could not auto-fix {path}: {repaired.error}\n"
                continue
            await store.save_file_content(path, repaired.content, f"🔧 Fix JSON syntax in {path}")
            if path in self.indexer:
                self.indexer.index_file(path, repaired.content)
            fixes += 1
            text += f"✅ Fixed JSON syntax in {path} ({', '.join(repaired.fixes)})\n"

        text += f"\n🎉 Applied {fixes} fixes to the codebase."
        if fixes:
            text += "\n\nFiles have been committed to GitHub. Ready for deployment!"
        return ActionResult(text)

    async def _deploy(self) -> ActionResult:
        text = "🚀 Starting deployment...\n\n"
        metadata = await self.state.get_metadata()
        platform = (metadata.deployment_platform if metadata else None) or self.default_platform
        project_id = self.state.project_id

        outcome = await self.deployer.deploy(project_id, platform)
        await self.state.append_deployment_log(DeploymentLog(
            project_id=project_id,
            platform=platform,
            status="success" if outcome.success else "failed",
            message="Autonomous deployment",
            deployment_url=outcome.url,
            error=outcome.error,
        ))

        if outcome.success:
            if metadata is not None:
                metadata.deployment_url = outcome.url
                metadata.deployment_platform = platform
                await self.state.save_metadata(metadata)
            return ActionResult(text + f"✅ Deployment successful!\n🌐 Live URL: {outcome.url}")

        text += f"❌ Deployment failed: {outcome.error}\n\nI'll fix the build errors before redeploying..."
        return ActionResult(text, needs_more_follow_up=True)

    async def _search(self, query: str) -> ActionResult:
        results = await self.search.search(query)
        return ActionResult(f"🔍 Searching for: {query}\n\n{results}")

    async def _status(self) -> ActionResult:
        text = (
            "I'm continuing to work on your request. Let me analyze the current state "
            "and proceed with the next steps..."
        )
        tasks = await self.state.get_tasks()
        pending = sum(1 for t in tasks if t.status == TaskStatus.PENDING)
        if pending:
            text += f"\n\n📋 I found {pending} pending tasks. Would you like me to implement them?"
        else:
            text += "\n\n✅ All tasks are completed. Ready for deployment or additional features!"
        return ActionResult(text)
