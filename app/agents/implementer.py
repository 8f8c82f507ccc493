"""TaskImplementer: one task in, file operations out, applied to the repository.

Flow for ``implement_task``:

1. Build a prompt from the task, project metadata, short excerpts of
   the task's files and of files read this request, the index summary
   and the last history turns.
2. One model call; parse and validate ``{files, message, commitMessage}``.
   Any shape problem raises ``ModelResponseFormatError`` before anything
   is written.
3. Apply the file operations sequentially.  The first failure raises
   ``FileOperationError`` and the remaining files are not attempted.
   Files written before the failure stay committed and are listed on the
   exception.
4. Record the task, its learnings and the updated index in agent memory.

Status transitions (in-progress / completed / failed) are the caller's job;
see :class:`app.agents.batch.BatchRunner`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.agents.models import ModelClient
from app.agents.parsing import extract_json_object
from app.agents.prompts import IMPLEMENTER_PROMPT, IMPLEMENTER_SYSTEM
from app.analysis.codebase_index import CodebaseIndexer
from app.core.errors import FileOperationError, ModelResponseFormatError, StateWriteConflict
from app.core.events import EventRecorder
from app.core.logging import get_logger
from app.core.models import AgentMemory, ProjectMetadata, Task, utc_now_iso
from app.storage.project_state import ProjectState
from app.storage.repo_store import STATE_DIR
from infra.host import HostError

logger = get_logger("agents.implementer")

VALID_OPERATIONS = ("create", "update", "delete")

MAX_CONTEXT_FILES = 8
MAX_EXCERPT_CHARS = 300
HISTORY_TURNS = 3


@dataclass
class FileChange:
    path: str
    operation: str
    content: str = ""


@dataclass
class Implementation:
    """Validated model output plus the operations actually performed."""
    files: list[FileChange]
    message: str
    commit_message: str
    applied: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [{"path": f.path, "operation": f.operation} for f in self.files],
            "message": self.message,
            "commitMessage": self.commit_message,
            "applied": list(self.applied),
        }


def normalize_path(raw: Any) -> str:
    """Repository-relative POSIX path, or raise ``ValueError``."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("empty path")
    path = raw.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    path = path.lstrip("/")
    segments = [s for s in path.split("/") if s not in ("", ".")]
    if not segments:
        raise ValueError(f"empty path {raw!r}")
    if ".." in segments:
        raise ValueError(f"path escapes the repository: {raw!r}")
    if segments[0] == STATE_DIR:
        raise ValueError(f"path targets agent state: {raw!r}")
    return "/".join(segments)


def parse_implementation(raw_text: str) -> Implementation:
    """Validate model output.  Raises ``ModelResponseFormatError`` on any defect."""
    payload = extract_json_object(raw_text)

    files = payload.get("files")
    if not isinstance(files, list):
        raise ModelResponseFormatError("Implementation must include a 'files' array", raw_text)
    message = payload.get("message")
    commit_message = payload.get("commitMessage") or payload.get("commit_message")
    if not isinstance(message, str) or not message.strip():
        raise ModelResponseFormatError("Implementation must include 'message'", raw_text)
    if not isinstance(commit_message, str) or not commit_message.strip():
        raise ModelResponseFormatError("Implementation must include 'commitMessage'", raw_text)

    changes: list[FileChange] = []
    for index, item in enumerate(files):
        if not isinstance(item, dict):
            raise ModelResponseFormatError(f"files[{index}] is not an object", raw_text)
        operation = str(item.get("operation", "")).strip().lower()
        if operation not in VALID_OPERATIONS:
            raise ModelResponseFormatError(f"files[{index}] has invalid operation {operation!r}", raw_text)
        try:
            path = normalize_path(item.get("path"))
        except ValueError as exc:
            raise ModelResponseFormatError(f"files[{index}]: {exc}", raw_text) from exc
        content = item.get("content", "")
        if operation != "delete" and not isinstance(content, str):
            raise ModelResponseFormatError(f"files[{index}] content must be a string", raw_text)
        changes.append(FileChange(path=path, operation=operation, content=content if isinstance(content, str) else ""))

    return Implementation(files=changes, message=message.strip(), commit_message=commit_message.strip())


def _truncate_context_text(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class TaskImplementer:
    """Implements a single task against the project repository."""

    def __init__(
        self,
        state: ProjectState,
        model: ModelClient,
        indexer: CodebaseIndexer | None = None,
        events: EventRecorder | None = None,
    ) -> None:
        self.state = state
        self.model = model
        self.indexer = indexer or CodebaseIndexer()
        self.events = events or EventRecorder()

    async def implement_task(self, task: Task, project_context: ProjectMetadata | None = None) -> Implementation:
        self.events.status("implementer", f"Starting implementation of: {task.title}", task.id)

        memory = await self.state.get_memory()
        if not len(self.indexer):
            self.indexer.load(memory.codebase_index)
        metadata = project_context or await self.state.get_metadata() or ProjectMetadata(name=self.state.project_id)

        self.events.progress("implementer", "Generating implementation", task.id)
        excerpts = await self._collect_excerpts(task)
        raw = await self.model.generate(
            self._build_prompt(task, metadata, memory, excerpts),
            system=IMPLEMENTER_SYSTEM.format(framework=metadata.framework or "software"),
        )
        try:
            implementation = parse_implementation(raw)
        except ModelResponseFormatError as exc:
            logger.warning("Implementer output rejected for %s: %s | raw=%r", task.id, exc, raw[:300])
            self.events.error("implementer", f"Error implementing task: {exc}", task.id)
            raise

        self.events.progress(
            "implementer",
            f"Generated {len(implementation.files)} file operations",
            task.id,
            file_count=len(implementation.files),
        )
        await self._apply(task, implementation, memory)
        await self._remember(task, implementation, memory)

        self.events.completion("implementer", f"Successfully implemented: {task.title}", task.id)
        return implementation

    # ── Prompt ───────────────────────────────────────────────────────

    async def _collect_excerpts(self, task: Task) -> list[str]:
        """Short excerpts of the task's own files first, then of files already read this request."""
        store = self.state.store
        paths: list[str] = []
        for raw in task.files:
            try:
                path = normalize_path(raw)
            except ValueError:
                continue
            if path not in paths:
                paths.append(path)
        requested = len(paths)
        paths.extend(p for p in store.cached_paths if not p.startswith(STATE_DIR + "/") and p not in paths)

        excerpts: list[str] = []
        for index, path in enumerate(paths):
            if len(excerpts) >= MAX_CONTEXT_FILES:
                break
            if index < requested:
                try:
                    content = await store.get_file_content(path)
                except HostError as exc:
                    logger.warning("Could not read %s for task %s: %s", path, task.id, exc)
                    continue
            else:
                content = store.cached_content(path)
            if content is not None:
                excerpts.append(f"{path}:\n{_truncate_context_text(content, MAX_EXCERPT_CHARS)}")
        return excerpts

    def _build_prompt(self, task: Task, metadata: ProjectMetadata, memory: AgentMemory, excerpts: list[str]) -> str:
        history = memory.conversation_history[-HISTORY_TURNS:]
        return IMPLEMENTER_PROMPT.format(
            title=task.title,
            description=task.description or "(none)",
            priority=task.priority.value,
            files=", ".join(task.files) or "Auto-detect from context",
            operations=", ".join(task.operations) or "read, update",
            acceptance_criteria="\n".join(f"- {c}" for c in task.acceptance_criteria) or "- (none given)",
            technical_notes=task.technical_notes or "(none)",
            context=task.context or "No specific context",
            project_name=metadata.name,
            project_description=metadata.description or "(none)",
            framework=metadata.framework or "unspecified",
            repository=metadata.repository or self.state.project_id,
            progress=metadata.progress,
            index_summary=self.indexer.summary_for_prompt(),
            file_excerpts="\n\n".join(excerpts) or "(no cached files)",
            recent_history="\n".join(f"{t.role}: {_truncate_context_text(t.content, 500)}" for t in history) or "(none)",
        )

    # ── Application ──────────────────────────────────────────────────

    async def _apply(self, task: Task, implementation: Implementation, memory: AgentMemory) -> None:
        store = self.state.store
        message = implementation.commit_message
        for change in implementation.files:
            try:
                if change.operation == "delete":
                    if await store.delete_file(change.path, message):
                        self.indexer.remove_file(change.path)
                        memory.file_cache.pop(change.path, None)
                        implementation.applied.append({"path": change.path, "operation": "delete"})
                    else:
                        logger.info("Delete skipped, %s does not exist", change.path)
                    continue

                existed = await store.get_revision_token(change.path) is not None
                await store.save_file_content(change.path, change.content, message)
            except (HostError, StateWriteConflict) as exc:
                logger.error("File operation failed | task=%s | %s | %s", task.id, change.path, exc)
                self.events.error("implementer", f"Failed to process file {change.path}: {exc}", task.id)
                raise FileOperationError(change.path, str(exc), implementation.applied) from exc

            self.indexer.index_file(change.path, change.content)
            memory.file_cache[change.path] = {"lastModified": utc_now_iso()}
            implementation.applied.append({"path": change.path, "operation": "update" if existed else "create"})

        logger.info("Applied %d file operations for %s", len(implementation.applied), task.id)

    async def _remember(self, task: Task, implementation: Implementation, memory: AgentMemory) -> None:
        files = [{"path": f.path, "content": f.content, "operation": f.operation} for f in implementation.files]
        memory.task_history.append(task)
        memory.learnings[task.id] = {
            "task": task.title,
            "implementation": implementation.message,
            "files": [f.path for f in implementation.files],
            "timestamp": utc_now_iso(),
            "patterns": self.indexer.extract_patterns(files),
            "codebaseChanges": self.indexer.describe_changes(files),
        }
        memory.current_focus = task.title
        memory.append_code_context([{"path": a["path"], "operation": a["operation"]} for a in implementation.applied])
        memory.codebase_index = self.indexer.to_dict()
        try:
            await self.state.save_memory(memory, f"Update agent memory after {task.id}")
        except (HostError, StateWriteConflict) as exc:
            # Files are already committed; a lost memory update only costs context
            logger.warning("Could not update agent memory after %s: %s", task.id, exc)
            self.events.error("implementer", f"Agent memory not updated: {exc}", task.id)
