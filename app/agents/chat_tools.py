"""Structured tools the chat model may call.

Tools are built per request and close over that request's store, search
collaborator and indexer.  A tool never raises into the conversation: any
failure comes back as a text result the model can read.
"""

from __future__ import annotations

import json

from langchain_core.tools import BaseTool, tool

from app.analysis.codebase_index import CodebaseIndexer
from app.core.logging import get_logger
from app.storage.repo_store import CONFIG_PATH, RepoStateStore
from app.tools.json_repair import json_error
from infra.host import HostError
from infra.search import WebSearch

logger = get_logger("agents.chat_tools")

WELL_KNOWN_FILES = (
    "package.json",
    "tsconfig.json",
    "vercel.json",
    "netlify.toml",
    "README.md",
    CONFIG_PATH,
)

MAX_TOOL_RESULT_CHARS = 6000
MAX_LISTED_FILES = 200


def _clip(text: str, limit: int = MAX_TOOL_RESULT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated, {len(text) - limit} more chars]"


def build_chat_tools(store: RepoStateStore, search: WebSearch, indexer: CodebaseIndexer) -> list[BaseTool]:
    """Return the fixed dispatch table offered to the chat model."""

    def _allowed(path: str) -> bool:
        return path in WELL_KNOWN_FILES or path in indexer

    async def _read(path: str) -> tuple[str | None, str]:
        path = path.strip()
        if path.startswith("./"):
            path = path[2:]
        path = path.lstrip("/")
        if not _allowed(path):
            return None, f"Access denied: {path} is not a known project file."
        try:
            content = await store.get_file_content(path)
        except HostError as exc:
            return None, f"Tool error: could not read {path}: {exc}"
        if content is None:
            return None, f"{path} does not exist in the repository."
        return content, path

    @tool
    async def web_search(query: str) -> str:
        """Search the web for current documentation, error messages or best practices."""
        return _clip(await search.search(query))

    @tool
    async def read_project_file(path: str) -> str:
        """Read a project file such as package.json, tsconfig.json or any indexed source file."""
        content, info = await _read(path)
        if content is None:
            return info
        return _clip(f"Contents of {info}:\n{content}")

    @tool
    async def validate_json_file(path: str) -> str:
        """Check whether a project JSON file (e.g. package.json) parses correctly."""
        content, info = await _read(path)
        if content is None:
            return info
        error = json_error(content)
        if error:
            return f"{info} is NOT valid JSON: {error}"
        keys = list(json.loads(content)) if content.lstrip().startswith("{") else []
        suffix = f" Top-level keys: {', '.join(keys[:20])}." if keys else ""
        return f"{info} is valid JSON ({len(content)} characters).{suffix}"

    @tool
    async def list_files() -> str:
        """List the project files the agent knows about."""
        paths = sorted(set(indexer.files) | set(store.cached_paths))
        if not paths:
            try:
                paths = sorted(await store.list_all_files())
            except HostError as exc:
                return f"Tool error: could not list repository files: {exc}"
        if not paths:
            return "The repository has no files yet."
        more = f"\n... and {len(paths) - MAX_LISTED_FILES} more" if len(paths) > MAX_LISTED_FILES else ""
        return f"{len(paths)} files:\n" + "\n".join(paths[:MAX_LISTED_FILES]) + more

    @tool
    async def analyze_file(path: str) -> str:
        """Summarise an indexed file: language, imports, exports, functions, classes."""
        entry = indexer.get(path.strip().lstrip("/"))
        if entry is None:
            return f"{path} is not in the codebase index."
        return (
            f"{path} ({entry.language}, {entry.size} chars, complexity {entry.complexity})\n"
            f"imports: {', '.join(entry.imports) or '-'}\n"
            f"exports: {', '.join(entry.exports) or '-'}\n"
            f"functions: {', '.join(entry.functions) or '-'}\n"
            f"classes: {', '.join(entry.classes) or '-'}"
        )

    return [web_search, read_project_file, validate_json_file, list_files, analyze_file]
