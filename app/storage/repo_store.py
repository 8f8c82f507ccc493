"""Durable JSON-document storage layered over a remote file host.

Every piece of agent state is one JSON blob at a fixed path under
``.prodev/`` inside the target repository.  A ``RepoStateStore`` is built
per request: its caches live as long as the instance and are never shared.

Consistency is whole-document, last-writer-wins.  There is no locking and
no merge; when the host itself rejects a write because the revision token
is stale, ``StateWriteConflict`` is raised and nothing is retried.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from app.core.errors import StateNotFound, StateWriteConflict
from app.core.logging import get_logger
from app.core.models import RepoConfig, utc_now_iso
from infra.host import HostError, RemoteFileHost

logger = get_logger("storage.repo_store")

STATE_DIR = ".prodev"
CONFIG_PATH = f"{STATE_DIR}/config.json"
TASKS_PATH = f"{STATE_DIR}/tasks.json"
METADATA_PATH = f"{STATE_DIR}/metadata.json"
MEMORY_PATH = f"{STATE_DIR}/agent-memory.json"
DEPLOYMENT_LOGS_PATH = f"{STATE_DIR}/deployment-logs.json"


@dataclass
class CachedFile:
    """Path cache entry.  ``content`` is ``None`` until the file is read."""
    revision_token: str
    content: str | None = None
    last_modified: str = ""


class RepoStateStore:
    """Document store bound to one repository via a :class:`RemoteFileHost`."""

    def __init__(self, host: RemoteFileHost, description: str = "") -> None:
        self.host = host
        self._description = description
        self._cache: dict[str, CachedFile] = {}

    @property
    def repo(self) -> str:
        return self.host.repo

    @property
    def cached_paths(self) -> list[str]:
        return list(self._cache)

    def cached_content(self, path: str) -> str | None:
        entry = self._cache.get(path)
        return entry.content if entry else None

    # ------------------------------------------------------------------
    # Repository lifecycle
    # ------------------------------------------------------------------

    async def ensure_repository(self) -> bool:
        """Create the repository and the ``.prodev/config.json`` marker if missing.

        Returns ``True`` when anything was created.  Safe to call repeatedly.
        """
        created = False
        info = await self.host.get_repository()
        if info is None:
            logger.info("Creating repository %s", self.repo)
            await self.host.create_repository(description=self._description)
            created = True

        if await self.get_document(CONFIG_PATH) is None:
            logger.info("Writing state marker %s in %s", CONFIG_PATH, self.repo)
            await self.save_document(CONFIG_PATH, RepoConfig().to_document(), "Initialize prodev state")
            created = True
        return created

    # ------------------------------------------------------------------
    # JSON documents
    # ------------------------------------------------------------------

    async def get_document(self, path: str) -> Any | None:
        """Return the parsed document, or ``None`` when absent or not valid JSON."""
        try:
            return await self._load_document(path)
        except StateNotFound as exc:
            logger.debug("%s", exc)
            return None

    async def _load_document(self, path: str) -> Any:
        content = await self.get_file_content(path)
        if content is None:
            raise StateNotFound(path)
        try:
            return json.loads(content)
        except ValueError as exc:
            logger.warning("Invalid JSON in %s/%s: %s", self.repo, path, exc)
            raise StateNotFound(path) from exc

    async def save_document(self, path: str, value: Any, message: str) -> None:
        await self.save_file_content(path, json.dumps(value, indent=2, ensure_ascii=False), message)

    # ------------------------------------------------------------------
    # Raw files
    # ------------------------------------------------------------------

    async def get_file_content(self, path: str) -> str | None:
        cached = self._cache.get(path)
        if cached is not None and cached.content is not None:
            return cached.content

        file = await self.host.get_file_content(path)
        if file is None:
            self._cache.pop(path, None)
            return None
        self._cache[path] = CachedFile(file.revision_token, file.content, utc_now_iso())
        return file.content

    async def get_revision_token(self, path: str) -> str | None:
        """Return the cached revision token, asking the host once on a cold cache."""
        cached = self._cache.get(path)
        if cached is not None:
            return cached.revision_token
        file = await self.host.get_file_content(path)
        if file is None:
            return None
        self._cache[path] = CachedFile(file.revision_token, file.content, utc_now_iso())
        return file.revision_token

    async def save_file_content(self, path: str, content: str, message: str) -> str:
        """Create or update *path*; return the new revision token."""
        token = await self.get_revision_token(path)
        try:
            if token:
                result = await self.host.update_file(path, content, message, token)
            else:
                result = await self.host.create_file(path, content, message)
        except HostError as exc:
            if exc.is_conflict:
                self._cache.pop(path, None)
                raise StateWriteConflict(path, str(exc)) from exc
            raise

        self._cache[path] = CachedFile(result.revision_token, content, utc_now_iso())
        logger.debug("Saved %s/%s (%s)", self.repo, path, "update" if token else "create")
        return result.revision_token

    async def delete_file(self, path: str, message: str) -> bool:
        """Delete *path*.  Returns ``False`` when it did not exist."""
        token = await self.get_revision_token(path)
        if not token:
            return False
        try:
            await self.host.delete_file(path, message, token)
        except HostError as exc:
            if exc.is_conflict:
                raise StateWriteConflict(path, str(exc)) from exc
            raise
        finally:
            self._cache.pop(path, None)
        return True

    async def list_all_files(self, recursive: bool = True) -> list[str]:
        """List file paths and remember their revision tokens (content stays lazy)."""
        entries = await self.host.list_contents("", recursive=recursive)
        paths: list[str] = []
        for entry in entries:
            if entry.type != "file":
                continue
            paths.append(entry.path)
            cached = self._cache.get(entry.path)
            if cached is None or cached.revision_token != entry.revision_token:
                self._cache[entry.path] = CachedFile(entry.revision_token)
        return paths
