"""Remote file host interface: abstract protocol and shared data models.

All code that needs to read or write files in the target repository must go
through a ``RemoteFileHost`` implementation.  Direct HTTP calls to the
host's API outside this package are not allowed.

A host instance is bound to one repository (``owner/name``); the storage
layer builds one per request.
"""

from __future__ import annotations

from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


class RepositoryInfo(BaseModel):
    """Subset of repository metadata the agent cares about."""

    full_name: str
    default_branch: str = "main"
    private: bool = False
    html_url: str = ""
    description: str = ""


class FileContent(BaseModel):
    """Decoded text content of a file plus the token needed to update it."""

    path: str
    content: str
    revision_token: str


class ContentEntry(BaseModel):
    """One entry of a directory listing.  Content is never included."""

    path: str
    name: str
    type: Literal["file", "dir"]
    revision_token: str = ""
    size: int = 0


class WriteResult(BaseModel):
    """Result of a create/update: the new revision token of the file."""

    path: str
    revision_token: str
    commit_sha: str = ""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class RemoteFileHost(Protocol):
    """Minimal file-host operations required by prodev.

    All methods are coroutines; every call is a network round-trip.
    """

    @property
    def repo(self) -> str:
        """``owner/name`` of the bound repository."""
        ...

    async def get_repository(self) -> RepositoryInfo | None:
        """Return repository metadata, or ``None`` if it does not exist."""
        ...

    async def create_repository(self, description: str = "", private: bool = False) -> RepositoryInfo:
        """Create the bound repository (initialised with a first commit)."""
        ...

    async def get_file_content(self, path: str) -> FileContent | None:
        """Return the decoded file, or ``None`` when the path does not exist.

        Raises:
            HostError: on any other HTTP or decoding error, or when *path*
                       is a directory.
        """
        ...

    async def create_file(self, path: str, content: str, message: str) -> WriteResult:
        ...

    async def update_file(self, path: str, content: str, message: str, revision_token: str) -> WriteResult:
        ...

    async def delete_file(self, path: str, message: str, revision_token: str) -> None:
        ...

    async def list_contents(self, path: str = "", recursive: bool = False) -> list[ContentEntry]:
        """List files (and, non-recursively, directories) under *path*."""
        ...


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class HostError(Exception):
    """Raised for any file-host API error (HTTP errors, missing fields, …)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_conflict(self) -> bool:
        """True when the host rejected a write because of a stale revision token."""
        if self.status_code == 409:
            return True
        return self.status_code == 422 and "sha" in str(self.args[0]).lower()

    def __repr__(self) -> str:  # pragma: no cover
        return f"HostError({self.args[0]!r}, status_code={self.status_code})"
