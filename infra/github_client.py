"""GitHub file host client.

Implements :class:`~infra.host.RemoteFileHost` against the GitHub REST API
v3 contents endpoints.  Authentication uses a personal access token (PAT)
supplied via the ``GITHUB_TOKEN`` environment variable / config key.

Usage::

    from infra.factory import get_file_host
    async with get_file_host("owner/repo") as host:
        file = await host.get_file_content("package.json")
"""

from __future__ import annotations

import asyncio
import base64
from typing import Any
from urllib.parse import quote

import httpx

from infra.host import ContentEntry, FileContent, HostError, RepositoryInfo, WriteResult

_GITHUB_API = "https://api.github.com"


def _encode(content: str) -> str:
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def _decode(data: str) -> str:
    raw = base64.b64decode(data.replace("\n", ""))
    return raw.decode("utf-8", errors="replace")


class GitHubFileHost:
    """GitHub REST API v3 client bound to one repository.

    Args:
        repo:     ``owner/name``.
        token:    GitHub personal access token.  Pass an empty string to make
                  unauthenticated (read-only, rate-limited) requests.
        base_url: API base URL.  Override in tests or for GitHub Enterprise.
        timeout:  Deadline in seconds for a single API call (default 30).
    """

    def __init__(
        self,
        repo: str,
        token: str = "",
        base_url: str = _GITHUB_API,
        timeout: float = 30.0,
    ) -> None:
        if repo.count("/") != 1 or not all(repo.split("/")):
            raise ValueError(f"Repository must be 'owner/name', got {repo!r}")
        self._repo = repo
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout)

    @property
    def repo(self) -> str:
        return self._repo

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubFileHost:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> Any:
        url = path if path.startswith("http") else f"{self._base_url}{path}"
        try:
            response = await asyncio.wait_for(
                self._client.request(method, url, params=params, json=json),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise HostError(f"GitHub {method} {path} timed out after {self._timeout}s") from exc
        except httpx.RequestError as exc:
            raise HostError(f"GitHub {method} {path} network error: {exc}") from exc

        if allow_404 and response.status_code == 404:
            return None
        if response.is_error:
            raise HostError(
                f"GitHub {method} {path} failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    def _repo_path(self) -> str:
        """Return URL-encoded ``/repos/owner/name``."""
        return f"/repos/{quote(self._repo, safe='/')}"

    def _contents_path(self, path: str) -> str:
        return f"{self._repo_path()}/contents/{quote(path.strip('/'), safe='/')}"

    @staticmethod
    def _repo_from_dict(data: dict[str, Any]) -> RepositoryInfo:
        return RepositoryInfo(
            full_name=data.get("full_name", ""),
            default_branch=data.get("default_branch") or "main",
            private=bool(data.get("private", False)),
            html_url=data.get("html_url", ""),
            description=data.get("description") or "",
        )

    # ------------------------------------------------------------------
    # RemoteFileHost implementation
    # ------------------------------------------------------------------

    async def get_repository(self) -> RepositoryInfo | None:
        data = await self._request("GET", self._repo_path(), allow_404=True)
        if data is None:
            return None
        return self._repo_from_dict(data)

    async def create_repository(self, description: str = "", private: bool = False) -> RepositoryInfo:
        """Create the repository for the authenticated user.

        ``auto_init`` gives the repository an initial commit so the contents
        API can write to it straight away.
        """
        owner, name = self._repo.split("/")
        payload = {"name": name, "description": description, "private": private, "auto_init": True}
        user = await self._request("GET", "/user")
        if user.get("login", "").lower() == owner.lower():
            data = await self._request("POST", "/user/repos", json=payload)
        else:
            data = await self._request("POST", f"/orgs/{quote(owner)}/repos", json=payload)
        return self._repo_from_dict(data)

    async def get_file_content(self, path: str) -> FileContent | None:
        data = await self._request("GET", self._contents_path(path), allow_404=True)
        if data is None:
            return None
        if isinstance(data, list) or data.get("type") != "file":
            raise HostError(f"{path} is not a file")

        if data.get("encoding") == "base64" and data.get("content"):
            content = _decode(data["content"])
        elif data.get("download_url"):
            # Files over 1 MB come back without inline content
            try:
                raw = await asyncio.wait_for(self._client.get(data["download_url"]), timeout=self._timeout)
                raw.raise_for_status()
            except (asyncio.TimeoutError, httpx.HTTPError) as exc:
                raise HostError(f"GitHub download of {path} failed: {exc}") from exc
            content = raw.text
        else:
            content = data.get("content") or ""

        return FileContent(path=data.get("path", path), content=content, revision_token=data.get("sha", ""))

    async def _put(self, path: str, content: str, message: str, revision_token: str | None) -> WriteResult:
        body: dict[str, Any] = {"message": message, "content": _encode(content)}
        if revision_token:
            body["sha"] = revision_token
        data = await self._request("PUT", self._contents_path(path), json=body)
        return WriteResult(
            path=path,
            revision_token=(data.get("content") or {}).get("sha", ""),
            commit_sha=(data.get("commit") or {}).get("sha", ""),
        )

    async def create_file(self, path: str, content: str, message: str) -> WriteResult:
        return await self._put(path, content, message, None)

    async def update_file(self, path: str, content: str, message: str, revision_token: str) -> WriteResult:
        return await self._put(path, content, message, revision_token)

    async def delete_file(self, path: str, message: str, revision_token: str) -> None:
        # httpx only sends a body on DELETE through request()
        await self._request(
            "DELETE",
            self._contents_path(path),
            json={"message": message, "sha": revision_token},
        )

    async def list_contents(self, path: str = "", recursive: bool = False) -> list[ContentEntry]:
        """List repository contents.

        Recursive listings use the git trees API (one request for the whole
        tree) and only return files.  An empty repository yields ``[]``.
        """
        if recursive:
            return await self._list_tree(path)

        data = await self._request("GET", self._contents_path(path), allow_404=True)
        if data is None:
            return []
        items = data if isinstance(data, list) else [data]
        return [
            ContentEntry(
                path=item["path"],
                name=item.get("name", item["path"].rsplit("/", 1)[-1]),
                type="dir" if item.get("type") == "dir" else "file",
                revision_token=item.get("sha", ""),
                size=item.get("size") or 0,
            )
            for item in items
            if item.get("type") in {"file", "dir"}
        ]

    async def _list_tree(self, path: str) -> list[ContentEntry]:
        repo_info = await self.get_repository()
        if repo_info is None:
            return []
        try:
            data = await self._request(
                "GET",
                f"{self._repo_path()}/git/trees/{quote(repo_info.default_branch, safe='')}",
                params={"recursive": "1"},
                allow_404=True,
            )
        except HostError as exc:
            if exc.status_code == 409:  # "Git Repository is empty."
                return []
            raise
        if data is None:
            return []

        prefix = path.strip("/")
        entries: list[ContentEntry] = []
        for item in data.get("tree", []):
            if item.get("type") != "blob":
                continue
            item_path = item["path"]
            if prefix and not item_path.startswith(prefix + "/"):
                continue
            entries.append(ContentEntry(
                path=item_path,
                name=item_path.rsplit("/", 1)[-1],
                type="file",
                revision_token=item.get("sha", ""),
                size=item.get("size") or 0,
            ))
        return entries

    def __repr__(self) -> str:  # pragma: no cover
        return f"GitHubFileHost(repo={self._repo!r}, base_url={self._base_url!r})"
