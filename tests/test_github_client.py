"""Tests for the GitHub file host client.

No real network calls are made; all HTTP is mocked via respx.
"""

from __future__ import annotations

import base64
import json

import httpx
import pytest
import respx

from infra.factory import get_file_host, parse_repo_ref
from infra.github_client import GitHubFileHost
from infra.host import HostError, RemoteFileHost

GITHUB_API = "https://api.github.com"
CONTENTS = f"{GITHUB_API}/repos/acme/shop/contents"


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _client() -> GitHubFileHost:
    return GitHubFileHost("acme/shop", token="ghp_test_token")


class TestProtocol:
    def test_satisfies_protocol(self):
        assert isinstance(_client(), RemoteFileHost)

    @pytest.mark.parametrize("repo", ["shop", "acme/shop/extra", "/shop", "acme/"])
    def test_rejects_bad_repo(self, repo):
        with pytest.raises(ValueError):
            GitHubFileHost(repo)


@respx.mock
class TestGitHubFileHost:
    @pytest.mark.asyncio
    async def test_get_file_decodes_base64(self):
        route = respx.get(f"{CONTENTS}/package.json").mock(return_value=httpx.Response(200, json={
            "type": "file",
            "path": "package.json",
            "sha": "abc123",
            "encoding": "base64",
            # GitHub wraps base64 at 60 chars
            "content": _b64('{"name": "shöp"}')[:8] + "\n" + _b64('{"name": "shöp"}')[8:],
        }))

        file = await _client().get_file_content("package.json")

        assert file.content == '{"name": "shöp"}'
        assert file.revision_token == "abc123"
        assert route.calls.last.request.headers["Authorization"] == "Bearer ghp_test_token"

    @pytest.mark.asyncio
    async def test_missing_file_is_none(self):
        respx.get(f"{CONTENTS}/.prodev/tasks.json").mock(return_value=httpx.Response(404, json={"message": "Not Found"}))
        assert await _client().get_file_content(".prodev/tasks.json") is None

    @pytest.mark.asyncio
    async def test_directory_is_an_error(self):
        respx.get(f"{CONTENTS}/src").mock(return_value=httpx.Response(200, json=[{"type": "file", "path": "src/a.ts"}]))
        with pytest.raises(HostError):
            await _client().get_file_content("src")

    @pytest.mark.asyncio
    async def test_large_file_uses_download_url(self):
        respx.get(f"{CONTENTS}/big.json").mock(return_value=httpx.Response(200, json={
            "type": "file", "path": "big.json", "sha": "s1", "encoding": "none", "content": "",
            "download_url": "https://raw.githubusercontent.com/acme/shop/main/big.json",
        }))
        respx.get("https://raw.githubusercontent.com/acme/shop/main/big.json").mock(
            return_value=httpx.Response(200, text="[1, 2, 3]")
        )
        file = await _client().get_file_content("big.json")
        assert file.content == "[1, 2, 3]"

    @pytest.mark.asyncio
    async def test_create_and_update_send_base64_and_sha(self):
        route = respx.put(f"{CONTENTS}/src/app.ts").mock(return_value=httpx.Response(201, json={
            "content": {"sha": "new-sha"}, "commit": {"sha": "commit-sha"},
        }))
        client = _client()

        created = await client.create_file("src/app.ts", "export {}", "feat: app")
        body = json.loads(route.calls.last.request.content)
        assert base64.b64decode(body["content"]).decode() == "export {}"
        assert body["message"] == "feat: app"
        assert "sha" not in body
        assert created.revision_token == "new-sha"
        assert created.commit_sha == "commit-sha"

        await client.update_file("src/app.ts", "export {a}", "fix", "old-sha")
        assert json.loads(route.calls.last.request.content)["sha"] == "old-sha"

    @pytest.mark.asyncio
    async def test_stale_sha_is_conflict(self):
        respx.put(f"{CONTENTS}/a.json").mock(return_value=httpx.Response(409, json={
            "message": "a.json does not match 9f1c",
        }))
        with pytest.raises(HostError) as exc:
            await _client().update_file("a.json", "{}", "m", "stale")
        assert exc.value.status_code == 409
        assert exc.value.is_conflict

    @pytest.mark.asyncio
    async def test_server_error_is_not_conflict(self):
        respx.put(f"{CONTENTS}/a.json").mock(return_value=httpx.Response(500, text="oops"))
        with pytest.raises(HostError) as exc:
            await _client().create_file("a.json", "{}", "m")
        assert not exc.value.is_conflict

    @pytest.mark.asyncio
    async def test_network_error_wrapped(self):
        respx.get(f"{CONTENTS}/a.json").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(HostError, match="network error"):
            await _client().get_file_content("a.json")

    @pytest.mark.asyncio
    async def test_delete_sends_sha(self):
        route = respx.delete(f"{CONTENTS}/old.ts").mock(return_value=httpx.Response(200, json={"commit": {}}))
        await _client().delete_file("old.ts", "chore: remove", "sha-1")
        assert json.loads(route.calls.last.request.content) == {"message": "chore: remove", "sha": "sha-1"}

    @pytest.mark.asyncio
    async def test_get_repository(self):
        respx.get(f"{GITHUB_API}/repos/acme/shop").mock(return_value=httpx.Response(200, json={
            "full_name": "acme/shop", "default_branch": "trunk", "private": True,
        }))
        info = await _client().get_repository()
        assert info.full_name == "acme/shop"
        assert info.default_branch == "trunk"

    @pytest.mark.asyncio
    async def test_missing_repository_is_none(self):
        respx.get(f"{GITHUB_API}/repos/acme/shop").mock(return_value=httpx.Response(404))
        assert await _client().get_repository() is None

    @pytest.mark.asyncio
    async def test_create_repository_in_org(self):
        respx.get(f"{GITHUB_API}/user").mock(return_value=httpx.Response(200, json={"login": "someone"}))
        route = respx.post(f"{GITHUB_API}/orgs/acme/repos").mock(return_value=httpx.Response(201, json={
            "full_name": "acme/shop",
        }))
        await _client().create_repository(description="Online shop")
        body = json.loads(route.calls.last.request.content)
        assert body == {"name": "shop", "description": "Online shop", "private": False, "auto_init": True}

    @pytest.mark.asyncio
    async def test_create_repository_for_user(self):
        respx.get(f"{GITHUB_API}/user").mock(return_value=httpx.Response(200, json={"login": "Acme"}))
        route = respx.post(f"{GITHUB_API}/user/repos").mock(return_value=httpx.Response(201, json={
            "full_name": "acme/shop",
        }))
        await _client().create_repository()
        assert route.called

    @pytest.mark.asyncio
    async def test_recursive_listing_uses_tree(self):
        respx.get(f"{GITHUB_API}/repos/acme/shop").mock(return_value=httpx.Response(200, json={
            "full_name": "acme/shop", "default_branch": "main",
        }))
        respx.get(f"{GITHUB_API}/repos/acme/shop/git/trees/main").mock(return_value=httpx.Response(200, json={
            "tree": [
                {"path": "src", "type": "tree", "sha": "t"},
                {"path": "src/a.ts", "type": "blob", "sha": "s1", "size": 10},
                {"path": "README.md", "type": "blob", "sha": "s2"},
            ],
        }))
        entries = await _client().list_contents(recursive=True)
        assert [(e.path, e.revision_token) for e in entries] == [("src/a.ts", "s1"), ("README.md", "s2")]

    @pytest.mark.asyncio
    async def test_empty_repository_lists_nothing(self):
        respx.get(f"{GITHUB_API}/repos/acme/shop").mock(return_value=httpx.Response(200, json={
            "full_name": "acme/shop", "default_branch": "main",
        }))
        respx.get(f"{GITHUB_API}/repos/acme/shop/git/trees/main").mock(
            return_value=httpx.Response(409, json={"message": "Git Repository is empty."})
        )
        assert await _client().list_contents(recursive=True) == []

    @pytest.mark.asyncio
    async def test_flat_listing(self):
        respx.get(f"{CONTENTS}/").mock(return_value=httpx.Response(200, json=[
            {"path": "src", "name": "src", "type": "dir", "sha": "d"},
            {"path": "package.json", "name": "package.json", "type": "file", "sha": "p", "size": 42},
            {"path": "link", "name": "link", "type": "symlink"},
        ]))
        entries = await _client().list_contents()
        assert [(e.path, e.type) for e in entries] == [("src", "dir"), ("package.json", "file")]


class TestFactory:
    @pytest.mark.parametrize("ref", [
        "acme/shop",
        "https://github.com/acme/shop",
        "https://github.com/acme/shop.git",
        "git@github.com:acme/shop.git",
        "  acme/shop/  ",
    ])
    def test_parse_repo_ref(self, ref):
        assert parse_repo_ref(ref) == "acme/shop"

    def test_parse_repo_ref_invalid(self):
        with pytest.raises(ValueError):
            parse_repo_ref("shop")

    def test_get_file_host_uses_settings(self, monkeypatch):
        from types import SimpleNamespace

        import infra.factory as factory

        monkeypatch.setattr(factory, "_settings", lambda: SimpleNamespace(
            github_token="tok", github_api_url="https://ghe.example.com/api/v3", host_timeout_seconds=5,
        ))
        host = get_file_host("https://github.com/acme/shop")
        assert host.repo == "acme/shop"
        assert host._base_url == "https://ghe.example.com/api/v3"
        assert host._timeout == 5.0
