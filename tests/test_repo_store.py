"""Tests for the JSON-document store over a remote file host."""

from __future__ import annotations

import json

import pytest

from app.core.errors import StateWriteConflict
from app.storage.repo_store import CONFIG_PATH, TASKS_PATH, RepoStateStore
from infra.host import HostError
from tests.fakes import InMemoryFileHost


class TestEnsureRepository:
    @pytest.mark.asyncio
    async def test_creates_missing_repository_and_marker(self):
        host = InMemoryFileHost(exists=False)
        store = RepoStateStore(host, description="Online shop")

        assert await store.ensure_repository() is True
        assert ("create_repository", "Online shop") in host.calls
        marker = json.loads(host.content(CONFIG_PATH))
        assert marker["platform"] == "prodev"
        assert marker["version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_idempotent(self, host, store):
        assert await store.ensure_repository() is True
        assert await RepoStateStore(host).ensure_repository() is False
        assert not any(c[0] == "create_repository" for c in host.calls)


class TestDocuments:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        value = {"name": "shop", "tags": ["a", "b"], "nested": {"n": 1, "ok": True, "none": None}}
        await store.save_document(".prodev/metadata.json", value, "save")
        assert await store.get_document(".prodev/metadata.json") == value
        assert await RepoStateStore(store.host).get_document(".prodev/metadata.json") == value

    @pytest.mark.asyncio
    async def test_pretty_printed_and_unicode_kept(self, host, store):
        await store.save_document(TASKS_PATH, [{"title": "Überblick"}], "save")
        raw = host.content(TASKS_PATH)
        assert "Überblick" in raw
        assert raw.startswith("[\n  {")

    @pytest.mark.asyncio
    async def test_absent_document_is_none(self, store):
        assert await store.get_document(TASKS_PATH) is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_none(self):
        host = InMemoryFileHost(files={TASKS_PATH: "[{broken"})
        assert await RepoStateStore(host).get_document(TASKS_PATH) is None


class TestFiles:
    @pytest.mark.asyncio
    async def test_content_is_cached(self):
        host = InMemoryFileHost(files={"src/app.ts": "export const a = 1"})
        store = RepoStateStore(host)
        assert await store.get_file_content("src/app.ts") == "export const a = 1"
        assert await store.get_file_content("src/app.ts") == "export const a = 1"
        assert host.calls.count(("get", "src/app.ts")) == 1

    @pytest.mark.asyncio
    async def test_update_uses_current_token(self):
        host = InMemoryFileHost(files={"README.md": "old"})
        store = RepoStateStore(host)
        token = await store.save_file_content("README.md", "new", "edit")
        assert host.content("README.md") == "new"
        assert ("update", "README.md") in host.calls
        assert await store.get_revision_token("README.md") == token

    @pytest.mark.asyncio
    async def test_create_then_update(self, host, store):
        first = await store.save_file_content("a.txt", "1", "create")
        second = await store.save_file_content("a.txt", "2", "update")
        assert first != second
        assert [c for c in host.calls if c[0] in ("create", "update")] == [("create", "a.txt"), ("update", "a.txt")]

    @pytest.mark.asyncio
    async def test_stale_token_raises_conflict(self):
        host = InMemoryFileHost(files={"a.txt": "1"})
        store = RepoStateStore(host)
        await store.get_file_content("a.txt")
        # Someone else writes in between
        host._store("a.txt", "other")

        with pytest.raises(StateWriteConflict) as exc:
            await store.save_file_content("a.txt", "mine", "edit")
        assert exc.value.path == "a.txt"
        assert host.content("a.txt") == "other"

    @pytest.mark.asyncio
    async def test_other_host_errors_propagate(self, host, store):
        host.fail_writes["a.txt"] = HostError("boom", status_code=500)
        with pytest.raises(HostError):
            await store.save_file_content("a.txt", "x", "create")

    @pytest.mark.asyncio
    async def test_delete(self):
        host = InMemoryFileHost(files={"old.js": "x"})
        store = RepoStateStore(host)
        assert await store.delete_file("old.js", "remove") is True
        assert host.content("old.js") is None
        assert await store.delete_file("old.js", "remove") is False

    @pytest.mark.asyncio
    async def test_list_all_files_caches_tokens_only(self):
        host = InMemoryFileHost(files={"a.json": "{}", "src/b.ts": "x"})
        store = RepoStateStore(host)
        assert sorted(await store.list_all_files()) == ["a.json", "src/b.ts"]
        assert sorted(store.cached_paths) == ["a.json", "src/b.ts"]
        assert store.cached_content("a.json") is None
        # A token is known, so updating needs no extra lookup
        await store.save_file_content("a.json", '{"a": 1}', "edit")
        assert ("get", "a.json") not in host.calls
