"""Shared fixtures built on the fakes in ``tests/fakes.py``."""

from __future__ import annotations

import pytest

from app.storage.project_state import ProjectState
from app.storage.repo_store import RepoStateStore
from tests.fakes import InMemoryFileHost


@pytest.fixture
def host():
    return InMemoryFileHost()


@pytest.fixture
def store(host):
    return RepoStateStore(host)


@pytest.fixture
def state(store):
    return ProjectState(store)
