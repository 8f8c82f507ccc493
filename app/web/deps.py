"""Per-request construction of the store, agents and collaborators.

Nothing built here outlives the request: every route that touches a
project receives a fresh :class:`ProjectServices` through FastAPI's
dependency injection, and the host client is closed afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from app.agents.batch import BatchRunner
from app.agents.conversation import ConversationEngine
from app.agents.followup import AutonomousFollowUpLoop
from app.agents.implementer import TaskImplementer
from app.agents.models import AgentRole, ModelClient, get_model_client
from app.agents.planner import TaskPlanner
from app.analysis.codebase_index import CodebaseIndexer
from app.core.config import Settings, get_settings
from app.core.events import EventRecorder
from app.storage.project_state import ProjectState
from app.storage.repo_store import RepoStateStore
from infra.deploy import DeploymentClient
from infra.factory import get_deployment_client, get_file_host, get_web_search
from infra.host import RemoteFileHost
from infra.search import WebSearch


@dataclass
class ProjectServices:
    """Everything one request needs to work on one project."""

    settings: Settings
    host: RemoteFileHost
    search: WebSearch
    deployer: DeploymentClient
    model_factory: Callable[[AgentRole], ModelClient] = get_model_client
    events: EventRecorder = field(default_factory=EventRecorder)
    indexer: CodebaseIndexer = field(default_factory=CodebaseIndexer)

    def __post_init__(self) -> None:
        self.store = RepoStateStore(self.host)
        self.state = ProjectState(
            self.store,
            history_limit=self.settings.conversation_history_limit,
            deployment_log_limit=self.settings.deployment_log_limit,
        )

    def planner(self) -> TaskPlanner:
        return TaskPlanner(self.model_factory("planner"), self.events)

    def implementer(self) -> TaskImplementer:
        return TaskImplementer(self.state, self.model_factory("implementer"), self.indexer, self.events)

    def batch(self) -> BatchRunner:
        return BatchRunner(self.state, self.implementer(), self.events)

    def conversation(self) -> ConversationEngine:
        return ConversationEngine(self.state, self.model_factory("chat"), self.search, self.indexer, self.events)

    def followup(self) -> AutonomousFollowUpLoop:
        return AutonomousFollowUpLoop(
            self.state,
            self.batch(),
            self.search,
            self.deployer,
            indexer=self.indexer,
            events=self.events,
            max_iterations=self.settings.followup_max_iterations,
            implement_cap=self.settings.followup_implement_cap,
            fix_scan_limit=self.settings.fix_scan_limit,
            default_platform=self.settings.default_deploy_platform,
        )


async def get_services(owner: str, repo: str) -> AsyncIterator[ProjectServices]:
    """FastAPI dependency: build the services for ``owner/repo`` and clean up after."""
    host = get_file_host(f"{owner}/{repo}")
    try:
        yield ProjectServices(
            settings=get_settings(),
            host=host,
            search=get_web_search(),
            deployer=get_deployment_client(),
        )
    finally:
        await host.aclose()
