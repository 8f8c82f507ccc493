"""prodev infrastructure layer: external collaborator clients.

All communication with the remote file host (GitHub), the web-search
providers and the deployment service goes through this package.  Use the
helpers in :mod:`infra.factory` to obtain request-scoped instances.

Quick start::

    from infra.factory import get_file_host

    async with get_file_host("owner/repo") as host:
        file = await host.get_file_content("package.json")
        await host.update_file("package.json", new_text, "chore: bump", file.revision_token)
"""

from infra.deploy import DeployResult, DeploymentClient
from infra.factory import get_deployment_client, get_file_host, get_web_search, parse_repo_ref
from infra.github_client import GitHubFileHost
from infra.host import ContentEntry, FileContent, HostError, RemoteFileHost, RepositoryInfo, WriteResult
from infra.search import SEARCH_UNAVAILABLE, WebSearch

__all__ = [
    # Protocol & models
    "RemoteFileHost",
    "HostError",
    "RepositoryInfo",
    "FileContent",
    "ContentEntry",
    "WriteResult",
    # Clients
    "GitHubFileHost",
    "WebSearch",
    "SEARCH_UNAVAILABLE",
    "DeploymentClient",
    "DeployResult",
    # Factory
    "get_file_host",
    "get_web_search",
    "get_deployment_client",
    "parse_repo_ref",
]
