"""Collaborator factory.

Single entry-point for building the external collaborators from the
application config.  Every call returns a *new* instance: clients are
request-scoped and must not be shared between requests.

Usage::

    from infra.factory import get_file_host, get_web_search, get_deployment_client

    async with get_file_host("owner/repo") as host:
        ...
"""

from __future__ import annotations

from infra.deploy import DeploymentClient
from infra.github_client import GitHubFileHost
from infra.search import WebSearch


def _settings():  # pragma: no cover
    """Lazy import to avoid circular imports and allow test overrides."""
    from app.core.config import get_settings
    return get_settings()


def parse_repo_ref(ref: str) -> str:
    """Normalise a repository reference to ``owner/name``.

    Accepts ``owner/name``, ``https://github.com/owner/name(.git)`` and
    ``git@github.com:owner/name.git``.

    Raises:
        ValueError: if no owner/name pair can be extracted.
    """
    text = (ref or "").strip().rstrip("/")
    if text.endswith(".git"):
        text = text[: -len(".git")]
    if text.startswith("git@") and ":" in text:
        text = text.split(":", 1)[1]
    elif "://" in text:
        _, _, rest = text.split("://", 1)[1].partition("/")
        text = rest
    parts = [p for p in text.split("/") if p]
    if len(parts) < 2:
        raise ValueError(f"Cannot determine owner/name from repository reference {ref!r}")
    return "/".join(parts[-2:])


def get_file_host(repo_ref: str) -> GitHubFileHost:
    """Return a :class:`~infra.github_client.GitHubFileHost` bound to *repo_ref*."""
    settings = _settings()
    return GitHubFileHost(
        repo=parse_repo_ref(repo_ref),
        token=getattr(settings, "github_token", "") or "",
        base_url=getattr(settings, "github_api_url", "") or "https://api.github.com",
        timeout=float(getattr(settings, "host_timeout_seconds", 30.0)),
    )


def get_web_search() -> WebSearch:
    settings = _settings()
    return WebSearch(
        brave_api_key=getattr(settings, "brave_search_api_key", "") or "",
        serpapi_key=getattr(settings, "serpapi_key", "") or "",
        timeout=float(getattr(settings, "search_timeout_seconds", 10.0)),
    )


def get_deployment_client() -> DeploymentClient:
    settings = _settings()
    return DeploymentClient(
        endpoint_url=settings.deploy_endpoint_url,
        timeout=float(getattr(settings, "deploy_timeout_seconds", 120.0)),
    )
