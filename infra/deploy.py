"""Deployment collaborator.

The platform-specific deployment logic (Vercel / Netlify / Cloudflare) runs
behind a separate HTTP endpoint.  This client only triggers it and reports
the outcome; it never raises for network or platform failures.
"""

from __future__ import annotations

import httpx
from pydantic import BaseModel

from app.core.logging import get_logger

logger = get_logger("infra.deploy")

SUPPORTED_PLATFORMS = ("vercel", "netlify", "cloudflare")


class DeployResult(BaseModel):
    success: bool
    url: str | None = None
    error: str | None = None
    deployment_id: str | None = None


class DeploymentClient:
    """Triggers a deployment for a project via the deployment endpoint."""

    def __init__(self, endpoint_url: str, timeout: float = 120.0) -> None:
        self._endpoint_url = endpoint_url
        self._timeout = timeout

    async def deploy(self, project_id: str, platform: str) -> DeployResult:
        platform = (platform or "").lower().strip()
        if platform not in SUPPORTED_PLATFORMS:
            return DeployResult(success=False, error=f"Unsupported deployment platform: {platform or '(none)'}")

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._endpoint_url,
                    json={"projectId": project_id, "platform": platform},
                )
        except httpx.HTTPError as exc:
            logger.warning("deploy | %s | %s | network error: %s", project_id, platform, exc)
            return DeployResult(success=False, error=f"Deployment service unavailable: {exc}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error or not data.get("success"):
            error = data.get("error") or f"HTTP {response.status_code}"
            logger.warning("deploy | %s | %s | failed: %s", project_id, platform, error)
            return DeployResult(success=False, error=str(error))

        url = data.get("deploymentUrl") or data.get("url")
        logger.info("deploy | %s | %s | success: %s", project_id, platform, url)
        return DeployResult(success=True, url=url, deployment_id=data.get("deploymentId"))
