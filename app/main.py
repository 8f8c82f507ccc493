"""prodev main entry point.

Starts the FastAPI web server that exposes the project API.
"""

from __future__ import annotations

import uvicorn

from app.core.config import get_settings
from app.core.logging import get_logger, setup_logging

# In-flight requests get this long after Ctrl+C / SIGTERM; a second Ctrl+C exits at once
GRACEFUL_SHUTDOWN_SECONDS = 15


def build_server() -> uvicorn.Server:
    settings = get_settings()
    config = uvicorn.Config(
        "app.web.server:app",
        host=settings.web_host,
        port=settings.web_port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
    )
    return uvicorn.Server(config)


def main():
    """Entry point: starts the API server."""
    setup_logging()
    logger = get_logger("main")
    settings = get_settings()

    logger.info("prodev starting")
    if not settings.github_token.strip():
        logger.error("GITHUB_TOKEN not set - every project request will fail against the host")
    for env_name, value in (("OPENAI_API_KEY", settings.openai_api_key), ("ANTHROPIC_API_KEY", settings.anthropic_api_key)):
        if not value.strip():
            logger.warning("%s not set - roles using that provider will fail", env_name)
    if not (settings.brave_search_api_key or settings.serpapi_key):
        logger.info("Web search: DuckDuckGo only (no BRAVE_SEARCH_API_KEY / SERPAPI_KEY)")
    logger.info("API: http://%s:%d/api/health", settings.web_host, settings.web_port)

    try:
        build_server().run()
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
