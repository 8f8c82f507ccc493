"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for prodev. Reads from .env automatically."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # LLM API keys (only required for the providers you actually use)
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # Ollama base URL: set this when using local Ollama models
    # Example: OLLAMA_BASE_URL=http://localhost:11434
    ollama_base_url: str = "http://localhost:11434"

    # Model identifiers: prefix determines the provider:
    #   "ollama:<model>"     → local Ollama  (e.g. "ollama:llama3.1:70b")
    #   "claude-*" / "claude" → Anthropic API
    #   anything else        → OpenAI API    (e.g. "gpt-4o", "gpt-4o-mini")
    planner_model: str = "gpt-4o-mini"
    implementer_model: str = "gpt-4o-mini"
    chat_model: str = "gpt-4o-mini"

    # ── Remote file host (GitHub) ──────────────────────────────────────
    # Personal access token with `repo` scope.  The agent stores its own
    # state under .prodev/ inside the target repository.
    github_token: str = ""
    github_api_url: str = "https://api.github.com"

    @field_validator("github_api_url")
    @classmethod
    def _strip_api_url(cls, value: str) -> str:
        return value.rstrip("/")

    # ── Web search ─────────────────────────────────────────────────────
    # DuckDuckGo is always tried first; Brave and SerpAPI only when a key is set.
    brave_search_api_key: str = ""
    serpapi_key: str = ""
    search_timeout_seconds: float = 10.0

    # ── Deployment ─────────────────────────────────────────────────────
    # Endpoint of the deployment service; the platform specifics live there.
    deploy_endpoint_url: str = "http://localhost:3000/api/deploy"
    default_deploy_platform: str = "vercel"
    deploy_timeout_seconds: float = 120.0

    # ── Timeouts (seconds) ────────────────────────────────────────────
    host_timeout_seconds: float = 30.0
    model_timeout_seconds: float = 120.0

    # ── Safety limits ─────────────────────────────────────────────────
    bulk_implement_cap: int = 5
    followup_implement_cap: int = 2
    followup_max_iterations: int = 5
    conversation_history_limit: int = 50
    deployment_log_limit: int = 100
    fix_scan_limit: int = 5

    # Web UI / API
    web_host: str = "127.0.0.1"
    web_port: int = 8420

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/prodev.log"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Singleton accessor."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
