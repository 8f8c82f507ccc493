"""LLM model configuration, factory and the async model client.

Provider routing is done via model name prefix:
  - "ollama:<model>"  → local Ollama  (e.g. "ollama:llama3.1:70b")
  - "claude-*"        → Anthropic API
  - anything else     → OpenAI API   (e.g. "gpt-4o", "gpt-4o-mini")

Set PLANNER_MODEL, IMPLEMENTER_MODEL and CHAT_MODEL in .env to choose freely.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from app.core.config import get_settings
from app.core.errors import ModelError, ModelTimeoutError
from app.core.logging import get_logger

logger = get_logger("agents.models")

AgentRole = Literal["planner", "implementer", "chat"]
Provider = Literal["ollama", "anthropic", "openai"]

OLLAMA_PREFIX = "ollama:"

# role → (settings attribute, temperature, max_tokens)
_ROLE_PROFILES: dict[str, tuple[str, float, int]] = {
    "planner": ("planner_model", 0.2, 4096),
    "implementer": ("implementer_model", 0.1, 8192),
    "chat": ("chat_model", 0.4, 4096),
}


def provider_for(model_name: str) -> Provider:
    name = model_name.lower()
    if name.startswith(OLLAMA_PREFIX):
        return "ollama"
    if "claude" in name:
        return "anthropic"
    return "openai"


# ---------------------------------------------------------------------------
# LLM constructors
# ---------------------------------------------------------------------------

def _make_ollama(model: str, base_url: str, temperature: float = 0.1) -> BaseChatModel:
    """Create a ChatOllama instance. langchain-ollama must be installed."""
    try:
        from langchain_ollama import ChatOllama  # type: ignore[import-untyped]
    except ImportError as exc:
        raise ImportError(
            "langchain-ollama is not installed. Run: pip install 'prodev-agent[ollama]'"
        ) from exc

    bare_model = model[len(OLLAMA_PREFIX):]
    logger.info("Using Ollama model '%s' at %s", bare_model, base_url)
    return ChatOllama(model=bare_model, base_url=base_url, temperature=temperature)


def _make_anthropic(model: str, api_key: str, temperature: float = 0.1, max_tokens: int = 8192) -> BaseChatModel:
    from langchain_anthropic import ChatAnthropic

    logger.info("Using Anthropic model '%s'", model)
    return ChatAnthropic(model=model, api_key=api_key, temperature=temperature, max_tokens=max_tokens)


def _make_openai(model: str, api_key: str, temperature: float = 0.2, max_tokens: int = 8192) -> BaseChatModel:
    from langchain_openai import ChatOpenAI

    logger.info("Using OpenAI model '%s'", model)
    return ChatOpenAI(model=model, api_key=api_key, temperature=temperature, max_tokens=max_tokens)


def _require_key(env_name: str, role: str, model: str, api_key: str | None, alternatives: str) -> str:
    key = (api_key or "").strip()
    if key:
        return key
    raise ValueError(
        f"Missing {env_name} for role '{role}' with model '{model}'. "
        f"Set {env_name} in .env or switch to {alternatives} model."
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_llm(role: AgentRole) -> BaseChatModel:
    """Create an LLM instance for the given agent role.

    The provider is determined entirely by the model string in .env;
    no provider is hardcoded.
    """
    if role not in _ROLE_PROFILES:
        raise ValueError(f"Unknown agent role: {role}")

    settings = get_settings()
    attribute, temperature, max_tokens = _ROLE_PROFILES[role]
    model = getattr(settings, attribute)

    provider = provider_for(model)
    if provider == "ollama":
        return _make_ollama(model, base_url=settings.ollama_base_url, temperature=temperature)
    if provider == "anthropic":
        key = _require_key("ANTHROPIC_API_KEY", role, model, settings.anthropic_api_key, "an OpenAI / Ollama")
        return _make_anthropic(model, key, temperature=temperature, max_tokens=max_tokens)
    key = _require_key("OPENAI_API_KEY", role, model, settings.openai_api_key, "an Ollama / Anthropic")
    return _make_openai(model, key, temperature=temperature, max_tokens=max_tokens)


def get_model_client(role: AgentRole) -> ModelClient:
    """Return a request-scoped :class:`ModelClient` for *role*."""
    settings = get_settings()
    return ModelClient(get_llm(role), timeout=settings.model_timeout_seconds, role=role)


# ---------------------------------------------------------------------------
# Async client
# ---------------------------------------------------------------------------

@dataclass
class ModelReply:
    """Text of one model turn plus any structured tool calls it requested."""
    text: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    message: AIMessage | None = None


def message_text(message: BaseMessage) -> str:
    """Flatten message content (plain string or a list of content blocks)."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ModelClient:
    """Thin async wrapper around a chat model with a hard per-call deadline."""

    def __init__(self, llm: BaseChatModel, timeout: float = 120.0, role: str = "") -> None:
        self.llm = llm
        self.timeout = timeout
        self.role = role

    async def _ainvoke(self, runnable: Any, messages: Sequence[BaseMessage]) -> AIMessage:
        try:
            return await asyncio.wait_for(runnable.ainvoke(list(messages)), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ModelTimeoutError(f"Model call ({self.role or 'model'}) timed out after {self.timeout}s") from exc
        except Exception as exc:
            # Provider SDKs raise their own hierarchies; normalise them here
            raise ModelError(f"Model call ({self.role or 'model'}) failed: {exc}") from exc

    async def generate(self, prompt: str, system: str | None = None) -> str:
        messages: list[BaseMessage] = []
        if system:
            messages.append(SystemMessage(content=system))
        messages.append(HumanMessage(content=prompt))
        response = await self._ainvoke(self.llm, messages)
        text = message_text(response)
        logger.info("generate   | %s | prompt=%d chars | reply=%d chars", self.role, len(prompt), len(text))
        return text

    async def generate_with_tools(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[Any] | None = None,
    ) -> ModelReply:
        runnable = self.llm.bind_tools(list(tools)) if tools else self.llm
        response = await self._ainvoke(runnable, messages)
        tool_calls = [
            {"name": tc["name"], "args": tc.get("args") or {}, "id": tc.get("id") or tc["name"]}
            for tc in (getattr(response, "tool_calls", None) or [])
        ]
        return ModelReply(text=message_text(response), tool_calls=tool_calls, message=response)
