"""Agent feedback events: decouples the agents from the HTTP layer.

Agents call ``events.status(...)`` / ``events.progress(...)`` etc. to
publish structured progress.  Each request owns its own ``EventRecorder``;
nothing is shared between requests.  The HTTP layer returns the recorded
events alongside the response, and optional listeners can forward them
elsewhere (e.g. a streaming response).

Event categories:
  status     : an agent started a phase of work
  progress   : intermediate progress inside a phase
  completion : a phase finished successfully
  error      : something went wrong
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from app.core.logging import get_logger
from app.core.models import utc_now_iso

logger = get_logger("core.events")


class EventCategory(str, Enum):
    STATUS = "status"
    PROGRESS = "progress"
    COMPLETION = "completion"
    ERROR = "error"


@dataclass
class AgentEvent:
    """A single feedback event emitted while an agent works."""
    category: EventCategory
    agent: str                      # e.g. "planner", "implementer", "chat", "followup"
    message: str
    task_id: str | None = None
    details: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        data = {
            "type": self.category.value,
            "agent": self.agent,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.task_id:
            data["taskId"] = self.task_id
        if self.details:
            data["details"] = self.details
        return data


class EventRecorder:
    """Request-scoped event sink with optional synchronous listeners."""

    def __init__(self, maxlen: int = 500) -> None:
        self._history: deque[AgentEvent] = deque(maxlen=maxlen)
        self._listeners: list[Callable[[AgentEvent], Any]] = []

    def subscribe(self, listener: Callable[[AgentEvent], Any]) -> None:
        self._listeners.append(listener)

    def emit(self, event: AgentEvent) -> None:
        self._history.append(event)
        logger.debug("EVENT | %s | %s | %s", event.category.value, event.agent, event.message)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as exc:
                logger.warning("Event listener error: %s", exc)

    def history(self, limit: int = 200) -> list[dict]:
        items = list(self._history)
        return [e.to_dict() for e in items[-limit:]]

    # ── Convenience emitters ──────────────────────────────────────────

    def status(self, agent: str, message: str, task_id: str | None = None, **details: Any) -> None:
        self.emit(AgentEvent(EventCategory.STATUS, agent, message, task_id, details))

    def progress(self, agent: str, message: str, task_id: str | None = None, **details: Any) -> None:
        self.emit(AgentEvent(EventCategory.PROGRESS, agent, message, task_id, details))

    def completion(self, agent: str, message: str, task_id: str | None = None, **details: Any) -> None:
        self.emit(AgentEvent(EventCategory.COMPLETION, agent, message, task_id, details))

    def error(self, agent: str, message: str, task_id: str | None = None, **details: Any) -> None:
        self.emit(AgentEvent(EventCategory.ERROR, agent, message, task_id, details))
