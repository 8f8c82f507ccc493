"""ConversationEngine: chat replies grounded in the full project context.

One prompt is assembled from project metadata, the compact index summary,
agent memory, recent history and keyword-level intent analysis (plus web
search results when the message asks for outside information).  The model
may request structured tool calls; at most one tool round is executed,
followed by a single continuation call.  Both reply texts are joined with a
blank line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool

from app.agents.chat_tools import build_chat_tools
from app.agents.intent import (
    UserIntent,
    analyze_project_insights,
    analyze_user_intent,
    analyze_user_preferences,
    contextual_insights,
    offered_actions,
)
from app.agents.models import ModelClient, ModelReply
from app.agents.prompts import CHAT_CONTINUE_PROMPT, CHAT_PROMPT, CHAT_SEARCH_SECTION, CHAT_SYSTEM
from app.analysis.codebase_index import CodebaseIndexer
from app.core.errors import StateWriteConflict
from app.core.events import EventRecorder
from app.core.logging import get_logger
from app.core.models import AgentMemory, ConversationTurn, ProjectMetadata, Task, TaskStatus
from app.storage.project_state import ProjectState
from infra.host import HostError
from infra.search import WebSearch

logger = get_logger("agents.conversation")

HISTORY_TURNS = 5


@dataclass
class ChatReply:
    text: str
    intent: UserIntent
    web_search_used: bool = False
    tool_calls: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.text,
            "intent": self.intent.type,
            "webSearchUsed": self.web_search_used,
            "toolCalls": [{"name": c["name"], "args": c["args"]} for c in self.tool_calls],
        }


class ConversationEngine:
    """Produces one chat reply per call and records it in agent memory."""

    def __init__(
        self,
        state: ProjectState,
        model: ModelClient,
        search: WebSearch,
        indexer: CodebaseIndexer | None = None,
        events: EventRecorder | None = None,
    ) -> None:
        self.state = state
        self.model = model
        self.search = search
        self.indexer = indexer or CodebaseIndexer()
        self.events = events or EventRecorder()

    async def chat_response(
        self,
        message: str,
        project_context: ProjectMetadata | None = None,
        history: list[ConversationTurn] | None = None,
    ) -> ChatReply:
        memory = await self.state.get_memory()
        if not len(self.indexer):
            self.indexer.load(memory.codebase_index)
        tasks = await self.state.get_tasks()
        metadata = project_context or await self.state.get_metadata() or ProjectMetadata(name=self.state.project_id)
        if history is None:
            history = memory.conversation_history

        intent = analyze_user_intent(message)
        search_results = ""
        if intent.needs_web_search:
            self.events.status("chat", "Searching for relevant information")
            search_results = await self.search.search(message)

        messages: list[BaseMessage] = [
            SystemMessage(content=CHAT_SYSTEM),
            HumanMessage(content=self._build_prompt(message, metadata, memory, tasks, history, intent, search_results)),
        ]
        tools = build_chat_tools(self.state.store, self.search, self.indexer)

        first = await self.model.generate_with_tools(messages, tools)
        text = first.text.strip()
        if first.tool_calls:
            follow_up = await self._run_tool_round(messages, first, tools)
            text = "\n\n".join(part for part in (text, follow_up.text.strip()) if part)

        reply = ChatReply(
            text=text,
            intent=intent,
            web_search_used=bool(search_results),
            tool_calls=first.tool_calls,
        )
        await self._record(message, reply, memory, tasks)
        return reply

    # ── Prompt ───────────────────────────────────────────────────────

    def _build_prompt(
        self,
        message: str,
        metadata: ProjectMetadata,
        memory: AgentMemory,
        tasks: list[Task],
        history: list[ConversationTurn],
        intent: UserIntent,
        search_results: str,
    ) -> str:
        def count(status: TaskStatus) -> int:
            return sum(1 for t in tasks if t.status == status)

        recent = history[-HISTORY_TURNS:]
        insights = contextual_insights(tasks, self.indexer.files, memory.learnings, intent)
        return CHAT_PROMPT.format(
            name=metadata.name,
            framework=metadata.framework or "unspecified",
            description=metadata.description or "(none)",
            status=metadata.status.value,
            progress=metadata.progress,
            repository=metadata.repository or self.state.project_id,
            index_summary=self.indexer.summary_for_prompt(),
            current_focus=memory.current_focus or "Development",
            completed=count(TaskStatus.COMPLETED),
            pending=count(TaskStatus.PENDING),
            failed=count(TaskStatus.FAILED),
            recent_learnings=", ".join(list(memory.learnings)[-3:]) or "none yet",
            common_requests=", ".join(memory.user_preferences.common_requests) or "learning...",
            response_style=memory.user_preferences.preferred_response_style,
            technical_level=memory.user_preferences.technical_level,
            improvement_areas=", ".join(memory.project_insights.improvement_areas) or "none identified",
            recent_history="\n".join(f"{i}. {t.role}: {t.content}" for i, t in enumerate(recent, start=1)) or "(no previous messages)",
            intent_type=intent.type,
            confidence=intent.confidence,
            suggested_actions=", ".join(intent.suggested_actions) or "-",
            entities=", ".join(intent.entities) or "-",
            sentiment=intent.sentiment,
            insights="\n".join(f"- {line}" for line in insights),
            search_section=CHAT_SEARCH_SECTION.format(results=search_results) if search_results else "",
            message=message,
        )

    # ── Tool round ───────────────────────────────────────────────────

    async def _run_tool_round(
        self,
        messages: list[BaseMessage],
        first: ModelReply,
        tools: list[BaseTool],
    ) -> ModelReply:
        tool_map = {t.name: t for t in tools}
        assistant = first.message or AIMessage(content=first.text, tool_calls=first.tool_calls)
        round_messages: list[BaseMessage] = [*messages, assistant]

        for call in first.tool_calls:
            tool_fn = tool_map.get(call["name"])
            if tool_fn is None:
                result = f"Unknown tool: {call['name']}"
            else:
                try:
                    result = await tool_fn.ainvoke(call["args"])
                except Exception as exc:
                    result = f"Tool error: {exc}"
            logger.info("tool_call  | %s(%s) -> %d chars", call["name"], list(call["args"]), len(str(result)))
            self.events.progress("chat", f"Tool {call['name']} executed", tool=call["name"])
            round_messages.append(ToolMessage(content=str(result), tool_call_id=call["id"]))

        round_messages.append(HumanMessage(content=CHAT_CONTINUE_PROMPT))
        return await self.model.generate_with_tools(round_messages)

    # ── Memory ───────────────────────────────────────────────────────

    async def _record(self, message: str, reply: ChatReply, memory: AgentMemory, tasks: list[Task]) -> None:
        user_turn = ConversationTurn(role="user", content=message, intent=reply.intent.type)
        assistant_turn = ConversationTurn(
            role="assistant",
            content=reply.text,
            context={
                "webSearchUsed": reply.web_search_used,
                "actionsOffered": offered_actions(reply.text),
            },
        )
        memory.append_turns([user_turn, assistant_turn], limit=self.state.history_limit)
        memory.user_preferences = analyze_user_preferences(memory.conversation_history, memory.user_preferences)
        memory.project_insights = analyze_project_insights(
            tasks, self.indexer.files, reply.intent, memory.project_insights
        )
        memory.codebase_index = self.indexer.to_dict()
        try:
            await self.state.save_memory(memory, "Update conversation history")
        except (HostError, StateWriteConflict) as exc:
            logger.warning("Could not save conversation memory for %s: %s", self.state.project_id, exc)
            self.events.error("chat", f"Conversation history not saved: {exc}")
