"""Prompt templates for the planner, implementer and chat roles.

Templates use ``str.format`` placeholders.  Literal braces in the JSON
examples are doubled.
"""

from __future__ import annotations

PLANNER_SYSTEM = (
    "You are a senior software architect. You break a project down into "
    "concrete, independently implementable development tasks and answer with "
    "strict JSON only."
)

PLANNER_PROMPT = """\
Analyze this project and generate actionable development tasks.

PROJECT
- Description: {description}
- Framework: {framework}
- User context: {user_context}
- Existing tasks: {task_count} ({completed_count} completed)
- Progress: {progress}%

CODEBASE
{index_summary}

REQUIREMENTS
1. Avoid duplicating work that already exists in the codebase.
2. Build on existing functionality and respect dependencies between tasks.
3. Name concrete file paths and technical details.
4. Prioritise by project need and complexity.
5. Give each task acceptance criteria and the file operations it implies.

Return ONLY valid JSON in exactly this format:
{{
  "tasks": [
    {{
      "title": "Specific, actionable task title",
      "description": "Technical requirements and context",
      "priority": "high|medium|low",
      "estimatedTime": "X hours",
      "dependencies": [],
      "files": ["path/to/file.ts"],
      "operations": ["create", "update", "delete"],
      "acceptanceCriteria": ["Measurable criterion"],
      "technicalNotes": "Implementation hints",
      "context": "How the task relates to the user's goals"
    }}
  ]
}}

Generate between 8 and 15 tasks.
"""

IMPLEMENTER_SYSTEM = (
    "You are an expert {framework} developer. You implement exactly one task "
    "by producing complete file contents, and you answer with strict JSON only."
)

IMPLEMENTER_PROMPT = """\
TASK: {title}
DESCRIPTION: {description}
PRIORITY: {priority}
ASSOCIATED FILES: {files}
OPERATIONS: {operations}
ACCEPTANCE CRITERIA:
{acceptance_criteria}
TECHNICAL NOTES: {technical_notes}
CONTEXT: {context}

PROJECT
- Name: {project_name}
- Description: {project_description}
- Framework: {framework}
- Repository: {repository}
- Progress: {progress}%

CODEBASE
{index_summary}

CURRENT PROJECT FILES (excerpts)
{file_excerpts}

RECENT CONVERSATION
{recent_history}

INSTRUCTIONS
1. Stay consistent with the existing code patterns and architecture.
2. Include every file needed for a complete implementation.
3. Never write files under .prodev/ and only use paths relative to the repository root.

Return ONLY valid JSON in exactly this format:
{{
  "files": [
    {{"path": "relative/path/to/file.ext", "content": "complete file content", "operation": "create|update|delete"}}
  ],
  "message": "Summary of what was changed and why",
  "commitMessage": "feat: conventional commit message"
}}
"""

CHAT_SYSTEM = """\
You are an autonomous development agent working on the project below. You
know its tasks, codebase and history. Give specific, actionable answers that
reference actual files. When you need facts you do not have, call one of the
provided tools instead of guessing. When you intend to take an action
yourself, say so explicitly ("I'll check package.json", "I'll implement the
pending tasks", "I'll fix ...", "I'll deploy ...", "I'll search for ...").
"""

CHAT_PROMPT = """\
PROJECT
- Name: {name}
- Framework: {framework}
- Description: {description}
- Status: {status}
- Progress: {progress}%
- Repository: {repository}

CODEBASE
{index_summary}

MEMORY
- Current focus: {current_focus}
- Tasks: {completed} completed, {pending} pending, {failed} failed
- Recent implementations: {recent_learnings}
- User common requests: {common_requests}
- Preferred response style: {response_style}
- Technical level: {technical_level}
- Known improvement areas: {improvement_areas}

RECENT CONVERSATION
{recent_history}

INTENT
- Type: {intent_type} (confidence {confidence})
- Suggested actions: {suggested_actions}
- Entities: {entities}
- Sentiment: {sentiment}

INSIGHTS
{insights}
{search_section}
USER MESSAGE: {message}
"""

CHAT_SEARCH_SECTION = "\nEXTERNAL KNOWLEDGE\n{results}\n"

CHAT_CONTINUE_PROMPT = (
    "The tool results are above. Continue the conversation naturally: say "
    "specifically what was found and what should happen next."
)
