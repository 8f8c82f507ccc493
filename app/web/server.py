"""FastAPI request boundary.

Every project route is scoped by ``{owner}/{repo}`` and gets its own
store, agents and collaborators (see :mod:`app.web.deps`).  All component
exceptions are converted here into the uniform envelope::

    {"success": true, ...}
    {"success": false, "error": "..."}

Domain failures answer 200 with ``success: false``; unknown task ids 404;
invalid request bodies 422.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.core.errors import ProdevError, TaskNotFoundError
from app.core.logging import get_logger, setup_logging
from app.core.models import (
    ConversationTurn,
    ProjectMetadata,
    ProjectStatus,
    Task,
    TaskPriority,
    TaskType,
    utc_now_iso,
)
from app.web.deps import ProjectServices, get_services
from infra.host import HostError

logger = get_logger("web.server")

PROJECT = "/api/projects/{owner}/{repo}"


# ── Models ────────────────────────────────────────────────────────────────

class InitRequest(BaseModel):
    name: str = ""
    description: str = ""
    framework: str = ""


class MetadataUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    framework: str | None = None
    status: ProjectStatus | None = None
    deployment_url: str | None = None
    deployment_platform: str | None = None


class TaskCreateRequest(BaseModel):
    id: str | None = None
    title: str = Field(min_length=1)
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_time: str = ""
    files: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    technical_notes: str = ""


class GenerateRequest(BaseModel):
    description: str | None = None
    framework: str | None = None
    context: str = ""


class ImplementAllRequest(BaseModel):
    cap: int | None = Field(default=None, ge=1)


class ChatRequest(BaseModel):
    message: str = ""
    action: Literal["chat", "autonomous_followup"] = "chat"


# ── Lifespan & error envelope ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("prodev API started")
    yield
    logger.info("prodev API stopped")


app = FastAPI(title="prodev", version="0.1.0", lifespan=lifespan)


def _fail(error: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"success": False, "error": error}, status_code=status_code)


@app.exception_handler(TaskNotFoundError)
async def _task_not_found(request: Request, exc: TaskNotFoundError) -> JSONResponse:
    return _fail(str(exc), status_code=404)


@app.exception_handler(ProdevError)
async def _domain_error(request: Request, exc: ProdevError) -> JSONResponse:
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return _fail(str(exc))


@app.exception_handler(HostError)
async def _host_error(request: Request, exc: HostError) -> JSONResponse:
    logger.warning("%s %s host error: %s", request.method, request.url.path, exc)
    return _fail(str(exc))


@app.exception_handler(ValueError)
async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
    return _fail(str(exc))


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return _fail(f"{location}: {message}" if location else message, status_code=422)


def _ok(services: ProjectServices | None = None, **data: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, **data}
    if services is not None:
        events = services.events.history()
        if events:
            body["events"] = events
    return body


# ── Health ────────────────────────────────────────────────────────────────

@app.get("/api/health")
async def health():
    return {"success": True, "status": "ok"}


# ── Project ───────────────────────────────────────────────────────────────

@app.post(f"{PROJECT}/init")
async def init_project(
    owner: str,
    repo: str,
    req: InitRequest | None = None,
    services: ProjectServices = Depends(get_services),
):
    req = req or InitRequest()
    created = await services.store.ensure_repository()
    metadata = await services.state.ensure_metadata(ProjectMetadata(
        name=req.name or repo,
        description=req.description,
        framework=req.framework,
        repository=f"{owner}/{repo}",
    ))
    return _ok(services, created=created, metadata=metadata.to_document())


@app.get(f"{PROJECT}/metadata")
async def get_metadata(services: ProjectServices = Depends(get_services)):
    metadata = await services.state.get_metadata()
    return _ok(metadata=metadata.to_document() if metadata else None)


@app.put(f"{PROJECT}/metadata")
async def update_metadata(req: MetadataUpdate, services: ProjectServices = Depends(get_services)):
    metadata = await services.state.get_metadata()
    if metadata is None:
        return _fail("Project is not initialised; call init first")
    for key, value in req.model_dump(exclude_unset=True).items():
        setattr(metadata, key, value)
    await services.state.save_metadata(metadata)
    return _ok(metadata=metadata.to_document())


# ── Tasks ─────────────────────────────────────────────────────────────────

@app.get(f"{PROJECT}/tasks")
async def list_tasks(services: ProjectServices = Depends(get_services)):
    tasks = await services.state.get_tasks()
    return _ok(tasks=[t.to_document() for t in tasks])


@app.post(f"{PROJECT}/tasks")
async def create_task(req: TaskCreateRequest, services: ProjectServices = Depends(get_services)):
    now = utc_now_iso()
    task = Task(
        id=req.id or f"task_{int(time.time() * 1000)}",
        title=req.title,
        description=req.description,
        priority=req.priority,
        task_type=TaskType.MANUAL,
        estimated_time=req.estimated_time,
        created_at=now,
        updated_at=now,
        files=req.files,
        dependencies=req.dependencies,
        acceptance_criteria=req.acceptance_criteria,
        technical_notes=req.technical_notes,
    )
    await services.state.create_task(task)
    return _ok(task=task.to_document())


@app.post(f"{PROJECT}/tasks/generate")
async def generate_tasks(
    req: GenerateRequest | None = None,
    services: ProjectServices = Depends(get_services),
):
    req = req or GenerateRequest()
    state = services.state
    metadata = await state.get_metadata()
    description = req.description or (metadata.description if metadata else "")
    framework = req.framework or (metadata.framework if metadata else "")
    if not description:
        return _fail("A project description is required to generate tasks")

    existing = await state.get_tasks()
    memory = await state.get_memory()
    services.indexer.load(memory.codebase_index)
    generated = await services.planner().generate_tasks(description, framework, {
        "tasks": existing,
        "progress": metadata.progress if metadata else 0,
        "index_summary": services.indexer.summary_for_prompt(),
        "user_context": req.context,
    })
    await state.save_tasks([*existing, *generated], f"Add {len(generated)} generated tasks")
    await state.recompute_progress()
    return _ok(services, tasks=[t.to_document() for t in generated])


@app.post(f"{PROJECT}/tasks/implement-all")
async def implement_all(
    req: ImplementAllRequest | None = None,
    services: ProjectServices = Depends(get_services),
):
    req = req or ImplementAllRequest()
    cap = min(req.cap or services.settings.bulk_implement_cap, services.settings.bulk_implement_cap)
    result = await services.batch().implement_all(cap=cap)
    return _ok(services, **result.to_dict())


@app.patch(f"{PROJECT}/tasks/{{task_id}}")
async def update_task(
    task_id: str,
    changes: dict[str, Any] = Body(...),
    services: ProjectServices = Depends(get_services),
):
    task = await services.state.update_task(task_id, changes)
    return _ok(task=task.to_document())


@app.delete(f"{PROJECT}/tasks/{{task_id}}")
async def delete_task(task_id: str, services: ProjectServices = Depends(get_services)):
    await services.state.delete_task(task_id)
    return _ok(deleted=task_id)


@app.post(f"{PROJECT}/tasks/{{task_id}}/reset")
async def reset_task(task_id: str, services: ProjectServices = Depends(get_services)):
    task = await services.state.reset_task(task_id)
    return _ok(task=task.to_document())


@app.post(f"{PROJECT}/tasks/{{task_id}}/implement")
async def implement_task(task_id: str, services: ProjectServices = Depends(get_services)):
    outcome = await services.batch().run_task(task_id)
    if outcome.error:
        return {**_ok(services, result=outcome.to_dict()), "success": False, "error": outcome.error}
    return _ok(services, result=outcome.to_dict())


# ── Chat ──────────────────────────────────────────────────────────────────

@app.get(f"{PROJECT}/chat")
async def get_history(services: ProjectServices = Depends(get_services)):
    memory = await services.state.get_memory()
    return _ok(history=[t.to_document() for t in memory.conversation_history])


@app.post(f"{PROJECT}/chat")
async def chat(req: ChatRequest, services: ProjectServices = Depends(get_services)):
    if req.action == "autonomous_followup":
        return await _autonomous_followup(req, services)

    if not req.message.strip():
        return _fail("message must not be empty", status_code=422)
    reply = await services.conversation().chat_response(req.message)
    return _ok(
        services,
        response=reply.text,
        metadata={
            "hasActions": "implement" in reply.text or "create" in reply.text,
            "webSearchUsed": reply.web_search_used,
            "toolCalls": [c["name"] for c in reply.tool_calls],
        },
    )


async def _autonomous_followup(req: ChatRequest, services: ProjectServices) -> dict[str, Any]:
    memory = await services.state.get_memory()
    services.indexer.load(memory.codebase_index)
    last_agent = next(
        (t.content for t in reversed(memory.conversation_history) if t.role in ("assistant", "agent")),
        req.message,
    )
    run = await services.followup().run(last_agent)
    await services.state.append_conversation([
        ConversationTurn(role="assistant", content=run.response, context={"autonomousFollowUp": True}),
    ])
    return _ok(services, **run.to_dict())


# ── Deployment logs ───────────────────────────────────────────────────────

@app.get(f"{PROJECT}/deployment-logs")
async def deployment_logs(services: ProjectServices = Depends(get_services)):
    logs = await services.state.get_deployment_logs()
    return _ok(logs=[log.to_document() for log in logs])

