"""Session 路由

GET    /api/sessions?project_id=: 项目下的 sessions
POST   /api/sessions: 创建 session（可选初始 prompt）
POST   /api/sessions/reorder: 批量调整排序
GET    /api/sessions/{session_id}: session 详情
PUT    /api/sessions/{session_id}: 更新名称 / 排序 / 状态 / 模型 / 激活 / 链接
POST   /api/sessions/{session_id}/start: 启动调度
DELETE /api/sessions/{session_id}: 删除 session（先中止运行中的任务）
"""

from datetime import UTC, datetime

import structlog
from agentdeck.core.models import (
    NotificationType,
    Session,
    SessionStatus,
    Task,
    TaskLocation,
    TaskStatus,
)
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse
from ulid import ULID

from ..deps import error_response, get_hub, get_scheduler, get_store_group

log = structlog.get_logger()

router = APIRouter()


class SessionCreateRequest(BaseModel):
    """创建 session 请求体"""

    project_id: str
    name: str = Field(min_length=1)
    model: str | None = Field(default=None, description="覆盖项目默认模型")
    prompt: str | None = Field(default=None, description="初始任务 prompt，放入 todo 队首")
    is_active: bool = False


class SessionUpdateRequest(BaseModel):
    """更新 session 请求体；next_session_id 显式传 null 表示解除链接"""

    name: str | None = None
    session_order: int | None = None
    status: SessionStatus | None = None
    model: str | None = None
    is_active: bool | None = None
    next_session_id: str | None = None


class SessionOrderItem(BaseModel):
    session_id: str
    session_order: int


class SessionReorderRequest(BaseModel):
    session_orders: list[SessionOrderItem]


def _session_not_found(session_id: str) -> JSONResponse:
    return error_response(
        404, "SESSION_NOT_FOUND", f"Session with id {session_id} does not exist"
    )


@router.get("/api/sessions")
async def list_sessions(
    project_id: str = Query(description="所属项目"),
    store_group=Depends(get_store_group),
):
    sessions = await store_group.session_store.list_sessions(project_id)
    return [s.model_dump(mode="json") for s in sessions]


@router.post("/api/sessions")
async def create_session(
    body: SessionCreateRequest,
    store_group=Depends(get_store_group),
    hub=Depends(get_hub),
):
    if await store_group.project_store.get_project(body.project_id) is None:
        return error_response(
            404, "PROJECT_NOT_FOUND", f"Project with id {body.project_id} does not exist"
        )

    now = datetime.now(UTC)
    max_order = await store_group.session_store.get_max_order(body.project_id)
    session = Session(
        session_id=str(ULID()),
        project_id=body.project_id,
        name=body.name,
        model=body.model or None,
        status=SessionStatus.IDLE,
        session_order=max_order + 1,
        is_active=body.is_active,
        created_at=now,
        updated_at=now,
    )
    await store_group.session_store.create_session(session, commit=False)

    task = None
    if body.prompt and body.prompt.strip():
        task = Task(
            task_id=str(ULID()),
            project_id=body.project_id,
            session_id=session.session_id,
            prompt=body.prompt.strip(),
            status=TaskStatus.PENDING,
            location=TaskLocation.TODO,
            task_order=0,
            created_at=now,
            updated_at=now,
        )
        await store_group.task_store.create_task(task, commit=False)
    await store_group.conn.commit()

    log.info(
        "session_created",
        session_id=session.session_id,
        project_id=body.project_id,
        with_task=task is not None,
    )
    if task is not None:
        await hub.publish(
            NotificationType.TASK_CREATED,
            {
                "task": task.model_dump(mode="json"),
                "session_id": session.session_id,
                "project_id": body.project_id,
            },
        )
    return JSONResponse(status_code=201, content=session.model_dump(mode="json"))


@router.post("/api/sessions/reorder")
async def reorder_sessions(
    body: SessionReorderRequest,
    store_group=Depends(get_store_group),
):
    for item in body.session_orders:
        await store_group.session_store.update_order(item.session_id, item.session_order)
    return {"success": True}


@router.get("/api/sessions/{session_id}")
async def get_session(session_id: str, store_group=Depends(get_store_group)):
    session = await store_group.session_store.get_session(session_id)
    if session is None:
        return _session_not_found(session_id)
    return session.model_dump(mode="json")


@router.put("/api/sessions/{session_id}")
async def update_session(
    session_id: str,
    body: SessionUpdateRequest,
    store_group=Depends(get_store_group),
    scheduler=Depends(get_scheduler),
    hub=Depends(get_hub),
):
    """更新 session；激活时触发一次调度"""
    existing = await store_group.session_store.get_session(session_id)
    if existing is None:
        return _session_not_found(session_id)

    store = store_group.session_store
    fields = body.model_fields_set

    if body.name is not None:
        await store.update_name(session_id, body.name)
    if body.session_order is not None:
        await store.update_order(session_id, body.session_order)
    if body.status is not None:
        await store.update_status(session_id, body.status)
    if "model" in fields:
        await store.update_model(session_id, body.model or None)
    if "next_session_id" in fields:
        if body.next_session_id == session_id:
            return error_response(
                400, "INVALID_REQUEST", "A session cannot be chained to itself"
            )
        if body.next_session_id and await store.get_session(body.next_session_id) is None:
            return _session_not_found(body.next_session_id)
        await store.update_next_session(session_id, body.next_session_id)

    activated = body.is_active is True and not existing.is_active
    if body.is_active is not None:
        await store.update_active(session_id, body.is_active)

    session = await store.get_session(session_id)
    await hub.publish(NotificationType.SESSION_UPDATED, session.model_dump(mode="json"))

    if activated:
        await scheduler.process_session(session_id)
        session = await store.get_session(session_id)
    return session.model_dump(mode="json")


@router.post("/api/sessions/{session_id}/start")
async def start_session(
    session_id: str,
    store_group=Depends(get_store_group),
    scheduler=Depends(get_scheduler),
):
    """启动 session：已完成的 session 有待执行任务时重置为 idle 后调度"""
    session = await store_group.session_store.get_session(session_id)
    if session is None:
        return _session_not_found(session_id)
    if session.status == SessionStatus.RUNNING:
        return error_response(400, "SESSION_ALREADY_RUNNING", "Session is already running")

    if session.status == SessionStatus.COMPLETED:
        pending = await store_group.task_store.list_pending_todo(session_id)
        if not pending:
            return error_response(
                400, "NO_PENDING_TASKS", "No pending tasks in this session"
            )
        await store_group.session_store.update_status(session_id, SessionStatus.IDLE)

    await scheduler.process_session(session_id)
    updated = await store_group.session_store.get_session(session_id)
    return updated.model_dump(mode="json")


@router.delete("/api/sessions/{session_id}")
async def delete_session(
    session_id: str,
    store_group=Depends(get_store_group),
    scheduler=Depends(get_scheduler),
):
    session = await store_group.session_store.get_session(session_id)
    if session is None:
        return _session_not_found(session_id)

    running_task_id = scheduler.get_running_task_for_session(session_id)
    if running_task_id:
        await scheduler.abort_task(running_task_id)

    await store_group.session_store.delete_session(session_id)
    scheduler.discard_session(session_id)
    log.info("session_deleted", session_id=session_id)
    return {"success": True}
