"""任务路由

GET    /api/tasks?project_id=|session_id=&location=: 任务列表
POST   /api/tasks: 创建任务（有 session 时默认进入 todo，否则进入项目 backlog）
POST   /api/tasks/reorder: 批量调整排序
GET    /api/tasks/{task_id}: 任务详情
GET    /api/tasks/{task_id}/events: 任务事件日志
PUT    /api/tasks/{task_id}: 更新 prompt / 排序
POST   /api/tasks/{task_id}/move: 移动到 backlog / todo
POST   /api/tasks/{task_id}/abort: 中止运行中（或等待人工回复）的任务
POST   /api/tasks/{task_id}/human-response: 提交人工回复
DELETE /api/tasks/{task_id}: 删除任务（运行中先中止）
"""

from datetime import UTC, datetime

import structlog
from agentdeck.core.models import (
    TERMINAL_STATES,
    NotificationType,
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


class TaskCreateRequest(BaseModel):
    """创建任务请求体"""

    project_id: str
    prompt: str = Field(min_length=1)
    session_id: str | None = None
    location: TaskLocation | None = Field(
        default=None,
        description="默认：有 session_id 时 todo，否则 backlog",
    )


class TaskUpdateRequest(BaseModel):
    prompt: str | None = None
    task_order: int | None = None


class TaskMoveRequest(BaseModel):
    """移动任务请求体；session_id 未提供时沿用原 session"""

    location: TaskLocation
    session_id: str | None = None
    task_order: int | None = None


class HumanResponseRequest(BaseModel):
    response: str = Field(min_length=1, description="对 agent 提问的回复")


class TaskOrderItem(BaseModel):
    task_id: str
    task_order: int


class TaskReorderRequest(BaseModel):
    task_orders: list[TaskOrderItem]


def _task_not_found(task_id: str) -> JSONResponse:
    return error_response(404, "TASK_NOT_FOUND", f"Task with id {task_id} does not exist")


async def _next_order(store_group, project_id: str, session_id: str | None, location) -> int:
    if location == TaskLocation.BACKLOG or session_id is None:
        return await store_group.task_store.get_max_backlog_order(project_id) + 1
    return await store_group.task_store.get_max_todo_order(session_id) + 1


@router.get("/api/tasks")
async def list_tasks(
    project_id: str | None = Query(default=None),
    session_id: str | None = Query(default=None),
    location: TaskLocation | None = Query(default=None),
    store_group=Depends(get_store_group),
):
    """按 session 或项目查询任务，二者必须提供其一"""
    if session_id:
        tasks = await store_group.task_store.list_by_session(session_id, location)
    elif project_id:
        tasks = await store_group.task_store.list_by_project(project_id, location)
    else:
        return error_response(
            400, "INVALID_REQUEST", "project_id or session_id is required"
        )
    return [t.model_dump(mode="json") for t in tasks]


@router.post("/api/tasks")
async def create_task(
    body: TaskCreateRequest,
    store_group=Depends(get_store_group),
    scheduler=Depends(get_scheduler),
    hub=Depends(get_hub),
):
    if await store_group.project_store.get_project(body.project_id) is None:
        return error_response(
            404, "PROJECT_NOT_FOUND", f"Project with id {body.project_id} does not exist"
        )

    location = body.location or (
        TaskLocation.TODO if body.session_id else TaskLocation.BACKLOG
    )
    if location == TaskLocation.TODO and not body.session_id:
        return error_response(
            400, "INVALID_REQUEST", "session_id is required for todo tasks"
        )
    if location == TaskLocation.DONE:
        return error_response(400, "INVALID_REQUEST", "Cannot create a task in done")

    now = datetime.now(UTC)
    task = Task(
        task_id=str(ULID()),
        project_id=body.project_id,
        session_id=body.session_id,
        prompt=body.prompt,
        status=TaskStatus.PENDING,
        location=location,
        task_order=await _next_order(store_group, body.project_id, body.session_id, location),
        created_at=now,
        updated_at=now,
    )
    await store_group.task_store.create_task(task)
    log.info(
        "task_created",
        task_id=task.task_id,
        session_id=task.session_id,
        location=location,
    )
    await hub.publish(
        NotificationType.TASK_CREATED,
        {
            "task": task.model_dump(mode="json"),
            "session_id": task.session_id,
            "project_id": task.project_id,
        },
    )

    if location == TaskLocation.TODO:
        session = await store_group.session_store.get_session(body.session_id)
        if session is not None and session.is_active:
            await scheduler.process_session(body.session_id)

    return JSONResponse(status_code=201, content=task.model_dump(mode="json"))


@router.post("/api/tasks/reorder")
async def reorder_tasks(
    body: TaskReorderRequest,
    store_group=Depends(get_store_group),
):
    for item in body.task_orders:
        await store_group.task_store.update_order(item.task_id, item.task_order)
    return {"success": True}


@router.get("/api/tasks/{task_id}")
async def get_task(task_id: str, store_group=Depends(get_store_group)):
    task = await store_group.task_store.get_task(task_id)
    if task is None:
        return _task_not_found(task_id)
    return task.model_dump(mode="json")


@router.get("/api/tasks/{task_id}/events")
async def get_task_events(task_id: str, store_group=Depends(get_store_group)):
    if await store_group.task_store.get_task(task_id) is None:
        return _task_not_found(task_id)
    events = await store_group.event_store.get_events_for_task(task_id)
    return [e.model_dump(mode="json") for e in events]


@router.put("/api/tasks/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdateRequest,
    store_group=Depends(get_store_group),
):
    if await store_group.task_store.get_task(task_id) is None:
        return _task_not_found(task_id)

    if body.prompt is not None:
        await store_group.task_store.update_prompt(task_id, body.prompt)
    if body.task_order is not None:
        await store_group.task_store.update_order(task_id, body.task_order)

    task = await store_group.task_store.get_task(task_id)
    return task.model_dump(mode="json")


@router.post("/api/tasks/{task_id}/move")
async def move_task(
    task_id: str,
    body: TaskMoveRequest,
    store_group=Depends(get_store_group),
    scheduler=Depends(get_scheduler),
):
    """移动任务；已结束的任务移回 todo 时重置为 pending，目标 session 激活时触发调度"""
    existing = await store_group.task_store.get_task(task_id)
    if existing is None:
        return _task_not_found(task_id)
    if existing.status == TaskStatus.RUNNING:
        return error_response(400, "TASK_RUNNING", "Cannot move a running task")

    session_id = (
        (body.session_id or None) if "session_id" in body.model_fields_set
        else existing.session_id
    )
    if body.location == TaskLocation.TODO and not session_id:
        return error_response(400, "INVALID_REQUEST", "session_id is required for todo")

    task_order = body.task_order
    if task_order is None:
        task_order = await _next_order(
            store_group, existing.project_id, session_id, body.location
        )

    await store_group.task_store.move_task(task_id, body.location, session_id, task_order)

    if body.location == TaskLocation.TODO and existing.status in TERMINAL_STATES:
        await store_group.task_store.update_status(task_id, TaskStatus.PENDING)

    task = await store_group.task_store.get_task(task_id)

    if body.location == TaskLocation.TODO:
        session = await store_group.session_store.get_session(session_id)
        if session is not None and session.is_active:
            await scheduler.process_session(session_id)

    return task.model_dump(mode="json")


@router.post("/api/tasks/{task_id}/abort")
async def abort_task(
    task_id: str,
    store_group=Depends(get_store_group),
    scheduler=Depends(get_scheduler),
):
    existing = await store_group.task_store.get_task(task_id)
    if existing is None:
        return _task_not_found(task_id)
    if existing.status != TaskStatus.RUNNING and not scheduler.is_awaiting_input(task_id):
        return error_response(400, "TASK_NOT_RUNNING", "Task is not running")

    if not await scheduler.abort_task(task_id):
        return error_response(500, "ABORT_FAILED", "Failed to abort task")

    task = await store_group.task_store.get_task(task_id)
    return task.model_dump(mode="json")


@router.post("/api/tasks/{task_id}/human-response")
async def send_human_response(
    task_id: str,
    body: HumanResponseRequest,
    scheduler=Depends(get_scheduler),
):
    follow_up = await scheduler.send_human_response(task_id, body.response)
    if follow_up is None:
        return error_response(
            400, "NOT_WAITING_FOR_INPUT", "Task is not waiting for input"
        )
    return {"success": True, "task": follow_up.model_dump(mode="json")}


@router.delete("/api/tasks/{task_id}")
async def delete_task(
    task_id: str,
    store_group=Depends(get_store_group),
    scheduler=Depends(get_scheduler),
):
    existing = await store_group.task_store.get_task(task_id)
    if existing is None:
        return _task_not_found(task_id)

    if existing.status == TaskStatus.RUNNING:
        await scheduler.abort_task(task_id)
    was_awaiting = scheduler.is_awaiting_input(task_id)
    scheduler.discard_task(task_id)
    await store_group.task_store.delete_task(task_id)
    log.info("task_deleted", task_id=task_id, session_id=existing.session_id)

    if existing.session_id and (was_awaiting or existing.location == TaskLocation.TODO):
        await scheduler.process_session(existing.session_id)
    return {"success": True}
