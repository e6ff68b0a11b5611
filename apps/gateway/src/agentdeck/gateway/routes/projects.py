"""项目路由

GET    /api/projects: 项目列表
POST   /api/projects: 创建项目（name + root_directory 必填）
GET    /api/projects/{project_id}: 项目详情
PUT    /api/projects/{project_id}: 更新项目
DELETE /api/projects/{project_id}: 删除项目（级联删除 sessions / tasks）
"""

from datetime import UTC, datetime

import structlog
from agentdeck.core.config import get_default_model
from agentdeck.core.models import PermissionLevel, Project
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse
from ulid import ULID

from ..deps import error_response, get_scheduler, get_store_group

log = structlog.get_logger()

router = APIRouter()


class ProjectCreateRequest(BaseModel):
    """创建项目请求体"""

    name: str = Field(min_length=1, description="显示名称")
    root_directory: str = Field(min_length=1, description="agent 工作目录")
    default_model: str | None = Field(default=None, description="默认模型")
    permission_level: PermissionLevel = Field(default=PermissionLevel.DEFAULT)


class ProjectUpdateRequest(BaseModel):
    """更新项目请求体，未提供的字段保持原值"""

    name: str | None = None
    root_directory: str | None = None
    default_model: str | None = None
    permission_level: PermissionLevel | None = None


def _project_not_found(project_id: str) -> JSONResponse:
    return error_response(
        404, "PROJECT_NOT_FOUND", f"Project with id {project_id} does not exist"
    )


@router.get("/api/projects")
async def list_projects(store_group=Depends(get_store_group)):
    projects = await store_group.project_store.list_projects()
    return [p.model_dump(mode="json") for p in projects]


@router.post("/api/projects")
async def create_project(
    body: ProjectCreateRequest,
    store_group=Depends(get_store_group),
):
    """创建项目，未指定模型时使用配置的默认模型"""
    now = datetime.now(UTC)
    project = Project(
        project_id=str(ULID()),
        name=body.name,
        root_directory=body.root_directory,
        default_model=body.default_model or get_default_model(),
        permission_level=body.permission_level,
        created_at=now,
        updated_at=now,
    )
    await store_group.project_store.create_project(project)
    log.info("project_created", project_id=project.project_id, name=project.name)
    return JSONResponse(status_code=201, content=project.model_dump(mode="json"))


@router.get("/api/projects/{project_id}")
async def get_project(project_id: str, store_group=Depends(get_store_group)):
    project = await store_group.project_store.get_project(project_id)
    if project is None:
        return _project_not_found(project_id)
    return project.model_dump(mode="json")


@router.put("/api/projects/{project_id}")
async def update_project(
    project_id: str,
    body: ProjectUpdateRequest,
    store_group=Depends(get_store_group),
):
    if await store_group.project_store.get_project(project_id) is None:
        return _project_not_found(project_id)

    await store_group.project_store.update_project(
        project_id,
        name=body.name or None,
        root_directory=body.root_directory or None,
        default_model=body.default_model or None,
        permission_level=body.permission_level,
    )
    project = await store_group.project_store.get_project(project_id)
    return project.model_dump(mode="json")


@router.delete("/api/projects/{project_id}")
async def delete_project(
    project_id: str,
    store_group=Depends(get_store_group),
    scheduler=Depends(get_scheduler),
):
    """删除项目；其下仍在执行的任务先中止"""
    if await store_group.project_store.get_project(project_id) is None:
        return _project_not_found(project_id)

    for session in await store_group.session_store.list_sessions(project_id):
        running_task_id = scheduler.get_running_task_for_session(session.session_id)
        if running_task_id:
            await scheduler.abort_task(running_task_id)

    await store_group.project_store.delete_project(project_id)
    log.info("project_deleted", project_id=project_id)
    return {"success": True}
