"""用量路由

GET  /api/usage: 聚合用量快照（账户 / 限流 / 超额 / 本地统计 / 运行成本）
POST /api/usage/refresh: 立即探测一次限流并返回最新快照
GET  /api/usage/agent-status: 外部 agent CLI 安装 / 登录状态
"""

from fastapi import APIRouter, Depends

from ..deps import get_local_files, get_usage_poller, get_usage_tracker

router = APIRouter()


@router.get("/api/usage")
async def get_usage(tracker=Depends(get_usage_tracker)):
    snapshot = await tracker.get_usage()
    return snapshot.model_dump(mode="json")


@router.post("/api/usage/refresh")
async def refresh_usage(
    tracker=Depends(get_usage_tracker),
    poller=Depends(get_usage_poller),
):
    """轮询被禁用时仅刷新本地文件"""
    if poller is not None:
        snapshot = await poller.refresh()
    else:
        snapshot = await tracker.get_usage()
    return snapshot.model_dump(mode="json")


@router.get("/api/usage/agent-status")
async def get_agent_status(local_files=Depends(get_local_files)):
    status = await local_files.agent_status()
    return status.model_dump(mode="json")
