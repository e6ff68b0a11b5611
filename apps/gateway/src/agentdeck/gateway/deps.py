"""依赖注入模块 -- 通过 FastAPI Depends 注入共享组件

所有实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from agentdeck.core.store import StoreGroup
from agentdeck.runner import LocalFileReader, TaskExecutor, UsagePoller, UsageTracker
from fastapi import Request
from starlette.responses import JSONResponse

from .services.notification_hub import NotificationHub
from .services.scheduler import SessionScheduler


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_scheduler(request: Request) -> SessionScheduler:
    return request.app.state.scheduler


def get_executor(request: Request) -> TaskExecutor:
    return request.app.state.executor


def get_usage_tracker(request: Request) -> UsageTracker:
    return request.app.state.usage_tracker


def get_usage_poller(request: Request) -> UsagePoller | None:
    """用量轮询被禁用时为 None"""
    return request.app.state.usage_poller


def get_local_files(request: Request) -> LocalFileReader:
    return request.app.state.local_files


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """统一错误响应：{"error": {"code", "message"}}"""
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )
