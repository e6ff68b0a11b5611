"""TraceMiddleware -- 实体级日志上下文

从 /api/tasks/{task_id}/... 与 /api/sessions/{session_id}/... 路径中提取实体 ID，
绑定 task_id / session_id 与 trace_id，贯穿该请求触发的调度日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# 路径段 -> contextvars 键
_ENTITY_SEGMENTS = {"tasks": "task_id", "sessions": "session_id", "projects": "project_id"}

# 集合级子路由，不是实体 ID
_COLLECTION_ACTIONS = frozenset({"reorder"})

ULID_LENGTH = 26


def extract_entity(path: str) -> tuple[str, str] | None:
    """返回 (contextvars 键, 实体 ID)，路径不含实体时返回 None"""
    parts = [p for p in path.split("/") if p]
    for i, part in enumerate(parts[:-1]):
        key = _ENTITY_SEGMENTS.get(part)
        if key is None:
            continue
        entity_id = parts[i + 1]
        if entity_id in _COLLECTION_ACTIONS or len(entity_id) != ULID_LENGTH:
            return None
        return key, entity_id
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """实体追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        entity = extract_entity(request.url.path)
        if entity is not None:
            key, entity_id = entity
            structlog.contextvars.bind_contextvars(
                **{key: entity_id, "trace_id": f"trace-{entity_id}"}
            )
        return await call_next(request)
