"""SSE 通知流路由

GET /api/stream: 实时推送所有通知（任务 / session / 用量），心跳保活。
可选 session_id 过滤，仅推送该 session 相关的任务与 session 通知（用量通知始终推送）。
"""

import asyncio
import json

from agentdeck.core.config import SSE_HEARTBEAT_INTERVAL
from agentdeck.core.models import NotificationType
from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from ..deps import get_hub
from ..services.notification_hub import Notification

router = APIRouter()


def _matches_session(notification: Notification, session_id: str | None) -> bool:
    if session_id is None or notification.type == NotificationType.USAGE_UPDATED:
        return True
    return notification.data.get("session_id") == session_id


def _notification_to_sse(notification: Notification) -> dict:
    return {
        "id": notification.notification_id,
        "event": notification.type.value,
        "data": json.dumps(
            {
                "type": notification.type.value,
                "ts": notification.ts.isoformat(),
                "data": notification.data,
            },
            ensure_ascii=False,
        ),
    }


@router.get("/api/stream")
async def stream_notifications(
    session_id: str | None = Query(default=None, description="仅推送指定 session 的通知"),
    hub=Depends(get_hub),
):
    """SSE 通知流端点"""
    queue = await hub.subscribe()

    async def event_generator():
        try:
            while True:
                try:
                    # 等待新通知（带心跳超时）
                    notification = await asyncio.wait_for(
                        queue.get(), timeout=SSE_HEARTBEAT_INTERVAL
                    )
                except TimeoutError:
                    yield {"comment": "heartbeat"}
                    continue
                if _matches_session(notification, session_id):
                    yield _notification_to_sse(notification)
        finally:
            await hub.unsubscribe(queue)

    return EventSourceResponse(event_generator())
