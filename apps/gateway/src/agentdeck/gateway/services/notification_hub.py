"""NotificationHub -- 内存中通知广播器

每个订阅者持有一个 asyncio.Queue，所有通知向全部订阅者扇出。
队列已满的订阅者视为失效并移除，不阻塞发布方。
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

from agentdeck.core.models import NotificationType
from pydantic import BaseModel, Field
from ulid import ULID


class Notification(BaseModel):
    """单条广播通知，data 携带受影响实体的当前持久化状态"""

    notification_id: str = Field(default_factory=lambda: str(ULID()))
    type: NotificationType
    ts: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationHub:
    """通知广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 256) -> None:
        self._subscribers: set[asyncio.Queue] = set()
        self._queue_maxsize = queue_maxsize

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> asyncio.Queue:
        """订阅全部通知

        Returns:
            asyncio.Queue 实例，新通知会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers.add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    async def publish(
        self,
        notification_type: NotificationType,
        data: dict[str, Any],
    ) -> Notification:
        """向所有订阅者广播通知

        Args:
            notification_type: 通知名称
            data: 通知内容（JSON 可序列化）
        """
        notification = Notification(type=notification_type, data=data)

        dead_queues = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(notification)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for q in dead_queues:
            self._subscribers.discard(q)
        return notification
