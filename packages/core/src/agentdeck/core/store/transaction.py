"""终态事件 + 任务状态原子事务封装

在同一 SQLite 事务内提交终止标记事件和任务状态更新，
保证日志中"恰好一条终止标记"与任务终态同时落盘。
"""

from typing import Any

import aiosqlite

from ..models.enums import TaskStatus
from ..models.event import TaskEvent
from .event_store import SqliteEventStore
from .task_store import SqliteTaskStore


async def finish_task_with_event(
    conn: aiosqlite.Connection,
    event_store: SqliteEventStore,
    task_store: SqliteTaskStore,
    task_id: str,
    status: TaskStatus,
    event_type: str,
    payload: dict[str, Any],
) -> TaskEvent | None:
    """原子地把任务推进到终态，日志中尚无终止标记时补写一条

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        event_store: EventStore 实例
        task_store: TaskStore 实例
        task_id: 任务 ID
        status: 目标终态
        event_type: 终止标记类型（error / aborted / result）
        payload: 终止标记 payload

    Returns:
        新写入的事件；日志已有终止标记时返回 None

    Raises:
        Exception: 如果事务提交失败，自动回滚
    """
    try:
        event = None
        if not await event_store.has_terminal_event(task_id):
            event = await event_store.append_event(
                task_id, event_type, payload, commit=False
            )
        await task_store.mark_finished(task_id, status, commit=False)

        # 原子提交
        await conn.commit()
        return event
    except Exception:
        await conn.rollback()
        raise
