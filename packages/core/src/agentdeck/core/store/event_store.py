"""EventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
task_seq 同一 task 内严格单调递增。
"""

import json
from datetime import UTC, datetime
from typing import Any

import aiosqlite
from ulid import ULID

from ..models.enums import TERMINAL_EVENT_TYPES
from ..models.event import TaskEvent


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_event(
        self,
        task_id: str,
        event_type: str,
        payload: dict[str, Any],
        commit: bool = True,
    ) -> TaskEvent:
        """追加事件（append-only）

        task_seq 在同一条 INSERT 内计算（MAX+1），不会与并发写入冲突。
        """
        event_id = str(ULID())
        ts = datetime.now(UTC)
        await self._conn.execute(
            """
            INSERT INTO task_events (event_id, task_id, task_seq, event_type, payload, ts)
            SELECT ?, ?, COALESCE(MAX(task_seq), 0) + 1, ?, ?, ?
            FROM task_events WHERE task_id = ?
            """,
            (
                event_id,
                task_id,
                event_type,
                json.dumps(payload, ensure_ascii=False),
                ts.isoformat(),
                task_id,
            ),
        )
        if commit:
            await self._conn.commit()

        cursor = await self._conn.execute(
            "SELECT task_seq FROM task_events WHERE event_id = ?",
            (event_id,),
        )
        row = await cursor.fetchone()
        return TaskEvent(
            event_id=event_id,
            task_id=task_id,
            task_seq=row[0],
            ts=ts,
            event_type=event_type,
            payload=payload,
        )

    async def get_events_for_task(self, task_id: str) -> list[TaskEvent]:
        """查询指定任务的所有事件，按 task_seq 正序"""
        cursor = await self._conn.execute(
            """
            SELECT event_id, task_id, task_seq, event_type, payload, ts
            FROM task_events WHERE task_id = ? ORDER BY task_seq ASC
            """,
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def has_terminal_event(self, task_id: str) -> bool:
        """任务事件日志中是否已有终止标记（result / error / aborted）"""
        placeholders = ", ".join("?" for _ in TERMINAL_EVENT_TYPES)
        cursor = await self._conn.execute(
            f"""
            SELECT 1 FROM task_events
            WHERE task_id = ? AND event_type IN ({placeholders})
            LIMIT 1
            """,
            (task_id, *sorted(TERMINAL_EVENT_TYPES)),
        )
        row = await cursor.fetchone()
        return row is not None

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> TaskEvent:
        """将数据库行转换为 TaskEvent 模型"""
        payload = json.loads(row[4]) if row[4] else {}
        return TaskEvent(
            event_id=row[0],
            task_id=row[1],
            task_seq=row[2],
            event_type=row[3],
            payload=payload,
            ts=datetime.fromisoformat(row[5]),
        )
