"""TaskStore SQLite 实现

队列查询均按 task_order 正序；task_order 的作用域为 (session, location)，
项目级 backlog 的作用域为 (project, backlog)。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.enums import TaskLocation, TaskStatus
from ..models.task import Task

_COLUMNS = (
    "task_id, project_id, session_id, prompt, status, location, task_order, "
    "created_at, updated_at, started_at, completed_at"
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task, commit: bool = True) -> None:
        """创建任务记录"""
        await self._conn.execute(
            f"INSERT INTO tasks ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                task.task_id,
                task.project_id,
                task.session_id,
                task.prompt,
                task.status.value,
                task.location.value,
                task.task_order,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                task.started_at.isoformat() if task.started_at else None,
                task.completed_at.isoformat() if task.completed_at else None,
            ),
        )
        if commit:
            await self._conn.commit()

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_by_project(
        self,
        project_id: str,
        location: TaskLocation | None = None,
    ) -> list[Task]:
        """查询项目下的任务；location=backlog 时仅返回项目级 backlog"""
        if location == TaskLocation.BACKLOG:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM tasks
                WHERE project_id = ? AND location = 'backlog' AND session_id IS NULL
                ORDER BY task_order ASC
                """,
                (project_id,),
            )
        elif location is not None:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM tasks
                WHERE project_id = ? AND location = ?
                ORDER BY task_order ASC
                """,
                (project_id, location.value),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE project_id = ? ORDER BY task_order ASC",
                (project_id,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_by_session(
        self,
        session_id: str,
        location: TaskLocation | None = None,
    ) -> list[Task]:
        """查询 session 下的任务；done 按完成时间倒序，其余按 task_order 正序"""
        if location == TaskLocation.DONE:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM tasks
                WHERE session_id = ? AND location = 'done'
                ORDER BY completed_at DESC
                """,
                (session_id,),
            )
        elif location is not None:
            cursor = await self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM tasks
                WHERE session_id = ? AND location = ?
                ORDER BY task_order ASC
                """,
                (session_id, location.value),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE session_id = ? ORDER BY task_order ASC",
                (session_id,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def get_running_task(self, session_id: str) -> Task | None:
        """查询 session 中 status=running 的任务"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE session_id = ? AND status = 'running' LIMIT 1",
            (session_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_pending_todo(self, session_id: str) -> list[Task]:
        """session 待执行队列：location=todo 且 status=pending，按 task_order 正序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM tasks
            WHERE session_id = ? AND location = 'todo' AND status = 'pending'
            ORDER BY task_order ASC, created_at ASC
            """,
            (session_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def get_max_todo_order(self, session_id: str) -> int:
        """session todo 队列中最大 task_order，空队列返回 -1"""
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(task_order), -1) FROM tasks "
            "WHERE session_id = ? AND location = 'todo'",
            (session_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else -1

    async def get_max_backlog_order(self, project_id: str) -> int:
        """项目级 backlog 中最大 task_order，空时返回 -1"""
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(task_order), -1) FROM tasks "
            "WHERE project_id = ? AND location = 'backlog'",
            (project_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else -1

    async def mark_started(self, task_id: str) -> None:
        """标记任务开始执行"""
        now = _now()
        await self._conn.execute(
            """
            UPDATE tasks SET status = 'running', started_at = ?, updated_at = ?
            WHERE task_id = ?
            """,
            (now, now, task_id),
        )
        await self._conn.commit()

    async def mark_finished(
        self,
        task_id: str,
        status: TaskStatus,
        commit: bool = True,
    ) -> None:
        """标记任务结束：写入终态、移入 done、记录完成时间"""
        now = _now()
        await self._conn.execute(
            """
            UPDATE tasks
            SET status = ?, location = 'done', completed_at = ?, updated_at = ?
            WHERE task_id = ?
            """,
            (status.value, now, now, task_id),
        )
        if commit:
            await self._conn.commit()

    async def update_status(self, task_id: str, status: TaskStatus) -> None:
        await self._conn.execute(
            "UPDATE tasks SET status = ?, updated_at = ? WHERE task_id = ?",
            (status.value, _now(), task_id),
        )
        await self._conn.commit()

    async def update_prompt(self, task_id: str, prompt: str) -> None:
        await self._conn.execute(
            "UPDATE tasks SET prompt = ?, updated_at = ? WHERE task_id = ?",
            (prompt, _now(), task_id),
        )
        await self._conn.commit()

    async def update_order(self, task_id: str, task_order: int) -> None:
        await self._conn.execute(
            "UPDATE tasks SET task_order = ?, updated_at = ? WHERE task_id = ?",
            (task_order, _now(), task_id),
        )
        await self._conn.commit()

    async def move_task(
        self,
        task_id: str,
        location: TaskLocation,
        session_id: str | None,
        task_order: int,
    ) -> None:
        """移动任务到新的队列位置"""
        await self._conn.execute(
            """
            UPDATE tasks SET location = ?, session_id = ?, task_order = ?, updated_at = ?
            WHERE task_id = ?
            """,
            (location.value, session_id, task_order, _now(), task_id),
        )
        await self._conn.commit()

    async def delete_task(self, task_id: str) -> None:
        """删除任务（级联删除其事件）"""
        await self._conn.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))
        await self._conn.commit()

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row[0],
            project_id=row[1],
            session_id=row[2],
            prompt=row[3],
            status=TaskStatus(row[4]),
            location=TaskLocation(row[5]),
            task_order=row[6],
            created_at=datetime.fromisoformat(row[7]),
            updated_at=datetime.fromisoformat(row[8]),
            started_at=_parse_ts(row[9]),
            completed_at=_parse_ts(row[10]),
        )
