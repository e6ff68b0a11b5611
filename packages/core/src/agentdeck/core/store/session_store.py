"""SessionStore SQLite 实现

next_session_id 构成单向链，每个 session 至多一条入边：
设置指针前先清除其他指向同一目标的指针。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.enums import SessionStatus
from ..models.project import Session

_COLUMNS = (
    "session_id, project_id, name, model, status, session_order, resume_token, "
    "next_session_id, is_active, created_at, updated_at"
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


class SqliteSessionStore:
    """SessionStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_session(self, session: Session, commit: bool = True) -> None:
        """创建 session 记录"""
        await self._conn.execute(
            f"INSERT INTO sessions ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                session.session_id,
                session.project_id,
                session.name,
                session.model,
                session.status.value,
                session.session_order,
                session.resume_token,
                session.next_session_id,
                int(session.is_active),
                session.created_at.isoformat(),
                session.updated_at.isoformat(),
            ),
        )
        if commit:
            await self._conn.commit()

    async def get_session(self, session_id: str) -> Session | None:
        """根据 session_id 查询"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM sessions WHERE session_id = ?",
            (session_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    async def list_sessions(self, project_id: str) -> list[Session]:
        """查询项目下所有 session，按 session_order 正序"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM sessions WHERE project_id = ? ORDER BY session_order ASC",
            (project_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    async def get_max_order(self, project_id: str) -> int:
        """项目内最大 session_order，无 session 时返回 -1"""
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(session_order), -1) FROM sessions WHERE project_id = ?",
            (project_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else -1

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        await self._update(session_id, "status", status.value)

    async def update_resume_token(self, session_id: str, resume_token: str) -> None:
        await self._update(session_id, "resume_token", resume_token)

    async def update_active(self, session_id: str, is_active: bool) -> None:
        await self._update(session_id, "is_active", int(is_active))

    async def update_name(self, session_id: str, name: str) -> None:
        await self._update(session_id, "name", name)

    async def update_model(self, session_id: str, model: str | None) -> None:
        await self._update(session_id, "model", model)

    async def update_order(self, session_id: str, session_order: int) -> None:
        await self._update(session_id, "session_order", session_order)

    async def update_next_session(
        self,
        session_id: str,
        next_session_id: str | None,
    ) -> None:
        """设置链式指针；非 None 时先清除其他指向该目标的指针（1:1 链）"""
        if next_session_id:
            await self._conn.execute(
                "UPDATE sessions SET next_session_id = NULL WHERE next_session_id = ?",
                (next_session_id,),
            )
        await self._update(session_id, "next_session_id", next_session_id)

    async def delete_session(self, session_id: str) -> None:
        """删除 session，并清除指向它的链式指针"""
        await self._conn.execute(
            "UPDATE sessions SET next_session_id = NULL WHERE next_session_id = ?",
            (session_id,),
        )
        await self._conn.execute(
            "DELETE FROM sessions WHERE session_id = ?",
            (session_id,),
        )
        await self._conn.commit()

    async def _update(self, session_id: str, column: str, value) -> None:
        # column 仅来自本类内部常量
        await self._conn.execute(
            f"UPDATE sessions SET {column} = ?, updated_at = ? WHERE session_id = ?",
            (value, _now(), session_id),
        )
        await self._conn.commit()

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> Session:
        """将数据库行转换为 Session 模型"""
        return Session(
            session_id=row[0],
            project_id=row[1],
            name=row[2],
            model=row[3],
            status=SessionStatus(row[4]),
            session_order=row[5],
            resume_token=row[6],
            next_session_id=row[7],
            is_active=bool(row[8]),
            created_at=datetime.fromisoformat(row[9]),
            updated_at=datetime.fromisoformat(row[10]),
        )
