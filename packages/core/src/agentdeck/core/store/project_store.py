"""ProjectStore SQLite 实现

写操作默认立即提交；传入 commit=False 时由调用方管理事务。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.enums import PermissionLevel
from ..models.project import Project

_COLUMNS = (
    "project_id, name, root_directory, default_model, permission_level, "
    "created_at, updated_at"
)


class SqliteProjectStore:
    """ProjectStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_project(self, project: Project, commit: bool = True) -> None:
        """创建项目记录"""
        await self._conn.execute(
            f"INSERT INTO projects ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                project.project_id,
                project.name,
                project.root_directory,
                project.default_model,
                project.permission_level.value,
                project.created_at.isoformat(),
                project.updated_at.isoformat(),
            ),
        )
        if commit:
            await self._conn.commit()

    async def get_project(self, project_id: str) -> Project | None:
        """根据 project_id 查询项目"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM projects WHERE project_id = ?",
            (project_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_project(row)

    async def list_projects(self) -> list[Project]:
        """查询所有项目，按 created_at 倒序"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM projects ORDER BY created_at DESC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_project(row) for row in rows]

    async def update_project(
        self,
        project_id: str,
        *,
        name: str | None = None,
        root_directory: str | None = None,
        default_model: str | None = None,
        permission_level: PermissionLevel | None = None,
    ) -> None:
        """更新项目字段，None 表示保持原值"""
        await self._conn.execute(
            """
            UPDATE projects
            SET name = COALESCE(?, name),
                root_directory = COALESCE(?, root_directory),
                default_model = COALESCE(?, default_model),
                permission_level = COALESCE(?, permission_level),
                updated_at = ?
            WHERE project_id = ?
            """,
            (
                name,
                root_directory,
                default_model,
                permission_level.value if permission_level else None,
                datetime.now(UTC).isoformat(),
                project_id,
            ),
        )
        await self._conn.commit()

    async def delete_project(self, project_id: str) -> None:
        """删除项目（级联删除其 sessions / tasks / events）"""
        await self._conn.execute(
            "DELETE FROM projects WHERE project_id = ?",
            (project_id,),
        )
        await self._conn.commit()

    @staticmethod
    def _row_to_project(row: aiosqlite.Row) -> Project:
        """将数据库行转换为 Project 模型"""
        return Project(
            project_id=row[0],
            name=row[1],
            root_directory=row[2],
            default_model=row[3],
            permission_level=PermissionLevel(row[4]),
            created_at=datetime.fromisoformat(row[5]),
            updated_at=datetime.fromisoformat(row[6]),
        )
