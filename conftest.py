"""全局 pytest 配置 -- 临时 SQLite 数据库 + 实体工厂 fixture"""

import asyncio
import inspect
import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from agentdeck.core.models import Project, Session, Task, TaskLocation
from agentdeck.core.store import StoreGroup, create_store_group

PROJECT_ID = "01JPROJ0000000000000000001"

_REPO_ROOT = Path(__file__).resolve().parent
_SRC_DIRS = (
    _REPO_ROOT / "packages" / "core" / "src",
    _REPO_ROOT / "packages" / "runner" / "src",
    _REPO_ROOT / "apps" / "gateway" / "src",
)


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from agentdeck.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def agent_pythonpath(monkeypatch):
    """让 echo agent 子进程可以导入 agentdeck（未安装时同样可用）"""
    paths = [str(p) for p in _SRC_DIRS]
    if existing := os.environ.get("PYTHONPATH"):
        paths.append(existing)
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(paths))


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """已初始化的 Store 实例组"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.conn.close()


def _make_project(project_id: str = PROJECT_ID, **overrides) -> Project:
    now = datetime.now(UTC)
    fields = {
        "project_id": project_id,
        "name": "demo",
        "root_directory": "/tmp/demo",
        "default_model": "claude-sonnet-4-20250514",
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Project(**fields)


def _make_session(session_id: str, project_id: str = PROJECT_ID, **overrides) -> Session:
    now = datetime.now(UTC)
    fields = {
        "session_id": session_id,
        "project_id": project_id,
        "name": f"session {session_id[-2:]}",
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Session(**fields)


def _make_task(
    task_id: str,
    session_id: str | None = None,
    project_id: str = PROJECT_ID,
    **overrides,
) -> Task:
    now = datetime.now(UTC)
    fields = {
        "task_id": task_id,
        "project_id": project_id,
        "session_id": session_id,
        "prompt": f"prompt {task_id[-2:]}",
        "location": TaskLocation.TODO if session_id else TaskLocation.BACKLOG,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Task(**fields)


@pytest_asyncio.fixture
async def project(store_group: StoreGroup) -> Project:
    """已落盘的测试项目"""
    project = _make_project()
    await store_group.project_store.create_project(project)
    return project


@pytest.fixture
def make_project():
    """Project 工厂"""
    return _make_project


@pytest.fixture
def make_session():
    """Session 工厂"""
    return _make_session


@pytest.fixture
def make_task():
    """Task 工厂"""
    return _make_task


@pytest.fixture
def wait_until():
    """轮询等待条件成立（支持同步 / 异步谓词），超时抛 AssertionError"""

    async def _wait(predicate, timeout: float = 5.0, interval: float = 0.02):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            result = predicate()
            if inspect.isawaitable(result):
                result = await result
            if result:
                return result
            if loop.time() > deadline:
                raise AssertionError(f"condition not met within {timeout}s")
            await asyncio.sleep(interval)

    return _wait
