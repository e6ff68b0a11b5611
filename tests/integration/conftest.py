"""集成测试共享 fixture -- echo agent 子进程 + 完整 lifespan"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path, monkeypatch, agent_pythonpath):
    """集成测试用 FastAPI app（echo 模式，关闭用量轮询）"""
    claude_home = tmp_path / "claude-home"
    claude_home.mkdir()
    (tmp_path / "sqlite").mkdir()
    monkeypatch.setenv("AGENTDECK_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("AGENTDECK_AGENT_MODE", "echo")
    monkeypatch.setenv("AGENTDECK_USAGE_POLLING", "false")
    monkeypatch.setenv("AGENTDECK_TASK_DELAY_MS", "50")
    monkeypatch.setenv("AGENTDECK_POLL_INTERVAL_MS", "50")
    monkeypatch.setenv("AGENTDECK_CLAUDE_HOME", str(claude_home))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")

    from agentdeck.gateway.main import create_app

    app = create_app()
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def workspace_project(client, tmp_path: Path) -> dict:
    """工作目录指向临时目录的项目"""
    workdir = tmp_path / "workspace"
    workdir.mkdir()
    resp = await client.post(
        "/api/projects",
        json={"name": "integration", "root_directory": str(workdir)},
    )
    assert resp.status_code == 201
    return resp.json()
