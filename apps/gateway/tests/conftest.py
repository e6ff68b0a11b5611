"""apps/gateway 测试配置 -- 带 lifespan 的 FastAPI app + 可控执行器"""

import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from agentdeck.gateway.services.notification_hub import Notification, NotificationHub
from agentdeck.gateway.services.scheduler import SessionScheduler
from agentdeck.runner import (
    CompletionInfo,
    ExecutionOptions,
    FailureInfo,
    TaskAlreadyRunningError,
    UsageTracker,
)
from httpx import ASGITransport, AsyncClient


class FakeExecutor:
    """内存执行器：记录启动的任务，由测试决定何时完成 / 失败"""

    def __init__(self) -> None:
        self.started: dict[str, tuple[ExecutionOptions, Any]] = {}
        self.running: set[str] = set()
        self.aborted: list[str] = []
        self.closed = False

    def is_running(self, task_id: str) -> bool:
        return task_id in self.running

    def has_running_tasks(self) -> bool:
        return bool(self.running)

    def get_running_task_ids(self) -> list[str]:
        return list(self.running)

    async def execute_task(self, task_id: str, options: ExecutionOptions, callbacks) -> None:
        if task_id in self.running:
            raise TaskAlreadyRunningError(task_id)
        self.running.add(task_id)
        self.started[task_id] = (options, callbacks)

    def abort(self, task_id: str) -> bool:
        if task_id not in self.running:
            return False
        self.running.discard(task_id)
        self.aborted.append(task_id)
        return True

    async def aclose(self) -> None:
        self.closed = True
        self.running.clear()

    def callbacks(self, task_id: str):
        return self.started[task_id][1]

    async def emit(self, task_id: str, event: dict[str, Any]) -> None:
        await self.callbacks(task_id).on_data(event)

    async def complete(
        self,
        task_id: str,
        result_text: str | None = None,
        resume_token: str | None = None,
    ) -> None:
        """模拟进程正常退出；提供 result_text 时先投递 result 事件"""
        if result_text is not None:
            await self.emit(
                task_id, {"type": "result", "subtype": "success", "result": result_text}
            )
        self.running.discard(task_id)
        await self.callbacks(task_id).on_complete(
            CompletionInfo(exit_code=0, resume_token=resume_token)
        )

    async def fail(self, task_id: str, exit_code: int | None = 1, error: str | None = None) -> None:
        self.running.discard(task_id)
        await self.callbacks(task_id).on_error(FailureInfo(exit_code=exit_code, error=error))


class NotificationRecorder:
    """订阅 hub 并收集通知"""

    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue
        self.items: list[Notification] = []

    def drain(self) -> list[Notification]:
        while not self._queue.empty():
            self.items.append(self._queue.get_nowait())
        return self.items

    def types(self) -> list[str]:
        return [n.type.value for n in self.drain()]

    def of_type(self, notification_type: str) -> list[Notification]:
        return [n for n in self.drain() if n.type.value == notification_type]


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


@pytest_asyncio.fixture
async def notifications(hub: NotificationHub) -> NotificationRecorder:
    return NotificationRecorder(await hub.subscribe())


@pytest_asyncio.fixture
async def scheduler(store_group, fake_executor, hub) -> AsyncGenerator[SessionScheduler, None]:
    """零延迟调度器，执行器为 FakeExecutor"""
    scheduler = SessionScheduler(
        store_group,
        fake_executor,
        hub=hub,
        tracker=UsageTracker(),
        task_delay=0,
        human_response_delay=0,
    )
    yield scheduler
    await scheduler.aclose()


@pytest_asyncio.fixture
async def app(tmp_path: Path, monkeypatch, agent_pythonpath):
    """创建测试用 FastAPI app 实例并运行 lifespan（echo 模式，关闭用量轮询）"""
    claude_home = tmp_path / "claude-home"
    claude_home.mkdir()
    monkeypatch.setenv("AGENTDECK_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("AGENTDECK_AGENT_MODE", "echo")
    monkeypatch.setenv("AGENTDECK_AGENT_BIN", "agentdeck-missing-agent-bin")
    monkeypatch.setenv("AGENTDECK_USAGE_POLLING", "false")
    monkeypatch.setenv("AGENTDECK_TASK_DELAY_MS", "50")
    monkeypatch.setenv("AGENTDECK_POLL_INTERVAL_MS", "50")
    monkeypatch.setenv("AGENTDECK_CLAUDE_HOME", str(claude_home))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    (tmp_path / "sqlite").mkdir()

    from agentdeck.gateway.main import create_app

    application = create_app()
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def api_project(client) -> dict:
    """通过 API 创建的项目"""
    resp = await client.post(
        "/api/projects",
        json={"name": "demo", "root_directory": "/tmp"},
    )
    assert resp.status_code == 201
    return resp.json()
