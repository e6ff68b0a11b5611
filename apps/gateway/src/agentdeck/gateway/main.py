"""FastAPI 应用主文件

app 创建 + lifespan 管理：
启动时初始化 Store、通知广播、执行器、用量组件与调度器；
关闭时停止用量轮询、中止运行中的进程、关闭数据库连接。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from agentdeck.core.config import get_db_path
from agentdeck.core.models import NotificationType, UsageSnapshot
from agentdeck.core.store import create_store_group
from agentdeck.runner import (
    LocalFileReader,
    TaskExecutor,
    UsagePoller,
    UsageTracker,
    load_runner_config,
)
from fastapi import FastAPI

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, projects, sessions, stream, tasks, usage
from .services.notification_hub import NotificationHub
from .services.scheduler import SessionScheduler

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    hub = NotificationHub()
    app.state.hub = hub

    runner_config = load_runner_config()
    app.state.runner_config = runner_config

    executor = TaskExecutor.from_config(runner_config)
    app.state.executor = executor

    local_files = LocalFileReader(runner_config.claude_home, agent_bin=runner_config.agent_bin)
    tracker = UsageTracker(local_files)
    app.state.local_files = local_files
    app.state.usage_tracker = tracker

    scheduler = SessionScheduler(
        store_group,
        executor,
        hub=hub,
        tracker=tracker,
        task_delay=runner_config.task_delay_ms / 1000,
    )
    app.state.scheduler = scheduler

    async def broadcast_usage(snapshot: UsageSnapshot) -> None:
        await hub.publish(NotificationType.USAGE_UPDATED, snapshot.model_dump(mode="json"))

    poller = None
    if runner_config.usage_polling_enabled:
        poller = UsagePoller.from_config(
            runner_config, tracker, local_files, on_update=broadcast_usage
        )
        poller.start()
    app.state.usage_poller = poller

    log.info(
        "gateway_started",
        agent_mode=runner_config.agent_mode,
        agent_command=list(executor.command),
        usage_polling=runner_config.usage_polling_enabled,
    )

    yield

    if poller is not None:
        await poller.stop()
    await scheduler.aclose()
    await store_group.conn.close()
    log.info("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="AgentDeck Gateway",
        version="0.1.0",
        description="AgentDeck 会话调度 / 任务执行 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire()

    app.include_router(projects.router, tags=["projects"])
    app.include_router(sessions.router, tags=["sessions"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(usage.router, tags=["usage"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
