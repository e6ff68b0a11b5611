"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、agent 可执行文件、执行器运行数。
"""

import shutil

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性（失败时 503）
    2. agent_binary: agent 可执行文件是否可发现（缺失仅提示，不影响就绪）
    3. running_tasks: 执行器当前运行的任务数
    """
    checks = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. agent 可执行文件
    runner_config = request.app.state.runner_config
    if runner_config.agent_mode == "echo":
        checks["agent_binary"] = "echo"
    else:
        checks["agent_binary"] = "ok" if shutil.which(runner_config.agent_bin) else "missing"

    # 3. 执行器状态
    checks["running_tasks"] = len(request.app.state.executor.get_running_task_ids())

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
