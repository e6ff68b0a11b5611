"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、默认模型、SSE 心跳间隔等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("AGENTDECK_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "AGENTDECK_DB_PATH",
        str(_get_base_dir() / "sqlite" / "agentdeck.db"),
    )


def get_default_model() -> str:
    """新建 Project 未指定模型时使用的默认模型"""
    return os.environ.get("AGENTDECK_DEFAULT_MODEL", "claude-sonnet-4-20250514")


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("AGENTDECK_SSE_HEARTBEAT_INTERVAL", "15")
)

# 用量快照中保留的最近任务成本条数
RECENT_TASKS_LIMIT: int = 50

# Prompt 日志预览截断长度
PROMPT_PREVIEW_LENGTH: int = 80
