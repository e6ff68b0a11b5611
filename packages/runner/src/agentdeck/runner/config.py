"""RunnerConfig -- 执行器 / 调度 / 用量轮询配置加载

从环境变量加载配置，非法数值记录警告后回退默认值，不阻塞启动。
"""

import os
import sys
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()

# echo 模式下代替外部 CLI 的内置模块
ECHO_AGENT_MODULE = "agentdeck.runner.echo_agent"


class RunnerConfig(BaseModel):
    """Runner 包配置 -- 从环境变量加载

    环境变量:
        AGENTDECK_AGENT_MODE: agent 运行模式（claude/echo）
        AGENTDECK_AGENT_BIN: 外部 CLI 可执行文件（默认 claude）
        AGENTDECK_POLL_INTERVAL_MS: 输出文件轮询间隔
        AGENTDECK_SAFETY_TIMEOUT_S: 无输出提示的等待时间
        AGENTDECK_TASK_DELAY_MS: 任务结束到下一次调度的延迟
        AGENTDECK_USAGE_POLL_S / AGENTDECK_USAGE_BACKOFF_S: 用量轮询间隔 / 退避间隔
        AGENTDECK_TOKEN_BACKOFF_THRESHOLD: 连续凭证失败多少次后退避
        AGENTDECK_USAGE_POLLING: 是否启用用量轮询
        AGENTDECK_CLAUDE_HOME: agent 本地数据目录（默认 ~/.claude）
    """

    agent_mode: Literal["claude", "echo"] = Field(
        default="claude",
        description="agent 运行模式：claude / echo",
    )
    agent_bin: str = Field(default="claude", description="外部 CLI 可执行文件")
    poll_interval_ms: int = Field(default=150, ge=10, description="输出文件轮询间隔（毫秒）")
    safety_timeout_s: float = Field(default=30.0, gt=0, description="无输出提示等待时间（秒）")
    task_delay_ms: int = Field(default=500, ge=0, description="两次调度之间的延迟（毫秒）")
    usage_poll_s: float = Field(default=30.0, gt=0, description="用量轮询间隔（秒）")
    usage_backoff_s: float = Field(default=120.0, gt=0, description="退避后的轮询间隔（秒）")
    usage_initial_delay_s: float = Field(default=3.0, ge=0, description="首次轮询延迟（秒）")
    token_backoff_threshold: int = Field(default=3, ge=1, description="进入退避的连续失败次数")
    usage_polling_enabled: bool = Field(default=True, description="是否启用用量轮询")
    probe_timeout_s: float = Field(default=15.0, gt=0, description="用量探测请求超时（秒）")
    usage_api_url: str = Field(
        default="https://api.anthropic.com/v1/messages",
        description="用量探测端点",
    )
    claude_home: Path = Field(
        default_factory=lambda: Path.home() / ".claude",
        description="agent 本地数据目录（凭证 / 统计缓存）",
    )

    def agent_command(self) -> tuple[str, ...]:
        """返回启动 agent 的命令前缀（不含参数）"""
        if self.agent_mode == "echo":
            return (sys.executable, "-m", ECHO_AGENT_MODULE)
        return (self.agent_bin,)


_INT_ENV = {
    "AGENTDECK_POLL_INTERVAL_MS": "poll_interval_ms",
    "AGENTDECK_TASK_DELAY_MS": "task_delay_ms",
    "AGENTDECK_TOKEN_BACKOFF_THRESHOLD": "token_backoff_threshold",
}

_FLOAT_ENV = {
    "AGENTDECK_SAFETY_TIMEOUT_S": "safety_timeout_s",
    "AGENTDECK_USAGE_POLL_S": "usage_poll_s",
    "AGENTDECK_USAGE_BACKOFF_S": "usage_backoff_s",
}


def load_runner_config() -> RunnerConfig:
    """从环境变量加载 Runner 配置

    Returns:
        RunnerConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("AGENTDECK_AGENT_MODE"):
        kwargs["agent_mode"] = val

    if val := os.environ.get("AGENTDECK_AGENT_BIN"):
        kwargs["agent_bin"] = val

    if val := os.environ.get("AGENTDECK_CLAUDE_HOME"):
        kwargs["claude_home"] = Path(val).expanduser()

    if val := os.environ.get("AGENTDECK_USAGE_POLLING"):
        kwargs["usage_polling_enabled"] = val.lower() not in ("0", "false", "no", "off")

    for env_var, field in _INT_ENV.items():
        if val := os.environ.get(env_var):
            try:
                kwargs[field] = int(val)
            except ValueError:
                log.warning("invalid_runner_config", env_var=env_var, value=val)

    for env_var, field in _FLOAT_ENV.items():
        if val := os.environ.get(env_var):
            try:
                kwargs[field] = float(val)
            except ValueError:
                log.warning("invalid_runner_config", env_var=env_var, value=val)

    return RunnerConfig(**kwargs)
