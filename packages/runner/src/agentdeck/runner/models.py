"""数据模型 -- ExecutionOptions + 回调接口

ExecutionCallbacks 是执行器与调度器之间的四回调契约，
以 Protocol 形式定义，测试中可替换为任意实现。
"""

from typing import Any, Protocol

from agentdeck.core.models import PermissionLevel
from pydantic import BaseModel, Field


class ExecutionOptions(BaseModel):
    """单个任务的执行参数"""

    prompt: str = Field(description="交给 agent 的 prompt")
    model: str | None = Field(default=None, description="模型标识，None 表示 agent 默认")
    working_directory: str = Field(description="进程工作目录")
    permission_level: PermissionLevel = Field(
        default=PermissionLevel.DEFAULT,
        description="权限策略，full 时跳过 agent 的权限确认",
    )
    resume_token: str | None = Field(
        default=None,
        description="续接已有 agent 会话的标识",
    )


class CompletionInfo(BaseModel):
    """进程以退出码 0 结束"""

    exit_code: int = 0
    resume_token: str | None = None


class FailureInfo(BaseModel):
    """进程失败 / 被中止 / 无法启动"""

    exit_code: int | None = Field(default=None, description="退出码，信号终止时为 None")
    error: str | None = Field(default=None, description="错误描述")
    aborted: bool = Field(default=False, description="是否为协作式中止")
    resume_token: str | None = None


class ExecutionCallbacks(Protocol):
    """执行器回调接口

    on_data / on_human_input 按 agent 写出的顺序投递；
    on_complete / on_error 每个任务恰好触发其一，且只触发一次。
    """

    async def on_data(self, event: dict[str, Any]) -> None: ...

    async def on_complete(self, info: CompletionInfo) -> None: ...

    async def on_error(self, info: FailureInfo) -> None: ...

    async def on_human_input(self, event: dict[str, Any]) -> None: ...
