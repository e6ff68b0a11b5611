"""系统自身写入的事件 payload 定义

外部 agent 产生的事件 payload 原样存储（opaque dict），
此处仅定义由调度器 / 执行器合成的事件结构。
"""

from typing import Literal

from pydantic import BaseModel, Field


class TaskStartedPayload(BaseModel):
    """任务启动时写入的初始 system 事件"""

    type: Literal["task_started"] = "task_started"
    prompt: str
    model: str | None = Field(default=None, description="本次执行使用的模型")


class ResultPayload(BaseModel):
    """合成的 result 事件 -- 输出中没有结构化 result 时补齐终止标记"""

    type: Literal["result"] = "result"
    subtype: Literal["success", "error"]
    result: str


class ErrorPayload(BaseModel):
    """error 事件 payload"""

    type: Literal["error"] = "error"
    text: str = Field(description="错误描述")
    exit_code: int | None = Field(default=None, description="进程退出码")


class AbortedPayload(BaseModel):
    """aborted 事件 payload"""

    type: Literal["aborted"] = "aborted"
    text: str = "Task was aborted by user"


class RawTextPayload(BaseModel):
    """无法解析为 JSON 的输出行"""

    type: Literal["raw"] = "raw"
    text: str


class WaitingPayload(BaseModel):
    """长时间无输出时的提示事件，不影响任务状态"""

    type: Literal["system"] = "system"
    subtype: Literal["waiting"] = "waiting"
    text: str = "The agent has not produced any output yet... still waiting."
