"""TaskEvent Domain Model

事件表 append-only，不允许更新或删除。
event_id 使用 ULID 格式，时间有序。
task_seq 同一 task 内严格单调递增，完整序列即该任务的审计/回放日志。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import TERMINAL_EVENT_TYPES


class TaskEvent(BaseModel):
    """TaskEvent 数据模型"""

    event_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    task_id: str = Field(description="关联的 Task ID")
    task_seq: int = Field(description="任务内序号，严格单调递增")
    ts: datetime = Field(description="事件时间戳")
    event_type: str = Field(
        description="类型标签：system/assistant/tool_use/result/error/human_input/raw/..."
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="解码后的结构化事件或原始文本回退",
    )

    @property
    def is_terminal(self) -> bool:
        """是否为任务终止标记"""
        return self.event_type in TERMINAL_EVENT_TYPES
