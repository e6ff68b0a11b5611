"""Task Domain Model

Task 是 session 队列中的一个工作单元（一条 prompt）。
同一 session 任意时刻至多一个 Task 处于 running。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import TaskLocation, TaskStatus


class Task(BaseModel):
    """Task 数据模型

    location 表示队列位置，与 status 相互独立；
    task_order 在 (session, location) 范围内排序。
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    project_id: str = Field(description="所属 Project")
    session_id: str | None = Field(
        default=None,
        description="所属 Session，项目级 backlog 中为 None",
    )
    prompt: str = Field(description="交给外部 agent 的 prompt")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    location: TaskLocation = Field(default=TaskLocation.BACKLOG, description="队列位置")
    task_order: int = Field(default=0, description="队列内排序键")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    started_at: datetime | None = Field(default=None, description="开始执行时间")
    completed_at: datetime | None = Field(default=None, description="结束时间")
