"""Project / Session Domain Model

Project 提供执行参数（工作目录、默认模型、权限策略），核心逻辑只读不改。
Session 是共享同一 agent 会话上下文（resume token）的有序任务队列，
可通过 next_session_id 串成单向链。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import PermissionLevel, SessionStatus


class Project(BaseModel):
    """Project 数据模型"""

    project_id: str = Field(description="唯一标识，ULID 格式")
    name: str = Field(description="显示名称")
    root_directory: str = Field(description="agent 执行时的工作目录")
    default_model: str = Field(description="默认模型标识")
    permission_level: PermissionLevel = Field(
        default=PermissionLevel.DEFAULT,
        description="默认权限策略",
    )
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")


class Session(BaseModel):
    """Session 数据模型

    调度器修改 status / resume_token；
    链接关系、名称、is_active 由外部 CRUD 层维护。
    """

    session_id: str = Field(description="唯一标识，ULID 格式")
    project_id: str = Field(description="所属 Project")
    name: str = Field(description="显示名称")
    model: str | None = Field(default=None, description="覆盖 Project 默认模型")
    status: SessionStatus = Field(default=SessionStatus.IDLE, description="当前状态")
    session_order: int = Field(default=0, description="项目内排序键")
    resume_token: str | None = Field(
        default=None,
        description="外部 agent 首次运行时分配的会话标识，后续任务用于续接",
    )
    next_session_id: str | None = Field(
        default=None,
        description="链式执行的下一个 Session（至多一条入边）",
    )
    is_active: bool = Field(default=False, description="是否允许自动拾取任务")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
