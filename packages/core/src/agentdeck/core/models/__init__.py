"""AgentDeck Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    TERMINAL_EVENT_TYPES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    NotificationType,
    PermissionLevel,
    SessionStatus,
    TaskLocation,
    TaskStatus,
    validate_transition,
)
from .event import TaskEvent
from .payloads import (
    AbortedPayload,
    ErrorPayload,
    RawTextPayload,
    ResultPayload,
    TaskStartedPayload,
    WaitingPayload,
)
from .project import Project, Session
from .task import Task
from .usage import (
    AccountInfo,
    AgentStatus,
    DailyActivity,
    LocalStats,
    ModelUsage,
    OverageInfo,
    RateLimitEntry,
    RunStats,
    TaskCost,
    UsageSnapshot,
)

__all__ = [
    # 枚举
    "SessionStatus",
    "TaskStatus",
    "TaskLocation",
    "PermissionLevel",
    "NotificationType",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "TERMINAL_EVENT_TYPES",
    "validate_transition",
    # 实体
    "Project",
    "Session",
    "Task",
    "TaskEvent",
    # Payloads
    "TaskStartedPayload",
    "ResultPayload",
    "ErrorPayload",
    "AbortedPayload",
    "RawTextPayload",
    "WaitingPayload",
    # 用量
    "RateLimitEntry",
    "OverageInfo",
    "AccountInfo",
    "DailyActivity",
    "ModelUsage",
    "LocalStats",
    "TaskCost",
    "RunStats",
    "UsageSnapshot",
    "AgentStatus",
]
