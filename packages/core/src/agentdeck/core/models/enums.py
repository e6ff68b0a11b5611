"""枚举定义

包含 SessionStatus、TaskStatus 状态机、TaskLocation、PermissionLevel、
NotificationType 枚举，以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class SessionStatus(StrEnum):
    """Session 状态

    queued / paused 为外部管理状态，调度器只区分 running 与非 running。
    """

    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    PAUSED = "paused"


class TaskStatus(StrEnum):
    """Task 状态机"""

    PENDING = "pending"
    RUNNING = "running"

    # 终态
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING},
    TaskStatus.RUNNING: {
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.ABORTED,
    },
    # 终态只能通过移回 todo 重新排队
    TaskStatus.COMPLETED: {TaskStatus.PENDING},
    TaskStatus.FAILED: {TaskStatus.PENDING},
    TaskStatus.ABORTED: {TaskStatus.PENDING},
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.ABORTED,
}


class TaskLocation(StrEnum):
    """Task 在工作队列中的位置（与 status 相互独立）"""

    BACKLOG = "backlog"
    TODO = "todo"
    DONE = "done"


class PermissionLevel(StrEnum):
    """外部 agent 的权限策略"""

    DEFAULT = "default"
    # 跳过所有权限确认
    FULL = "full"


class NotificationType(StrEnum):
    """推送给观察者的通知名称"""

    TASK_STARTED = "task:started"
    TASK_PROGRESS = "task:progress"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    TASK_ABORTED = "task:aborted"
    TASK_CREATED = "task:created"
    TASK_HUMAN_INPUT = "task:human_input"
    TASK_HUMAN_INPUT_CLEARED = "task:human_input_cleared"
    SESSION_UPDATED = "session:updated"
    USAGE_UPDATED = "usage:updated"


# 事件日志中的终止标记类型（每个任务恰好一条）
TERMINAL_EVENT_TYPES: frozenset[str] = frozenset({"result", "error", "aborted"})


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
