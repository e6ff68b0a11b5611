"""Runner 异常体系"""


class RunnerError(Exception):
    """Runner 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试或降级恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class TaskAlreadyRunningError(RunnerError):
    """同一 task_id 已在执行器中运行"""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} is already running", recoverable=False)
        self.task_id = task_id


class AgentSpawnError(RunnerError):
    """外部 agent 进程无法创建（可执行文件缺失、权限不足等）

    执行器内部捕获后通过 on_error 回调上报，不向调用方抛出。
    """

    def __init__(self, command: str, original_error: Exception) -> None:
        """
        Args:
            command: 尝试启动的可执行文件
            original_error: 原始异常
        """
        super().__init__(
            f"Failed to spawn {command}: {original_error}",
            recoverable=False,
        )
        self.command = command
        self.original_error = original_error


class CredentialError(RunnerError):
    """本地凭证缺失或过期

    仅驱动用量轮询的退避，不影响任务调度。
    """

    def __init__(self, state: str, message: str = "") -> None:
        super().__init__(message or f"Credential {state}", recoverable=True)
        self.state = state
