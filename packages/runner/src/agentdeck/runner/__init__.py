"""AgentDeck Runner -- 外部 agent 进程执行与用量监控

packages/runner 的公开接口导出。
"""

# 分类
from .classifier import (
    detect_question_in_result,
    is_human_input_needed,
    looks_like_permission_prompt,
    strip_code_blocks,
)

# 配置
from .config import RunnerConfig, load_runner_config

# 异常
from .exceptions import (
    AgentSpawnError,
    CredentialError,
    RunnerError,
    TaskAlreadyRunningError,
)

# 核心组件
from .executor import TaskExecutor
from .local_files import LocalFileReader, TokenState
from .models import CompletionInfo, ExecutionCallbacks, ExecutionOptions, FailureInfo
from .poller import UsagePoller, parse_rate_limit_headers
from .usage import UsageTracker, normalize_utilization

__all__ = [
    "TaskExecutor",
    "ExecutionOptions",
    "ExecutionCallbacks",
    "CompletionInfo",
    "FailureInfo",
    "is_human_input_needed",
    "looks_like_permission_prompt",
    "strip_code_blocks",
    "detect_question_in_result",
    "UsageTracker",
    "UsagePoller",
    "LocalFileReader",
    "TokenState",
    "normalize_utilization",
    "parse_rate_limit_headers",
    "RunnerConfig",
    "load_runner_config",
    "RunnerError",
    "TaskAlreadyRunningError",
    "AgentSpawnError",
    "CredentialError",
]
