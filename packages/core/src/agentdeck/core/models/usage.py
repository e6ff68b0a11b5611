"""用量 / 限流数据模型

RateLimitEntry 按限流类型整体覆盖（不保留历史）；
UsageSnapshot 是对外暴露的聚合查询结果。
"""

from pydantic import BaseModel, Field


class RateLimitEntry(BaseModel):
    """单个限流类型的最新观测值"""

    rate_limit_type: str = Field(description="five_hour / seven_day / seven_day_sonnet ...")
    status: str = Field(default="unknown", description="allowed / limited / rejected")
    resets_at: int | None = Field(default=None, description="重置时间（Unix 秒）")
    utilization: float | None = Field(default=None, description="使用率百分比 0-100")


class OverageInfo(BaseModel):
    """超额额度状态"""

    overage_status: str = "unknown"
    is_using_overage: bool = False
    overage_disabled_reason: str | None = None


class AccountInfo(BaseModel):
    """账户信息（凭证文件 + auth status 命令）"""

    email: str | None = None
    org_id: str | None = None
    org_name: str | None = None
    subscription_type: str | None = None
    rate_limit_tier: str | None = None
    auth_method: str | None = None


class DailyActivity(BaseModel):
    date: str
    message_count: int = 0
    session_count: int = 0
    tool_call_count: int = 0


class ModelUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cost_usd: float = 0.0


class LocalStats(BaseModel):
    """agent 本地统计缓存"""

    total_sessions: int = 0
    total_messages: int = 0
    first_session_date: str | None = None
    daily_activity: list[DailyActivity] = Field(default_factory=list)
    model_usage: dict[str, ModelUsage] = Field(default_factory=dict)


class TaskCost(BaseModel):
    """单个任务的成本记录"""

    task_id: str
    cost_usd: float = 0.0
    duration_ms: int = 0
    timestamp: str = Field(description="记录时间（ISO 8601）")


class RunStats(BaseModel):
    """本系统执行任务累计的成本 / 耗时 / 计数"""

    total_cost_usd: float = 0.0
    task_count: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    total_duration_ms: int = 0
    recent_tasks: list[TaskCost] = Field(default_factory=list)


class UsageSnapshot(BaseModel):
    """聚合用量快照"""

    account: AccountInfo
    rate_limits: list[RateLimitEntry]
    overage: OverageInfo
    local_stats: LocalStats
    run_stats: RunStats
    last_updated_at: str


class AgentStatus(BaseModel):
    """外部 agent CLI 安装 / 登录状态"""

    installed: bool
    logged_in: bool
    user: str | None = None
    version: str | None = None
