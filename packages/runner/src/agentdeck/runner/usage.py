"""UsageTracker -- 成本 / 限流累加器

两个写入方：
- 调度器：每个任务事件经 track_event 进入（rate_limit_event、result）
- 用量轮询：probe 响应头解析结果经 set_rate_limit / set_overage 覆盖

按限流类型整体覆盖，不保留历史；同一任务多次上报成本时替换而非累加。
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from agentdeck.core.config import RECENT_TASKS_LIMIT
from agentdeck.core.models import (
    AccountInfo,
    LocalStats,
    OverageInfo,
    RateLimitEntry,
    RunStats,
    TaskCost,
    UsageSnapshot,
)

from .local_files import LocalFileReader

log = structlog.get_logger()


def normalize_utilization(raw: Any) -> float | None:
    """统一为 0-100 百分比：大于 1.5 视为已是百分比，否则乘以 100"""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 1.5 else value * 100


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class UsageTracker:
    """用量累加器"""

    def __init__(
        self,
        local_files: LocalFileReader | None = None,
        recent_limit: int = RECENT_TASKS_LIMIT,
    ) -> None:
        self._local_files = local_files
        self._recent_limit = recent_limit
        self.rate_limits: dict[str, RateLimitEntry] = {}
        self.overage = OverageInfo()
        self.task_costs: dict[str, TaskCost] = {}
        self.total_cost_usd = 0.0
        self.total_duration_ms = 0
        self.task_count = 0
        self.completed_tasks = 0
        self.failed_tasks = 0
        self.last_updated_at = _now_iso()

    def track_event(self, task_id: str, event: dict[str, Any]) -> None:
        """从任务事件中累加限流与成本信息"""
        event_type = event.get("type")

        if event_type == "rate_limit_event" and isinstance(event.get("rate_limit_info"), dict):
            self._process_rate_limit_info(event["rate_limit_info"])

        elif event_type == "result":
            cost = event.get("cost_usd", event.get("total_cost_usd")) or 0.0
            duration = event.get("duration_ms") or 0
            self.task_costs[task_id] = TaskCost(
                task_id=task_id,
                cost_usd=float(cost),
                duration_ms=int(duration),
                timestamp=_now_iso(),
            )
            # 按任务重算总量
            self.total_cost_usd = sum(c.cost_usd for c in self.task_costs.values())
            self.total_duration_ms = sum(c.duration_ms for c in self.task_costs.values())
            self.touch()

    def track_task_complete(self, task_id: str, success: bool) -> None:
        self.task_count += 1
        if success:
            self.completed_tasks += 1
        else:
            self.failed_tasks += 1
        self.touch()

    def set_rate_limit(self, entry: RateLimitEntry) -> None:
        self.rate_limits[entry.rate_limit_type] = entry
        self.touch()

    def set_overage(self, overage: OverageInfo) -> None:
        self.overage = overage
        self.touch()

    def touch(self) -> None:
        self.last_updated_at = _now_iso()

    def snapshot(self) -> UsageSnapshot:
        """当前聚合用量（不触发本地文件刷新）"""
        recent = sorted(
            self.task_costs.values(),
            key=lambda c: c.timestamp,
            reverse=True,
        )[: self._recent_limit]

        local_files = self._local_files
        return UsageSnapshot(
            account=local_files.account.model_copy() if local_files else AccountInfo(),
            rate_limits=list(self.rate_limits.values()),
            overage=self.overage.model_copy(),
            local_stats=(
                local_files.local_stats.model_copy() if local_files else LocalStats()
            ),
            run_stats=RunStats(
                total_cost_usd=self.total_cost_usd,
                task_count=self.task_count,
                completed_tasks=self.completed_tasks,
                failed_tasks=self.failed_tasks,
                total_duration_ms=self.total_duration_ms,
                recent_tasks=recent,
            ),
            last_updated_at=self.last_updated_at,
        )

    async def get_usage(self) -> UsageSnapshot:
        """刷新本地文件（带缓存）后返回聚合用量"""
        if self._local_files is not None:
            await self._local_files.refresh()
        return self.snapshot()

    def _process_rate_limit_info(self, info: dict[str, Any]) -> None:
        key = info.get("rateLimitType") or "unknown"
        entry = RateLimitEntry(
            rate_limit_type=key,
            status=info.get("status") or "unknown",
            resets_at=info.get("resetsAt"),
            utilization=normalize_utilization(info.get("utilization")),
        )
        self.rate_limits[key] = entry

        if "overageStatus" in info:
            self.overage = OverageInfo(
                overage_status=info.get("overageStatus") or "unknown",
                is_using_overage=bool(info.get("isUsingOverage")),
                overage_disabled_reason=info.get("overageDisabledReason") or None,
            )
        self.touch()

        log.info(
            "rate_limit_observed",
            rate_limit_type=key,
            status=entry.status,
            utilization=entry.utilization,
            resets_at=entry.resets_at,
        )
