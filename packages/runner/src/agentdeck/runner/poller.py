"""UsagePoller -- 周期性用量探测

读取本地 OAuth token，发送最小请求（max_tokens=1），从响应头解析统一限流信息。
200 与 429 都携带限流头，状态码不影响解析。

凭证连续缺失 / 过期达到阈值后切换为退避间隔，恢复可用后立即切回正常间隔。
凭证状态只在变化时记录日志。
"""

import asyncio
from collections.abc import Awaitable, Callable

import httpx
import structlog
from agentdeck.core.models import OverageInfo, RateLimitEntry, UsageSnapshot

from .config import RunnerConfig
from .exceptions import CredentialError
from .local_files import LocalFileReader, TokenState
from .usage import UsageTracker, normalize_utilization

log = structlog.get_logger()

PROBE_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_VERSION = "2023-06-01"
OAUTH_BETA = "oauth-2025-04-20"

HEADER_PREFIX = "anthropic-ratelimit-unified"

# 响应头缩写 -> 限流类型
CLAIM_TYPES: tuple[tuple[str, str], ...] = (
    ("5h", "five_hour"),
    ("7d", "seven_day"),
    ("7d_sonnet", "seven_day_sonnet"),
)

OnUsageUpdate = Callable[[UsageSnapshot], Awaitable[None]]


def parse_rate_limit_headers(
    headers: httpx.Headers,
) -> tuple[list[RateLimitEntry], OverageInfo | None]:
    """从响应头解析限流条目与超额信息（缺少 utilization 的类型跳过）"""
    entries: list[RateLimitEntry] = []
    for abbrev, rate_limit_type in CLAIM_TYPES:
        raw = headers.get(f"{HEADER_PREFIX}-{abbrev}-utilization")
        if raw is None:
            continue
        reset = headers.get(f"{HEADER_PREFIX}-{abbrev}-reset")
        try:
            resets_at = int(reset) if reset else None
        except ValueError:
            resets_at = None
        entries.append(
            RateLimitEntry(
                rate_limit_type=rate_limit_type,
                status=headers.get(f"{HEADER_PREFIX}-{abbrev}-status") or "allowed",
                resets_at=resets_at,
                utilization=normalize_utilization(raw),
            )
        )

    overage: OverageInfo | None = None
    overage_status = headers.get(f"{HEADER_PREFIX}-overage-status")
    if overage_status:
        overage = OverageInfo(
            overage_status=overage_status,
            is_using_overage=(
                headers.get(f"{HEADER_PREFIX}-status") == "rejected"
                and overage_status in ("allowed", "allowed_warning")
            ),
            overage_disabled_reason=(
                headers.get(f"{HEADER_PREFIX}-overage-disabled-reason") or None
            ),
        )
    return entries, overage


class UsagePoller:
    """用量轮询器

    Args:
        tracker: 限流结果写入的累加器
        local_files: 凭证与本地统计来源
        on_update: 成功探测后的回调（通常为广播 usage:updated）
        transport: httpx 传输层，测试时注入 MockTransport
    """

    def __init__(
        self,
        tracker: UsageTracker,
        local_files: LocalFileReader,
        *,
        interval: float = 30.0,
        backoff_interval: float = 120.0,
        backoff_threshold: int = 3,
        initial_delay: float = 3.0,
        api_url: str = "https://api.anthropic.com/v1/messages",
        timeout: float = 15.0,
        on_update: OnUsageUpdate | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._tracker = tracker
        self._local_files = local_files
        self._interval = interval
        self._backoff_interval = backoff_interval
        self._backoff_threshold = backoff_threshold
        self._initial_delay = initial_delay
        self._api_url = api_url
        self._timeout = timeout
        self._on_update = on_update
        self._transport = transport

        self.token_state = TokenState.UNKNOWN
        self.consecutive_failures = 0
        self.in_backoff = False
        self._polling = False
        self._task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        config: RunnerConfig,
        tracker: UsageTracker,
        local_files: LocalFileReader,
        on_update: OnUsageUpdate | None = None,
    ) -> "UsagePoller":
        return cls(
            tracker,
            local_files,
            interval=config.usage_poll_s,
            backoff_interval=config.usage_backoff_s,
            backoff_threshold=config.token_backoff_threshold,
            initial_delay=config.usage_initial_delay_s,
            api_url=config.usage_api_url,
            timeout=config.probe_timeout_s,
            on_update=on_update,
        )

    @property
    def current_interval(self) -> float:
        return self._backoff_interval if self.in_backoff else self._interval

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """启动后台轮询（首次探测延迟 initial_delay 秒）"""
        if self.is_started:
            return
        self._local_files.invalidate()
        self._task = asyncio.create_task(self._run())
        log.info("usage_polling_started", interval_s=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("usage_polling_stopped")

    async def refresh(self) -> UsageSnapshot:
        """立即执行一次探测并返回最新用量"""
        await self.poll_once()
        return await self._tracker.get_usage()

    async def poll_once(self) -> bool:
        """执行一次探测

        Returns:
            True 表示成功取得限流头；重入、凭证不可用或请求失败时返回 False
        """
        if self._polling:
            return False
        self._polling = True
        try:
            return await self._poll()
        finally:
            self._polling = False

    async def _run(self) -> None:
        await asyncio.sleep(self._initial_delay)
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                log.warning("usage_poll_failed", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(self.current_interval)

    async def _poll(self) -> bool:
        try:
            token = await asyncio.to_thread(self._local_files.read_oauth_token)
        except CredentialError as e:
            self._transition_token_state(TokenState(e.state))
            if e.state == TokenState.EXPIRED:
                # CLI 可能已刷新凭证文件
                self._local_files.invalidate()
            self.consecutive_failures += 1
            if self.consecutive_failures >= self._backoff_threshold and not self.in_backoff:
                self.in_backoff = True
                log.info(
                    "usage_polling_backoff",
                    failures=self.consecutive_failures,
                    interval_s=self._backoff_interval,
                )
            await self._local_files.refresh()
            return False

        self._transition_token_state(TokenState.AVAILABLE)
        self.consecutive_failures = 0
        if self.in_backoff:
            self.in_backoff = False
            log.info("usage_polling_resumed", interval_s=self._interval)

        headers = await self._probe(token)
        if headers is None:
            return False

        entries, overage = parse_rate_limit_headers(headers)
        for entry in entries:
            self._tracker.set_rate_limit(entry)
        if overage is not None:
            self._tracker.set_overage(overage)
        self._tracker.touch()

        await self._local_files.refresh(force=True)

        if self._on_update is not None:
            try:
                await self._on_update(self._tracker.snapshot())
            except Exception as e:
                log.warning("usage_update_callback_failed", error=str(e))
        return True

    async def _probe(self, token: str) -> httpx.Headers | None:
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout
            ) as client:
                response = await client.post(
                    self._api_url,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "anthropic-version": ANTHROPIC_VERSION,
                        "anthropic-beta": OAUTH_BETA,
                    },
                    json={
                        "model": PROBE_MODEL,
                        "max_tokens": 1,
                        "messages": [{"role": "user", "content": "hi"}],
                    },
                )
        except httpx.HTTPError as e:
            log.warning("usage_probe_failed", error=str(e), error_type=type(e).__name__)
            return None
        return response.headers

    def _transition_token_state(self, new_state: TokenState) -> None:
        if new_state == self.token_state:
            return
        previous = self.token_state
        self.token_state = new_state

        if new_state == TokenState.EXPIRED:
            log.warning("oauth_token_expired")
        elif new_state == TokenState.MISSING:
            log.warning("oauth_token_missing")
        elif new_state == TokenState.AVAILABLE and previous != TokenState.UNKNOWN:
            log.info("oauth_token_recovered")
