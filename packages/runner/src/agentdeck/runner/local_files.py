"""LocalFileReader -- 读取 agent 本地凭证 / 账户 / 统计缓存

数据来源：
- {claude_home}/.credentials.json: OAuth token、订阅类型、限流档位
- `claude auth status`: 邮箱、组织、认证方式（JSON 输出）
- {claude_home}/stats-cache.json: 会话 / 消息总数、近 14 天活动、按模型 token 用量

任一来源缺失或命令失败时对应字段保持为空，不抛出异常。
"""

import asyncio
import json
import time
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog
from agentdeck.core.models import (
    AccountInfo,
    AgentStatus,
    DailyActivity,
    LocalStats,
    ModelUsage,
)

from .exceptions import CredentialError

log = structlog.get_logger()

DAILY_ACTIVITY_DAYS = 14


class TokenState(StrEnum):
    """OAuth 凭证可用性"""

    AVAILABLE = "available"
    EXPIRED = "expired"
    MISSING = "missing"
    UNKNOWN = "unknown"


class LocalFileReader:
    """agent 本地文件读取器，结果缓存 cache_ttl 秒"""

    def __init__(
        self,
        claude_home: Path,
        agent_bin: str = "claude",
        cache_ttl: float = 30.0,
        command_timeout: float = 10.0,
    ) -> None:
        self._claude_home = Path(claude_home)
        self._agent_bin = agent_bin
        self._cache_ttl = cache_ttl
        self._command_timeout = command_timeout
        self._last_read: float | None = None
        self.account = AccountInfo()
        self.local_stats = LocalStats()

    @property
    def credentials_path(self) -> Path:
        return self._claude_home / ".credentials.json"

    @property
    def stats_cache_path(self) -> Path:
        return self._claude_home / "stats-cache.json"

    def invalidate(self) -> None:
        """下次 refresh 强制重新读取"""
        self._last_read = None

    async def refresh(self, force: bool = False) -> None:
        """刷新账户与统计信息（缓存期内跳过）"""
        now = time.monotonic()
        if (
            not force
            and self._last_read is not None
            and now - self._last_read < self._cache_ttl
        ):
            return
        self._last_read = now

        await asyncio.to_thread(self._read_credentials_info)
        await self._read_auth_status()
        await asyncio.to_thread(self._read_stats_cache)

    def read_oauth_token(self) -> str:
        """读取 OAuth access token

        expiresAt 为毫秒时间戳。

        Raises:
            CredentialError: 凭证缺失（state=missing）或已过期（state=expired）
        """
        data = self._load_json(self.credentials_path)
        if data is None:
            raise CredentialError(TokenState.MISSING, "credentials file not found")

        oauth = data.get("claudeAiOauth") or {}
        token = oauth.get("accessToken")
        if not token:
            raise CredentialError(TokenState.MISSING, "no access token in credentials")

        expires_at = oauth.get("expiresAt")
        try:
            expired = bool(expires_at) and time.time() * 1000 > float(expires_at)
        except (TypeError, ValueError):
            expired = False
        if expired:
            raise CredentialError(TokenState.EXPIRED, "access token expired")

        return token

    async def agent_status(self) -> AgentStatus:
        """通过 `<agent> --version` 检查 CLI 是否已安装"""
        output = await self._run_agent("--version")
        if output is None:
            return AgentStatus(installed=False, logged_in=False)

        log.info("agent_cli_version", version=output)
        await self.refresh()
        return AgentStatus(
            installed=True,
            logged_in=True,
            user=self.account.email or "Claude User",
            version=output,
        )

    def _read_credentials_info(self) -> None:
        data = self._load_json(self.credentials_path)
        if data is None:
            return
        oauth = data.get("claudeAiOauth")
        if oauth:
            self.account.subscription_type = oauth.get("subscriptionType") or None
            self.account.rate_limit_tier = oauth.get("rateLimitTier") or None

    async def _read_auth_status(self) -> None:
        output = await self._run_agent("auth", "status")
        if output is None:
            return
        try:
            data = json.loads(output)
        except ValueError:
            log.warning("auth_status_not_json")
            return

        self.account.email = data.get("email") or None
        self.account.org_id = data.get("orgId") or None
        self.account.org_name = data.get("orgName") or None
        self.account.auth_method = data.get("authMethod") or None
        if data.get("subscriptionType"):
            self.account.subscription_type = data["subscriptionType"]

    def _read_stats_cache(self) -> None:
        data = self._load_json(self.stats_cache_path)
        if data is None:
            return

        stats = LocalStats(
            total_sessions=data.get("totalSessions") or 0,
            total_messages=data.get("totalMessages") or 0,
            first_session_date=data.get("firstSessionDate") or None,
        )

        daily = data.get("dailyActivity")
        if isinstance(daily, list):
            stats.daily_activity = [
                DailyActivity(
                    date=str(item.get("date", "")),
                    message_count=item.get("messageCount") or 0,
                    session_count=item.get("sessionCount") or 0,
                    tool_call_count=item.get("toolCallCount") or 0,
                )
                for item in daily[-DAILY_ACTIVITY_DAYS:]
                if isinstance(item, dict)
            ]
        else:
            stats.daily_activity = self.local_stats.daily_activity

        model_usage = data.get("modelUsage")
        if isinstance(model_usage, dict):
            stats.model_usage = {
                model: ModelUsage(
                    input_tokens=usage.get("inputTokens") or 0,
                    output_tokens=usage.get("outputTokens") or 0,
                    cache_read_input_tokens=usage.get("cacheReadInputTokens") or 0,
                    cache_creation_input_tokens=usage.get("cacheCreationInputTokens") or 0,
                    cost_usd=usage.get("costUSD") or 0.0,
                )
                for model, usage in model_usage.items()
                if isinstance(usage, dict)
            }
        else:
            stats.model_usage = self.local_stats.model_usage

        self.local_stats = stats

    async def _run_agent(self, *args: str) -> str | None:
        """运行 agent 子命令并返回 stdout；不可用时返回 None"""
        try:
            process = await asyncio.create_subprocess_exec(
                self._agent_bin,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            log.debug("agent_cli_unavailable", command=self._agent_bin, error=str(e))
            return None

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self._command_timeout
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            log.warning("agent_cli_timeout", command=self._agent_bin, args=list(args))
            return None

        if process.returncode != 0:
            return None
        return stdout.decode("utf-8", errors="replace").strip()

    @staticmethod
    def _load_json(path: Path) -> dict[str, Any] | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning("local_file_read_failed", path=str(path), error=str(e))
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            log.warning("local_file_not_json", path=str(path))
            return None
        return data if isinstance(data, dict) else None
