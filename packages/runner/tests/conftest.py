"""Runner 包测试 fixtures"""

import asyncio
import json
import time
from pathlib import Path
from typing import Any

import pytest
from agentdeck.runner.models import CompletionInfo, FailureInfo

class RecordingCallbacks:
    """记录所有回调的 ExecutionCallbacks 实现"""

    def __init__(self) -> None:
        self.data: list[dict[str, Any]] = []
        self.human_input: list[dict[str, Any]] = []
        self.completed: CompletionInfo | None = None
        self.failed: FailureInfo | None = None
        self.terminal_calls = 0
        self.done = asyncio.Event()

    async def on_data(self, event: dict[str, Any]) -> None:
        self.data.append(event)

    async def on_complete(self, info: CompletionInfo) -> None:
        self.completed = info
        self.terminal_calls += 1
        self.done.set()

    async def on_error(self, info: FailureInfo) -> None:
        self.failed = info
        self.terminal_calls += 1
        self.done.set()

    async def on_human_input(self, event: dict[str, Any]) -> None:
        self.human_input.append(event)

    async def wait(self, timeout: float = 20.0) -> None:
        await asyncio.wait_for(self.done.wait(), timeout)

    async def wait_for_type(self, event_type: str, timeout: float = 20.0) -> None:
        deadline = time.monotonic() + timeout
        while event_type not in self.types():
            if time.monotonic() > deadline:
                raise TimeoutError(f"no {event_type} event received")
            await asyncio.sleep(0.02)

    def types(self) -> list[str | None]:
        return [e.get("type") for e in self.data]


@pytest.fixture
def callbacks() -> RecordingCallbacks:
    return RecordingCallbacks()


@pytest.fixture
def claude_home(tmp_path: Path) -> Path:
    """临时 agent 本地数据目录"""
    home = tmp_path / "claude-home"
    home.mkdir()
    return home


@pytest.fixture
def write_credentials(claude_home: Path):
    """写入凭证文件；expires_in_s 为负表示已过期"""

    def _write(token: str | None = "token-abc", expires_in_s: float = 3600, **extra):
        oauth: dict[str, Any] = {
            "expiresAt": int((time.time() + expires_in_s) * 1000),
            **extra,
        }
        if token is not None:
            oauth["accessToken"] = token
        (claude_home / ".credentials.json").write_text(
            json.dumps({"claudeAiOauth": oauth}), encoding="utf-8"
        )

    return _write


@pytest.fixture
def callbacks_factory() -> type[RecordingCallbacks]:
    return RecordingCallbacks
