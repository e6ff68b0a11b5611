"""TaskExecutor -- 外部 CLI agent 进程执行器

每个任务一个子进程，stdout/stderr 重定向到私有的追加写临时文件（sink），
后台轮询只读取新增字节，跨读取边界拼接行，逐行解码为事件并通过回调投递。

流程：
1. 构建 argv（不经过 shell），启动进程，sink 作为 stdout/stderr
2. 轮询：读取新增字节 -> 行缓冲 -> JSON 解码 -> 分类 -> on_data / on_human_input
3. 进程退出：停止轮询 -> 最终读取一次 -> 补齐终止标记 -> 清理 -> on_complete / on_error
4. 长时间无输出时投递一条提示事件，不改变任务状态

终止标记由执行器保证：每个任务的事件流中恰好一条 result / error / aborted。
"""

import asyncio
import json
import os
import signal
import subprocess
import tempfile
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
from agentdeck.core.models import (
    AbortedPayload,
    ErrorPayload,
    PermissionLevel,
    RawTextPayload,
    ResultPayload,
    WaitingPayload,
)

from .classifier import is_human_input_needed, looks_like_permission_prompt
from .config import RunnerConfig
from .exceptions import AgentSpawnError, TaskAlreadyRunningError
from .models import CompletionInfo, ExecutionCallbacks, ExecutionOptions, FailureInfo

log = structlog.get_logger()

RESULT_WITH_OUTPUT = "(Task completed - see event log for details)"
RESULT_NO_OUTPUT = "(Task completed with no output)"

# 视为协作式中止的信号（POSIX 下 returncode 为负的信号值）
_ABORT_SIGNALS = {signal.SIGTERM, getattr(signal, "SIGKILL", signal.SIGTERM)}

_IS_WINDOWS = os.name == "nt"


@dataclass
class _RunningTask:
    """执行器内部的单任务状态，仅由执行器自身读写"""

    task_id: str
    process: asyncio.subprocess.Process
    sink: Path
    callbacks: ExecutionCallbacks
    started_at: float = field(default_factory=time.monotonic)
    offset: int = 0
    buffer: bytes = b""
    resume_token: str | None = None
    received_data: bool = False
    result_seen: bool = False
    waiting_notified: bool = False
    abort_requested: bool = False
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    monitor: asyncio.Task | None = None
    kill_timer: asyncio.TimerHandle | None = None


class TaskExecutor:
    """外部 agent 进程执行器 -- 管理零个或多个并发运行的任务"""

    def __init__(
        self,
        command: Sequence[str] = ("claude",),
        poll_interval: float = 0.15,
        safety_timeout: float = 30.0,
        abort_grace: float = 5.0,
        sink_dir: str | Path | None = None,
        human_input_detector: Callable[[dict[str, Any]], bool] = is_human_input_needed,
        permission_prompt_detector: Callable[[str], bool] = looks_like_permission_prompt,
    ) -> None:
        """
        Args:
            command: 启动 agent 的命令前缀
            poll_interval: sink 轮询间隔（秒）
            safety_timeout: 无输出提示的等待时间（秒）
            abort_grace: 中止后等待进程退出的宽限期，超时强制结束进程树
            sink_dir: 临时输出文件目录，默认系统临时目录
            human_input_detector: 结构化事件的人工输入判定
            permission_prompt_detector: 非结构化文本的权限提示判定
        """
        self._command = tuple(command)
        self._poll_interval = poll_interval
        self._safety_timeout = safety_timeout
        self._abort_grace = abort_grace
        self._sink_dir = Path(sink_dir) if sink_dir else Path(tempfile.gettempdir())
        self._is_human_input = human_input_detector
        self._looks_like_prompt = permission_prompt_detector
        self._running: dict[str, _RunningTask] = {}

    @classmethod
    def from_config(cls, config: RunnerConfig) -> "TaskExecutor":
        """按 RunnerConfig 创建执行器"""
        return cls(
            command=config.agent_command(),
            poll_interval=config.poll_interval_ms / 1000,
            safety_timeout=config.safety_timeout_s,
        )

    # ============================================================
    # 公共接口
    # ============================================================

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    def build_command(self, options: ExecutionOptions) -> list[str]:
        """构建 agent 调用 argv"""
        argv = [
            *self._command,
            "-p",
            options.prompt,
            "--output-format",
            "stream-json",
            "--verbose",
        ]
        if options.model:
            argv += ["--model", options.model]
        if options.permission_level == PermissionLevel.FULL:
            argv.append("--dangerously-skip-permissions")
        if options.resume_token:
            argv += ["--resume", options.resume_token]
        return argv

    def sink_path(self, task_id: str) -> Path:
        return self._sink_dir / f"agentdeck-task-{task_id}.jsonl"

    async def execute_task(
        self,
        task_id: str,
        options: ExecutionOptions,
        callbacks: ExecutionCallbacks,
    ) -> None:
        """启动任务进程后立即返回，后续结果全部通过回调投递

        Raises:
            TaskAlreadyRunningError: task_id 已在执行中
        """
        if task_id in self._running:
            raise TaskAlreadyRunningError(task_id)

        sink = self.sink_path(task_id)
        argv = self.build_command(options)

        try:
            process = await self._spawn(argv, sink, options.working_directory)
        except AgentSpawnError as e:
            log.error(
                "agent_spawn_failed",
                task_id=task_id,
                command=argv[0],
                error=str(e.original_error),
            )
            sink.unlink(missing_ok=True)
            await self._safe_callback(
                task_id,
                callbacks.on_data,
                ErrorPayload(text=str(e)).model_dump(),
            )
            await self._safe_callback(task_id, callbacks.on_error, FailureInfo(error=str(e)))
            return

        handle = _RunningTask(
            task_id=task_id,
            process=process,
            sink=sink,
            callbacks=callbacks,
        )
        self._running[task_id] = handle
        handle.monitor = asyncio.create_task(self._monitor(handle))
        log.info(
            "agent_process_started",
            task_id=task_id,
            pid=process.pid,
            model=options.model,
            resume=bool(options.resume_token),
        )

    def abort(self, task_id: str) -> bool:
        """请求终止任务进程

        仅发送信号，不等待退出；on_error(aborted=True) 才是中止完成的确认。
        清理完成后再调用返回 False。
        """
        handle = self._running.get(task_id)
        if handle is None:
            return False

        handle.abort_requested = True
        self._terminate(handle.process)
        if handle.kill_timer is None and self._abort_grace > 0:
            handle.kill_timer = asyncio.get_running_loop().call_later(
                self._abort_grace, self._force_kill, handle
            )
        log.info("agent_abort_requested", task_id=task_id, pid=handle.process.pid)
        return True

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    def has_running_tasks(self) -> bool:
        return bool(self._running)

    def get_running_task_ids(self) -> list[str]:
        return list(self._running)

    def send_input(self, task_id: str, text: str) -> bool:
        """stdin 未连接（输出走文件重定向），无法向运行中的进程写入"""
        return False

    async def aclose(self) -> None:
        """中止所有运行中的任务并等待其清理完成"""
        monitors = [h.monitor for h in self._running.values() if h.monitor is not None]
        for task_id in list(self._running):
            self.abort(task_id)
        if monitors:
            await asyncio.wait(monitors, timeout=self._abort_grace + 1)

    # ============================================================
    # 进程管理
    # ============================================================

    async def _spawn(
        self,
        argv: list[str],
        sink: Path,
        cwd: str,
    ) -> asyncio.subprocess.Process:
        env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}
        env["FORCE_COLOR"] = "0"

        kwargs: dict[str, Any] = {}
        if _IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
        else:
            # 独立进程组，中止时整组发送信号
            kwargs["start_new_session"] = True

        try:
            # 子进程继承文件描述符后，父进程侧即可关闭
            with open(sink, "wb") as out:
                return await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=cwd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=out,
                    stderr=asyncio.subprocess.STDOUT,
                    env=env,
                    **kwargs,
                )
        except OSError as e:
            raise AgentSpawnError(argv[0], e) from e

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        if _IS_WINDOWS:
            # 整棵进程树强制结束，失败时退回 terminate
            try:
                subprocess.Popen(
                    ["taskkill", "/PID", str(process.pid), "/T", "/F"],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
                return
            except OSError:
                pass
        else:
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGTERM)
                return
            except (ProcessLookupError, PermissionError):
                pass
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    def _force_kill(self, handle: _RunningTask) -> None:
        process = handle.process
        if process.returncode is not None or handle.task_id not in self._running:
            return
        log.warning("agent_force_kill", task_id=handle.task_id, pid=process.pid)
        if not _IS_WINDOWS:
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
                return
            except (ProcessLookupError, PermissionError):
                pass
        try:
            process.kill()
        except ProcessLookupError:
            pass

    # ============================================================
    # 输出轮询
    # ============================================================

    async def _monitor(self, handle: _RunningTask) -> None:
        """等待进程退出，收尾并投递终态回调"""
        poller = asyncio.create_task(self._poll_loop(handle))
        try:
            returncode = await handle.process.wait()

            # 停止轮询（等待当前一轮投递完成），再做一次最终读取
            handle.stop.set()
            await poller
            await self._drain(handle, final=True)
        except asyncio.CancelledError:
            poller.cancel()
            self._cleanup(handle)
            raise

        aborted = (
            handle.abort_requested
            or returncode is None
            or (returncode < 0 and -returncode in _ABORT_SIGNALS)
        )
        callbacks = handle.callbacks
        log.info(
            "agent_process_exited",
            task_id=handle.task_id,
            returncode=returncode,
            aborted=aborted,
            received_data=handle.received_data,
        )

        if returncode == 0 and not aborted:
            if not handle.result_seen:
                await self._emit(
                    handle,
                    ResultPayload(
                        subtype="success",
                        result=RESULT_WITH_OUTPUT if handle.received_data else RESULT_NO_OUTPUT,
                    ).model_dump(),
                )
            self._cleanup(handle)
            await self._safe_callback(
                handle.task_id,
                callbacks.on_complete,
                CompletionInfo(exit_code=0, resume_token=handle.resume_token),
            )
        elif aborted:
            if not handle.result_seen:
                await self._emit(handle, AbortedPayload().model_dump())
            self._cleanup(handle)
            await self._safe_callback(
                handle.task_id,
                callbacks.on_error,
                FailureInfo(
                    exit_code=returncode,
                    aborted=True,
                    resume_token=handle.resume_token,
                ),
            )
        else:
            message = f"Process exited with code {returncode}"
            if not handle.result_seen:
                await self._emit(
                    handle,
                    ErrorPayload(text=message, exit_code=returncode).model_dump(),
                )
            self._cleanup(handle)
            await self._safe_callback(
                handle.task_id,
                callbacks.on_error,
                FailureInfo(
                    exit_code=returncode,
                    error=message,
                    resume_token=handle.resume_token,
                ),
            )

    async def _poll_loop(self, handle: _RunningTask) -> None:
        while not handle.stop.is_set():
            await self._drain(handle)
            await self._check_waiting(handle)
            try:
                await asyncio.wait_for(handle.stop.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass

    async def _check_waiting(self, handle: _RunningTask) -> None:
        if handle.received_data or handle.waiting_notified:
            return
        if time.monotonic() - handle.started_at < self._safety_timeout:
            return
        handle.waiting_notified = True
        log.warning(
            "agent_no_output",
            task_id=handle.task_id,
            waited_s=self._safety_timeout,
        )
        await self._emit(handle, WaitingPayload().model_dump())

    async def _drain(self, handle: _RunningTask, final: bool = False) -> None:
        """读取 sink 新增字节并投递完整行；final 时连同残留的半行一起投递"""
        chunk = await asyncio.to_thread(_read_from, handle.sink, handle.offset)
        if chunk:
            handle.offset += len(chunk)
            handle.buffer += chunk

        lines = handle.buffer.split(b"\n")
        handle.buffer = lines.pop()
        if final and handle.buffer:
            lines.append(handle.buffer)
            handle.buffer = b""

        for raw in lines:
            await self._dispatch_line(handle, raw)

    async def _dispatch_line(self, handle: _RunningTask, raw: bytes) -> None:
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return
        handle.received_data = True

        try:
            event = json.loads(text)
        except ValueError:
            event = None

        if not isinstance(event, dict):
            if self._looks_like_prompt(text):
                await self._safe_callback(
                    handle.task_id,
                    handle.callbacks.on_human_input,
                    {"type": "permission_request", "text": text},
                )
            else:
                await self._emit(handle, RawTextPayload(text=text).model_dump())
            return

        event_type = event.get("type")
        if (
            handle.resume_token is None
            and event_type == "system"
            and event.get("subtype") == "init"
            and event.get("session_id")
        ):
            handle.resume_token = event["session_id"]
        if event_type == "result":
            handle.result_seen = True

        if self._is_human_input(event):
            await self._safe_callback(handle.task_id, handle.callbacks.on_human_input, event)
        else:
            await self._emit(handle, event)

    async def _emit(self, handle: _RunningTask, event: dict[str, Any]) -> None:
        await self._safe_callback(handle.task_id, handle.callbacks.on_data, event)

    async def _safe_callback(self, task_id: str, callback, payload) -> None:
        # 回调异常不能中断监控流程，否则清理与终态回调会丢失
        try:
            await callback(payload)
        except Exception as e:
            log.error(
                "executor_callback_failed",
                task_id=task_id,
                callback=getattr(callback, "__name__", repr(callback)),
                error_type=type(e).__name__,
                error=str(e),
            )

    def _cleanup(self, handle: _RunningTask) -> None:
        """移除进程句柄、停止轮询、删除临时文件"""
        self._running.pop(handle.task_id, None)
        handle.stop.set()
        if handle.kill_timer is not None:
            handle.kill_timer.cancel()
            handle.kill_timer = None
        try:
            handle.sink.unlink(missing_ok=True)
        except OSError as e:
            # Windows 下文件可能仍被占用
            log.warning("sink_cleanup_failed", task_id=handle.task_id, error=str(e))


def _read_from(path: Path, offset: int) -> bytes:
    """读取 offset 之后的字节；文件暂时缺失 / 被锁时返回空，下一轮重试"""
    try:
        with open(path, "rb") as f:
            f.seek(offset)
            return f.read()
    except OSError:
        return b""
