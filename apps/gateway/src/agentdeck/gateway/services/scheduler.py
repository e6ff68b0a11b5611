"""SessionScheduler -- 会话级任务调度

每个 session 同一时刻至多一个任务在执行；多个 session 可并发运行。
process_session 的一次调度流程：
1. 持久化状态为 running 但执行器中没有对应进程 -> 卡死任务，标记 failed 后继续
2. 确有任务在执行 -> 直接返回（重入调用无副作用）
3. 待执行队列为空 -> running 的 session 转为 completed，并推进会话链
4. session 未激活 -> 保留队列，不启动任务
5. 确保 session 为 running，启动队首任务

执行器回调只写库、广播、安排下一次调度，不直接持有 session 锁。
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog
from agentdeck.core.models import (
    TERMINAL_EVENT_TYPES,
    TERMINAL_STATES,
    AbortedPayload,
    ErrorPayload,
    NotificationType,
    ResultPayload,
    Session,
    SessionStatus,
    Task,
    TaskLocation,
    TaskStartedPayload,
    TaskStatus,
)
from agentdeck.core.store import StoreGroup
from agentdeck.core.store.transaction import finish_task_with_event
from agentdeck.runner import (
    CompletionInfo,
    ExecutionOptions,
    FailureInfo,
    TaskAlreadyRunningError,
    TaskExecutor,
    UsageTracker,
    detect_question_in_result,
)
from agentdeck.runner.executor import RESULT_NO_OUTPUT
from ulid import ULID

from .notification_hub import NotificationHub

log = structlog.get_logger()

STUCK_TASK_MESSAGE = "Task was stuck in running state"


@dataclass
class _PendingInput:
    """等待人工回复的已完成任务"""

    session_id: str
    project_id: str
    prompt: str


class SessionScheduler:
    """会话调度器

    Args:
        store_group: 持久化存储
        executor: 外部 agent 进程执行器
        hub: 通知广播器，None 时不广播
        tracker: 用量累加器，None 时不统计
        task_delay: 任务结束到下一次调度的延迟（秒）
        human_response_delay: 人工回复后到下一次调度的延迟（秒）
    """

    def __init__(
        self,
        store_group: StoreGroup,
        executor: TaskExecutor,
        hub: NotificationHub | None = None,
        tracker: UsageTracker | None = None,
        task_delay: float = 0.5,
        human_response_delay: float = 0.3,
    ) -> None:
        self._stores = store_group
        self._executor = executor
        self._hub = hub
        self._tracker = tracker
        self._task_delay = task_delay
        self._human_response_delay = human_response_delay

        # task_id -> session_id，判断任务是否真正在执行
        self._running_tasks: dict[str, str] = {}
        self._pending_input: dict[str, _PendingInput] = {}
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._background: set[asyncio.Task] = set()
        self._closed = False

    # ============================================================
    # 调度
    # ============================================================

    async def process_session(self, session_id: str) -> None:
        """尝试启动 session 的下一个任务；异常只记录日志，不向调用方抛出"""
        completed = False
        try:
            async with self._lock_for(session_id):
                completed = await self._process_session_locked(session_id)
        except Exception as e:
            log.error(
                "process_session_failed",
                session_id=session_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return

        if completed:
            await self._continue_chain(session_id)

    def schedule(self, session_id: str, delay: float | None = None) -> None:
        """延迟后在后台执行一次 process_session"""
        if self._closed:
            return
        task = asyncio.create_task(
            self._delayed_process(session_id, self._task_delay if delay is None else delay)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _delayed_process(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.process_session(session_id)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    async def _process_session_locked(self, session_id: str) -> bool:
        """单次调度；返回 True 表示 session 本次转为 completed"""
        session = await self._stores.session_store.get_session(session_id)
        if session is None:
            return False

        running = await self._stores.task_store.get_running_task(session_id)
        if running is not None:
            if self._is_in_flight(running.task_id):
                return False
            await self._heal_stuck_task(running, session_id)

        if self._awaiting_input_in(session_id):
            return False

        pending = await self._stores.task_store.list_pending_todo(session_id)
        if not pending:
            if session.status == SessionStatus.RUNNING:
                await self._set_session_status(session_id, SessionStatus.COMPLETED)
                log.info("session_completed", session_id=session_id)
                return True
            return False

        if not session.is_active:
            return False

        if session.status != SessionStatus.RUNNING:
            await self._set_session_status(session_id, SessionStatus.RUNNING)

        await self._start_task(pending[0], session)
        return False

    def _is_in_flight(self, task_id: str) -> bool:
        return task_id in self._running_tasks or self._executor.is_running(task_id)

    def _awaiting_input_in(self, session_id: str) -> bool:
        return any(p.session_id == session_id for p in self._pending_input.values())

    async def _heal_stuck_task(self, task: Task, session_id: str) -> None:
        log.warning("stuck_task_detected", task_id=task.task_id, session_id=session_id)
        event = await finish_task_with_event(
            self._stores.conn,
            self._stores.event_store,
            self._stores.task_store,
            task.task_id,
            TaskStatus.FAILED,
            "error",
            ErrorPayload(text=STUCK_TASK_MESSAGE).model_dump(),
        )
        if event is not None:
            await self._notify_progress(task.task_id, session_id, event)
        failed = await self._stores.task_store.get_task(task.task_id)
        await self._notify(
            NotificationType.TASK_FAILED,
            {
                "task_id": task.task_id,
                "session_id": session_id,
                "task": _dump(failed),
                "error": STUCK_TASK_MESSAGE,
            },
        )

    async def _continue_chain(self, session_id: str) -> None:
        """会话链推进：下一个 idle session 有待执行任务则启动，否则标记完成并继续

        链上出现环时记录配置错误并停止遍历。
        """
        visited = {session_id}
        current_id = session_id
        while True:
            current = await self._stores.session_store.get_session(current_id)
            if current is None or not current.next_session_id:
                return

            next_id = current.next_session_id
            if next_id in visited:
                log.warning(
                    "session_chain_cycle",
                    session_id=current_id,
                    next_session_id=next_id,
                )
                return
            visited.add(next_id)

            next_session = await self._stores.session_store.get_session(next_id)
            if next_session is None or next_session.status != SessionStatus.IDLE:
                return

            pending = await self._stores.task_store.list_pending_todo(next_id)
            if not pending:
                await self._set_session_status(next_id, SessionStatus.COMPLETED)
                current_id = next_id
                continue

            if not next_session.is_active:
                await self._stores.session_store.update_active(next_id, True)
            log.info("session_chain_advanced", from_session_id=current_id, session_id=next_id)
            await self.process_session(next_id)
            return

    # ============================================================
    # 任务启动
    # ============================================================

    async def _start_task(self, task: Task, session: Session) -> None:
        project = await self._stores.project_store.get_project(session.project_id)
        if project is None:
            log.error(
                "project_not_found",
                session_id=session.session_id,
                project_id=session.project_id,
            )
            return

        task_id = task.task_id
        session_id = session.session_id

        await self._stores.task_store.mark_started(task_id)
        self._running_tasks[task_id] = session_id

        started = await self._stores.task_store.get_task(task_id)
        await self._notify(
            NotificationType.TASK_STARTED,
            {"task_id": task_id, "session_id": session_id, "task": _dump(started)},
        )

        model = session.model or project.default_model
        event = await self._stores.event_store.append_event(
            task_id,
            "system",
            TaskStartedPayload(prompt=task.prompt, model=model).model_dump(),
        )
        await self._notify_progress(task_id, session_id, event)

        log.info(
            "task_started",
            task_id=task_id,
            session_id=session_id,
            model=model,
            resume=bool(session.resume_token),
        )

        options = ExecutionOptions(
            prompt=task.prompt,
            model=model,
            working_directory=project.root_directory,
            permission_level=project.permission_level,
            resume_token=session.resume_token,
        )
        callbacks = _TaskCallbacks(self, task_id, session_id, session.project_id)
        try:
            await self._executor.execute_task(task_id, options, callbacks)
        except TaskAlreadyRunningError:
            log.error("task_already_running", task_id=task_id, session_id=session_id)

    # ============================================================
    # 执行器回调处理
    # ============================================================

    async def _handle_data(
        self,
        callbacks: "_TaskCallbacks",
        event: dict[str, Any],
    ) -> None:
        task_id = callbacks.task_id
        event_type = event.get("type") or "raw"

        if (
            event_type in TERMINAL_EVENT_TYPES
            and await self._stores.event_store.has_terminal_event(task_id)
        ):
            # 中止时已写入终止标记
            log.debug("duplicate_terminal_event_skipped", task_id=task_id, event_type=event_type)
            return

        try:
            stored = await self._stores.event_store.append_event(task_id, event_type, event)
        except aiosqlite.IntegrityError:
            # 任务已被删除，进程仍在退出中
            log.debug("task_event_dropped", task_id=task_id, event_type=event_type)
            return
        await self._notify_progress(task_id, callbacks.session_id, stored)

        if self._tracker is not None:
            self._tracker.track_event(task_id, event)
            if event_type in ("rate_limit_event", "result"):
                await self._notify(
                    NotificationType.USAGE_UPDATED,
                    self._tracker.snapshot().model_dump(mode="json"),
                )

        if event_type == "system" and event.get("subtype") == "init" and event.get("session_id"):
            await self._stores.session_store.update_resume_token(
                callbacks.session_id, event["session_id"]
            )

        if event_type == "result" and event.get("result"):
            callbacks.result_text.append(str(event["result"]))
        elif event_type == "assistant" and event.get("message"):
            callbacks.result_text.append(_assistant_text(event["message"]))

    async def _handle_complete(self, callbacks: "_TaskCallbacks", info: CompletionInfo) -> None:
        task_id = callbacks.task_id
        session_id = callbacks.session_id

        if self._tracker is not None:
            self._tracker.track_task_complete(task_id, True)

        text = "\n".join(callbacks.result_text).strip()
        asks = detect_question_in_result(text)

        # 终止状态落库后才移除 _running_tasks 记录
        try:
            if info.resume_token:
                await self._stores.session_store.update_resume_token(
                    session_id, info.resume_token
                )

            task = await self._stores.task_store.get_task(task_id)
            if task is None or task.status in TERMINAL_STATES:
                # 已被中止或删除
                return

            event = await finish_task_with_event(
                self._stores.conn,
                self._stores.event_store,
                self._stores.task_store,
                task_id,
                TaskStatus.COMPLETED,
                "result",
                ResultPayload(subtype="success", result=RESULT_NO_OUTPUT).model_dump(),
            )
            if asks:
                # 须在移除运行记录前登记
                self._pending_input[task_id] = _PendingInput(
                    session_id=session_id,
                    project_id=callbacks.project_id,
                    prompt=text,
                )
        finally:
            self._running_tasks.pop(task_id, None)
        if event is not None:
            await self._notify_progress(task_id, session_id, event)

        done = await self._stores.task_store.get_task(task_id)
        await self._notify(
            NotificationType.TASK_COMPLETED,
            {
                "task_id": task_id,
                "session_id": session_id,
                "task": _dump(done),
                "result": info.model_dump(),
            },
        )
        log.info("task_completed", task_id=task_id, session_id=session_id)

        if asks:
            log.info("human_input_requested", task_id=task_id, session_id=session_id)
            await self._notify(
                NotificationType.TASK_HUMAN_INPUT,
                {"task_id": task_id, "session_id": session_id, "prompt": text},
            )
            return

        session = await self._stores.session_store.get_session(session_id)
        if session is not None and session.is_active:
            self.schedule(session_id)

    async def _handle_error(self, callbacks: "_TaskCallbacks", info: FailureInfo) -> None:
        task_id = callbacks.task_id
        session_id = callbacks.session_id
        status = TaskStatus.ABORTED if info.aborted else TaskStatus.FAILED
        error = info.error or f"Exit code: {info.exit_code}"

        if not info.aborted:
            log.error(
                "task_failed",
                task_id=task_id,
                session_id=session_id,
                exit_code=info.exit_code,
                error=error,
            )

        if self._tracker is not None:
            self._tracker.track_task_complete(task_id, False)

        finished_now = False
        try:
            if info.resume_token:
                await self._stores.session_store.update_resume_token(
                    session_id, info.resume_token
                )

            task = await self._stores.task_store.get_task(task_id)
            if task is not None and task.status not in TERMINAL_STATES:
                if info.aborted:
                    event_type, payload = "aborted", AbortedPayload().model_dump()
                else:
                    event_type = "error"
                    payload = ErrorPayload(text=error, exit_code=info.exit_code).model_dump()
                event = await finish_task_with_event(
                    self._stores.conn,
                    self._stores.event_store,
                    self._stores.task_store,
                    task_id,
                    status,
                    event_type,
                    payload,
                )
                finished_now = True
        finally:
            self._running_tasks.pop(task_id, None)

        if finished_now:
            if event is not None:
                await self._notify_progress(task_id, session_id, event)

            finished = await self._stores.task_store.get_task(task_id)
            await self._notify(
                NotificationType.TASK_ABORTED if info.aborted else NotificationType.TASK_FAILED,
                {
                    "task_id": task_id,
                    "session_id": session_id,
                    "task": _dump(finished),
                    "error": error,
                },
            )

        # 失败不阻塞队列
        self.schedule(session_id)

    async def _handle_human_input(
        self,
        callbacks: "_TaskCallbacks",
        event: dict[str, Any],
    ) -> None:
        task_id = callbacks.task_id
        try:
            stored = await self._stores.event_store.append_event(task_id, "human_input", event)
        except aiosqlite.IntegrityError:
            log.debug("task_event_dropped", task_id=task_id, event_type="human_input")
            return
        await self._notify_progress(task_id, callbacks.session_id, stored)
        await self._notify(
            NotificationType.TASK_HUMAN_INPUT,
            {
                "task_id": task_id,
                "session_id": callbacks.session_id,
                "prompt": event.get("text") or json.dumps(event, ensure_ascii=False),
            },
        )

    # ============================================================
    # 中止 / 人工回复
    # ============================================================

    async def abort_task(self, task_id: str) -> bool:
        """中止任务

        等待人工回复的任务只清除等待状态并恢复调度；
        运行中的任务委托执行器中止，成功后立即标记 aborted。
        """
        pending = self._pending_input.pop(task_id, None)
        if pending is not None:
            await self._notify(
                NotificationType.TASK_HUMAN_INPUT_CLEARED,
                {"task_id": task_id, "session_id": pending.session_id},
            )
            self.schedule(pending.session_id)
            return True

        if not self._executor.abort(task_id):
            return False

        session_id = self._running_tasks.get(task_id)
        log.info("task_abort_requested", task_id=task_id, session_id=session_id)

        aborted_now = False
        try:
            task = await self._stores.task_store.get_task(task_id)
            if task is not None and task.status not in TERMINAL_STATES:
                event = await finish_task_with_event(
                    self._stores.conn,
                    self._stores.event_store,
                    self._stores.task_store,
                    task_id,
                    TaskStatus.ABORTED,
                    "aborted",
                    AbortedPayload().model_dump(),
                )
                session_id = session_id or task.session_id
                aborted_now = True
        finally:
            self._running_tasks.pop(task_id, None)

        if aborted_now:
            if event is not None:
                await self._notify_progress(task_id, session_id, event)
            aborted = await self._stores.task_store.get_task(task_id)
            await self._notify(
                NotificationType.TASK_ABORTED,
                {"task_id": task_id, "session_id": session_id, "task": _dump(aborted)},
            )

        if session_id:
            self.schedule(session_id)
        return True

    async def send_human_response(self, task_id: str, response: str) -> Task | None:
        """提交人工回复：在同一 session 队尾追加一个续接任务

        Returns:
            新建的任务；task_id 未在等待人工回复时返回 None
        """
        pending = self._pending_input.pop(task_id, None)
        if pending is None:
            return None

        await self._notify(
            NotificationType.TASK_HUMAN_INPUT_CLEARED,
            {"task_id": task_id, "session_id": pending.session_id},
        )

        now = datetime.now(UTC)
        max_order = await self._stores.task_store.get_max_todo_order(pending.session_id)
        follow_up = Task(
            task_id=str(ULID()),
            project_id=pending.project_id,
            session_id=pending.session_id,
            prompt=response,
            status=TaskStatus.PENDING,
            location=TaskLocation.TODO,
            task_order=max_order + 1,
            created_at=now,
            updated_at=now,
        )
        await self._stores.task_store.create_task(follow_up)
        log.info(
            "human_response_received",
            task_id=task_id,
            follow_up_task_id=follow_up.task_id,
            session_id=pending.session_id,
        )

        await self._notify(
            NotificationType.TASK_CREATED,
            {
                "task": _dump(follow_up),
                "session_id": pending.session_id,
                "project_id": pending.project_id,
            },
        )
        self.schedule(pending.session_id, delay=self._human_response_delay)
        return follow_up

    # ============================================================
    # 查询 / 生命周期
    # ============================================================

    def is_task_running(self, task_id: str) -> bool:
        return task_id in self._running_tasks

    def is_awaiting_input(self, task_id: str) -> bool:
        return task_id in self._pending_input

    def get_running_task_for_session(self, session_id: str) -> str | None:
        for task_id, sid in self._running_tasks.items():
            if sid == session_id:
                return task_id
        return None

    def running_task_ids(self) -> list[str]:
        return list(self._running_tasks)

    def pending_input_task_ids(self) -> list[str]:
        return list(self._pending_input)

    def discard_task(self, task_id: str) -> None:
        """任务被删除：丢弃其等待人工回复状态"""
        if self._pending_input.pop(task_id, None) is not None:
            log.info("human_input_discarded", task_id=task_id)

    def discard_session(self, session_id: str) -> None:
        """session 被删除：丢弃其等待状态与锁"""
        for task_id, pending in list(self._pending_input.items()):
            if pending.session_id == session_id:
                self.discard_task(task_id)
        self._session_locks.pop(session_id, None)

    async def aclose(self) -> None:
        """取消延迟调度并中止所有运行中的进程"""
        self._closed = True
        background = list(self._background)
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)
        await self._executor.aclose()

    # ============================================================
    # 广播
    # ============================================================

    async def _set_session_status(self, session_id: str, status: SessionStatus) -> None:
        await self._stores.session_store.update_status(session_id, status)
        session = await self._stores.session_store.get_session(session_id)
        await self._notify(NotificationType.SESSION_UPDATED, _dump(session))

    async def _notify_progress(self, task_id: str, session_id: str | None, event) -> None:
        await self._notify(
            NotificationType.TASK_PROGRESS,
            {
                "task_id": task_id,
                "session_id": session_id,
                "event": event.model_dump(mode="json"),
            },
        )

    async def _notify(self, notification_type: NotificationType, data: dict[str, Any]) -> None:
        if self._hub is not None:
            await self._hub.publish(notification_type, data)


class _TaskCallbacks:
    """单个任务的执行器回调，绑定 task / session 上下文"""

    def __init__(
        self,
        scheduler: SessionScheduler,
        task_id: str,
        session_id: str,
        project_id: str,
    ) -> None:
        self._scheduler = scheduler
        self.task_id = task_id
        self.session_id = session_id
        self.project_id = project_id
        # assistant / result 文本，完成后用于提问检测
        self.result_text: list[str] = []

    async def on_data(self, event: dict[str, Any]) -> None:
        await self._scheduler._handle_data(self, event)

    async def on_complete(self, info: CompletionInfo) -> None:
        await self._scheduler._handle_complete(self, info)

    async def on_error(self, info: FailureInfo) -> None:
        await self._scheduler._handle_error(self, info)

    async def on_human_input(self, event: dict[str, Any]) -> None:
        await self._scheduler._handle_human_input(self, event)


def _assistant_text(message: Any) -> str:
    """提取 assistant 消息中的文本块"""
    if isinstance(message, str):
        return message
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "\n".join(
                block.get("text", "")
                for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            )
    return ""


def _dump(model) -> dict[str, Any] | None:
    return model.model_dump(mode="json") if model is not None else None
