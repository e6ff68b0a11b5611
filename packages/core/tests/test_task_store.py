"""TaskStore 测试

测试内容：
1. 待执行队列按 task_order 排序，只含 todo + pending
2. 最大序号查询
3. 开始 / 结束标记与队列移动
4. 项目级 backlog 与 session 队列隔离
"""

import pytest_asyncio
from agentdeck.core.models import TaskLocation, TaskStatus

S1 = "01JSESS0000000000000000001"
S2 = "01JSESS0000000000000000002"
T1 = "01JTASK0000000000000000001"
T2 = "01JTASK0000000000000000002"
T3 = "01JTASK0000000000000000003"
T4 = "01JTASK0000000000000000004"


@pytest_asyncio.fixture
async def sessions(store_group, project, make_session):
    await store_group.session_store.create_session(make_session(S1))
    await store_group.session_store.create_session(make_session(S2))


class TestPendingQueue:
    async def test_ordered_by_task_order(self, store_group, sessions, make_task):
        store = store_group.task_store
        await store.create_task(make_task(T1, S1, task_order=2))
        await store.create_task(make_task(T2, S1, task_order=0))
        await store.create_task(make_task(T3, S1, task_order=1))

        pending = await store.list_pending_todo(S1)
        assert [t.task_id for t in pending] == [T2, T3, T1]

    async def test_excludes_other_locations_and_statuses(
        self, store_group, sessions, make_task
    ):
        store = store_group.task_store
        await store.create_task(make_task(T1, S1, task_order=0))
        await store.create_task(make_task(T2, S1, location=TaskLocation.BACKLOG))
        await store.create_task(make_task(T3, S1, status=TaskStatus.RUNNING))
        await store.create_task(make_task(T4, S2))

        pending = await store.list_pending_todo(S1)
        assert [t.task_id for t in pending] == [T1]

    async def test_running_task(self, store_group, sessions, make_task):
        store = store_group.task_store
        await store.create_task(make_task(T1, S1))
        assert await store.get_running_task(S1) is None

        await store.mark_started(T1)
        running = await store.get_running_task(S1)
        assert running is not None
        assert running.task_id == T1
        assert running.started_at is not None


class TestOrders:
    async def test_max_todo_order(self, store_group, sessions, make_task):
        store = store_group.task_store
        assert await store.get_max_todo_order(S1) == -1
        await store.create_task(make_task(T1, S1, task_order=3))
        await store.create_task(make_task(T2, S1, task_order=7, location=TaskLocation.DONE))
        assert await store.get_max_todo_order(S1) == 3

    async def test_max_backlog_order(self, store_group, project, make_task):
        store = store_group.task_store
        assert await store.get_max_backlog_order(project.project_id) == -1
        await store.create_task(make_task(T1, task_order=5))
        assert await store.get_max_backlog_order(project.project_id) == 5


class TestLifecycle:
    async def test_mark_finished_moves_to_done(self, store_group, sessions, make_task):
        store = store_group.task_store
        await store.create_task(make_task(T1, S1))
        await store.mark_started(T1)

        await store.mark_finished(T1, TaskStatus.FAILED)

        task = await store.get_task(T1)
        assert task.status == TaskStatus.FAILED
        assert task.location == TaskLocation.DONE
        assert task.completed_at is not None

    async def test_move_to_other_session(self, store_group, sessions, make_task):
        store = store_group.task_store
        await store.create_task(make_task(T1, S1))

        await store.move_task(T1, TaskLocation.TODO, S2, 9)

        task = await store.get_task(T1)
        assert task.session_id == S2
        assert task.task_order == 9
        assert await store.list_pending_todo(S1) == []

    async def test_update_prompt_and_order(self, store_group, sessions, make_task):
        store = store_group.task_store
        await store.create_task(make_task(T1, S1))
        await store.update_prompt(T1, "new prompt")
        await store.update_order(T1, 4)

        task = await store.get_task(T1)
        assert task.prompt == "new prompt"
        assert task.task_order == 4

    async def test_delete_task(self, store_group, sessions, make_task):
        store = store_group.task_store
        await store.create_task(make_task(T1, S1))
        await store_group.event_store.append_event(T1, "system", {"type": "system"})

        await store.delete_task(T1)

        assert await store.get_task(T1) is None
        assert await store_group.event_store.get_events_for_task(T1) == []


class TestListing:
    async def test_project_backlog_excludes_session_tasks(
        self, store_group, sessions, project, make_task
    ):
        store = store_group.task_store
        await store.create_task(make_task(T1))
        await store.create_task(make_task(T2, S1, location=TaskLocation.BACKLOG))

        backlog = await store.list_by_project(project.project_id, TaskLocation.BACKLOG)
        assert [t.task_id for t in backlog] == [T1]

    async def test_list_by_session_location(self, store_group, sessions, make_task):
        store = store_group.task_store
        await store.create_task(make_task(T1, S1, task_order=1))
        await store.create_task(make_task(T2, S1, task_order=0))
        await store.create_task(make_task(T3, S1, location=TaskLocation.BACKLOG))

        todo = await store.list_by_session(S1, TaskLocation.TODO)
        assert [t.task_id for t in todo] == [T2, T1]
        assert len(await store.list_by_session(S1)) == 3
