"""task_seq 单调递增测试

测试内容：
1. 同一 task 内 task_seq 严格单调递增
2. 不同 task 的序号相互独立
3. 重复 task_seq 数据库层报错
4. 终止标记检测
"""

import aiosqlite
import pytest
import pytest_asyncio

S1 = "01JSESS0000000000000000001"
T1 = "01JTASK0000000000000000001"
T2 = "01JTASK0000000000000000002"


@pytest_asyncio.fixture
async def tasks(store_group, project, make_session, make_task):
    await store_group.session_store.create_session(make_session(S1))
    await store_group.task_store.create_task(make_task(T1, S1))
    await store_group.task_store.create_task(make_task(T2, S1))
    return store_group.event_store


class TestEventSeq:
    async def test_first_seq_is_one(self, tasks):
        event = await tasks.append_event(T1, "system", {"type": "system"})
        assert event.task_seq == 1

    async def test_seq_strictly_increasing(self, tasks):
        seqs = []
        for i in range(5):
            event = await tasks.append_event(T1, "assistant", {"i": i})
            seqs.append(event.task_seq)
        assert seqs == [1, 2, 3, 4, 5]

        events = await tasks.get_events_for_task(T1)
        assert [e.task_seq for e in events] == [1, 2, 3, 4, 5]
        assert [e.payload["i"] for e in events] == [0, 1, 2, 3, 4]

    async def test_seq_independent_per_task(self, tasks):
        await tasks.append_event(T1, "system", {})
        await tasks.append_event(T1, "assistant", {})
        event = await tasks.append_event(T2, "system", {})
        assert event.task_seq == 1

    async def test_duplicate_seq_rejected(self, tasks, store_group):
        await tasks.append_event(T1, "system", {})
        with pytest.raises(aiosqlite.IntegrityError):
            await store_group.conn.execute(
                """
                INSERT INTO task_events (event_id, task_id, task_seq, event_type, payload, ts)
                VALUES ('dup', ?, 1, 'system', '{}', '2026-01-01T00:00:00+00:00')
                """,
                (T1,),
            )

    async def test_unknown_task_rejected(self, tasks):
        """外键约束：已删除 / 不存在的任务不能追加事件"""
        with pytest.raises(aiosqlite.IntegrityError):
            await tasks.append_event("01JTASK0000000000000000099", "system", {})

    async def test_payload_roundtrip_unicode(self, tasks):
        await tasks.append_event(T1, "assistant", {"text": "이 방식으로 진행할까요?"})
        events = await tasks.get_events_for_task(T1)
        assert events[0].payload["text"] == "이 방식으로 진행할까요?"


class TestTerminalMarker:
    async def test_no_terminal_initially(self, tasks):
        await tasks.append_event(T1, "assistant", {})
        assert await tasks.has_terminal_event(T1) is False

    @pytest.mark.parametrize("event_type", ["result", "error", "aborted"])
    async def test_detects_terminal(self, tasks, event_type):
        await tasks.append_event(T1, event_type, {"type": event_type})
        assert await tasks.has_terminal_event(T1) is True
        assert await tasks.has_terminal_event(T2) is False
