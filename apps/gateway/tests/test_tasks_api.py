"""任务 API 测试 -- 创建 / 移动 / 中止 / 人工回复 / 删除的请求校验"""

import pytest_asyncio
from agentdeck.core.models import TaskStatus


@pytest_asyncio.fixture
async def api_session(client, api_project) -> dict:
    """未激活的 session，任务不会被调度"""
    resp = await client.post(
        "/api/sessions",
        json={"project_id": api_project["project_id"], "name": "work"},
    )
    return resp.json()


async def _create_task(client, project_id: str, **fields) -> dict:
    resp = await client.post(
        "/api/tasks",
        json={"project_id": project_id, "prompt": fields.pop("prompt", "do it"), **fields},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestCreateTask:
    async def test_defaults_to_backlog_without_session(self, client, api_project):
        task = await _create_task(client, api_project["project_id"])
        assert task["location"] == "backlog"
        assert task["session_id"] is None
        assert task["status"] == "pending"
        assert task["task_order"] == 0

    async def test_defaults_to_todo_with_session(self, client, api_project, api_session):
        project_id = api_project["project_id"]
        first = await _create_task(client, project_id, session_id=api_session["session_id"])
        second = await _create_task(client, project_id, session_id=api_session["session_id"])
        assert first["location"] == "todo"
        assert second["task_order"] == first["task_order"] + 1

    async def test_todo_requires_session(self, client, api_project):
        resp = await client.post(
            "/api/tasks",
            json={"project_id": api_project["project_id"], "prompt": "x", "location": "todo"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_REQUEST"

    async def test_cannot_create_in_done(self, client, api_project):
        resp = await client.post(
            "/api/tasks",
            json={"project_id": api_project["project_id"], "prompt": "x", "location": "done"},
        )
        assert resp.status_code == 400

    async def test_unknown_project(self, client):
        resp = await client.post(
            "/api/tasks",
            json={"project_id": "01JPROJ00000000000000MISSING", "prompt": "x"},
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "PROJECT_NOT_FOUND"

    async def test_empty_prompt_rejected(self, client, api_project):
        resp = await client.post(
            "/api/tasks",
            json={"project_id": api_project["project_id"], "prompt": ""},
        )
        assert resp.status_code == 422


class TestQueryTasks:
    async def test_list_requires_filter(self, client):
        resp = await client.get("/api/tasks")
        assert resp.status_code == 400

    async def test_list_by_project_backlog(self, client, api_project, api_session):
        project_id = api_project["project_id"]
        backlog = await _create_task(client, project_id)
        await _create_task(client, project_id, session_id=api_session["session_id"])

        resp = await client.get(
            "/api/tasks", params={"project_id": project_id, "location": "backlog"}
        )
        assert [t["task_id"] for t in resp.json()] == [backlog["task_id"]]

    async def test_get_and_events(self, client, api_project):
        task = await _create_task(client, api_project["project_id"])

        resp = await client.get(f"/api/tasks/{task['task_id']}")
        assert resp.json()["prompt"] == "do it"

        resp = await client.get(f"/api/tasks/{task['task_id']}/events")
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_not_found(self, client):
        missing = "01JTASK00000000000000MISSING"
        for resp in (
            await client.get(f"/api/tasks/{missing}"),
            await client.get(f"/api/tasks/{missing}/events"),
            await client.put(f"/api/tasks/{missing}", json={"prompt": "x"}),
            await client.post(f"/api/tasks/{missing}/abort"),
            await client.delete(f"/api/tasks/{missing}"),
        ):
            assert resp.status_code == 404
            assert resp.json()["error"]["code"] == "TASK_NOT_FOUND"

    async def test_update_prompt(self, client, api_project):
        task = await _create_task(client, api_project["project_id"])
        resp = await client.put(
            f"/api/tasks/{task['task_id']}", json={"prompt": "new", "task_order": 7}
        )
        assert resp.json()["prompt"] == "new"
        assert resp.json()["task_order"] == 7


class TestMoveTask:
    async def test_backlog_to_todo(self, client, api_project, api_session):
        task = await _create_task(client, api_project["project_id"])

        resp = await client.post(
            f"/api/tasks/{task['task_id']}/move",
            json={"location": "todo", "session_id": api_session["session_id"]},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["location"] == "todo"
        assert body["session_id"] == api_session["session_id"]
        assert body["task_order"] == 0

    async def test_todo_requires_session(self, client, api_project):
        task = await _create_task(client, api_project["project_id"])
        resp = await client.post(f"/api/tasks/{task['task_id']}/move", json={"location": "todo"})
        assert resp.status_code == 400

    async def test_running_task_cannot_move(self, app, client, api_project, api_session):
        task = await _create_task(
            client, api_project["project_id"], session_id=api_session["session_id"]
        )
        await app.state.store_group.task_store.mark_started(task["task_id"])

        resp = await client.post(
            f"/api/tasks/{task['task_id']}/move", json={"location": "backlog"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "TASK_RUNNING"

    async def test_finished_task_requeued_as_pending(
        self, app, client, api_project, api_session
    ):
        task = await _create_task(
            client, api_project["project_id"], session_id=api_session["session_id"]
        )
        await app.state.store_group.task_store.mark_finished(task["task_id"], TaskStatus.FAILED)

        resp = await client.post(
            f"/api/tasks/{task['task_id']}/move",
            json={"location": "todo"},
        )
        assert resp.json()["status"] == "pending"
        assert resp.json()["location"] == "todo"


class TestAbortAndHumanResponse:
    async def test_abort_pending_task_rejected(self, client, api_project):
        task = await _create_task(client, api_project["project_id"])
        resp = await client.post(f"/api/tasks/{task['task_id']}/abort")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "TASK_NOT_RUNNING"

    async def test_human_response_when_not_waiting(self, client, api_project):
        task = await _create_task(client, api_project["project_id"])
        resp = await client.post(
            f"/api/tasks/{task['task_id']}/human-response",
            json={"response": "yes"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "NOT_WAITING_FOR_INPUT"

    async def test_human_response_requires_text(self, client, api_project):
        task = await _create_task(client, api_project["project_id"])
        resp = await client.post(
            f"/api/tasks/{task['task_id']}/human-response",
            json={"response": ""},
        )
        assert resp.status_code == 422


class TestDeleteTask:
    async def test_delete(self, client, api_project):
        task = await _create_task(client, api_project["project_id"])

        resp = await client.delete(f"/api/tasks/{task['task_id']}")
        assert resp.json() == {"success": True}
        assert (await client.get(f"/api/tasks/{task['task_id']}")).status_code == 404

    async def test_reorder(self, client, api_project):
        project_id = api_project["project_id"]
        a = await _create_task(client, project_id, prompt="a")
        b = await _create_task(client, project_id, prompt="b")

        resp = await client.post(
            "/api/tasks/reorder",
            json={
                "task_orders": [
                    {"task_id": a["task_id"], "task_order": 3},
                    {"task_id": b["task_id"], "task_order": 0},
                ]
            },
        )
        assert resp.json() == {"success": True}

        resp = await client.get(
            "/api/tasks", params={"project_id": project_id, "location": "backlog"}
        )
        assert [t["prompt"] for t in resp.json()] == ["b", "a"]
