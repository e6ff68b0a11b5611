"""Session API 测试"""


async def _create_session(client, project_id: str, **fields) -> dict:
    body = {"project_id": project_id, "name": fields.pop("name", "session"), **fields}
    resp = await client.post("/api/sessions", json=body)
    assert resp.status_code == 201
    return resp.json()


class TestSessionsApi:
    async def test_create_with_prompt(self, client, api_project):
        session = await _create_session(
            client, api_project["project_id"], prompt="  write tests  "
        )
        assert session["status"] == "idle"
        assert session["is_active"] is False
        assert session["session_order"] == 0

        resp = await client.get("/api/tasks", params={"session_id": session["session_id"]})
        tasks = resp.json()
        assert len(tasks) == 1
        assert tasks[0]["prompt"] == "write tests"
        assert tasks[0]["location"] == "todo"
        assert tasks[0]["task_order"] == 0

    async def test_create_without_prompt(self, client, api_project):
        session = await _create_session(client, api_project["project_id"])
        resp = await client.get("/api/tasks", params={"session_id": session["session_id"]})
        assert resp.json() == []

    async def test_create_unknown_project(self, client):
        resp = await client.post(
            "/api/sessions",
            json={"project_id": "01JPROJ00000000000000MISSING", "name": "s"},
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "PROJECT_NOT_FOUND"

    async def test_list_and_order(self, client, api_project):
        project_id = api_project["project_id"]
        first = await _create_session(client, project_id, name="first")
        second = await _create_session(client, project_id, name="second")
        assert second["session_order"] == first["session_order"] + 1

        resp = await client.get("/api/sessions", params={"project_id": project_id})
        assert [s["name"] for s in resp.json()] == ["first", "second"]

        resp = await client.post(
            "/api/sessions/reorder",
            json={
                "session_orders": [
                    {"session_id": first["session_id"], "session_order": 5},
                    {"session_id": second["session_id"], "session_order": 1},
                ]
            },
        )
        assert resp.json() == {"success": True}
        resp = await client.get("/api/sessions", params={"project_id": project_id})
        assert [s["name"] for s in resp.json()] == ["second", "first"]

    async def test_list_requires_project(self, client):
        resp = await client.get("/api/sessions")
        assert resp.status_code == 422

    async def test_get_not_found(self, client):
        resp = await client.get("/api/sessions/01JSESS00000000000000MISSING")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "SESSION_NOT_FOUND"

    async def test_update_fields(self, client, api_project):
        session = await _create_session(client, api_project["project_id"])
        resp = await client.put(
            f"/api/sessions/{session['session_id']}",
            json={"name": "renamed", "model": "claude-opus"},
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "renamed"
        assert resp.json()["model"] == "claude-opus"

        resp = await client.put(f"/api/sessions/{session['session_id']}", json={"model": None})
        assert resp.json()["model"] is None


class TestSessionChainApi:
    async def test_link_and_unlink(self, client, api_project):
        project_id = api_project["project_id"]
        a = await _create_session(client, project_id, name="a")
        b = await _create_session(client, project_id, name="b")

        resp = await client.put(
            f"/api/sessions/{a['session_id']}",
            json={"next_session_id": b["session_id"]},
        )
        assert resp.json()["next_session_id"] == b["session_id"]

        resp = await client.put(
            f"/api/sessions/{a['session_id']}",
            json={"next_session_id": None},
        )
        assert resp.json()["next_session_id"] is None

    async def test_self_chain_rejected(self, client, api_project):
        session = await _create_session(client, api_project["project_id"])
        resp = await client.put(
            f"/api/sessions/{session['session_id']}",
            json={"next_session_id": session["session_id"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_REQUEST"

    async def test_chain_to_missing_session(self, client, api_project):
        session = await _create_session(client, api_project["project_id"])
        resp = await client.put(
            f"/api/sessions/{session['session_id']}",
            json={"next_session_id": "01JSESS00000000000000MISSING"},
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "SESSION_NOT_FOUND"

    async def test_deleting_target_clears_pointer(self, client, api_project):
        project_id = api_project["project_id"]
        a = await _create_session(client, project_id, name="a")
        b = await _create_session(client, project_id, name="b")
        await client.put(
            f"/api/sessions/{a['session_id']}",
            json={"next_session_id": b["session_id"]},
        )

        resp = await client.delete(f"/api/sessions/{b['session_id']}")
        assert resp.json() == {"success": True}

        resp = await client.get(f"/api/sessions/{a['session_id']}")
        assert resp.json()["next_session_id"] is None


class TestStartSession:
    async def test_start_running_session_rejected(self, client, api_project):
        session = await _create_session(client, api_project["project_id"])
        await client.put(f"/api/sessions/{session['session_id']}", json={"status": "running"})

        resp = await client.post(f"/api/sessions/{session['session_id']}/start")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "SESSION_ALREADY_RUNNING"

    async def test_start_completed_without_tasks(self, client, api_project):
        session = await _create_session(client, api_project["project_id"])
        await client.put(f"/api/sessions/{session['session_id']}", json={"status": "completed"})

        resp = await client.post(f"/api/sessions/{session['session_id']}/start")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "NO_PENDING_TASKS"

    async def test_start_completed_with_tasks_resets(self, client, api_project):
        session = await _create_session(client, api_project["project_id"], prompt="hi")
        await client.put(f"/api/sessions/{session['session_id']}", json={"status": "completed"})

        resp = await client.post(f"/api/sessions/{session['session_id']}/start")
        assert resp.status_code == 200
        # 未激活：仅重置状态，不启动任务
        assert resp.json()["status"] == "idle"

    async def test_start_missing_session(self, client):
        resp = await client.post("/api/sessions/01JSESS00000000000000MISSING/start")
        assert resp.status_code == 404


class TestDeleteSession:
    async def test_delete_removes_tasks(self, client, api_project):
        session = await _create_session(client, api_project["project_id"], prompt="hi")
        session_id = session["session_id"]

        resp = await client.delete(f"/api/sessions/{session_id}")
        assert resp.json() == {"success": True}

        assert (await client.get(f"/api/sessions/{session_id}")).status_code == 404
        resp = await client.get("/api/tasks", params={"session_id": session_id})
        assert resp.json() == []

    async def test_delete_missing(self, client):
        resp = await client.delete("/api/sessions/01JSESS00000000000000MISSING")
        assert resp.status_code == 404
