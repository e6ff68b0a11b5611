"""健康检查测试 -- /health 与 /ready"""


class TestHealth:
    async def test_liveness(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_readiness(self, client):
        resp = await client.get("/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ready"
        assert body["checks"]["sqlite"] == "ok"
        assert body["checks"]["agent_binary"] == "echo"
        assert body["checks"]["running_tasks"] == 0

    async def test_readiness_reports_missing_binary(self, app, client):
        app.state.runner_config = app.state.runner_config.model_copy(
            update={"agent_mode": "claude"}
        )
        resp = await client.get("/ready")
        # 可执行文件缺失不影响就绪
        assert resp.status_code == 200
        assert resp.json()["checks"]["agent_binary"] == "missing"
