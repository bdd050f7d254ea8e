async def test_health(client):
    r = await client.get("/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


async def test_executions_dispatch_requires_internal_key(client):
    r = await client.post("/v1/internal/executions/dispatch")
    assert r.status_code == 403
