from unittest.mock import patch

from disaster_training.services.system_service import SystemService


async def _redis_up():
    return {"status": "healthy", "latency_ms": 0.4}


async def _redis_down():
    return {"status": "unhealthy", "latency_ms": None, "message": "connection refused"}


async def test_health_healthy(client, sio):
    await sio.connect("s1")
    await sio.trigger("authenticate", "s1", {"userId": "1", "role": "Volunteer", "state": "Goa"})

    with patch.object(SystemService, "check_redis", _redis_up):
        response = await client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Server is running"
    data = body["data"]
    assert data["status"] == "healthy"
    assert data["components"]["database"]["status"] == "healthy"
    assert data["realtime"] == {"connectedClients": 1, "liveSessions": 0}
    assert set(data["system"]) == {"cpu", "memory"}


async def test_health_degraded_without_redis(client):
    with patch.object(SystemService, "check_redis", _redis_down):
        response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "degraded"


async def test_probes(client):
    assert (await client.get("/live")).json() == {"status": "alive"}
    assert (await client.get("/ready")).json() == {"status": "ready"}
    root = (await client.get("/")).json()
    assert root["health"] == "/api/health"
    assert "X-Process-Time" in (await client.get("/")).headers
