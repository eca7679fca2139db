import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from disaster_training.rate_limit import RateLimiter


class FakePipeline:
    def __init__(self, store, fail=False):
        self.store = store
        self.fail = fail
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        self.commands.append(("incr", key))

    def expire(self, key, seconds):
        self.commands.append(("expire", key, seconds))

    async def execute(self):
        if self.fail:
            raise RedisConnectionError("connection refused")
        results = []
        for command in self.commands:
            if command[0] == "incr":
                self.store[command[1]] = self.store.get(command[1], 0) + 1
                results.append(self.store[command[1]])
            else:
                results.append(True)
        return results


class FakeRedis:
    def __init__(self, fail=False):
        self.store = {}
        self.fail = fail
        self.closed = False

    def pipeline(self, transaction=True):
        return FakePipeline(self.store, self.fail)

    async def aclose(self):
        self.closed = True


async def test_allows_until_limit_then_blocks():
    limiter = RateLimiter(FakeRedis(), window_sec=60, max_requests=3)
    results = [await limiter.hit("10.0.0.1", now=120.0) for _ in range(4)]
    assert results == [(True, 2), (True, 1), (True, 0), (False, 0)]


async def test_clients_and_windows_are_independent():
    limiter = RateLimiter(FakeRedis(), window_sec=60, max_requests=1)
    assert await limiter.hit("10.0.0.1", now=0.0) == (True, 0)
    assert await limiter.hit("10.0.0.2", now=0.0) == (True, 0)
    assert (await limiter.hit("10.0.0.1", now=30.0))[0] is False
    assert await limiter.hit("10.0.0.1", now=61.0) == (True, 0)


def test_key_includes_window_index():
    limiter = RateLimiter(FakeRedis(), window_sec=900, max_requests=100)
    assert limiter._key("1.2.3.4", now=1800.0) == "ratelimit:1.2.3.4:2"


async def test_fails_open_when_redis_is_down():
    limiter = RateLimiter(FakeRedis(fail=True), window_sec=60, max_requests=5)
    assert await limiter.hit("10.0.0.1") == (True, 5)


async def test_close():
    redis = FakeRedis()
    await RateLimiter(redis, 60, 5).close()
    assert redis.closed


@pytest.fixture
def limited_app(hub):
    from disaster_training.main import app
    app.state.rate_limiter = RateLimiter(FakeRedis(), window_sec=60, max_requests=2)
    yield app
    del app.state.rate_limiter


async def test_middleware_returns_429(client, limited_app):
    first = await client.get("/api/trainings")
    assert first.headers["X-RateLimit-Remaining"] == "1"
    await client.get("/api/trainings")

    blocked = await client.get("/api/trainings")
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "900"
    assert blocked.json()["success"] is False

    # Probes outside the API prefix are not counted
    assert (await client.get("/live")).status_code == 200
