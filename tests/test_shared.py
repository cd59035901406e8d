import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from fleetopia_shared import RedisRateLimiter, SlidingWindowLimiter, env_bool, env_float, env_list


def _app(limiter, **kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(limiter, **kwargs)

    @app.get("/ping")
    def ping():
        return {"ok": True}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


def test_memory_limiter_returns_429(monkeypatch):
    monkeypatch.setenv("RL_TEST_DISABLE", "false")
    monkeypatch.delenv("RL_LIMIT_PER_MINUTE_OVERRIDE", raising=False)
    client = TestClient(_app(SlidingWindowLimiter, limit_per_minute=3, auth_boost=1))
    codes = [client.get("/ping").status_code for _ in range(5)]
    assert codes == [200, 200, 200, 429, 429]
    r = client.get("/ping")
    assert r.json()["error"]["code"] == "rate_limited"
    assert int(r.headers["Retry-After"]) >= 1
    # Health checks never count
    assert all(client.get("/health").status_code == 200 for _ in range(5))


def test_bearer_clients_get_boosted_budget(monkeypatch):
    monkeypatch.setenv("RL_TEST_DISABLE", "false")
    monkeypatch.delenv("RL_LIMIT_PER_MINUTE_OVERRIDE", raising=False)
    monkeypatch.delenv("RL_AUTH_BOOST_OVERRIDE", raising=False)
    client = TestClient(_app(SlidingWindowLimiter, limit_per_minute=2, auth_boost=3))
    h = {"Authorization": "Bearer abc"}
    codes = [client.get("/ping", headers=h).status_code for _ in range(7)]
    assert codes.count(200) == 6
    assert codes[-1] == 429


def test_redis_limiter_fails_open_without_server():
    client = TestClient(_app(RedisRateLimiter, redis_url="redis://127.0.0.1:1/0", limit_per_minute=1))
    assert [client.get("/ping").status_code for _ in range(3)] == [200, 200, 200]


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("X_FLAG", "yes")
    monkeypatch.setenv("X_LIST", "a, b,,c")
    monkeypatch.setenv("X_NUM", "0.25")
    assert env_bool("X_FLAG") is True
    assert env_bool("X_MISSING", default=True) is True
    assert env_list("X_LIST") == ["a", "b", "c"]
    assert env_float("X_NUM", default=1.0) == 0.25
    assert env_float("X_MISSING", default=1.5) == 1.5

    monkeypatch.setenv("X_FLAG", "maybe")
    with pytest.raises(ValueError):
        env_bool("X_FLAG")
    monkeypatch.setenv("X_NUM", "-1")
    with pytest.raises(ValueError):
        env_float("X_NUM", default=1.0, minimum=0.0)
