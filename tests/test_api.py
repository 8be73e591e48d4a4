from __future__ import annotations

from contextlib import ExitStack

import pytest
from fastapi.testclient import TestClient

from throttle.config import LimiterConfig, Settings
from throttle.main import create_app
from throttle.security.rate_limiter import RateLimiter, SlidingWindowRateLimiter


@pytest.fixture
def make_client(clock):
    """Build a test client around isolated limiters and explicit settings."""
    stack = ExitStack()

    def factory(**overrides) -> tuple[TestClient, RateLimiter]:
        settings = Settings(**overrides)
        limiter = RateLimiter(SlidingWindowRateLimiter(LimiterConfig(), clock=clock))
        http_limiter = RateLimiter(SlidingWindowRateLimiter(LimiterConfig(), clock=clock))
        client = stack.enter_context(TestClient(create_app(settings, limiter, http_limiter)))
        return client, limiter

    with stack:
        yield factory


def test_healthz_is_exempt_from_throttling(make_client):
    client, _ = make_client(rate_limit_requests=1)
    for _ in range(5):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert response.headers["X-XSS-Protection"] == "1; mode=block"


def test_check_endpoint_reports_decisions(make_client):
    client, _ = make_client()
    payload = {"key": "user-12345", "limit": 2}
    assert client.post("/v1/limits/check", json=payload).json()["allowed"] is True
    assert client.post("/v1/limits/check", json=payload).json()["allowed"] is True
    data = client.post("/v1/limits/check", json=payload).json()
    assert data == {"key": "user-12345", "limit": 2, "allowed": False}


def test_check_endpoint_blocks_non_positive_limits(make_client):
    client, _ = make_client()
    assert client.post("/v1/limits/check", json={"key": "x", "limit": 0}).json()["allowed"] is False
    assert client.post("/v1/limits/check", json={"key": "x", "limit": -5}).json()["allowed"] is False


def test_check_endpoint_validates_payload(make_client):
    client, _ = make_client()
    response = client.post("/v1/limits/check", json={"key": "x"})
    assert response.status_code == 422


def test_check_endpoint_does_not_share_history_with_client_throttle(make_client):
    client, _ = make_client(rate_limit_requests=100, admin_token="secret")
    # the test client's own address has already been seen by the middleware
    assert client.post("/v1/limits/reset").status_code == 403
    data = client.post("/v1/limits/check", json={"key": "testclient", "limit": 1}).json()
    assert data["allowed"] is True


def test_check_endpoint_is_not_throttled_per_caller(make_client):
    client, _ = make_client(rate_limit_requests=2)
    statuses = [
        client.post("/v1/limits/check", json={"key": f"key-{index}", "limit": 1}).status_code
        for index in range(20)
    ]
    assert statuses == [200] * 20


def test_middleware_throttles_per_client(make_client, clock):
    client, _ = make_client(rate_limit_requests=2, admin_token="secret")
    assert client.post("/v1/limits/reset").status_code == 403
    assert client.post("/v1/limits/reset").status_code == 403
    denied = client.post("/v1/limits/reset")
    assert denied.status_code == 429
    assert denied.json() == {"detail": "rate limited"}
    assert denied.headers["X-XSS-Protection"] == "1; mode=block"

    clock.advance(10_001)
    assert client.post("/v1/limits/reset").status_code == 403


def test_middleware_ignores_forwarded_header_by_default(make_client):
    client, _ = make_client(rate_limit_requests=2, admin_token="secret")
    statuses = [
        client.post("/v1/limits/reset", headers={"X-Forwarded-For": f"198.51.100.{index}"}).status_code
        for index in range(3)
    ]
    assert statuses == [403, 403, 429]


def test_middleware_uses_forwarded_header_when_trusted(make_client):
    client, _ = make_client(rate_limit_requests=2, admin_token="secret", rate_limit_trust_forwarded=True)
    headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
    assert client.post("/v1/limits/reset", headers=headers).status_code == 403
    assert client.post("/v1/limits/reset", headers=headers).status_code == 403
    assert client.post("/v1/limits/reset", headers=headers).status_code == 429
    other = client.post("/v1/limits/reset", headers={"X-Forwarded-For": "203.0.113.8"})
    assert other.status_code == 403


def test_reset_disabled_without_admin_token(make_client):
    client, _ = make_client(admin_token="")
    response = client.post("/v1/limits/reset", headers={"X-Admin-Token": "anything"})
    assert response.status_code == 404


def test_reset_rejects_wrong_token(make_client):
    client, _ = make_client(admin_token="secret")
    assert client.post("/v1/limits/reset").status_code == 403
    assert client.post("/v1/limits/reset", headers={"X-Admin-Token": "nope"}).status_code == 403


def test_reset_clears_state(make_client):
    client, limiter = make_client(admin_token="secret", rate_limit_requests=100)
    assert limiter.check(1, "a")
    assert not limiter.check(1, "a")
    response = client.post("/v1/limits/reset", headers={"X-Admin-Token": "secret"})
    assert response.status_code == 204
    assert limiter.check(1, "a")


def test_metrics_exposes_decision_counter(make_client):
    client, _ = make_client()
    client.post("/v1/limits/check", json={"key": "m", "limit": 1})
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "throttle_decisions_total" in response.text


class ClosingRemote:
    def __init__(self) -> None:
        self.closed = 0

    def check(self, limit: int, key: str) -> bool:
        return True

    def reset(self) -> None:
        pass

    def close(self) -> None:
        self.closed += 1


def test_lifespan_closes_remote_backends(clock):
    remote, http_remote = ClosingRemote(), ClosingRemote()
    app = create_app(
        Settings(),
        RateLimiter(SlidingWindowRateLimiter(clock=clock), remote),
        RateLimiter(SlidingWindowRateLimiter(clock=clock), http_remote),
    )
    with TestClient(app) as client:
        assert client.get("/healthz").status_code == 200
        assert remote.closed == 0
    assert remote.closed == 1
    assert http_remote.closed == 1
