"""Integration tests for /feed routes."""
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from splitsync.api.main import create_app
from splitsync.api.routes.feed import get_feed_service
from splitsync.errors import TransientSyncError
from splitsync.feed.cache import TransactionCache
from splitsync.feed.refresh_policy import RefreshPolicy
from splitsync.feed.service import TransactionFeedService
from splitsync.remote.client import RemoteApi
from splitsync.storage.kv import InMemoryKeyValueStore


@pytest.fixture(name="remote")
def remote_fixture():
    remote = AsyncMock(spec=RemoteApi)
    remote.fetch_transactions.return_value = [{"transaction_id": "tx-1", "amount": "-4.20"}]
    return remote


@pytest.fixture(name="service")
def service_fixture(engine, remote, settings, clock):
    cache = TransactionCache(engine, settings=settings, clock=clock)
    policy = RefreshPolicy(
        InMemoryKeyValueStore(), last_fetch=cache.last_fetch_timestamp, settings=settings, clock=clock
    )
    return TransactionFeedService(engine, remote, policy, cache)


@pytest.fixture(name="client")
def client_fixture(engine, service):
    app = create_app()
    app.dependency_overrides[get_feed_service] = lambda: service
    with patch("splitsync.api.main.get_engine", return_value=engine), TestClient(app) as c:
        yield c


class TestRateLimit:
    def test_fresh_user(self, client, seeded_users):
        resp = client.get("/feed/rate-limit", params={"user_id": seeded_users[0].id})
        assert resp.status_code == 200
        assert resp.json() == {
            "remaining_calls": 4,
            "max_calls": 4,
            "cooldown_minutes_remaining": 0,
            "time_until_reset_ms": 0,
        }

    def test_user_id_required(self, client):
        assert client.get("/feed/rate-limit").status_code == 422


class TestRefresh:
    def test_refresh_returns_transactions(self, client, seeded_users, service):
        user_id = seeded_users[0].id
        resp = client.post("/feed/refresh", json={"user_id": user_id})

        assert resp.status_code == 200
        assert resp.json()["count"] == 1
        assert resp.json()["transactions"][0]["transaction_id"] == "tx-1"
        info = client.get("/feed/rate-limit", params={"user_id": user_id}).json()
        assert info["remaining_calls"] == 3
        assert info["cooldown_minutes_remaining"] == 30

    def test_quota_spent_is_429_with_rate_limit(self, client, seeded_users, service):
        user_id = seeded_users[0].id
        for _ in range(4):
            service.policy.record_feed_call(user_id)

        resp = client.post("/feed/refresh", json={"user_id": user_id})

        assert resp.status_code == 429
        detail = resp.json()["detail"]
        assert "limit" in detail["message"].lower()
        assert detail["rate_limit"]["remaining_calls"] == 0

    def test_unknown_user_is_404(self, client):
        resp = client.post("/feed/refresh", json={"user_id": 999})
        assert resp.status_code == 404

    def test_feed_unavailable_is_503(self, client, seeded_users, remote):
        remote.fetch_transactions.side_effect = TransientSyncError("upstream 502")
        resp = client.post("/feed/refresh", json={"user_id": seeded_users[0].id})
        assert resp.status_code == 503
