"""
End-to-end tests for the metered gateway pipeline.
"""

import asyncio
import re
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from service_gateway.app.main import create_app
from shared.config import ServiceConfig
from shared.keystore import InMemoryKeyValueStore


REQUEST_ID = re.compile(r"^[0-9a-f]{8}$")


class Backend:
    """Records forwarded requests and answers from a handler."""

    def __init__(self):
        self.requests = []
        self.fail = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)
        return httpx.Response(200, json={"path": request.url.path}, headers={"X-Backend": "1"})


def seed(store, balance=10, active=True, expires_at=None, target_id=None, with_client=True):
    async def _seed():
        if with_client:
            await store.put_json("client:c1", {
                "id": "c1",
                "name": "Acme",
                "plan": "basic",
                "type": "service",
                "createdAt": "2024-01-01T00:00:00+00:00",
            })
        await store.put_json("apikey:apk_test", {
            "key": "apk_test",
            "clientId": "c1",
            "targetId": target_id,
            "active": active,
            "expiresAt": expires_at,
            "createdAt": "2024-01-01T00:00:00+00:00",
        })
        await store.put("credits:c1", str(balance))

    asyncio.run(_seed())


def balance(store):
    return asyncio.run(store.get("credits:c1"))


def make_config(**overrides):
    settings = {"storage_backend": "memory", "admin_auth_key": "admin-secret"}
    settings.update(overrides)
    return ServiceConfig("gateway", 8000, **settings)


class TestGatewayPipeline:
    """Test cases for the request pipeline through the HTTP surface."""

    @pytest.fixture
    def store(self):
        return InMemoryKeyValueStore()

    @pytest.fixture
    def backend(self):
        return Backend()

    @pytest.fixture
    def client(self, store, backend):
        app = create_app(config=make_config(), store=store, transport=httpx.MockTransport(backend))
        with TestClient(app) as test_client:
            yield test_client

    def test_preflight(self, client):
        """Test OPTIONS is answered without authentication."""
        response = client.options("/api/v1/items", headers={"Origin": "https://app.example.com"})

        assert response.status_code == 204
        assert response.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
        assert REQUEST_ID.match(response.headers["X-Request-ID"])

    def test_missing_api_key(self, client):
        response = client.get("/api/v1/items")

        assert response.status_code == 401
        assert response.json() == {"error": "API key required", "code": 401}
        assert REQUEST_ID.match(response.headers["X-Request-ID"])

    def test_unknown_api_key(self, client):
        response = client.get("/api/v1/items", headers={"X-API-Key": "apk_unknown"})

        assert response.status_code == 403
        assert response.json() == {"error": "Invalid API key", "code": 403}

    def test_expired_key_not_debited(self, client, store, backend):
        """Test an expired key is rejected before any debit."""
        expired = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        seed(store, balance=10, expires_at=expired)

        response = client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 403
        assert balance(store) == "10"
        assert backend.requests == []

    def test_inactive_key(self, client, store):
        seed(store, active=False)

        response = client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 403

    def test_client_not_found(self, client, store):
        seed(store, with_client=False)

        response = client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 403
        assert response.json()["error"] == "Client not found"

    def test_target_not_found(self, client, store):
        seed(store)

        response = client.get("/nowhere", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 404
        assert response.json() == {"error": "Target not found", "code": 404}
        assert balance(store) == "10"

    def test_successful_proxy(self, client, store, backend):
        """Test a metered request is debited, forwarded and annotated."""
        seed(store, balance=10)

        response = client.get(
            "/api/v1/items?limit=5",
            headers={"X-API-Key": "apk_test", "Accept": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"path": "/items"}
        assert response.headers["X-Api-Gateway"] == "true"
        assert response.headers["X-Credits-Remaining"] == "8"
        assert response.headers["X-Credits-Used"] == "2"
        assert response.headers["X-Backend"] == "1"
        assert REQUEST_ID.match(response.headers["X-Request-ID"])
        assert balance(store) == "8"

        forwarded = backend.requests[0]
        assert str(forwarded.url) == "https://api-backend.example.com/items?limit=5"
        assert forwarded.headers["X-Gateway-Client-Id"] == "c1"
        assert forwarded.headers["X-Gateway-Plan"] == "basic"
        assert forwarded.headers["X-Request-ID"] == response.headers["X-Request-ID"]
        assert "x-api-key" not in forwarded.headers

    def test_credits_exhausted(self, client, store, backend):
        """Test balance 10 at cost 5: two successes, then 429 with zero remaining."""
        seed(store, balance=10)
        headers = {"X-API-Key": "apk_test"}

        first = client.get("/complex/report", headers=headers)
        second = client.get("/complex/report", headers=headers)
        third = client.get("/complex/report", headers=headers)

        assert first.headers["X-Credits-Remaining"] == "5"
        assert second.headers["X-Credits-Remaining"] == "0"
        assert third.status_code == 429
        assert third.json() == {"error": "Insufficient credits", "code": 429}
        assert third.headers["X-Credits-Remaining"] == "0"
        assert third.headers["X-Credits-Required"] == "5"
        assert len(backend.requests) == 2
        assert balance(store) == "0"

    def test_bound_target_used(self, client, store, backend):
        seed(store, target_id="complex-target")

        response = client.get("/complex/a/b", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 200
        assert str(backend.requests[0].url) == "https://complex-api.example.com/a/b"

    def test_bound_key_cannot_reach_other_target(self, client, store, backend):
        """Test a key bound to one target gets 404 elsewhere and is not debited."""
        seed(store, balance=10, target_id="complex-target")

        response = client.get("/api/v1/users", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 404
        assert response.json() == {"error": "Target not found", "code": 404}
        assert balance(store) == "10"
        assert backend.requests == []

    def test_bound_key_with_unknown_target(self, client, store, backend):
        seed(store, balance=10, target_id="retired-target")

        response = client.get("/api/v1/users", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 404
        assert balance(store) == "10"
        assert backend.requests == []

    def test_backend_failure_keeps_debit(self, client, store, backend):
        """Test 502 on network failure without a refund."""
        seed(store, balance=10)
        backend.fail = True

        response = client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 502
        assert response.json() == {"error": "Backend request failed", "code": 502}
        assert response.headers["X-Credits-Remaining"] == "8"
        assert REQUEST_ID.match(response.headers["X-Request-ID"])
        assert balance(store) == "8"

    def test_unexpected_error(self, client, store):
        """Test uncaught errors become 500 with a correlation id."""
        seed(store)
        service = client.app.state.gateway_service

        with patch.object(service.costs, "cost_for_target", side_effect=RuntimeError("boom")):
            response = client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error", "code": 500}
        assert REQUEST_ID.match(response.headers["X-Request-ID"])

    def test_security_headers(self, client):
        response = client.get("/api/v1/items")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["dependencies"] == {"store": "ok"}

    def test_service_paths_not_proxied(self, client, store, backend):
        """Test non-GET calls to service routes get 405 without a debit."""
        seed(store, balance=10)
        headers = {"X-API-Key": "apk_test"}

        health = client.post("/health", headers=headers)
        metrics = client.delete("/metrics", headers=headers)

        assert health.status_code == 405
        assert health.json() == {"error": "Method Not Allowed", "code": 405}
        assert health.headers["Allow"] == "GET"
        assert metrics.status_code == 405
        assert balance(store) == "10"
        assert backend.requests == []

    def test_metrics(self, client, store):
        seed(store)
        client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "gateway_credit_debits_total" in response.text


class TestGatewayPolicies:
    """Test cases for configurable pipeline behaviour."""

    def build(self, store, backend, **overrides):
        app = create_app(config=make_config(**overrides), store=store, transport=httpx.MockTransport(backend))
        return TestClient(app)

    def test_payment_required_status(self):
        store, backend = InMemoryKeyValueStore(), Backend()
        seed(store, balance=0)

        with self.build(store, backend, insufficient_credits_status=402) as client:
            response = client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 402
        assert response.json()["code"] == 402

    def test_refund_on_upstream_failure(self):
        store, backend = InMemoryKeyValueStore(), Backend()
        backend.fail = True
        seed(store, balance=10)

        with self.build(store, backend, refund_on_upstream_failure=True) as client:
            response = client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 502
        assert response.headers["X-Credits-Remaining"] == "10"
        assert balance(store) == "10"

    def test_client_record_optional(self):
        store, backend = InMemoryKeyValueStore(), Backend()
        seed(store, with_client=False)

        with self.build(store, backend, require_client_record=False) as client:
            response = client.get("/api/v1/items", headers={"X-API-Key": "apk_test"})

        assert response.status_code == 200
        assert backend.requests[0].headers["X-Gateway-Client-Id"] == "c1"

    def test_production_hides_messages(self):
        """Test generic messages replace specific ones in production."""
        store, backend = InMemoryKeyValueStore(), Backend()

        with self.build(store, backend, env="production") as client:
            missing = client.get("/api/v1/items")
            invalid = client.get("/api/v1/items", headers={"X-API-Key": "apk_unknown"})

        assert missing.json() == {"error": "Unauthorized", "code": 401}
        assert invalid.json() == {"error": "Forbidden", "code": 403}

    def test_denylist_policy(self):
        store, backend = InMemoryKeyValueStore(), Backend()
        seed(store)

        with self.build(store, backend, header_policy="denylist") as client:
            client.get(
                "/api/v1/items",
                headers={"X-API-Key": "apk_test", "X-Trace": "t1", "X-Forwarded-For": "203.0.113.9"},
            )

        forwarded = backend.requests[0].headers
        assert forwarded["X-Trace"] == "t1"
        assert "x-forwarded-for" not in forwarded
