"""
Unit Tests - Read API
"""
import hashlib
import hmac
import json
import time
from collections import deque
from datetime import date
from decimal import Decimal

import httpx
import pytest

from src.analytics.exceptions import UpstreamUnavailableError
from src.config import get_settings
from src.ingestion.subscription_sync import SubscriptionSync
from src.ingestion.webhook_processor import WebhookProcessor
from src.serving.api import create_api_app
from src.serving.api import dependencies
from src.serving.api.middleware import RateLimitMiddleware
from src.serving.api.routes import analytics as analytics_routes
from tests.factories import make_record, make_row, stripe_subscription

TODAY = date(2024, 5, 10)
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def app(store, billing_client, subscription_repo, monkeypatch):
    monkeypatch.setattr(analytics_routes, "reference_today", lambda: TODAY)

    app = create_api_app(use_lifespan=False)
    app.dependency_overrides[dependencies.get_store] = lambda: store
    app.dependency_overrides[dependencies.get_billing_client] = lambda: billing_client
    app.dependency_overrides[dependencies.get_webhook_processor] = lambda: WebhookProcessor(
        billing_client, SubscriptionSync(billing_client, subscription_repo)
    )
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class TestAnalyticsEndpoints:
    """Tests for /api/v1/analytics"""

    async def test_retention(self, client, snapshot_repo):
        await snapshot_repo.upsert_page([
            make_row(date(2024, 5, 7), "A", monthly_value=Decimal("100")),
            make_row(date(2024, 5, 7), "B", monthly_value=Decimal("200")),
            make_row(date(2024, 5, 7), "C", monthly_value=Decimal("50")),
            make_row(TODAY, "A", monthly_value=Decimal("100")),
            make_row(TODAY, "D", monthly_value=Decimal("75")),
        ])

        response = await client.get("/api/v1/analytics/retention", params={"period": "3"}, headers={"X-Request-ID": "req-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["retention_rate"] == 33.33
        assert body["metrics"]["churned_mrr"] == 250.0
        assert body["period_labels"] == {"previous": "2024-05-07", "current": "2024-05-10"}
        assert body["has_historical_data"] is True
        assert [d["subscription_id"] for d in body["subscription_details"]] == ["B", "C", "A"]
        assert body["request_id"] == "req-1"
        assert "timestamp" in body
        assert response.headers["X-Request-ID"] == "req-1"

    async def test_retention_without_history(self, client):
        response = await client.get("/api/v1/analytics/retention")

        assert response.status_code == 200
        assert response.json()["has_historical_data"] is False

    async def test_invalid_period(self, client):
        response = await client.get("/api/v1/analytics/retention", params={"period": "5"})

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "Invalid period"
        assert body["request_id"]

    async def test_trial_conversion(self, client, snapshot_repo, billing_client):
        await snapshot_repo.upsert_page([
            make_row(date(2024, 5, 2), "won", "trialing"),
            make_row(date(2024, 5, 2), "lost", "trialing"),
            make_row(date(2024, 5, 6), "won", "active"),
        ])

        response = await client.get("/api/v1/analytics/trial-conversion", params={"period": "7"})

        assert response.status_code == 200
        body = response.json()
        assert body["lookback_days"] == 8
        assert body["conversion_rate"] == 50.0
        assert body["metrics"] == {
            "total_trials": 2,
            "converted_trials": 1,
            "unconverted_trials": 1,
            "pending_trials": 0,
        }
        assert body["trial_details"][0]["conversion_date"] == "2024-05-06"

    async def test_store_unavailable(self, app, client):
        """Store failures map to a 500 with the error envelope"""
        def unavailable():
            raise UpstreamUnavailableError("store", "Database not initialized")

        app.dependency_overrides[dependencies.get_store] = unavailable

        response = await client.get("/api/v1/analytics/retention")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to reach store"
        assert set(body) == {"error", "details", "request_id", "timestamp"}

    async def test_snapshot(self, client, subscription_repo):
        await subscription_repo.upsert_many([
            make_record("a", monthly_value=Decimal("100.00")),
            make_record("t", status="trialing", monthly_value=Decimal("30.00")),
        ])

        response = await client.get("/api/v1/analytics/snapshot")

        assert response.status_code == 200
        body = response.json()
        assert body["official_mrr"]["total"] == 100.0
        assert body["trial_pipeline"]["total_customers"] == 1
        assert body["summary"]["total_active_subscriptions"] == 2

    async def test_mrr_history(self, client, mrr_repo):
        await mrr_repo.upsert({
            "mrr_date": date(2024, 5, 9),
            "official_mrr": 100,
            "arr": 1200,
            "paying_customers_count": 1,
            "average_customer_value": 100,
            "trial_pipeline_mrr": 0,
            "active_trials_count": 0,
            "total_opportunity": 100,
        })

        response = await client.get("/api/v1/analytics/mrr/history")

        assert response.status_code == 200
        assert [p["date"] for p in response.json()] == ["2024-05-09"]

    async def test_mrr_history_limit_validated(self, client):
        response = await client.get("/api/v1/analytics/mrr/history", params={"limit": 0})
        assert response.status_code == 422


class TestWebhookEndpoint:
    """Tests for /api/v1/webhooks/stripe"""

    @pytest.fixture(autouse=True)
    def webhook_secret(self, monkeypatch):
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
        get_settings.cache_clear()

    async def test_valid_event(self, client, billing_client, subscription_repo):
        billing_client.add_subscription(stripe_subscription("sub_a"))
        payload = json.dumps({
            "id": "evt_1",
            "object": "event",
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_a", "object": "subscription"}},
        }).encode()

        response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": sign(payload)})

        assert response.status_code == 200
        assert response.json()["subscription_ids"] == ["sub_a"]
        assert await subscription_repo.get("sub_a") is not None

    async def test_bad_signature(self, client):
        payload = b'{"id": "evt_1", "object": "event", "type": "customer.updated", "data": {"object": {}}}'

        response = await client.post(
            "/api/v1/webhooks/stripe",
            content=payload,
            headers={"Stripe-Signature": sign(payload, secret="whsec_other")},
        )

        assert response.status_code == 400

    async def test_missing_signature(self, client):
        response = await client.post("/api/v1/webhooks/stripe", content=b"{}")
        assert response.status_code == 400


class TestMiddleware:
    """Tests for the middleware stack"""

    async def test_security_headers(self, client):
        response = await client.get("/api/v1/health/live")

        assert response.status_code == 200
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Response-Time" in response.headers

    async def test_rate_limit(self, store):
        app = create_api_app(use_lifespan=False, rate_limit=2)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            statuses = [(await client.get("/api/v1/info")).status_code for _ in range(3)]
            health = await client.get("/api/v1/health/live")

        assert statuses == [200, 200, 429]
        assert health.status_code == 200

    def test_rate_limit_forgets_idle_clients(self):
        """Clients without a request inside the window are dropped"""
        limiter = RateLimitMiddleware(app=None, max_requests=5, window_seconds=10)
        limiter._requests["idle"] = deque([50.0])
        limiter._requests["recent"] = deque([95.0])
        limiter._requests["empty"] = deque()

        limiter._evict_idle(100.0)

        assert list(limiter._requests) == ["recent"]
