"""
Tests for operator endpoints

Tests cover:
- Webhook subscription CRUD and the test delivery
- Bearer key guards (admin key, cron secret)
- Cron-triggered delivery run
- Health checks
"""

import pytest
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


BASE = "/api/webhooks/subscriptions"


@pytest.fixture
def subscription(client, directory):
    response = client.post(BASE, json={
        "org_id": directory.org.id,
        "url": "https://hooks.example/passes",
        "description": "Gate display"
    })
    assert response.status_code == 201
    return response.json()["subscription"]


class TestSubscriptionCrud:

    def test_create_returns_secret_once(self, client, subscription):
        """Only the create response exposes the signing secret"""
        assert len(subscription["secret"]) == 64
        assert subscription["events"] == ["pass.pass_paid.v1"]
        assert subscription["status"] == "active"

        listed = client.get(BASE).json()["subscriptions"]
        assert len(listed) == 1
        assert "secret" not in listed[0]

    def test_unknown_org(self, client, directory):
        response = client.post(BASE, json={"org_id": "missing", "url": "https://hooks.example/x"})
        assert response.status_code == 400

    def test_duplicate_url_conflicts(self, client, directory, subscription):
        response = client.post(BASE, json={
            "org_id": directory.org.id,
            "url": "https://hooks.example/passes"
        })
        assert response.status_code == 409

    def test_validation(self, client, directory):
        bad_url = client.post(BASE, json={"org_id": directory.org.id, "url": "ftp://hooks.example"})
        bad_topic = client.post(BASE, json={
            "org_id": directory.org.id,
            "url": "https://hooks.example/x",
            "events": ["pass.deleted.v1"]
        })
        assert bad_url.status_code == 422
        assert bad_topic.status_code == 422

    def test_list_filters_org_and_status(self, client, directory, subscription):
        assert client.get(BASE, params={"org_id": "other"}).json()["subscriptions"] == []

        client.patch(f"{BASE}/{subscription['id']}", json={"status": "paused"})
        assert client.get(BASE).json()["subscriptions"] == []

    def test_update(self, client, subscription):
        response = client.patch(f"{BASE}/{subscription['id']}", json={
            "url": "https://hooks.example/v2",
            "status": "paused"
        })

        assert response.status_code == 200
        updated = response.json()["subscription"]
        assert updated["url"] == "https://hooks.example/v2"
        assert updated["status"] == "paused"
        assert updated["description"] == "Gate display"

    def test_delete(self, client, db, subscription):
        from app.models.outbox import WebhookSubscription

        response = client.delete(f"{BASE}/{subscription['id']}")

        assert response.json() == {"success": True}
        assert db.query(WebhookSubscription).count() == 0
        assert client.delete(f"{BASE}/{subscription['id']}").status_code == 404

    def test_test_delivery(self, client, db, subscription):
        """Synthetic event is signed with the subscription secret and not recorded"""
        from app.models.outbox import WebhookDelivery
        from app.services.webhook_delivery import WebhookDeliveryResult

        with patch("app.routers.webhook_subscriptions.deliver_webhook") as mock_deliver:
            mock_deliver.return_value = WebhookDeliveryResult(
                success=True, status_code=200, response_body="ok"
            )
            response = client.post(f"{BASE}/{subscription['id']}/test")

        assert response.json() == {
            "success": True, "statusCode": 200, "responseBody": "ok", "error": None
        }
        url, secret, payload, attempt = mock_deliver.call_args.args
        assert url == "https://hooks.example/passes"
        assert secret == subscription["secret"]
        assert payload["event"] == "webhook.test.v1"
        assert payload["data"]["subscription_id"] == subscription["id"]
        assert attempt == 1
        assert db.query(WebhookDelivery).count() == 0

    def test_test_delivery_unknown(self, client):
        assert client.post(f"{BASE}/nope/test").status_code == 404


class TestBearerGuards:

    def test_admin_key_required(self, client, directory, monkeypatch):
        from app.config import settings

        monkeypatch.setattr(settings, "admin_api_key", "admin-secret")

        assert client.get(BASE).status_code == 401
        assert client.get(BASE, headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert client.get(BASE, headers={"Authorization": "admin-secret"}).status_code == 401
        ok = client.get(BASE, headers={"Authorization": "Bearer admin-secret"})
        assert ok.status_code == 200

    def test_bearer_matches(self):
        from app.utils.security import bearer_matches

        assert bearer_matches(None, "")
        assert bearer_matches("Bearer abc", "abc")
        assert not bearer_matches("Bearer abd", "abc")
        assert not bearer_matches(None, "abc")


class TestCron:

    def test_cron_secret_required(self, client, monkeypatch):
        from app.config import settings

        monkeypatch.setattr(settings, "cron_secret", "tick")

        assert client.post("/api/cron/webhook-delivery").status_code == 401

    def test_cron_runs_delivery(self, client, monkeypatch):
        from app.config import settings

        monkeypatch.setattr(settings, "cron_secret", "tick")
        response = client.post("/api/cron/webhook-delivery", headers={"Authorization": "Bearer tick"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["pending"]["events"] == 0
        assert body["retries"]["retried"] == 0

    def test_cron_failure(self, client):
        with patch("app.routers.cron.WebhookDeliveryWorker") as worker_cls:
            worker_cls.return_value.run_once.side_effect = RuntimeError("db gone")
            response = client.post("/api/cron/webhook-delivery")

        assert response.status_code == 500
        assert response.json() == {"error": "Webhook delivery failed"}


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "up"
        assert body["checks"]["database"]["type"] == "sqlite"

    def test_ready(self, client):
        assert client.get("/health/ready").json()["status"] == "ready"

    def test_not_ready_when_database_down(self, client):
        with patch("app.routers.health.get_db_health", return_value={"status": "down", "error": "x"}):
            response = client.get("/health/ready")

        assert response.status_code == 503
