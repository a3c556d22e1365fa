"""
Tests for the success-page endpoints

Tests cover:
- GET /api/passes/by-session while pending and once active
- Rooms PIN vs backup PIN in code / backupCode
- POST /api/passes/sync-payment against a stubbed Stripe
"""

import pytest
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


@pytest.fixture
def paid_pass(db, pending_pass):
    """Pending pass with a pending payment on pi_poll"""
    from app.services import ledger

    ledger.create_pending_payment(db, pending_pass.id, "pi_poll", 1500, "aud")
    db.commit()
    return pending_pass


def _activate(db, pass_id, code, provider):
    from app.services import ledger
    from app.models.passes import PaymentStatus

    ledger.activate_pass(db, pass_id)
    ledger.set_payment_status_by_intent(db, "pi_poll", PaymentStatus.SUCCEEDED)
    ledger.upsert_lock_code(db, pass_id, code, provider, None, None)
    db.commit()


class TestPassBySession:

    def test_requires_an_id(self, client):
        response = client.get("/api/passes/by-session")

        assert response.status_code == 400
        assert response.json() == {"error": "Session ID or Payment Intent ID required"}

    def test_unknown_payment(self, client):
        response = client.get("/api/passes/by-session", params={"session_id": "cs_nope"})

        assert response.status_code == 404

    def test_pending_pass_hides_backup_code(self, client, paid_pass, backup_pin):
        """Before payment succeeds the backup PIN is not revealed"""
        response = client.get("/api/passes/by-session", params={"payment_intent": "pi_poll"})

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "pending"
        assert body["paymentStatus"] == "pending"
        assert body["backupCode"] is None

    def test_succeeded_payment_reveals_backup_code(self, client, db, paid_pass, backup_pin):
        """Payment succeeded but pass not active yet: 400 carrying the backup PIN"""
        from app.services import ledger
        from app.models.passes import PaymentStatus

        ledger.set_payment_status_by_intent(db, "pi_poll", PaymentStatus.SUCCEEDED)
        db.commit()

        response = client.get("/api/passes/by-session", params={"payment_intent": "pi_poll"})

        assert response.status_code == 400
        assert response.json()["backupCode"] == "4821"

    def test_active_pass_with_backup_lock_code(self, client, db, directory, paid_pass):
        from app.models.passes import PinProvider

        _activate(db, paid_pass.id, "123456", PinProvider.BACKUP)

        response = client.get("/api/passes/by-session", params={"payment_intent": "pi_poll"})

        assert response.status_code == 200
        body = response.json()
        assert body["pass_id"] == paid_pass.id
        assert body["code"] is None
        assert body["backupCode"] == "123456"
        assert body["pinSource"] == "backup"
        assert body["codeUnavailable"] is False
        assert body["accessPointName"] == "Main Gate"
        assert body["timezone"] == "Australia/Sydney"
        assert body["passType"] == "Day Pass"
        assert body["vehiclePlate"] == "ABC123"
        assert body["device_id"] == directory.device.id
        assert body["returnUrl"] == "https://testparks.example/done"
        assert body["valid_from"].endswith("Z")

    def test_active_pass_with_rooms_code(self, client, db, paid_pass, backup_pin):
        """Rooms PIN is `code`, the current backup PIN still comes along"""
        from app.models.passes import PinProvider

        _activate(db, paid_pass.id, "778899", PinProvider.ROOMS)

        body = client.get("/api/passes/by-session", params={"payment_intent": "pi_poll"}).json()

        assert body["code"] == "778899"
        assert body["backupCode"] == "4821"
        assert body["pinSource"] == "rooms"

    def test_active_pass_without_any_code(self, client, db, paid_pass):
        from app.models.passes import PinProvider

        _activate(db, paid_pass.id, None, PinProvider.ROOMS)

        body = client.get("/api/passes/by-session", params={"payment_intent": "pi_poll"}).json()

        assert body["code"] is None
        assert body["backupCode"] is None
        assert body["codeUnavailable"] is True

    def test_lookup_by_checkout_session(self, client, db, paid_pass):
        from app.services import ledger
        from app.models.passes import PaymentStatus, PinProvider

        ledger.upsert_payment(
            db, "stripe_checkout_session", "cs_poll", paid_pass.id, 1500, "aud",
            PaymentStatus.SUCCEEDED, stripe_payment_intent="pi_poll"
        )
        db.commit()
        _activate(db, paid_pass.id, "123456", PinProvider.BACKUP)

        response = client.get("/api/passes/by-session", params={"session_id": "cs_poll"})

        assert response.status_code == 200


class TestSyncPayment:

    def _intent(self, pass_id, status="succeeded", backup="555111"):
        return {
            "id": "pi_poll",
            "status": status,
            "amount": 1500,
            "currency": "aud",
            "metadata": {
                "pass_id": pass_id,
                "org_slug": "test-org",
                "backup_pincode": backup,
            },
        }

    def test_not_succeeded(self, client, paid_pass):
        with patch("app.services.checkout.stripe_service.retrieve_payment_intent",
                   return_value=self._intent(paid_pass.id, status="processing")):
            response = client.post("/api/passes/sync-payment", json={"paymentIntentId": "pi_poll"})

        assert response.status_code == 400
        assert response.json() == {"error": "Payment not yet succeeded", "status": "processing"}

    def test_sync_activates_with_backup_pin(self, client, db, paid_pass):
        """Rooms is not configured, so the captured backup PIN is used"""
        from app.services import ledger

        with patch("app.services.checkout.stripe_service.retrieve_payment_intent",
                   return_value=self._intent(paid_pass.id)):
            response = client.post("/api/passes/sync-payment", json={"paymentIntentId": "pi_poll"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "passId": paid_pass.id, "status": "active"}

        db.expire_all()
        assert ledger.get_pass(db, paid_pass.id).status == "active"
        assert ledger.get_payment_by_intent(db, "pi_poll").status == "succeeded"
        lock_code = ledger.get_lock_code(db, paid_pass.id)
        assert lock_code.code == "555111"
        assert lock_code.provider == "backup"

    def test_already_active(self, client, db, paid_pass):
        from app.models.passes import PinProvider

        _activate(db, paid_pass.id, "123456", PinProvider.BACKUP)

        with patch("app.services.checkout.stripe_service.retrieve_payment_intent",
                   return_value=self._intent(paid_pass.id)):
            response = client.post("/api/passes/sync-payment", json={"paymentIntentId": "pi_poll"})

        assert response.json() == {"success": True, "alreadyActive": True}

    def test_no_pin_source_is_503(self, client, db, paid_pass):
        from app.services import ledger

        with patch("app.services.checkout.stripe_service.retrieve_payment_intent",
                   return_value=self._intent(paid_pass.id, backup="")):
            response = client.post("/api/passes/sync-payment", json={"paymentIntentId": "pi_poll"})

        assert response.status_code == 503
        db.expire_all()
        assert ledger.get_pass(db, paid_pass.id).status == "pending"

    def test_missing_pass(self, client):
        with patch("app.services.checkout.stripe_service.retrieve_payment_intent",
                   return_value=self._intent("no-such-pass")):
            response = client.post("/api/passes/sync-payment", json={"paymentIntentId": "pi_poll"})

        assert response.status_code == 404

    def test_stripe_not_configured(self, client, monkeypatch):
        from app.config import settings

        monkeypatch.setattr(settings, "stripe_secret_key", "")
        response = client.post("/api/passes/sync-payment", json={"paymentIntentId": "pi_poll"})

        assert response.status_code == 500
        assert response.json() == {"error": "Payment system not configured"}
