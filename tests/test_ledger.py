"""
Tests for the Pass / Payment / LockCode ledger

Tests cover:
- Pass activation is idempotent and needs a validity window
- Payment upserts keyed by Stripe ids
- LockCode ON CONFLICT semantics (one row per pass, code never blanked)
"""

import pytest
from datetime import datetime, timedelta

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


class TestPasses:

    def test_create_pending_pass_rejects_inverted_window(self, db, directory):
        from app.services import ledger

        now = datetime.utcnow()
        with pytest.raises(ValueError):
            ledger.create_pending_pass(
                db, directory.org.id, directory.device.id, directory.pass_type.id,
                valid_from=now, valid_to=now - timedelta(hours=1)
            )

    def test_activate_pass_once(self, db, pending_pass):
        """First activation changes status, the second is a no-op"""
        from app.services import ledger

        assert ledger.activate_pass(db, pending_pass.id) is True
        db.commit()
        assert ledger.activate_pass(db, pending_pass.id) is False
        assert ledger.get_pass(db, pending_pass.id).status == "active"

    def test_activate_missing_pass(self, db):
        from app.services import ledger

        assert ledger.activate_pass(db, "missing") is False

    def test_cancel_pass(self, db, pending_pass):
        from app.services import ledger

        assert ledger.cancel_pass(db, pending_pass.id) is True
        assert ledger.get_pass(db, pending_pass.id).status == "cancelled"


class TestPayments:

    def test_upsert_payment_by_session_is_single_row(self, db, pending_pass):
        """The same checkout session twice updates one row"""
        from app.services import ledger
        from app.models.passes import Payment, PaymentStatus

        for _ in range(2):
            ledger.upsert_payment(
                db, "stripe_checkout_session", "cs_test_1", pending_pass.id,
                1500, "AUD", PaymentStatus.SUCCEEDED, stripe_payment_intent="pi_1"
            )
            db.commit()

        payments = db.query(Payment).all()
        assert len(payments) == 1
        assert payments[0].stripe_checkout_session == "cs_test_1"
        assert payments[0].stripe_payment_intent == "pi_1"
        assert payments[0].currency == "aud"
        assert payments[0].status == "succeeded"

    def test_session_attaches_to_existing_intent_row(self, db, pending_pass):
        """A pending intent row from checkout is reused by the session event"""
        from app.services import ledger
        from app.models.passes import Payment, PaymentStatus

        ledger.create_pending_payment(db, pending_pass.id, "pi_2", 1500, "aud")
        db.commit()

        ledger.upsert_payment(
            db, "stripe_checkout_session", "cs_2", pending_pass.id,
            1500, "aud", PaymentStatus.SUCCEEDED, stripe_payment_intent="pi_2"
        )
        db.commit()

        payments = db.query(Payment).all()
        assert len(payments) == 1
        assert payments[0].stripe_checkout_session == "cs_2"
        assert payments[0].status == "succeeded"

    def test_upsert_payment_rejects_unknown_key(self, db):
        from app.services import ledger
        from app.models.passes import PaymentStatus

        with pytest.raises(ValueError):
            ledger.upsert_payment(db, "id", "x", None, 0, "aud", PaymentStatus.PENDING)

    def test_set_payment_status_by_intent(self, db, pending_pass):
        from app.services import ledger
        from app.models.passes import PaymentStatus

        ledger.create_pending_payment(db, pending_pass.id, "pi_3", 1500, "aud")
        db.commit()

        assert ledger.set_payment_status_by_intent(db, "pi_3", PaymentStatus.FAILED) == 1
        db.commit()
        db.expire_all()
        assert ledger.get_payment_by_intent(db, "pi_3").status == "failed"


class TestLockCodes:

    def test_upsert_does_not_replace_existing_code(self, db, pending_pass):
        """Reprocessing keeps the first code"""
        from app.services import ledger
        from app.models.passes import LockCode, PinProvider

        ledger.upsert_lock_code(db, pending_pass.id, "1111", PinProvider.BACKUP, None, None)
        db.commit()
        lock_code = ledger.upsert_lock_code(db, pending_pass.id, "2222", PinProvider.BACKUP, None, None)
        db.commit()

        assert db.query(LockCode).count() == 1
        assert lock_code.code == "1111"
        assert lock_code.status == "active"

    def test_null_code_is_pending(self, db, pending_pass):
        from app.services import ledger
        from app.models.passes import PinProvider

        lock_code = ledger.upsert_lock_code(db, pending_pass.id, None, PinProvider.ROOMS, None, None)

        assert lock_code.code is None
        assert lock_code.status == "pending"

    def test_overwrite_replaces_code(self, db, pending_pass):
        """Manual re-sync may fill in the code"""
        from app.services import ledger
        from app.models.passes import PinProvider

        ledger.upsert_lock_code(db, pending_pass.id, None, PinProvider.ROOMS, None, None)
        db.commit()
        lock_code = ledger.upsert_lock_code(
            db, pending_pass.id, "7777", PinProvider.BACKUP, None, None, overwrite=True
        )

        assert lock_code.code == "7777"
        assert lock_code.provider == "backup"
        assert lock_code.status == "active"

    def test_overwrite_never_blanks_code(self, db, pending_pass):
        from app.services import ledger
        from app.models.passes import PinProvider

        ledger.upsert_lock_code(db, pending_pass.id, "5555", PinProvider.BACKUP, None, None)
        db.commit()
        lock_code = ledger.upsert_lock_code(
            db, pending_pass.id, None, PinProvider.ROOMS, None, None, overwrite=True
        )

        assert lock_code.code == "5555"

    def test_delete_and_mark_emailed(self, db, pending_pass):
        from app.services import ledger
        from app.models.passes import PinProvider

        ledger.upsert_lock_code(db, pending_pass.id, "1234", PinProvider.BACKUP, None, None)
        ledger.mark_lock_code_emailed(db, pending_pass.id)
        db.commit()
        db.expire_all()
        assert ledger.get_lock_code(db, pending_pass.id).email_sent_at is not None

        assert ledger.delete_lock_code(db, pending_pass.id) == 1
        db.commit()
        assert ledger.get_lock_code(db, pending_pass.id) is None
