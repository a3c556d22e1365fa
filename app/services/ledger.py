"""
Pass & Payment Ledger

Narrow, named update functions for Pass, Payment and LockCode. Every
write in the pass pipeline goes through here so idempotency rules live
in one place:

- activate_pass is a no-op for an already active pass
- upsert_payment is keyed by the Stripe session / intent id
- upsert_lock_code uses INSERT ... ON CONFLICT (pass_id)

Functions flush but do not commit; the caller owns the transaction.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models.passes import (
    Pass,
    Payment,
    LockCode,
    PassStatus,
    PaymentStatus,
    LockCodeStatus,
    PinProvider
)
from ..utils.db_helpers import insert_on_conflict
from ..utils.timezone import to_naive_utc

logger = logging.getLogger(__name__)

PAYMENT_KEYS = ("stripe_checkout_session", "stripe_payment_intent")


# ==================
# Passes
# ==================

def get_pass(db: Session, pass_id: str) -> Optional[Pass]:
    return db.query(Pass).filter(Pass.id == pass_id).first()


def create_pending_pass(
    db: Session,
    org_id: str,
    device_id: Optional[str],
    pass_type_id: Optional[str],
    valid_from: datetime,
    valid_to: datetime,
    site_id: Optional[str] = None,
    vehicle_plate: Optional[str] = None,
    purchaser_email: Optional[str] = None,
    purchaser_phone: Optional[str] = None
) -> Pass:
    """Create the pending pass for a checkout."""
    if valid_to <= valid_from:
        raise ValueError("valid_to must be after valid_from")

    pass_ = Pass(
        org_id=org_id,
        site_id=site_id,
        device_id=device_id,
        pass_type_id=pass_type_id,
        status=PassStatus.PENDING.value,
        vehicle_plate=vehicle_plate,
        purchaser_email=purchaser_email,
        purchaser_phone=purchaser_phone,
        valid_from=to_naive_utc(valid_from),
        valid_to=to_naive_utc(valid_to)
    )
    db.add(pass_)
    db.flush()
    return pass_


def activate_pass(
    db: Session,
    pass_id: str,
    valid_from: Optional[datetime] = None,
    valid_to: Optional[datetime] = None
) -> bool:
    """
    Mark a pass active.

    Returns True when the status changed, False when the pass was already
    active or does not exist. A pass without a validity window gets the
    supplied one so the active-implies-window invariant holds.
    """
    pass_ = get_pass(db, pass_id)
    if not pass_:
        logger.warning(f"activate_pass: pass {pass_id} not found")
        return False

    if pass_.valid_from is None and valid_from is not None:
        pass_.valid_from = to_naive_utc(valid_from)
    if pass_.valid_to is None and valid_to is not None:
        pass_.valid_to = to_naive_utc(valid_to)

    if pass_.status == PassStatus.ACTIVE.value:
        db.flush()
        return False

    if pass_.valid_from is None or pass_.valid_to is None or pass_.valid_to <= pass_.valid_from:
        raise ValueError(f"Pass {pass_id} has no valid window, refusing to activate")

    pass_.status = PassStatus.ACTIVE.value
    db.flush()
    return True


def cancel_pass(db: Session, pass_id: str) -> bool:
    """Set a pass cancelled (payment failure). Returns False if missing."""
    pass_ = get_pass(db, pass_id)
    if not pass_:
        return False
    pass_.status = PassStatus.CANCELLED.value
    db.flush()
    return True


# ==================
# Payments
# ==================

def upsert_payment(
    db: Session,
    key_column: str,
    key_value: str,
    pass_id: Optional[str],
    amount_cents: int,
    currency: str,
    status: PaymentStatus,
    stripe_payment_intent: Optional[str] = None
) -> None:
    """
    Insert or update the payment row identified by a Stripe id.

    key_column is stripe_checkout_session or stripe_payment_intent, so a
    redelivered webhook updates the same row instead of adding one.
    """
    if key_column not in PAYMENT_KEYS:
        raise ValueError(f"Unsupported payment key {key_column}")

    now = datetime.utcnow()

    # A checkout session wraps a PaymentIntent that may already have its own
    # row (payment_intent.succeeded landed first); attach the session to it.
    if key_column == "stripe_checkout_session" and stripe_payment_intent:
        existing = get_payment_by_intent(db, stripe_payment_intent)
        if existing is not None and existing.stripe_checkout_session in (None, key_value):
            existing.stripe_checkout_session = key_value
            existing.pass_id = pass_id or existing.pass_id
            existing.amount_cents = amount_cents
            existing.currency = (currency or "aud").lower()
            existing.status = status.value
            existing.updated_at = now
            db.flush()
            return

    values = {
        key_column: key_value,
        "pass_id": pass_id,
        "amount_cents": amount_cents,
        "currency": (currency or "aud").lower(),
        "status": status.value,
        "updated_at": now,
    }
    update_columns = ["amount_cents", "currency", "status", "updated_at"]

    if key_column == "stripe_checkout_session" and stripe_payment_intent:
        values["stripe_payment_intent"] = stripe_payment_intent
        update_columns.append("stripe_payment_intent")

    # Keep an existing pass link when the event carried none
    if pass_id:
        update_columns.append("pass_id")

    db.execute(insert_on_conflict(db, Payment, values, [key_column], update_columns))
    db.flush()


def create_pending_payment(
    db: Session,
    pass_id: str,
    stripe_payment_intent: str,
    amount_cents: int,
    currency: str
) -> Payment:
    payment = Payment(
        pass_id=pass_id,
        stripe_payment_intent=stripe_payment_intent,
        amount_cents=amount_cents,
        currency=currency.lower(),
        status=PaymentStatus.PENDING.value
    )
    db.add(payment)
    db.flush()
    return payment


def set_payment_status_by_intent(db: Session, intent_id: str, status: PaymentStatus) -> int:
    """Update every payment for a PaymentIntent. Returns rows touched."""
    count = (
        db.query(Payment)
        .filter(Payment.stripe_payment_intent == intent_id)
        .update(
            {Payment.status: status.value, Payment.updated_at: datetime.utcnow()},
            synchronize_session=False
        )
    )
    db.flush()
    return count


def get_payment_by_checkout_session(db: Session, session_id: str) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.stripe_checkout_session == session_id).first()


def get_payment_by_intent(db: Session, intent_id: str) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.stripe_payment_intent == intent_id).first()


# ==================
# Lock codes
# ==================

def get_lock_code(db: Session, pass_id: str) -> Optional[LockCode]:
    return db.query(LockCode).filter(LockCode.pass_id == pass_id).first()


def upsert_lock_code(
    db: Session,
    pass_id: str,
    code: Optional[str],
    provider: PinProvider,
    starts_at: Optional[datetime],
    ends_at: Optional[datetime],
    provider_ref: Optional[str] = None,
    overwrite: bool = False
) -> LockCode:
    """
    Create the lock code for a pass.

    The insert is ON CONFLICT (pass_id): without overwrite an existing row
    is left untouched, so reprocessing an event never replaces a code that
    is already set. overwrite=True is for manual re-sync only, and still
    refuses to blank out an existing code.
    """
    now = datetime.utcnow()
    values = {
        "pass_id": pass_id,
        "code": code,
        "status": (LockCodeStatus.ACTIVE if code else LockCodeStatus.PENDING).value,
        "provider": provider.value,
        "provider_ref": provider_ref,
        "starts_at": to_naive_utc(starts_at) if starts_at else None,
        "ends_at": to_naive_utc(ends_at) if ends_at else None,
        "updated_at": now,
    }

    update_columns = None
    if overwrite and code:
        update_columns = ["code", "status", "provider", "provider_ref", "starts_at", "ends_at", "updated_at"]

    db.execute(insert_on_conflict(db, LockCode, values, ["pass_id"], update_columns))
    db.flush()

    lock_code = get_lock_code(db, pass_id)
    # Core statements bypass the identity map
    db.refresh(lock_code)
    return lock_code


def delete_lock_code(db: Session, pass_id: str) -> int:
    """Remove the lock code so an unpaid pass keeps no working PIN."""
    count = (
        db.query(LockCode)
        .filter(LockCode.pass_id == pass_id)
        .delete(synchronize_session=False)
    )
    db.flush()
    return count


def mark_lock_code_emailed(db: Session, pass_id: str) -> None:
    db.query(LockCode).filter(LockCode.pass_id == pass_id).update(
        {LockCode.email_sent_at: datetime.utcnow()},
        synchronize_session=False
    )
    db.flush()
