"""
Checkout and manual payment sync

create_checkout creates the pending Pass + Payment and the Stripe
PaymentIntent. The current backup PIN is captured into the intent
metadata here, so the webhook reconciler can seed a working code without
another lookup.

sync_payment is the client's fallback when the webhook has not landed:
it re-reads the PaymentIntent from Stripe and activates the pass itself.
"""

import time
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.organisation import Device, PassType
from ..models.passes import PassStatus, PaymentStatus, PinProvider
from ..schemas.stripe import Product
from ..utils.timezone import isoformat_utc, parse_datetime
from . import ledger, stripe_service
from .backup_pincodes import fortnight_number, get_backup_pincode
from .rooms_client import RoomsGateway, ReservationStatus, build_rooms_payload

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    success: bool
    status_code: int = 200
    pass_id: Optional[str] = None
    client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SyncPaymentResult:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def _access_window(
    valid_from: Optional[str],
    valid_to: Optional[str],
    duration_hours: int,
    number_of_days: int
) -> tuple:
    starts_at = parse_datetime(valid_from) or datetime.now(timezone.utc)
    ends_at = parse_datetime(valid_to)
    if ends_at is None or ends_at <= starts_at:
        ends_at = starts_at + timedelta(hours=(duration_hours or 24) * number_of_days)
    return starts_at, ends_at


def create_checkout(
    db: Session,
    access_point_id: str,
    pass_type_id: str,
    email: Optional[str] = None,
    plate: Optional[str] = None,
    phone: Optional[str] = None,
    valid_from: Optional[str] = None,
    valid_to: Optional[str] = None,
    number_of_days: int = 1,
    idempotency_key: Optional[str] = None
) -> CheckoutResult:
    """
    Create a pending pass and its PaymentIntent.

    Validation failures come back as 400 results; Stripe failures as 502.
    Raises StripeNotConfiguredError before touching the database when no
    Stripe key is set.
    """
    if not settings.stripe_secret_key:
        raise stripe_service.StripeNotConfiguredError("Stripe is not configured")

    device = (
        db.query(Device)
        .filter(Device.id == access_point_id, Device.is_active.is_(True))
        .first()
    )
    if not device or not device.organisation:
        logger.error(f"Could not resolve organisation for access point {access_point_id}")
        return CheckoutResult(success=False, status_code=400, error="Invalid access point")

    org = device.organisation
    pass_type = (
        db.query(PassType)
        .filter(
            PassType.id == pass_type_id,
            PassType.org_id == org.id,
            PassType.is_active.is_(True)
        )
        .first()
    )
    if not pass_type:
        logger.error(f"Pass type {pass_type_id} not found for org {org.slug}")
        return CheckoutResult(success=False, status_code=400, error="Invalid pass type")

    if not pass_type.price_cents or pass_type.price_cents <= 0:
        logger.error(f"Pass type {pass_type_id} has invalid pricing ({pass_type.price_cents})")
        return CheckoutResult(success=False, status_code=400, error="Pass type has invalid pricing")

    days = max(number_of_days or 1, 1)
    amount_cents = pass_type.price_cents * days
    currency = (pass_type.currency or settings.default_currency).lower()
    starts_at, ends_at = _access_window(valid_from, valid_to, pass_type.duration_hours, days)

    pass_ = ledger.create_pending_pass(
        db,
        org_id=org.id,
        site_id=device.site_id,
        device_id=device.id,
        pass_type_id=pass_type.id,
        valid_from=starts_at,
        valid_to=ends_at,
        vehicle_plate=plate,
        purchaser_email=email,
        purchaser_phone=phone
    )
    db.commit()

    backup = get_backup_pincode(db, org.id, device.site_id, device.id)
    fortnight = backup.fortnight_number if backup else fortnight_number()

    # Stripe metadata values are strings; "" stands for missing
    metadata = {
        "org_id": org.id,
        "org_slug": org.slug,
        "org_timezone": org.timezone or "",
        "product": Product.PASS.value,
        "variant": pass_type.code or "",
        "pass_type_name": pass_type.name,
        "pass_id": pass_.id,
        "access_point_id": device.id,
        "site_id": device.site_id or "",
        "site_slug": device.site.slug if device.site else "",
        "device_slug": device.slug,
        "customer_email": email or "",
        "customer_phone": phone or "",
        "customer_plate": plate or "",
        "number_of_days": str(days),
        "valid_from": isoformat_utc(starts_at),
        "valid_to": isoformat_utc(ends_at),
        "backup_pincode": backup.pincode if backup else "",
        "backup_pincode_fortnight": str(fortnight) if fortnight else "",
    }
    key = idempotency_key or f"pi_{pass_.id}_{int(time.time() * 1000)}"

    try:
        intent = stripe_service.create_payment_intent(
            amount_cents=amount_cents,
            currency=currency,
            metadata=metadata,
            idempotency_key=key,
            receipt_email=email,
            description=f"{pass_type.name} - {org.name}"
        )
    except Exception as e:
        logger.error(f"Stripe PaymentIntent creation failed for pass {pass_.id}: {e}")
        return CheckoutResult(success=False, status_code=502, pass_id=pass_.id, error="Payment provider error")

    ledger.create_pending_payment(db, pass_.id, intent["id"], amount_cents, currency)
    db.commit()

    logger.info(
        f"Payment intent {intent['id']} created for pass {pass_.id} "
        f"(org={org.slug}, pass_type={pass_type.id}, backup_pin={'yes' if backup else 'no'})"
    )
    return CheckoutResult(
        success=True,
        pass_id=pass_.id,
        client_secret=intent["client_secret"],
        payment_intent_id=intent["id"]
    )


def sync_payment(
    db: Session,
    payment_intent_id: str,
    rooms_gateway: Optional[RoomsGateway] = None
) -> SyncPaymentResult:
    """Activate a pass from a PaymentIntent that Stripe reports as succeeded."""
    intent = stripe_service.retrieve_payment_intent(payment_intent_id)

    if intent["status"] != "succeeded":
        return SyncPaymentResult(400, {"error": "Payment not yet succeeded", "status": intent["status"]})

    meta = intent.get("metadata") or {}
    pass_id = meta.get("pass_id")
    if not pass_id:
        return SyncPaymentResult(400, {"error": "No pass ID in payment metadata"})

    pass_ = ledger.get_pass(db, pass_id)
    if not pass_:
        return SyncPaymentResult(404, {"error": "Pass not found"})

    if pass_.status == PassStatus.ACTIVE.value:
        return SyncPaymentResult(200, {"success": True, "alreadyActive": True})

    now = datetime.now(timezone.utc)
    starts_at = parse_datetime(pass_.valid_from) or now
    ends_at = parse_datetime(pass_.valid_to) or now + timedelta(hours=24)

    existing = ledger.get_lock_code(db, pass_id)
    if existing is None or not existing.code:
        gateway = rooms_gateway or RoomsGateway(db)
        device_id = meta.get("access_point_id") or meta.get("gate_id") or pass_.device_id or ""
        slug_path = (
            f"{meta.get('org_slug') or 'org'}/{meta.get('site_slug') or 'site'}/"
            f"{meta.get('device_slug') or 'device'}"
        )
        payload = build_rooms_payload(
            site_id=meta.get("site_id") or pass_.site_id or "",
            pass_id=pass_id,
            valid_from=isoformat_utc(starts_at),
            valid_to=isoformat_utc(ends_at),
            device_id=device_id,
            slug_path=slug_path,
            email=meta.get("customer_email") or None,
            phone=meta.get("customer_phone") or None,
            status=ReservationStatus.CONFIRMED
        )
        rooms_result = gateway.create_reservation(pass_.org_id, payload)
        # Rooms usually answers without a PIN; fall back to the captured backup PIN
        pin_code = rooms_result.data.get("pincode") if rooms_result.success and rooms_result.data else None
        provider = PinProvider.ROOMS
        if not pin_code:
            pin_code = meta.get("backup_pincode") or None
            provider = PinProvider.BACKUP
        if not pin_code:
            logger.error(f"No pincode available for pass {pass_id}: Rooms and backup both failed")
            return SyncPaymentResult(503, {"error": "Unable to generate access code"})

        ledger.upsert_lock_code(
            db, pass_id, pin_code, provider, starts_at, ends_at,
            provider_ref=rooms_result.reservation_id, overwrite=True
        )

    ledger.activate_pass(db, pass_id, starts_at, ends_at)
    ledger.set_payment_status_by_intent(db, payment_intent_id, PaymentStatus.SUCCEEDED)
    db.commit()

    logger.info(f"Payment {payment_intent_id} synced manually for pass {pass_id}")
    return SyncPaymentResult(200, {"success": True, "passId": pass_id, "status": "active"})
