"""
Pass status endpoints used by the success page

- GET  /api/passes/by-session   poll for the pass and its PIN
- POST /api/passes/sync-payment one-shot reconciliation when the webhook is late

The rooms PIN is returned as `code`, the backup PIN as `backupCode`; the
client decides which one to show when its countdown ends.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..models.organisation import Device, Organisation
from ..models.passes import PassStatus, PaymentStatus, PinProvider
from ..schemas.passes import PassStatusResponse, SyncPaymentRequest
from ..services import ledger
from ..services.backup_pincodes import get_current_backup_pincode
from ..services.checkout import sync_payment
from ..services.rooms_client import get_rooms_gateway
from ..services.stripe_service import StripeNotConfiguredError
from ..utils.logging_config import get_request_id
from ..utils.rate_limiter import limiter, get_rate_limit
from ..utils.timezone import isoformat_utc, normalize_timezone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/passes", tags=["Passes"])


def _backup_code(db: Session, lock_code, device_id: Optional[str]) -> Optional[str]:
    if lock_code is not None and lock_code.code and lock_code.provider == PinProvider.BACKUP.value:
        return lock_code.code
    if device_id:
        return get_current_backup_pincode(db, device_id)
    return None


@router.get("/by-session")
@limiter.limit(get_rate_limit("pass_status"))
def get_pass_by_session(
    request: Request,
    session_id: Optional[str] = Query(None, max_length=255),
    payment_intent: Optional[str] = Query(None, max_length=255),
    db: Session = Depends(get_db)
):
    """
    Pass and PIN state for a Checkout Session or PaymentIntent.

    While the pass is not active (or the payment not succeeded) this is a
    400 carrying the current statuses, so the client keeps polling.
    """
    request_id = get_request_id(request)

    if not session_id and not payment_intent:
        return JSONResponse(status_code=400, content={"error": "Session ID or Payment Intent ID required"})

    if session_id:
        payment = ledger.get_payment_by_checkout_session(db, session_id)
    else:
        payment = ledger.get_payment_by_intent(db, payment_intent)

    if not payment:
        return JSONResponse(status_code=404, content={"error": "Pass not found"})

    pass_ = ledger.get_pass(db, payment.pass_id) if payment.pass_id else None
    if not pass_:
        return JSONResponse(status_code=404, content={"error": "Pass data not found"})

    lock_code = ledger.get_lock_code(db, pass_.id)
    payment_succeeded = payment.status == PaymentStatus.SUCCEEDED.value

    if pass_.status != PassStatus.ACTIVE.value or not payment_succeeded:
        # The backup PIN is only revealed once the card has been charged
        return JSONResponse(status_code=400, content={
            "error": "Pass not yet active" if pass_.status != PassStatus.ACTIVE.value else "Payment not yet confirmed",
            "status": pass_.status,
            "paymentStatus": payment.status,
            "backupCode": _backup_code(db, lock_code, pass_.device_id) if payment_succeeded else None,
        })

    device = db.query(Device).filter(Device.id == pass_.device_id).first() if pass_.device_id else None
    org = db.query(Organisation).filter(Organisation.id == pass_.org_id).first()
    brand = (org.brand_settings or {}) if org else {}

    code = None
    pin_source = None
    if lock_code is not None and lock_code.code:
        pin_source = lock_code.provider
        if lock_code.provider != PinProvider.BACKUP.value:
            code = lock_code.code
    backup_code = _backup_code(db, lock_code, pass_.device_id)

    if code is None and backup_code is None:
        logger.warning(f"[{request_id}] No PIN available yet for active pass {pass_.id}")

    response = PassStatusResponse(
        pass_id=pass_.id,
        accessPointName=device.name if device and device.name else "Access Point",
        timezone=normalize_timezone(org.timezone if org else None, settings.default_timezone),
        code=code,
        backupCode=backup_code,
        pinSource=pin_source,
        codeUnavailable=code is None and backup_code is None,
        valid_from=isoformat_utc(pass_.valid_from),
        valid_to=isoformat_utc(pass_.valid_to),
        passType=pass_.pass_type.name if pass_.pass_type else "Day Pass",
        vehiclePlate=pass_.vehicle_plate,
        device_id=pass_.device_id,
        returnUrl=brand.get("return_url")
    )
    return response.model_dump()


@router.post("/sync-payment")
@limiter.limit(get_rate_limit("sync_payment"))
def sync_payment_endpoint(
    request: Request,
    body: SyncPaymentRequest,
    db: Session = Depends(get_db)
):
    """Activate a pass from Stripe's view of the PaymentIntent."""
    request_id = get_request_id(request)
    try:
        result = sync_payment(
            db,
            body.paymentIntentId,
            rooms_gateway=get_rooms_gateway(db, request_id)
        )
    except StripeNotConfiguredError:
        return JSONResponse(status_code=500, content={"error": "Payment system not configured"})
    except Exception as e:
        db.rollback()
        logger.exception(f"[{request_id}] Payment sync failed for {body.paymentIntentId}: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to sync payment"})

    return JSONResponse(status_code=result.status_code, content=result.body)
