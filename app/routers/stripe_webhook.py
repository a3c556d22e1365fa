"""
Stripe Webhook Router

POST /api/webhooks/stripe

Verifies the Stripe-Signature header against the raw body, then hands
the event to PaymentReconciler on a worker thread, so a slow Rooms call
only holds this request. The purchaser email is queued on
BackgroundTasks so it goes out after the response.
"""

import asyncio
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.notifications import BackgroundTaskDispatcher
from ..services.reconciler import PaymentReconciler
from ..services.rooms_client import get_rooms_gateway
from ..services.stripe_service import StripeNotConfiguredError, verify_webhook_signature
from ..utils.logging_config import get_request_id
from ..utils.rate_limiter import limiter, get_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def _reconcile(db: Session, background_tasks: BackgroundTasks, event: dict, request_id: str):
    """Blocking part of the webhook: database work and the Rooms call"""
    reconciler = PaymentReconciler(
        db,
        dispatcher=BackgroundTaskDispatcher(background_tasks),
        rooms_gateway=get_rooms_gateway(db, request_id),
        request_id=request_id
    )
    return reconciler.handle_event(event)


@router.post("/stripe")
@limiter.limit(get_rate_limit("webhook"))
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    request_id = get_request_id(request)
    payload = await request.body()

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        return JSONResponse(status_code=400, content={"error": "Missing signature"})

    try:
        event = verify_webhook_signature(payload, sig_header)
    except StripeNotConfiguredError as e:
        logger.error(f"[{request_id}] {e}")
        return JSONResponse(status_code=500, content={"error": "Webhook secret not configured"})
    except Exception as e:
        logger.warning(f"[{request_id}] Stripe signature verification failed: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    if not isinstance(event, dict):
        return JSONResponse(status_code=400, content={"error": "Invalid webhook payload"})

    try:
        result = await asyncio.to_thread(_reconcile, db, background_tasks, event, request_id)
    except Exception:
        logger.exception(f"[{request_id}] Unhandled error processing Stripe event {event.get('id')}")
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return JSONResponse(status_code=result.status_code, content=result.body)
