import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.passes import PaymentIntentCreate, PaymentIntentResponse
from ..services.checkout import create_checkout
from ..services.stripe_service import StripeNotConfiguredError
from ..utils.logging_config import get_request_id
from ..utils.rate_limiter import limiter, get_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment-intents", tags=["Checkout"])


@router.post("")
@limiter.limit(get_rate_limit("payment_intent"))
def create_payment_intent(
    request: Request,
    body: PaymentIntentCreate,
    x_idempotency_key: Optional[str] = Header(None, alias="X-Idempotency-Key"),
    db: Session = Depends(get_db)
):
    """Create a pending pass and a Stripe PaymentIntent for it."""
    request_id = get_request_id(request)

    try:
        result = create_checkout(
            db,
            access_point_id=body.accessPointId,
            pass_type_id=body.passTypeId,
            email=body.email,
            plate=body.plate,
            phone=body.phone,
            valid_from=body.validFrom,
            valid_to=body.validTo,
            number_of_days=body.numberOfDays,
            idempotency_key=x_idempotency_key
        )
    except StripeNotConfiguredError:
        logger.error(f"[{request_id}] STRIPE_SECRET_KEY is missing")
        return JSONResponse(status_code=500, content={"error": "Payment system not configured"})
    except ValueError as e:
        db.rollback()
        return JSONResponse(status_code=400, content={"error": str(e)})
    except Exception as e:
        db.rollback()
        logger.exception(f"[{request_id}] Error creating payment intent: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "An error occurred while processing your request."}
        )

    if not result.success:
        return JSONResponse(status_code=result.status_code, content={"error": result.error})

    return PaymentIntentResponse(
        clientSecret=result.client_secret,
        paymentIntentId=result.payment_intent_id,
        passId=result.pass_id
    ).model_dump()
