import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.webhook_delivery import WebhookDeliveryWorker
from ..utils.security import require_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/webhook-delivery")
def run_webhook_delivery(db: Session = Depends(get_db)):
    """Run one webhook delivery pass (pending events, then due retries)."""
    try:
        stats = WebhookDeliveryWorker(db).run_once()
    except Exception as e:
        db.rollback()
        logger.exception(f"Cron webhook delivery failed: {e}")
        return JSONResponse(status_code=500, content={"error": "Webhook delivery failed"})
    return {"success": True, **stats}
