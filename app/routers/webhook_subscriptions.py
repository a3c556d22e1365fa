"""
Webhook Subscriptions API

Integrators register URLs that receive signed pass events:
- GET    /api/webhooks/subscriptions            active subscriptions
- POST   /api/webhooks/subscriptions            create (secret returned once)
- PATCH  /api/webhooks/subscriptions/{id}       update url / events / status
- DELETE /api/webhooks/subscriptions/{id}
- POST   /api/webhooks/subscriptions/{id}/test  send a webhook.test.v1 event
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.organisation import Organisation
from ..models.outbox import WebhookSubscription, SubscriptionStatus
from ..schemas.webhooks import (
    WebhookSubscriptionCreate,
    WebhookSubscriptionUpdate,
    WebhookSubscriptionResponse,
    WebhookSubscriptionCreated
)
from ..services.webhook_delivery import deliver_webhook
from ..utils.security import generate_webhook_secret, require_admin_key

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/webhooks/subscriptions",
    tags=["Webhook Subscriptions"],
    dependencies=[Depends(require_admin_key)]
)


def _get_subscription_or_404(db: Session, subscription_id: str) -> WebhookSubscription:
    subscription = db.query(WebhookSubscription).filter(WebhookSubscription.id == subscription_id).first()
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


@router.get("")
def list_subscriptions(
    org_id: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    query = db.query(WebhookSubscription).filter(
        WebhookSubscription.status == SubscriptionStatus.ACTIVE.value
    )
    if org_id:
        query = query.filter(WebhookSubscription.org_id == org_id)

    subscriptions = query.order_by(WebhookSubscription.created_at.desc()).all()
    return {
        "subscriptions": [
            WebhookSubscriptionResponse.model_validate(s).model_dump(mode="json") for s in subscriptions
        ]
    }


@router.post("", status_code=201)
def create_subscription(body: WebhookSubscriptionCreate, db: Session = Depends(get_db)):
    org = db.query(Organisation).filter(Organisation.id == body.org_id).first()
    if not org:
        raise HTTPException(status_code=400, detail="Unknown organisation")

    subscription = WebhookSubscription(
        org_id=body.org_id,
        url=body.url,
        secret=generate_webhook_secret(),
        events=body.events,
        description=body.description,
        status=SubscriptionStatus.ACTIVE.value
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Webhook URL already registered for this organisation")
    db.refresh(subscription)

    logger.info(f"Webhook subscription {subscription.id} created for org {org.slug} -> {subscription.url}")
    return {"subscription": WebhookSubscriptionCreated.model_validate(subscription).model_dump(mode="json")}


@router.patch("/{subscription_id}")
def update_subscription(
    subscription_id: str,
    body: WebhookSubscriptionUpdate,
    db: Session = Depends(get_db)
):
    subscription = _get_subscription_or_404(db, subscription_id)

    changes = body.model_dump(exclude_unset=True)
    if "status" in changes and changes["status"] is not None:
        changes["status"] = changes["status"].value
    for key, value in changes.items():
        if value is not None:
            setattr(subscription, key, value)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Webhook URL already registered for this organisation")
    db.refresh(subscription)

    return {"subscription": WebhookSubscriptionResponse.model_validate(subscription).model_dump(mode="json")}


@router.delete("/{subscription_id}")
def delete_subscription(subscription_id: str, db: Session = Depends(get_db)):
    subscription = _get_subscription_or_404(db, subscription_id)
    db.delete(subscription)
    db.commit()
    logger.info(f"Webhook subscription {subscription_id} deleted")
    return {"success": True}


@router.post("/{subscription_id}/test")
def test_subscription(subscription_id: str, db: Session = Depends(get_db)):
    """Deliver a synthetic event; nothing is recorded in webhook_deliveries."""
    subscription = _get_subscription_or_404(db, subscription_id)

    payload = {
        "event": "webhook.test.v1",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "data": {
            "message": "This is a test webhook delivery",
            "subscription_id": subscription.id,
        },
    }
    result = deliver_webhook(subscription.url, subscription.secret, payload, 1)

    return {
        "success": result.success,
        "statusCode": result.status_code,
        "responseBody": result.response_body,
        "error": result.error,
    }
