"""
Webhook Delivery Worker

Relays outbox events to integrator subscriptions with at-least-once
semantics:
- Pending pass: oldest pending outbox events x active subscriptions for
  the event's org and topic; one webhook_deliveries row per pair
- Retry pass: deliveries in "retrying" whose next_retry_at is due
- Backoff 1m, 5m, 30m, 2h, 12h; at most 5 attempts
- 4xx responses (except 429) are permanent failures

An outbox event leaves "pending" once every matching subscription has a
delivery row: "delivered" when all are terminal (success or failed),
otherwise "dispatched" until the retry pass settles the last one.

Should be run periodically: in-process loop, worker.py, or the cron
endpoint.
"""

import json
import time
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from ..config import settings
from ..models.outbox import (
    OutboxEvent,
    OutboxStatus,
    WebhookSubscription,
    WebhookDelivery,
    SubscriptionStatus,
    DeliveryStatus
)
from ..utils.db_helpers import get_pending_with_skip_locked
from ..utils.logging_config import get_logger
from ..utils.timezone import isoformat_utc
from .webhook_signature import generate_webhook_signature

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

RETRY_DELAYS = [60, 300, 1800, 7200, 43200]  # seconds
RESPONSE_BODY_LIMIT = 1000
TERMINAL_STATUSES = (DeliveryStatus.SUCCESS.value, DeliveryStatus.FAILED.value)


@dataclass
class WebhookDeliveryResult:
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0


def deliver_webhook(
    url: str,
    secret: str,
    payload: Dict[str, Any],
    attempt_number: int = 1,
    transport: Optional[httpx.BaseTransport] = None,
    timeout: Optional[float] = None
) -> WebhookDeliveryResult:
    """POST a signed payload to a subscriber. Never raises."""
    body = json.dumps(payload, separators=(",", ":"), default=str)
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": generate_webhook_signature(body, secret),
        "X-Webhook-Attempt": str(attempt_number),
        "User-Agent": settings.webhook_user_agent,
    }
    start_time = time.time()

    try:
        with httpx.Client(
            timeout=timeout if timeout is not None else settings.webhook_delivery_timeout_seconds,
            transport=transport
        ) as client:
            response = client.post(url, content=body, headers=headers)
    except httpx.TimeoutException:
        return WebhookDeliveryResult(
            success=False,
            error="Request timed out",
            duration_ms=int((time.time() - start_time) * 1000)
        )
    except httpx.HTTPError as e:
        return WebhookDeliveryResult(
            success=False,
            error=str(e) or type(e).__name__,
            duration_ms=int((time.time() - start_time) * 1000)
        )

    return WebhookDeliveryResult(
        success=response.is_success,
        status_code=response.status_code,
        response_body=response.text[:RESPONSE_BODY_LIMIT],
        duration_ms=int((time.time() - start_time) * 1000)
    )


def should_retry(attempt_number: int, status_code: Optional[int] = None) -> bool:
    if attempt_number >= settings.webhook_max_attempts:
        return False
    # Client errors will not fix themselves, except rate limiting
    if status_code is not None and 400 <= status_code < 500 and status_code != 429:
        return False
    return True


def calculate_next_retry(attempt_number: int, now: Optional[datetime] = None) -> datetime:
    index = min(max(attempt_number, 1) - 1, len(RETRY_DELAYS) - 1)
    return (now or datetime.utcnow()) + timedelta(seconds=RETRY_DELAYS[index])


def build_webhook_payload(event: OutboxEvent) -> Dict[str, Any]:
    return {
        "topic": event.topic,
        "data": event.payload,
        "event_id": event.id,
        "created_at": isoformat_utc(event.created_at),
    }


class WebhookDeliveryWorker:
    """
    Processes outbox events into webhook deliveries.

    One instance per run; pass an httpx transport to fake subscribers.
    """

    def __init__(self, db: Session, transport: Optional[httpx.BaseTransport] = None):
        self.db = db
        self.transport = transport

    def get_pending_events(self, limit: Optional[int] = None) -> List[OutboxEvent]:
        return get_pending_with_skip_locked(
            self.db,
            OutboxEvent,
            OutboxEvent.status == OutboxStatus.PENDING.value,
            order_by=OutboxEvent.created_at,
            limit=limit or settings.webhook_batch_size
        )

    def get_due_retries(self, limit: Optional[int] = None) -> List[WebhookDelivery]:
        now = datetime.utcnow()
        return get_pending_with_skip_locked(
            self.db,
            WebhookDelivery,
            (WebhookDelivery.status == DeliveryStatus.RETRYING.value)
            & (WebhookDelivery.next_retry_at <= now),
            order_by=WebhookDelivery.next_retry_at,
            limit=limit or settings.webhook_retry_batch_size
        )

    def _matching_subscriptions(
        self,
        event: OutboxEvent,
        subscriptions: List[WebhookSubscription]
    ) -> List[WebhookSubscription]:
        org_id = (event.payload or {}).get("org_id")
        return [
            sub for sub in subscriptions
            if sub.subscribes_to(event.topic) and (org_id is None or sub.org_id == org_id)
        ]

    def _delivery_for_pair(self, subscription_id: str, outbox_id: str) -> Optional[WebhookDelivery]:
        # success first so a stray retry row never hides a completed pair
        rows = (
            self.db.query(WebhookDelivery)
            .filter(
                WebhookDelivery.subscription_id == subscription_id,
                WebhookDelivery.outbox_id == outbox_id
            )
            .all()
        )
        for row in rows:
            if row.status == DeliveryStatus.SUCCESS.value:
                return row
        return rows[0] if rows else None

    def _apply_result(
        self,
        delivery: WebhookDelivery,
        subscription: WebhookSubscription,
        attempt_number: int,
        result: WebhookDeliveryResult
    ):
        now = datetime.utcnow()
        delivery.attempt_number = attempt_number
        delivery.http_status_code = result.status_code
        delivery.response_body = result.response_body
        delivery.error_message = result.error

        if result.success:
            delivery.status = DeliveryStatus.SUCCESS.value
            delivery.delivered_at = now
            delivery.next_retry_at = None
            subscription.last_delivery_at = now
        elif should_retry(attempt_number, result.status_code):
            delivery.status = DeliveryStatus.RETRYING.value
            delivery.next_retry_at = calculate_next_retry(attempt_number, now)
        else:
            delivery.status = DeliveryStatus.FAILED.value
            delivery.next_retry_at = None

    def _log_result(self, delivery: WebhookDelivery, subscription: WebhookSubscription, result: WebhookDeliveryResult):
        structured_logger.webhook_delivered(
            delivery.id, subscription.url, delivery.status, result.status_code, result.duration_ms
        )

    def _settle_event(self, event: OutboxEvent, subscriptions: List[WebhookSubscription]):
        """
        pending    -> some matching pair has no delivery row yet
        dispatched -> every pair has a row, at least one still retrying
        delivered  -> every pair is terminal (or nothing subscribes)
        """
        settled = True
        for subscription in self._matching_subscriptions(event, subscriptions):
            delivery = self._delivery_for_pair(subscription.id, event.id)
            if delivery is None:
                return
            if delivery.status not in TERMINAL_STATUSES:
                settled = False

        if settled:
            event.status = OutboxStatus.DELIVERED.value
        else:
            event.status = OutboxStatus.DISPATCHED.value

    def _active_subscriptions(self) -> List[WebhookSubscription]:
        return (
            self.db.query(WebhookSubscription)
            .filter(WebhookSubscription.status == SubscriptionStatus.ACTIVE.value)
            .all()
        )

    def process_pending(self) -> Dict[str, int]:
        """First attempts for pending outbox events."""
        stats = {"events": 0, "delivered": 0, "failed": 0, "retrying": 0}

        events = self.get_pending_events()
        if not events:
            return stats

        subscriptions = self._active_subscriptions()

        for event in events:
            stats["events"] += 1
            payload = build_webhook_payload(event)

            for subscription in self._matching_subscriptions(event, subscriptions):
                # Pairs with any row are owned by the retry pass
                if self._delivery_for_pair(subscription.id, event.id) is not None:
                    continue

                try:
                    result = deliver_webhook(
                        subscription.url, subscription.secret, payload, 1, transport=self.transport
                    )
                    delivery = WebhookDelivery(subscription_id=subscription.id, outbox_id=event.id)
                    self._apply_result(delivery, subscription, 1, result)
                    self.db.add(delivery)
                    self.db.flush()
                    self._log_result(delivery, subscription, result)
                    self.db.commit()
                    stats[_stat_key(delivery.status)] += 1
                except Exception as e:
                    self.db.rollback()
                    logger.error(f"Delivery of event {event.id} to {subscription.url} failed: {e}")

            try:
                self._settle_event(event, subscriptions)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to settle outbox event {event.id}: {e}")

        return stats

    def process_retries(self) -> Dict[str, int]:
        """Next attempt for due retrying deliveries."""
        stats = {"retried": 0, "delivered": 0, "failed": 0, "retrying": 0}

        for delivery in self.get_due_retries():
            subscription = delivery.subscription
            event = delivery.event
            if subscription is None or event is None:
                continue

            stats["retried"] += 1
            attempt_number = delivery.attempt_number + 1
            try:
                result = deliver_webhook(
                    subscription.url,
                    subscription.secret,
                    build_webhook_payload(event),
                    attempt_number,
                    transport=self.transport
                )
                self._apply_result(delivery, subscription, attempt_number, result)
                self._log_result(delivery, subscription, result)
                if delivery.status in TERMINAL_STATUSES:
                    self._settle_event(event, self._active_subscriptions())
                self.db.commit()
                stats[_stat_key(delivery.status)] += 1
            except Exception as e:
                self.db.rollback()
                logger.error(f"Retry of delivery {delivery.id} failed: {e}")

        return stats

    def run_once(self) -> Dict[str, Any]:
        pending = self.process_pending()
        retries = self.process_retries()
        if pending["events"] or retries["retried"]:
            logger.info(f"Webhook delivery run: pending={pending} retries={retries}")
        return {"pending": pending, "retries": retries}


def _stat_key(status: str) -> str:
    if status == DeliveryStatus.SUCCESS.value:
        return "delivered"
    return status
