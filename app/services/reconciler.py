"""
Payment Webhook Reconciler

Turns verified Stripe events into pass state:

    pending --[checkout.session.completed | payment_intent.succeeded]--> active
    pending --[payment_intent.payment_failed]--> cancelled
    active  --[duplicate event]--> active (no-op)

Flow for a success event:
1. Claim the event id in processed_webhooks (duplicates stop here)
2. Validate metadata, resolve the organisation (the only fatal steps)
3. Activate the pass, upsert the payment
4. Confirm the reservation with Rooms (never waits for a PIN)
5. Seed the lock code from the backup PIN captured at checkout
6. Dispatch the purchaser email, append the pass_paid outbox event

Steps 3-6 are independent: each commits on its own and a failure is
logged and rolled back without stopping the steps after it. Every write
is idempotent, so a re-claimed event can safely run again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.organisation import Organisation, Device
from ..models.outbox import OutboxEvent, OutboxTopic, OutboxStatus
from ..models.passes import Pass, LockCode, PaymentStatus, PinProvider
from ..models.webhook_event import ProcessedWebhookEvent, WebhookEventStatus
from ..schemas.stripe import (
    PassMetadata,
    StripeEventType,
    StripeObjectSummary,
    parse_metadata
)
from ..utils.db_helpers import acquire_row_lock
from ..utils.logging_config import get_logger
from ..utils.timezone import isoformat_utc, normalize_timezone, parse_datetime
from . import ledger
from .notification_templates import PassNotificationData
from .notifications import NotificationDispatcher
from .rooms_client import RoomsGateway, ReservationStatus, build_rooms_payload

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

HANDLED_EVENTS = {e.value for e in StripeEventType}


@dataclass
class ReconcileResult:
    """HTTP-shaped outcome of handling one webhook event"""
    status_code: int
    body: Dict[str, Any] = field(default_factory=lambda: {"received": True})
    action: str = "ignored"


class WebhookGuard:
    """
    Claims webhook event ids so each event is processed once.

    A claim inserts a "processing" row. Redeliveries of a completed event,
    or of one still inside the processing window, are duplicates. A stale
    "processing" row (the worker died) or a "failed" row is re-claimed.
    """

    def __init__(self, db: Session, provider: str = "stripe", processing_timeout: Optional[int] = None):
        self.db = db
        self.provider = provider
        self.processing_timeout = (
            processing_timeout if processing_timeout is not None
            else settings.webhook_processing_timeout_seconds
        )

    def _get(self, event_id: str) -> Optional[ProcessedWebhookEvent]:
        return acquire_row_lock(
            self.db,
            ProcessedWebhookEvent,
            ProcessedWebhookEvent.event_id == event_id
        )

    def claim(self, event_id: str, event_type: Optional[str]) -> bool:
        """True when this caller now owns processing of event_id."""
        now = datetime.utcnow()
        existing = self._get(event_id)

        if existing is not None:
            if existing.status == WebhookEventStatus.COMPLETED.value:
                self.db.rollback()
                return False

            stale_before = now - timedelta(seconds=self.processing_timeout)
            if (
                existing.status == WebhookEventStatus.PROCESSING.value
                and existing.started_at is not None
                and existing.started_at > stale_before
            ):
                self.db.rollback()
                return False

            logger.warning(
                f"Re-claiming webhook event {event_id} (previous status={existing.status}, "
                f"started_at={existing.started_at})"
            )
            existing.status = WebhookEventStatus.PROCESSING.value
            existing.started_at = now
            existing.completed_at = None
            existing.error_message = None
            self.db.commit()
            return True

        self.db.add(ProcessedWebhookEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            status=WebhookEventStatus.PROCESSING.value,
            started_at=now
        ))
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery inserted first
            self.db.rollback()
            return False
        return True

    def complete(self, event_id: str, action: str):
        self.db.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.event_id == event_id
        ).update({
            ProcessedWebhookEvent.status: WebhookEventStatus.COMPLETED.value,
            ProcessedWebhookEvent.result_action: action,
            ProcessedWebhookEvent.completed_at: datetime.utcnow()
        }, synchronize_session=False)
        self.db.commit()

    def fail(self, event_id: str, error: str):
        self.db.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.event_id == event_id
        ).update({
            ProcessedWebhookEvent.status: WebhookEventStatus.FAILED.value,
            ProcessedWebhookEvent.error_message: error[:2000],
            ProcessedWebhookEvent.completed_at: datetime.utcnow()
        }, synchronize_session=False)
        self.db.commit()


class PaymentReconciler:
    """
    Applies Stripe payment events to the pass ledger.

    Collaborators are injectable: the notification dispatcher (tests pass
    a recording fake) and the Rooms gateway (tests pass one built on an
    httpx.MockTransport).
    """

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        rooms_gateway: Optional[RoomsGateway] = None,
        request_id: Optional[str] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.request_id = request_id or "no-request-id"
        self.rooms_gateway = rooms_gateway or RoomsGateway(db, request_id=self.request_id)
        self.guard = WebhookGuard(db)
        self._now = now or (lambda: datetime.now(timezone.utc))

    # ==================
    # Entry point
    # ==================

    def handle_event(self, event: Dict[str, Any]) -> ReconcileResult:
        """Process one verified Stripe event (already parsed to a dict)."""
        event_id = event.get("id")
        event_type = event.get("type")

        if event_type not in HANDLED_EVENTS:
            logger.info(f"[{self.request_id}] Ignoring Stripe event type {event_type}")
            return ReconcileResult(200, {"received": True}, "ignored")

        if not event_id:
            return ReconcileResult(400, {"error": "Missing event id"}, "rejected")

        if not self.guard.claim(event_id, event_type):
            logger.info(f"[{self.request_id}] Duplicate Stripe event {event_id} ignored")
            return ReconcileResult(200, {"received": True, "duplicate": True}, "duplicate")

        obj = (event.get("data") or {}).get("object") or {}

        try:
            if event_type == StripeEventType.PAYMENT_FAILED.value:
                result = self._handle_payment_failed(event_id, obj)
            else:
                result = self._handle_payment_succeeded(event_id, event_type, obj)
        except Exception as e:
            self.db.rollback()
            logger.exception(f"[{self.request_id}] Stripe event {event_id} failed: {e}")
            self.guard.fail(event_id, str(e))
            raise

        self.guard.complete(event_id, result.action)
        return result

    # ==================
    # Helpers
    # ==================

    def _step(self, name: str, pass_id: Optional[str], fn: Callable[[], Any]) -> Any:
        """Run one pipeline step in its own transaction; None when it fails."""
        try:
            value = fn()
            self.db.commit()
            return value
        except Exception as e:
            self.db.rollback()
            logger.error(f"[{self.request_id}] Step {name} failed for pass {pass_id}: {e}")
            return None

    def _summarize(self, obj: Dict[str, Any]) -> Optional[StripeObjectSummary]:
        try:
            return StripeObjectSummary.model_validate(obj)
        except ValueError as e:
            logger.warning(f"[{self.request_id}] Unreadable Stripe object: {e}")
            return None

    def _resolve_organisation(self, meta: PassMetadata) -> Optional[Organisation]:
        return self.db.query(Organisation).filter(Organisation.slug == meta.org_slug).first()

    def _access_window(self, meta: PassMetadata, pass_: Optional[Pass]) -> tuple:
        """Metadata window, else the pass window, else now..now+24h."""
        starts_at, ends_at = meta.window
        if starts_at and ends_at and ends_at > starts_at:
            return starts_at, ends_at

        if pass_ is not None and pass_.valid_from and pass_.valid_to:
            return parse_datetime(pass_.valid_from), parse_datetime(pass_.valid_to)

        now = self._now()
        return now, now + timedelta(hours=24)

    def _get_device(self, device_id: Optional[str]) -> Optional[Device]:
        if not device_id:
            return None
        return self.db.query(Device).filter(Device.id == device_id).first()

    # ==================
    # Success path
    # ==================

    def _handle_payment_succeeded(
        self,
        event_id: str,
        event_type: str,
        obj: Dict[str, Any]
    ) -> ReconcileResult:
        summary = self._summarize(obj)
        meta = parse_metadata(summary.metadata) if summary else None
        if summary is None or meta is None:
            logger.warning(f"[{self.request_id}] Invalid metadata on {event_type} {event_id}")
            return ReconcileResult(400, {"error": "Invalid metadata"}, "rejected")

        org = self._resolve_organisation(meta)
        if not org:
            logger.error(f"[{self.request_id}] Unknown organisation {meta.org_slug!r} on {event_id}")
            return ReconcileResult(400, {"error": "Unknown organisation"}, "rejected")

        is_checkout = event_type == StripeEventType.CHECKOUT_COMPLETED.value
        pass_id = meta.pass_id
        intent_id = summary.intent_id
        amount_cents = (summary.amount_total if is_checkout else summary.amount) or 0
        currency = (summary.currency or settings.default_currency).lower()

        pass_ = ledger.get_pass(self.db, pass_id) if pass_id else None
        starts_at, ends_at = self._access_window(meta, pass_)

        # 1. Activate
        if pass_id:
            changed = self._step(
                "activate_pass", pass_id,
                lambda: ledger.activate_pass(self.db, pass_id, starts_at, ends_at)
            )
            if changed:
                structured_logger.pass_activated(pass_id, event_id, event_type)
        else:
            logger.warning(f"[{self.request_id}] {event_type} {event_id} carries no pass_id")

        # 2. Payment
        if is_checkout:
            key_column, key_value = "stripe_checkout_session", summary.id
        else:
            key_column, key_value = "stripe_payment_intent", intent_id
        self._step(
            "upsert_payment", pass_id,
            lambda: ledger.upsert_payment(
                self.db, key_column, key_value, pass_id, amount_cents, currency,
                PaymentStatus.SUCCEEDED,
                stripe_payment_intent=intent_id if is_checkout else None
            )
        )

        device_id = meta.device_id or (pass_.device_id if pass_ is not None else None)
        device = self._get_device(device_id)

        # 3. Reservation
        rooms_result = None
        if pass_id:
            payload = build_rooms_payload(
                site_id=meta.site_id or (pass_.site_id if pass_ is not None else None) or "",
                pass_id=pass_id,
                valid_from=isoformat_utc(starts_at),
                valid_to=isoformat_utc(ends_at),
                device_id=device_id or "",
                slug_path=device.slug_path if device else meta.slug_path,
                email=meta.customer_email,
                phone=meta.customer_phone,
                status=ReservationStatus.CONFIRMED
            )
            rooms_result = self.rooms_gateway.create_reservation(org.id, payload)
            if not rooms_result.success:
                logger.warning(
                    f"[{self.request_id}] Rooms reservation for pass {pass_id} failed "
                    f"({rooms_result.error_code}): {rooms_result.error}"
                )

        # 4. Lock code
        lock_code: Optional[LockCode] = None
        if pass_id:
            backup_pin = meta.backup_pincode
            provider_ref = rooms_result.reservation_id if rooms_result and rooms_result.success else None
            lock_code = self._step(
                "upsert_lock_code", pass_id,
                lambda: ledger.upsert_lock_code(
                    self.db,
                    pass_id,
                    code=backup_pin,
                    provider=PinProvider.BACKUP if backup_pin else PinProvider.ROOMS,
                    starts_at=starts_at,
                    ends_at=ends_at,
                    provider_ref=provider_ref
                )
            )
            if lock_code is not None:
                structured_logger.pin_assigned(pass_id, lock_code.provider, bool(lock_code.code))

        pin_code = lock_code.code if lock_code is not None else None
        pin_provider = lock_code.provider if lock_code is not None and lock_code.code else None

        # 5. Purchaser email
        if meta.customer_email:
            self._step(
                "notify", pass_id,
                lambda: self._dispatch_notification(
                    org, meta, device, lock_code, pin_code, starts_at, ends_at
                )
            )

        # 6. Outbox
        self._step(
            "outbox", pass_id,
            lambda: self._append_outbox_event(
                org, meta, is_checkout, summary.id, intent_id, pin_code, pin_provider,
                starts_at, ends_at, amount_cents, currency
            )
        )

        logger.info(f"[{self.request_id}] {event_type} {event_id} reconciled for pass {pass_id}")
        return ReconcileResult(200, {"received": True}, "activated")

    def _dispatch_notification(
        self,
        org: Organisation,
        meta: PassMetadata,
        device: Optional[Device],
        lock_code: Optional[LockCode],
        pin_code: Optional[str],
        starts_at: datetime,
        ends_at: datetime
    ):
        if lock_code is not None and lock_code.email_sent_at is not None:
            logger.info(f"[{self.request_id}] Pass {meta.pass_id} already emailed, skipping")
            return

        brand = org.brand_settings or {}
        data = PassNotificationData(
            access_point_name=device.name if device and device.name else "Access Point",
            pin=pin_code,
            valid_from=isoformat_utc(starts_at),
            valid_to=isoformat_utc(ends_at),
            vehicle_plate=meta.customer_plate,
            org_name=org.name,
            org_slug=org.slug,
            pass_type=meta.variant or "day",
            pass_type_name=meta.pass_type_display_name,
            number_of_days=meta.days,
            support_email=org.support_email,
            terms_text=brand.get("terms_text"),
            map_link=brand.get("map_link")
        )
        tz_name = normalize_timezone(meta.org_timezone or org.timezone, settings.default_timezone)

        # email_sent_at is stamped by the sender once the email is accepted
        self.dispatcher.dispatch_pass_notification(
            meta.customer_email, meta.customer_phone, data, tz_name, pass_id=meta.pass_id
        )

    def _append_outbox_event(
        self,
        org: Organisation,
        meta: PassMetadata,
        is_checkout: bool,
        object_id: str,
        intent_id: Optional[str],
        pin_code: Optional[str],
        pin_provider: Optional[str],
        starts_at: datetime,
        ends_at: datetime,
        amount_cents: int,
        currency: str
    ) -> OutboxEvent:
        now = self._now()
        payload = {
            "org_id": org.id,
            "product": meta.product.value,
            "variant": meta.variant,
            "pass_id": meta.pass_id,
            "access_point_id": meta.device_id,
            "pin_code": pin_code,
            "pin_provider": pin_provider,
            "starts_at": isoformat_utc(starts_at),
            "ends_at": isoformat_utc(ends_at),
            "customer_identifier": meta.customer_identifier,
            "customer_email": meta.customer_email,
            "customer_phone": meta.customer_phone,
            "customer_plate": meta.customer_plate,
            "provider": "stripe",
            "provider_session_id": object_id if is_checkout else None,
            "provider_intent_id": intent_id,
            "amount_cents": amount_cents,
            "currency": currency,
            "number_of_days": meta.days,
            "occurred_at": isoformat_utc(now),
        }
        event = OutboxEvent(
            topic=OutboxTopic.PASS_PAID.value,
            payload=payload,
            status=OutboxStatus.PENDING.value,
            occurred_at=now.replace(tzinfo=None)
        )
        self.db.add(event)
        self.db.flush()
        return event

    # ==================
    # Failure path
    # ==================

    def _handle_payment_failed(self, event_id: str, obj: Dict[str, Any]) -> ReconcileResult:
        summary = self._summarize(obj)
        meta = parse_metadata(summary.metadata) if summary else None
        if meta is None or not meta.pass_id:
            logger.info(f"[{self.request_id}] payment_failed {event_id} without usable metadata, ignoring")
            return ReconcileResult(200, {"received": True}, "ignored")

        pass_id = meta.pass_id
        logger.warning(
            f"[{self.request_id}] Payment failed for pass {pass_id}: "
            f"{summary.failure_reason or 'no reason given'}"
        )

        self._step("delete_lock_code", pass_id, lambda: ledger.delete_lock_code(self.db, pass_id))
        self._step("cancel_pass", pass_id, lambda: ledger.cancel_pass(self.db, pass_id))
        if summary.intent_id:
            self._step(
                "fail_payment", pass_id,
                lambda: ledger.set_payment_status_by_intent(self.db, summary.intent_id, PaymentStatus.FAILED)
            )

        return ReconcileResult(200, {"received": True}, "cancelled")
