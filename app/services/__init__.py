# Services package
from .backup_pincodes import (
    fortnight_number, get_backup_pincode, get_current_backup_pincode, BackupPin
)
from .rooms_client import RoomsGateway, get_rooms_gateway, RoomsReservationResult, build_rooms_payload
from .reconciler import PaymentReconciler, WebhookGuard, ReconcileResult
from .notifications import NotificationDispatcher, BackgroundTaskDispatcher, send_pass_notifications
from .webhook_delivery import (
    WebhookDeliveryWorker,
    deliver_webhook,
    should_retry,
    calculate_next_retry
)
from .checkout import create_checkout, sync_payment, CheckoutResult, SyncPaymentResult

__all__ = [
    "fortnight_number", "get_backup_pincode", "get_current_backup_pincode", "BackupPin",
    "RoomsGateway", "get_rooms_gateway", "RoomsReservationResult", "build_rooms_payload",
    "PaymentReconciler", "WebhookGuard", "ReconcileResult",
    "NotificationDispatcher", "BackgroundTaskDispatcher", "send_pass_notifications",
    "WebhookDeliveryWorker", "deliver_webhook", "should_retry", "calculate_next_retry",
    "create_checkout", "sync_payment", "CheckoutResult", "SyncPaymentResult",
]
