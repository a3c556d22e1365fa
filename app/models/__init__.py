# Models package
from .organisation import Organisation, Site, Device, PassType
from .passes import (
    Pass,
    Payment,
    LockCode,
    PassStatus,
    PaymentStatus,
    LockCodeStatus,
    PinProvider
)
from .backup_pincode import BackupPincode
from .webhook_event import ProcessedWebhookEvent, WebhookEventStatus
from .outbox import (
    OutboxEvent,
    WebhookSubscription,
    WebhookDelivery,
    OutboxStatus,
    OutboxTopic,
    SubscriptionStatus,
    DeliveryStatus
)
from .integration import (
    Integration,
    IntegrationLog,
    IntegrationType,
    IntegrationStatus,
    IntegrationLogStatus
)
from .email_failure import EmailFailure

__all__ = [
    "Organisation", "Site", "Device", "PassType",
    "Pass", "Payment", "LockCode", "PassStatus", "PaymentStatus", "LockCodeStatus", "PinProvider",
    "BackupPincode",
    "ProcessedWebhookEvent", "WebhookEventStatus",
    "OutboxEvent", "WebhookSubscription", "WebhookDelivery",
    "OutboxStatus", "OutboxTopic", "SubscriptionStatus", "DeliveryStatus",
    "Integration", "IntegrationLog", "IntegrationType", "IntegrationStatus", "IntegrationLogStatus",
    "EmailFailure",
]
