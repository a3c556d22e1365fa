"""
Event outbox and integrator webhook models

The reconciler appends OutboxEvent rows; the delivery worker fans them
out to WebhookSubscription URLs and records one WebhookDelivery per
(subscription, event) pair.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from ..database import Base
import enum


class OutboxStatus(str, enum.Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"  # every pair has a delivery row, retries outstanding
    DELIVERED = "delivered"


class OutboxTopic(str, enum.Enum):
    PASS_PAID = "pass.pass_paid.v1"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"


class DeliveryStatus(str, enum.Enum):
    SUCCESS = "success"
    RETRYING = "retrying"
    FAILED = "failed"


class OutboxEvent(Base):
    __tablename__ = "outbox"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    topic = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String(20), default=OutboxStatus.PENDING.value, nullable=False)

    occurred_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_outbox_status_created", "status", "created_at"),
        Index("ix_outbox_topic", "topic"),
    )

    def __repr__(self):
        return f"<OutboxEvent {self.topic} status={self.status}>"


class WebhookSubscription(Base):
    __tablename__ = "webhook_subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False)
    url = Column(String(2048), nullable=False)
    secret = Column(String(128), nullable=False)  # HMAC signing key, never returned after create
    events = Column(JSON, nullable=False, default=lambda: [OutboxTopic.PASS_PAID.value])
    status = Column(String(20), default=SubscriptionStatus.ACTIVE.value, nullable=False)
    description = Column(Text, nullable=True)

    last_delivery_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    deliveries = relationship("WebhookDelivery", back_populates="subscription", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("org_id", "url", name="uq_webhook_subscription_org_url"),
        Index("ix_webhook_subscriptions_status", "status"),
    )

    def subscribes_to(self, topic: str) -> bool:
        return topic in (self.events or [])

    def __repr__(self):
        return f"<WebhookSubscription {self.url} status={self.status}>"


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subscription_id = Column(String(36), ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"), nullable=False)
    outbox_id = Column(String(36), ForeignKey("outbox.id", ondelete="CASCADE"), nullable=False)

    attempt_number = Column(Integer, default=1, nullable=False)
    status = Column(String(20), nullable=False)
    http_status_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)  # Truncated to 1000 chars
    error_message = Column(Text, nullable=True)

    delivered_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    subscription = relationship("WebhookSubscription", back_populates="deliveries")
    event = relationship("OutboxEvent")

    __table_args__ = (
        Index("ix_webhook_deliveries_pair", "subscription_id", "outbox_id", "status"),
        Index("ix_webhook_deliveries_retry", "status", "next_retry_at"),
    )

    def __repr__(self):
        return f"<WebhookDelivery {self.outbox_id} attempt={self.attempt_number} status={self.status}>"
