"""
Processed Webhook Event Model

Dedup ledger for inbound payment-provider webhooks, keyed by the
provider's event id. A row is claimed in "processing" before the
handler runs and moved to "completed" or "failed" afterwards, so a
redelivery can tell a finished event from one that crashed mid-way.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Index
from ..database import Base
import enum


class WebhookEventStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhooks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider = Column(String(50), default="stripe", nullable=False)
    event_id = Column(String(255), nullable=False, unique=True)
    event_type = Column(String(100), nullable=True)

    status = Column(String(20), default=WebhookEventStatus.PROCESSING.value, nullable=False)
    result_action = Column(String(50), nullable=True)  # activated, cancelled, ignored, rejected
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_processed_webhooks_status", "status", "started_at"),
    )

    def __repr__(self):
        return f"<ProcessedWebhookEvent {self.event_id} {self.event_type} status={self.status}>"
