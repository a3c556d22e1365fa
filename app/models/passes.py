"""
Pass & Payment Ledger Models

Single source of truth for "is this pass active, and what PIN is assigned".
Rows are written only through app.services.ledger.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import relationship
from ..database import Base
import enum


class PassStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class LockCodeStatus(str, enum.Enum):
    PENDING = "pending"      # Waiting for the reservation gateway PIN
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PinProvider(str, enum.Enum):
    ROOMS = "rooms"
    BACKUP = "backup"
    MANUAL = "manual"


class Pass(Base):
    __tablename__ = "passes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="SET NULL"), nullable=True)
    device_id = Column(String(36), ForeignKey("devices.id", ondelete="SET NULL"), nullable=True)
    pass_type_id = Column(String(36), ForeignKey("pass_types.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), default=PassStatus.PENDING.value, nullable=False)

    vehicle_plate = Column(String(20), nullable=True)
    purchaser_email = Column(String(255), nullable=True)
    purchaser_phone = Column(String(30), nullable=True)

    valid_from = Column(DateTime, nullable=True)
    valid_to = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    pass_type = relationship("PassType")
    device = relationship("Device")
    organisation = relationship("Organisation")
    payments = relationship("Payment", back_populates="pass_")

    __table_args__ = (
        Index("ix_passes_org_status", "org_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == PassStatus.ACTIVE.value

    def __repr__(self):
        return f"<Pass {self.id} status={self.status}>"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    pass_id = Column(String(36), ForeignKey("passes.id", ondelete="SET NULL"), nullable=True)

    # Stripe identifiers - upsert keys for webhook redelivery
    stripe_checkout_session = Column(String(255), nullable=True, unique=True)
    stripe_payment_intent = Column(String(255), nullable=True, unique=True)

    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), default="aud")
    status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    pass_ = relationship("Pass", back_populates="payments")

    __table_args__ = (
        Index("ix_payments_pass", "pass_id"),
    )

    def __repr__(self):
        return f"<Payment {self.id} {self.amount_cents}{self.currency} status={self.status}>"


class LockCode(Base):
    """
    The PIN presented to the purchaser.

    Exactly one row per pass (unique pass_id). code is NULL only while
    status is pending; once set it is only replaced by the reservation
    gateway's PIN-arrival handler or a manual re-sync.
    """
    __tablename__ = "lock_codes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    pass_id = Column(String(36), ForeignKey("passes.id", ondelete="CASCADE"), nullable=False, unique=True)
    code = Column(String(20), nullable=True)
    status = Column(String(20), default=LockCodeStatus.PENDING.value, nullable=False)
    provider = Column(String(20), default=PinProvider.ROOMS.value, nullable=False)
    provider_ref = Column(String(255), nullable=True)  # Reservation id at the gateway

    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    email_sent_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_lock_codes_provider_ref", "provider", "provider_ref"),
    )

    def __repr__(self):
        return f"<LockCode pass={self.pass_id} provider={self.provider} status={self.status}>"
