"""
Per-organisation third-party integrations

Integration rows hold the reservation gateway configuration for an
organisation; IntegrationLog keeps an audit row for every outbound call.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Index, JSON
from sqlalchemy.orm import relationship
from ..database import Base
import enum


class IntegrationType(str, enum.Enum):
    ROOMS = "rooms"


class IntegrationStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class IntegrationLogStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


class Integration(Base):
    __tablename__ = "integrations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organisation_id = Column(String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False)
    integration_type = Column(String(50), nullable=False, default=IntegrationType.ROOMS.value)
    status = Column(String(20), default=IntegrationStatus.ACTIVE.value, nullable=False)

    # {"base_url": "...", "webhook_path": "/api/v1/reservations"}
    config = Column(JSON, nullable=False, default=dict)
    credentials = Column(JSON, nullable=True)

    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    logs = relationship("IntegrationLog", back_populates="integration", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_integrations_org_type", "organisation_id", "integration_type", "status"),
    )

    def __repr__(self):
        return f"<Integration {self.integration_type} org={self.organisation_id} status={self.status}>"


class IntegrationLog(Base):
    """
    Observability log for every outbound integration call.
    Payloads are sanitised before they are stored.
    """
    __tablename__ = "integration_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    integration_id = Column(String(36), ForeignKey("integrations.id", ondelete="CASCADE"), nullable=False)

    operation = Column(String(100), nullable=False)  # create_reservation
    request_payload = Column(JSON, nullable=True)
    response_payload = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False)
    http_status_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    integration = relationship("Integration", back_populates="logs")

    __table_args__ = (
        Index("ix_integration_logs_integration", "integration_id", "created_at"),
    )

    def __repr__(self):
        return f"<IntegrationLog {self.operation} status={self.status}>"
