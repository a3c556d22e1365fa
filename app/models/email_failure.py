import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Text, DateTime, JSON
from ..database import Base


class EmailFailure(Base):
    """Dead letter row for an email that failed after all retries"""
    __tablename__ = "email_failures"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    template_name = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    payload_summary = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<EmailFailure {self.recipient} attempts={self.attempts}>"
