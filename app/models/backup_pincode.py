import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, UniqueConstraint
from ..database import Base


class BackupPincode(Base):
    """
    Pre-provisioned fallback PIN for one device and one 14-day period.
    Immutable reference data, loaded ahead of time for fortnights 1..26.
    """
    __tablename__ = "backup_pincodes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=True)
    device_id = Column(String(36), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False)
    fortnight_number = Column(Integer, nullable=False)  # 1..26
    pincode = Column(String(20), nullable=False)
    period_start = Column(DateTime, nullable=False)  # UTC
    period_end = Column(DateTime, nullable=False)  # UTC

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("device_id", "fortnight_number", name="uq_backup_pincode_device_fortnight"),
        Index("ix_backup_pincode_period", "device_id", "period_start", "period_end"),
    )

    def __repr__(self):
        return f"<BackupPincode device={self.device_id} fortnight={self.fortnight_number}>"
