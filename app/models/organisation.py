"""
Core directory models

Organisations own sites, sites own devices (the physical access points a
visitor scans), and organisations sell pass types at those devices.
These rows are reference data for the pass pipeline.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from ..database import Base


class Organisation(Base):
    __tablename__ = "organisations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    timezone = Column(String(64), nullable=True)  # IANA zone, e.g. Australia/Sydney
    support_email = Column(String(255), nullable=True)
    brand_settings = Column(JSON, nullable=True)  # logo_url, colours
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sites = relationship("Site", back_populates="organisation")

    def __repr__(self):
        return f"<Organisation {self.slug}>"


class Site(Base):
    __tablename__ = "sites"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False)
    slug = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    organisation = relationship("Organisation", back_populates="sites")
    devices = relationship("Device", back_populates="site")

    __table_args__ = (
        UniqueConstraint("org_id", "slug", name="uq_site_org_slug"),
    )

    def __repr__(self):
        return f"<Site {self.slug}>"


class Device(Base):
    """An access point (gate, boat ramp, campsite) with a keypad"""
    __tablename__ = "devices"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="SET NULL"), nullable=True)
    slug = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    organisation = relationship("Organisation")
    site = relationship("Site", back_populates="devices")

    __table_args__ = (
        Index("ix_devices_org_slug", "org_id", "slug"),
    )

    @property
    def slug_path(self) -> str:
        """org/site/device path used as the reservation room name"""
        org_slug = self.organisation.slug if self.organisation else "org"
        site_slug = self.site.slug if self.site else "site"
        return f"{org_slug}/{site_slug}/{self.slug}"

    def __repr__(self):
        return f"<Device {self.slug}>"


class PassType(Base):
    __tablename__ = "pass_types"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)  # "Day Pass", "Camping Pass"
    code = Column(String(50), nullable=True)  # day, camping
    price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), default="aud")
    duration_hours = Column(Integer, default=24)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<PassType {self.name} {self.price_cents}{self.currency}>"
