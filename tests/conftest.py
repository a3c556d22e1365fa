"""
Shared fixtures

Tests run against an in-memory SQLite database; every test gets fresh
tables. The `directory` fixture seeds one organisation with a site, a
device and a day pass type.
"""

import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


@pytest.fixture
def engine():
    from app.database import Base
    import app.models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def directory(db):
    """Organisation -> site -> device, plus a $15 day pass"""
    from app.models.organisation import Organisation, Site, Device, PassType

    org = Organisation(
        slug="test-org",
        name="Test Parks",
        timezone="Australia/Sydney",
        support_email="help@testparks.example",
        brand_settings={"return_url": "https://testparks.example/done"}
    )
    db.add(org)
    db.flush()

    site = Site(org_id=org.id, slug="north-ramp", name="North Ramp")
    db.add(site)
    db.flush()

    device = Device(org_id=org.id, site_id=site.id, slug="gate-1", name="Main Gate")
    pass_type = PassType(
        org_id=org.id,
        name="Day Pass",
        code="day",
        price_cents=1500,
        currency="aud",
        duration_hours=24
    )
    db.add_all([device, pass_type])
    db.commit()

    return SimpleNamespace(org=org, site=site, device=device, pass_type=pass_type)


@pytest.fixture
def backup_pin(db, directory):
    """Backup PIN 4821 covering the current instant"""
    from app.models.backup_pincode import BackupPincode

    now = datetime.utcnow()
    row = BackupPincode(
        org_id=directory.org.id,
        site_id=directory.site.id,
        device_id=directory.device.id,
        fortnight_number=5,
        pincode="4821",
        period_start=now - timedelta(days=1),
        period_end=now + timedelta(days=13)
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def pending_pass(db, directory):
    from app.services import ledger

    now = datetime.utcnow()
    pass_ = ledger.create_pending_pass(
        db,
        org_id=directory.org.id,
        site_id=directory.site.id,
        device_id=directory.device.id,
        pass_type_id=directory.pass_type.id,
        valid_from=now,
        valid_to=now + timedelta(hours=24),
        vehicle_plate="ABC123",
        purchaser_email="visitor@example.com"
    )
    db.commit()
    return pass_


class RecordingDispatcher:
    """
    Notification dispatcher that records calls. With a session it stamps
    email_sent_at the way a successful send does; sent=False models an
    SMTP failure.
    """

    def __init__(self, db=None, sent=True):
        self.db = db
        self.sent = sent
        self.calls = []

    def dispatch_pass_notification(self, email, phone, data, timezone, pass_id=None):
        from app.services import ledger

        self.calls.append({"email": email, "phone": phone, "data": data, "timezone": timezone, "pass_id": pass_id})
        if self.db is not None and self.sent and pass_id:
            ledger.mark_lock_code_emailed(self.db, pass_id)


@pytest.fixture
def dispatcher(db):
    return RecordingDispatcher(db)


@pytest.fixture
def failing_dispatcher(db):
    """Records calls but never marks the pass as emailed"""
    return RecordingDispatcher(db, sent=False)


@pytest.fixture
def client(db):
    """TestClient bound to the test session, rate limits off"""
    from fastapi.testclient import TestClient
    from app.main import app
    from app.database import get_db
    from app.utils.rate_limiter import limiter

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True
