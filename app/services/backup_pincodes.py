"""
Backup PIN policy

Backup PINs are provisioned per device for 26 consecutive 14-day periods
starting at BACKUP_PIN_EPOCH. The current PIN is captured into payment
metadata when the payment intent is created; the webhook reconciler uses
that captured value and never re-queries this table.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..models.backup_pincode import BackupPincode
from ..utils.timezone import ensure_utc, to_naive_utc

logger = logging.getLogger(__name__)

# Fortnight 1 starts at midnight 17 Jan 2026, Australian Eastern Daylight Time
BACKUP_PIN_EPOCH = datetime(2026, 1, 17, tzinfo=timezone(timedelta(hours=11)))
FORTNIGHT = timedelta(days=14)
MAX_FORTNIGHT = 26


@dataclass
class BackupPin:
    pincode: str
    fortnight_number: int


def fortnight_number(date: Optional[datetime] = None) -> Optional[int]:
    """
    Which 14-day period a given instant falls into.

    Returns None before the epoch or past fortnight 26, since no codes
    are provisioned there. Naive datetimes are taken as UTC.
    """
    moment = ensure_utc(date or datetime.now(timezone.utc))
    if moment < BACKUP_PIN_EPOCH:
        return None

    number = (moment - BACKUP_PIN_EPOCH) // FORTNIGHT + 1
    if number > MAX_FORTNIGHT:
        return None
    return number


def fortnight_period(number: int) -> tuple:
    """(period_start, period_end) in UTC for a fortnight number, end exclusive."""
    if number < 1 or number > MAX_FORTNIGHT:
        raise ValueError(f"Fortnight number must be 1..{MAX_FORTNIGHT}, got {number}")
    start = BACKUP_PIN_EPOCH + FORTNIGHT * (number - 1)
    return start.astimezone(timezone.utc), (start + FORTNIGHT).astimezone(timezone.utc)


def get_backup_pincode(
    db: Session,
    org_id: str,
    site_id: Optional[str],
    device_id: str,
    now: Optional[datetime] = None
) -> Optional[BackupPin]:
    """
    Backup PIN whose period contains now for an org/site/device.

    At most one row is expected per device at any instant; that is a
    provisioning rule and is not checked here.
    """
    moment = to_naive_utc(now or datetime.now(timezone.utc))

    query = db.query(BackupPincode).filter(
        BackupPincode.org_id == org_id,
        BackupPincode.device_id == device_id,
        BackupPincode.period_start <= moment,
        BackupPincode.period_end >= moment
    )
    if site_id:
        query = query.filter(BackupPincode.site_id == site_id)

    row = query.order_by(BackupPincode.period_start.desc()).first()
    if not row:
        logger.warning(f"No backup pincode for device {device_id} at {moment.isoformat()}")
        return None

    return BackupPin(pincode=row.pincode, fortnight_number=row.fortnight_number)


def get_current_backup_pincode(
    db: Session,
    device_id: str,
    now: Optional[datetime] = None
) -> Optional[str]:
    """Device-only variant of get_backup_pincode."""
    moment = to_naive_utc(now or datetime.now(timezone.utc))

    row = (
        db.query(BackupPincode)
        .filter(
            BackupPincode.device_id == device_id,
            BackupPincode.period_start <= moment,
            BackupPincode.period_end >= moment
        )
        .order_by(BackupPincode.period_start.desc())
        .first()
    )
    return row.pincode if row else None


def get_backup_pincode_by_fortnight(db: Session, device_id: str, number: int) -> Optional[str]:
    if number < 1 or number > MAX_FORTNIGHT:
        return None

    row = (
        db.query(BackupPincode)
        .filter(
            BackupPincode.device_id == device_id,
            BackupPincode.fortnight_number == number
        )
        .first()
    )
    if not row:
        logger.warning(f"No backup pincode for device {device_id} fortnight {number}")
        return None
    return row.pincode
