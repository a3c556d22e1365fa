"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking for claim/re-claim flows
- Dialect-specific INSERT ... ON CONFLICT builders
- skip_locked queue reads for workers
"""

import logging
from typing import Optional, TypeVar, Type, List, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy.dialects import postgresql, sqlite

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    try:
        dialect = db.bind.dialect.name
        return dialect == 'postgresql'
    except Exception:
        return False


def is_sqlite(db: Session) -> bool:
    """Check if the database is SQLite"""
    try:
        dialect = db.bind.dialect.name
        return dialect == 'sqlite'
    except Exception:
        return True  # Default to SQLite for safety


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter to find the row
        nowait: If True, raise error immediately if lock unavailable (PostgreSQL only)

    Returns:
        The locked model instance, or None if not found

    Example:
        event = acquire_row_lock(db, ProcessedWebhookEvent, ProcessedWebhookEvent.event_id == event_id)
    """
    query = db.query(model).filter(filter_condition)

    # Only apply locking on PostgreSQL
    if is_postgres(db):
        if nowait:
            query = query.with_for_update(nowait=True)
        else:
            query = query.with_for_update()

    return query.first()


def get_pending_with_skip_locked(
    db: Session,
    model: Type[T],
    filter_condition,
    order_by=None,
    limit: int = 50
) -> list:
    """
    Get pending records with skip_locked to prevent worker race conditions.

    Useful for background workers processing queues.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter for pending records
        order_by: Optional ordering
        limit: Maximum records to fetch

    Returns:
        List of locked model instances (other workers will skip these)
    """
    query = db.query(model).filter(filter_condition)

    if order_by is not None:
        query = query.order_by(order_by)

    # Only apply skip_locked on PostgreSQL
    if is_postgres(db):
        query = query.with_for_update(skip_locked=True)

    return query.limit(limit).all()


def insert_on_conflict(
    db: Session,
    model: Type[T],
    values: Dict[str, Any],
    conflict_columns: List[str],
    update_columns: Optional[List[str]] = None
):
    """
    Build an INSERT ... ON CONFLICT statement for the session's dialect.

    With update_columns the conflicting row is updated from the proposed
    values (DO UPDATE), otherwise the insert is dropped (DO NOTHING).
    The uniqueness check happens inside the database, so two concurrent
    callers can never create two rows for the same key.

    Example:
        stmt = insert_on_conflict(db, LockCode, {...}, ["pass_id"])
        db.execute(stmt)
    """
    dialect_insert = postgresql.insert if is_postgres(db) else sqlite.insert
    stmt = dialect_insert(model).values(**values)

    if not update_columns:
        return stmt.on_conflict_do_nothing(index_elements=conflict_columns)

    return stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={column: stmt.excluded[column] for column in update_columns}
    )
