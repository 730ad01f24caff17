"""
Event Service

Helper functions for writing activity log entries. Entries are added to
the session only; the calling code owns the transaction.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from prodtrack.core.config import settings
from prodtrack.core.stage_config import ActivityAction, RecordType
from prodtrack.models.activity_log import ActivityLog


def record_activity(
    db: Session,
    record_id: str,
    record_type: RecordType,
    action: ActivityAction,
    details: Optional[str] = None,
    user: Optional[str] = None,
    batch_code: Optional[str] = None,
    stage: Optional[str] = None,
    related_batch_code: Optional[str] = None,
    old_quantity: Optional[Decimal] = None,
    new_quantity: Optional[Decimal] = None,
    timestamp: Optional[datetime] = None,
) -> ActivityLog:
    """
    Record an activity log entry.

    Args:
        db: Database session
        record_id: Id of the inventory item, product or batch affected
        record_type: RawMaterial, Batch or FinalStock
        action: What happened
        details: Human-readable description
        user: Operator name (defaults to the system user)
        batch_code: Batch that caused the change, if any
        stage: Stage that caused the change, if any
        related_batch_code: Cross-reference (e.g. compensating batch)
        old_quantity: Quantity before a stock change
        new_quantity: Quantity after a stock change

    Returns:
        The created ActivityLog instance
    """
    delta = None
    if old_quantity is not None and new_quantity is not None:
        delta = Decimal(new_quantity) - Decimal(old_quantity)

    entry = ActivityLog(
        record_id=record_id,
        record_type=RecordType(record_type).value,
        action=ActivityAction(action).value,
        details=details,
        user=user or settings.SYSTEM_USER,
        batch_code=batch_code,
        stage=stage,
        related_batch_code=related_batch_code,
        old_quantity=old_quantity,
        new_quantity=new_quantity,
        quantity_delta=delta,
        timestamp=timestamp or datetime.utcnow(),
    )
    db.add(entry)
    # Don't commit - let the calling function handle the transaction
    return entry


def get_activity(
    db: Session,
    record_id: Optional[str] = None,
    record_type: Optional[str] = None,
    batch_code: Optional[str] = None,
    limit: int = 200,
) -> List[ActivityLog]:
    """Activity entries newest first, optionally filtered."""
    query = db.query(ActivityLog)
    if record_id:
        query = query.filter(ActivityLog.record_id == record_id)
    if record_type:
        query = query.filter(ActivityLog.record_type == record_type)
    if batch_code:
        query = query.filter(ActivityLog.batch_code == batch_code)
    return query.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit).all()
