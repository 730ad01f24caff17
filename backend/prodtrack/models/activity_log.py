"""
Activity Log Model

Audit trail for inventory and batch changes. Structured quantity columns
let inventory movements be rebuilt without parsing ``details``.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text
from datetime import datetime

from prodtrack.db.base import Base


class ActivityLog(Base):
    """Activity log entry"""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)

    # What changed: RawMaterial | Batch | FinalStock
    record_id = Column(String(40), nullable=False, index=True)
    record_type = Column(String(20), nullable=False, index=True)

    # Created, Updated, Deleted, Restocked,
    # Stock Adjustment (Batch), Stock Adjustment (Manual)
    action = Column(String(40), nullable=False, index=True)
    details = Column(Text, nullable=True)
    user = Column(String(100), nullable=False, default="System")

    # Batch context
    batch_code = Column(String(50), nullable=True, index=True)
    stage = Column(String(20), nullable=True)
    related_batch_code = Column(String(50), nullable=True)

    # Quantity context
    old_quantity = Column(Numeric(18, 4), nullable=True)
    new_quantity = Column(Numeric(18, 4), nullable=True)
    quantity_delta = Column(Numeric(18, 4), nullable=True)

    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<ActivityLog {self.action} {self.record_type}:{self.record_id}>"
