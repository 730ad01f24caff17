"""
Inventory item model - raw materials and intermediate pools
"""
from sqlalchemy import Column, String, Numeric, DateTime, Boolean, Integer
from datetime import datetime

from prodtrack.core.stage_config import PoolKind
from prodtrack.db.base import Base


class InventoryItem(Base):
    """
    A stock-keeping item held as a flat quantity.

    True raw materials carry none of the pool flags. Items auto-created by
    stage routing carry exactly one of is_moulded / is_finished (machined) /
    is_assembled and remember the batch that first created them.
    """
    __tablename__ = "inventory_items"

    id = Column(String(40), primary_key=True)  # mat_001
    name = Column(String(255), nullable=False, index=True)
    sku = Column(String(100), nullable=True, index=True)

    quantity = Column(Numeric(18, 4), default=0, nullable=False)
    unit = Column(String(20), nullable=False, default="pcs")
    threshold = Column(Integer, nullable=False, default=0)

    # Pool flags
    is_moulded = Column(Boolean, nullable=False, default=False)
    is_finished = Column(Boolean, nullable=False, default=False)  # machined pool
    is_assembled = Column(Boolean, nullable=False, default=False)
    source_batch_code = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def pool_kind(self) -> PoolKind:
        if self.is_moulded:
            return PoolKind.MOULDED
        if self.is_finished:
            return PoolKind.MACHINED
        if self.is_assembled:
            return PoolKind.ASSEMBLED
        return PoolKind.RAW

    @property
    def is_low_stock(self) -> bool:
        return (self.quantity or 0) <= self.threshold

    def __repr__(self):
        return f"<InventoryItem {self.id}: {self.name} ({self.quantity} {self.unit})>"
