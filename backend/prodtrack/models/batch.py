"""
Batch models - production runs, their expanded BOM and per-stage records
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship, attribute_keyed_dict
from datetime import datetime

from prodtrack.db.base import Base


class Batch(Base):
    """
    A production run of one product through its selected stages.

    ``batch_code`` is immutable once assigned. ``version`` is bumped on
    every flush of the batch row; a stale write raises StaleDataError.
    """
    __tablename__ = "batches"

    id = Column(String(40), primary_key=True)  # batch_001
    batch_code = Column(String(50), unique=True, nullable=False, index=True)

    product_id = Column(String(40), ForeignKey("products.id"), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)

    quantity_to_build = Column(Integer, nullable=False)
    total_material_quantity = Column(Numeric(18, 4), nullable=False, default=0)
    selected_processes = Column(JSON, nullable=False, default=list)

    # Cached display value; derive_batch_status() is authoritative
    status = Column(String(20), nullable=False, default="Planned", index=True)
    on_hold = Column(Boolean, nullable=False, default=False)

    auto_created_from_testing_rejected = Column(Boolean, nullable=False, default=False)
    parent_batch_id = Column(String(40), ForeignKey("batches.id", ondelete="SET NULL"), nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    product = relationship("Product")
    parent_batch = relationship("Batch", remote_side=[id], backref="compensating_batches")
    materials = relationship(
        "BatchMaterial",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchMaterial.position",
    )
    processing_stages = relationship(
        "BatchStageRecord",
        back_populates="batch",
        cascade="all, delete-orphan",
        collection_class=attribute_keyed_dict("stage"),
    )

    def materials_for_stage(self, stage: str):
        return [m for m in self.materials if m.stage == stage]

    def __repr__(self):
        return f"<Batch {self.batch_code}: {self.product_name} x {self.quantity_to_build}>"


class BatchMaterial(Base):
    """One row of a batch's BOM, already scaled to quantity_to_build"""
    __tablename__ = "batch_materials"

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(String(40), ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    material_id = Column(String(40), nullable=False)
    name = Column(String(255), nullable=True)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit = Column(String(20), nullable=True)
    stage = Column(String(20), nullable=False)

    batch = relationship("Batch", back_populates="materials")

    def __repr__(self):
        return f"<BatchMaterial {self.stage}: {self.material_id} x {self.quantity}>"


class BatchStageRecord(Base):
    """
    Accepted/rejected/consumed figures for one stage of one batch.

    ``completed`` flips to True once, after a submission with
    accepted + rejected > 0, and is never reset.
    """
    __tablename__ = "batch_stage_records"
    __table_args__ = (
        UniqueConstraint("batch_id", "stage", name="uq_batch_stage"),
    )

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(String(40), ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    stage = Column(String(20), nullable=False)

    accepted = Column(Integer, nullable=False, default=0)
    rejected = Column(Integer, nullable=False, default=0)
    actual_consumption = Column(Numeric(18, 4), nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    # material_id -> quantity consumed (non-Testing stages only)
    material_consumptions = Column(JSON, nullable=True)
    # Testing only: assembly materials the operator confirmed as not at fault
    good_material_ids = Column(JSON, nullable=True)

    batch = relationship("Batch", back_populates="processing_stages")

    def __repr__(self):
        return f"<BatchStageRecord {self.batch_id}/{self.stage} completed={self.completed}>"
