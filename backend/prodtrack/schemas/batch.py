"""
Schemas for batches and stage submissions.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from prodtrack.core.stage_config import ProcessingStage


class BatchMaterialInput(BaseModel):
    material_id: str
    name: Optional[str] = None
    quantity: Decimal = Field(..., ge=0, description="Quantity for the whole batch")
    unit: Optional[str] = None
    stage: ProcessingStage


class BatchCreate(BaseModel):
    """Request to plan a batch. Omitted fields come from the product."""
    product_id: str = Field(..., description="Product PID or record id")
    quantity_to_build: int = Field(..., gt=0)
    selected_processes: Optional[List[ProcessingStage]] = None
    materials: Optional[List[BatchMaterialInput]] = None
    user: Optional[str] = Field(None, max_length=100)


class BatchMaterialResponse(BaseModel):
    material_id: str
    name: Optional[str] = None
    quantity: Decimal
    unit: Optional[str] = None
    stage: str

    class Config:
        from_attributes = True


class StageRecordResponse(BaseModel):
    stage: str
    accepted: int
    rejected: int
    actual_consumption: Decimal
    completed: bool
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    material_consumptions: Optional[Dict[str, float]] = None
    good_material_ids: Optional[List[str]] = None

    class Config:
        from_attributes = True


class BatchResponse(BaseModel):
    id: str
    batch_code: str
    product_id: str
    product_name: str
    quantity_to_build: int
    total_material_quantity: Decimal
    selected_processes: List[str]
    status: str
    status_label: str
    on_hold: bool
    auto_created_from_testing_rejected: bool
    parent_batch_id: Optional[str] = None
    accepted_locked: bool = False
    materials: List[BatchMaterialResponse]
    processing_stages: Dict[str, StageRecordResponse]
    version: int
    created_at: datetime
    updated_at: datetime


class StageSubmitRequest(BaseModel):
    """One batch's figures for a stage."""
    accepted: int = Field(default=0, ge=0)
    rejected: int = Field(default=0, ge=0)
    material_consumptions: Dict[str, float] = Field(
        default_factory=dict, description="material_id -> quantity actually used"
    )
    good_material_ids: List[str] = Field(
        default_factory=list, description="Testing: assembly materials confirmed good"
    )
    user: Optional[str] = Field(None, max_length=100)


class BatchActionRequest(BaseModel):
    user: Optional[str] = Field(None, max_length=100)


class MaterialConsumptionResponse(BaseModel):
    material_id: str
    name: Optional[str] = None
    requested: Decimal
    applied: Decimal
    old_quantity: Decimal
    new_quantity: Decimal
    source_kind: Optional[str] = None
    found: bool

    class Config:
        from_attributes = True


class StageOutcomeResponse(BaseModel):
    batch_id: str
    batch_code: str
    stage: str
    accepted: int
    rejected: int
    completed: bool
    status: str
    destination: Optional[str] = None
    accepted_locked: bool = False
    consumptions: List[MaterialConsumptionResponse] = []
    compensating_batch_id: Optional[str] = None
    compensating_batch_code: Optional[str] = None

    class Config:
        from_attributes = True


class StageInputResponse(BaseModel):
    """What a stage of a batch has to work with (informational)."""
    batch_id: str
    stage: str
    pool_available: Optional[Decimal] = Field(
        None, description="Units waiting in the pool feeding this stage; null for Molding"
    )
    max_units_from_materials: Optional[int] = Field(
        None, description="Units the stage's materials can cover at the planned rate"
    )
