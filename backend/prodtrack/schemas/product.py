"""
Schemas for products, their per-piece BOM and final stock lots.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from prodtrack.core.stage_config import ProcessingStage


class BOMRowInput(BaseModel):
    material_id: str
    stage: ProcessingStage
    qty_per_piece: Decimal = Field(..., gt=0)
    unit: Optional[str] = None
    source: Literal["raw", "final"] = "raw"
    notes: Optional[str] = None


class ProductCreate(BaseModel):
    """Request to create a product."""
    name: str = Field(..., min_length=1, max_length=255)
    product_code: Optional[str] = Field(None, max_length=50, description="User-facing PID")
    sku: Optional[str] = Field(None, max_length=100)
    price: Optional[Decimal] = Field(None, ge=0)
    gst_rate: Optional[Decimal] = Field(None, ge=0)
    quantity: Decimal = Field(default=Decimal("0"), ge=0, description="Opening stock without lot tracking")
    threshold: int = Field(default=0, ge=0)
    manufacturing_stages: List[ProcessingStage]
    bom_per_piece: List[BOMRowInput] = Field(default_factory=list)
    user: Optional[str] = Field(None, max_length=100)


class BOMRowResponse(BaseModel):
    id: int
    material_id: str
    stage: str
    qty_per_piece: Decimal
    unit: Optional[str] = None
    source: str
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class FinalStockLotResponse(BaseModel):
    id: int
    batch_code: str
    source_batch_code: Optional[str] = None
    quantity: Decimal
    sku: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProductResponse(BaseModel):
    id: str
    product_code: Optional[str] = None
    name: str
    sku: Optional[str] = None
    price: Optional[Decimal] = None
    gst_rate: Optional[Decimal] = None
    quantity: Decimal
    available_quantity: Decimal
    threshold: int
    manufacturing_stages: List[str]
    moulded_material_id: Optional[str] = None
    machined_material_id: Optional[str] = None
    assembled_material_id: Optional[str] = None
    bom_rows: List[BOMRowResponse] = []
    lots: List[FinalStockLotResponse] = []
    created_at: datetime

    class Config:
        from_attributes = True


class ProductFlowResponse(BaseModel):
    product_id: str
    stages: List[str]
    source: str
    shape: str
    description: str
