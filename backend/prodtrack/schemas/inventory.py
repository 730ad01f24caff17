"""
Schemas for inventory items, manual adjustments and movements.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class InventoryItemCreate(BaseModel):
    """Request to create a raw material."""
    name: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    unit: str = Field(default="kg", max_length=20)
    threshold: int = Field(default=0, ge=0)
    sku: Optional[str] = Field(None, max_length=100)
    user: Optional[str] = Field(None, max_length=100, description="Operator name for the audit trail")


class InventoryItemResponse(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None
    quantity: Decimal
    unit: str
    threshold: int
    pool_kind: str
    is_moulded: bool
    is_finished: bool
    is_assembled: bool
    is_low_stock: bool
    source_batch_code: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StockAdjustmentRequest(BaseModel):
    """Signed manual adjustment; the result never drops below zero."""
    delta: Decimal = Field(..., description="Positive to restock, negative to remove")
    reason: Optional[str] = Field(None, max_length=500)
    user: Optional[str] = Field(None, max_length=100)


class StockAdjustmentResponse(BaseModel):
    item_id: str
    old_quantity: Decimal
    new_quantity: Decimal


class InventoryMovementResponse(BaseModel):
    timestamp: datetime
    direction: str
    quantity: Decimal
    action: str
    old_quantity: Optional[Decimal] = None
    new_quantity: Optional[Decimal] = None
    batch_code: Optional[str] = None
    stage: Optional[str] = None
    user: str
    details: Optional[str] = None

    class Config:
        from_attributes = True
