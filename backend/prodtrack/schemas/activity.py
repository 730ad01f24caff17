"""
Schemas for the activity log.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel


class ActivityLogResponse(BaseModel):
    id: int
    record_id: str
    record_type: str
    action: str
    details: Optional[str] = None
    user: str
    batch_code: Optional[str] = None
    stage: Optional[str] = None
    related_batch_code: Optional[str] = None
    old_quantity: Optional[Decimal] = None
    new_quantity: Optional[Decimal] = None
    quantity_delta: Optional[Decimal] = None
    timestamp: datetime

    class Config:
        from_attributes = True
