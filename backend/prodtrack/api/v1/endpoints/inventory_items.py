"""
Inventory item endpoints: raw materials, pools, manual adjustments, movements.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from prodtrack.api.v1.deps import get_db
from prodtrack.core.stage_config import PoolKind
from prodtrack.logging_config import get_logger
from prodtrack.schemas.inventory import (
    InventoryItemCreate,
    InventoryItemResponse,
    InventoryMovementResponse,
    StockAdjustmentRequest,
    StockAdjustmentResponse,
)
from prodtrack.services.inventory_service import InventoryService

logger = get_logger(__name__)

router = APIRouter(prefix="/inventory-items", tags=["Inventory"])


def build_item_response(item) -> InventoryItemResponse:
    return InventoryItemResponse(
        id=item.id,
        name=item.name,
        sku=item.sku,
        quantity=item.quantity,
        unit=item.unit,
        threshold=item.threshold,
        pool_kind=item.pool_kind.value,
        is_moulded=item.is_moulded,
        is_finished=item.is_finished,
        is_assembled=item.is_assembled,
        is_low_stock=item.is_low_stock,
        source_batch_code=item.source_batch_code,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


@router.post("", response_model=InventoryItemResponse, status_code=201, summary="Create a raw material")
def create_inventory_item(request: InventoryItemCreate, db: Session = Depends(get_db)):
    item = InventoryService.create_item(
        db,
        name=request.name,
        quantity=request.quantity,
        unit=request.unit,
        threshold=request.threshold,
        sku=request.sku,
        user=request.user,
    )
    db.commit()
    db.refresh(item)
    return build_item_response(item)


@router.get("", response_model=List[InventoryItemResponse], summary="List inventory items")
def list_inventory_items(
    kind: Optional[PoolKind] = Query(None, description="raw, moulded, machined or assembled"),
    db: Session = Depends(get_db),
):
    return [build_item_response(i) for i in InventoryService.list_items(db, kind)]


@router.get("/{item_id}", response_model=InventoryItemResponse)
def get_inventory_item(item_id: str, db: Session = Depends(get_db)):
    return build_item_response(InventoryService.get_item(db, item_id))


@router.post(
    "/{item_id}/adjust",
    response_model=StockAdjustmentResponse,
    summary="Manually adjust stock of a material, pool item or product",
)
def adjust_inventory_item(item_id: str, request: StockAdjustmentRequest, db: Session = Depends(get_db)):
    if request.delta == 0:
        raise HTTPException(status_code=400, detail="Adjustment must be non-zero")
    result = InventoryService.manual_adjust(
        db, item_id, request.delta, reason=request.reason, user=request.user
    )
    db.commit()
    logger.info("Manual stock adjustment", extra={"item_id": item_id, "delta": str(request.delta)})
    return StockAdjustmentResponse(
        item_id=result.item_id,
        old_quantity=result.old_quantity,
        new_quantity=result.new_quantity,
    )


@router.get(
    "/{item_id}/movements",
    response_model=List[InventoryMovementResponse],
    summary="Inward and outward movements rebuilt from the activity log",
)
def get_inventory_movements(item_id: str, db: Session = Depends(get_db)):
    return [InventoryMovementResponse.model_validate(m, from_attributes=True)
            for m in InventoryService.movements(db, item_id)]
