"""
Inventory Service

Raw material maintenance, the auto-managed intermediate pools
(Moulded/Machined/Assembled <product>), Final Stock lot entries, manual
adjustments and movement history.

Nothing here commits; the caller owns the transaction.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from prodtrack.core.config import settings
from prodtrack.core.stage_config import (
    ActivityAction,
    PoolKind,
    POOL_NAME_PREFIX,
    POOL_SKU_PREFIX,
    RecordType,
)
from prodtrack.exceptions import NotFoundError, ValidationError
from prodtrack.logging_config import get_logger
from prodtrack.models.activity_log import ActivityLog
from prodtrack.models.batch import Batch
from prodtrack.models.inventory_item import InventoryItem
from prodtrack.models.product import Product, FinalStockLot
from prodtrack.services.event_service import record_activity
from prodtrack.services.inventory_resolver import (
    AdjustResult,
    adjust_inventory_quantity,
    atomic_adjust,
    resolve_inventory_item,
)
from prodtrack.services.product_service import ProductService
from prodtrack.services.readable_ids import next_id

logger = get_logger(__name__)

_POOL_FLAG = {
    PoolKind.MOULDED: "is_moulded",
    PoolKind.MACHINED: "is_finished",
    PoolKind.ASSEMBLED: "is_assembled",
}

_POOL_LINK = {
    PoolKind.MOULDED: "moulded_material_id",
    PoolKind.MACHINED: "machined_material_id",
    PoolKind.ASSEMBLED: "assembled_material_id",
}


@dataclass
class InventoryMovement:
    """One inward or outward movement rebuilt from the activity log."""
    timestamp: datetime
    direction: str  # inward | outward
    quantity: Decimal
    action: str
    old_quantity: Optional[Decimal]
    new_quantity: Optional[Decimal]
    batch_code: Optional[str]
    stage: Optional[str]
    user: str
    details: Optional[str]


class InventoryService:
    """Inventory items, pools and final stock. Caller commits."""

    # =========================================================================
    # Raw materials
    # =========================================================================

    @staticmethod
    def create_item(
        db: Session,
        name: str,
        quantity: Decimal = Decimal("0"),
        unit: str = "kg",
        threshold: int = 0,
        sku: Optional[str] = None,
        user: Optional[str] = None,
    ) -> InventoryItem:
        if not name or not name.strip():
            raise ValidationError("Material name is required", field="name")
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative", field="quantity", value=quantity)

        item = InventoryItem(
            id=next_id(db, InventoryItem, "mat"),
            name=name.strip(),
            sku=sku,
            quantity=quantity,
            unit=unit,
            threshold=threshold,
        )
        db.add(item)
        db.flush()
        record_activity(
            db,
            record_id=item.id,
            record_type=RecordType.RAW_MATERIAL,
            action=ActivityAction.CREATED,
            details=f"Material {item.name} created with {quantity} {unit}",
            user=user,
            old_quantity=Decimal("0"),
            new_quantity=Decimal(quantity),
        )
        return item

    @staticmethod
    def get_item(db: Session, item_id: str) -> InventoryItem:
        item = db.get(InventoryItem, item_id)
        if item is None:
            raise NotFoundError("Inventory item", item_id)
        return item

    @staticmethod
    def list_items(db: Session, kind: Optional[PoolKind] = None) -> List[InventoryItem]:
        query = db.query(InventoryItem)
        if kind == PoolKind.RAW:
            query = query.filter(
                InventoryItem.is_moulded.is_(False),
                InventoryItem.is_finished.is_(False),
                InventoryItem.is_assembled.is_(False),
            )
        elif kind is not None:
            query = query.filter(getattr(InventoryItem, _POOL_FLAG[kind]).is_(True))
        return query.order_by(InventoryItem.id).all()

    @staticmethod
    def manual_adjust(
        db: Session,
        item_id: str,
        delta: Decimal,
        reason: Optional[str] = None,
        user: Optional[str] = None,
    ) -> AdjustResult:
        """Signed manual stock change on any resolvable item, floored at 0."""
        if delta == 0:
            raise ValidationError("Adjustment must be non-zero", field="delta")
        source = resolve_inventory_item(db, item_id)
        result = adjust_inventory_quantity(db, source, delta)
        action = ActivityAction.RESTOCKED if delta > 0 else ActivityAction.MANUAL_ADJUSTMENT
        details = (
            f"Manual adjustment of {delta} {source.unit}. "
            f"Old qty: {result.old_quantity}, New qty: {result.new_quantity}."
        )
        if reason:
            details += f" Reason: {reason}"
        record_activity(
            db,
            record_id=source.item_id,
            record_type=source.record_type,
            action=action,
            details=details,
            user=user,
            old_quantity=result.old_quantity,
            new_quantity=result.new_quantity,
        )
        return result

    # =========================================================================
    # Intermediate pools
    # =========================================================================

    @staticmethod
    def get_pool_item(db: Session, product: Product, pool: PoolKind) -> Optional[InventoryItem]:
        """Linked pool item, falling back to a flagged item with the pool name."""
        linked_id = getattr(product, _POOL_LINK[pool])
        if linked_id:
            item = db.get(InventoryItem, linked_id)
            if item is not None:
                return item
        name = f"{POOL_NAME_PREFIX[pool]} {product.name}"
        return (
            db.query(InventoryItem)
            .filter(InventoryItem.name == name, getattr(InventoryItem, _POOL_FLAG[pool]).is_(True))
            .first()
        )

    @staticmethod
    def add_to_pool(
        db: Session,
        batch: Batch,
        product: Product,
        pool: PoolKind,
        quantity: int,
        stage: str,
        user: Optional[str] = None,
    ) -> InventoryItem:
        """
        Increment the product's pool item by ``quantity``, creating and
        linking it the first time.
        """
        item = InventoryService.get_pool_item(db, product, pool)
        if item is None:
            item = InventoryItem(
                id=next_id(db, InventoryItem, "mat"),
                name=f"{POOL_NAME_PREFIX[pool]} {product.name}",
                sku=f"{POOL_SKU_PREFIX[pool]}-{datetime.utcnow().strftime('%Y%m%d%H%M%S%f')}",
                quantity=Decimal(quantity),
                unit=settings.DEFAULT_UNIT,
                threshold=settings.DEFAULT_POOL_THRESHOLD,
                source_batch_code=batch.batch_code,
                **{_POOL_FLAG[pool]: True},
            )
            db.add(item)
            db.flush()
            setattr(product, _POOL_LINK[pool], item.id)
            record_activity(
                db,
                record_id=item.id,
                record_type=RecordType.RAW_MATERIAL,
                action=ActivityAction.CREATED,
                details=f"{item.name} created from batch {batch.batch_code} ({stage}) with {quantity} {item.unit}.",
                user=user,
                batch_code=batch.batch_code,
                stage=stage,
                old_quantity=Decimal("0"),
                new_quantity=Decimal(quantity),
            )
            logger.info(
                "Pool item created",
                extra={"item_id": item.id, "pool": pool.value, "batch_code": batch.batch_code, "quantity": quantity},
            )
            return item

        if getattr(product, _POOL_LINK[pool]) != item.id:
            setattr(product, _POOL_LINK[pool], item.id)
        result = atomic_adjust(db, item.id, Decimal(quantity))
        record_activity(
            db,
            record_id=item.id,
            record_type=RecordType.RAW_MATERIAL,
            action=ActivityAction.BATCH_ADJUSTMENT,
            details=(
                f"Batch {batch.batch_code} ({stage}) added {quantity} {item.unit}. "
                f"Old qty: {result.old_quantity}, New qty: {result.new_quantity}."
            ),
            user=user,
            batch_code=batch.batch_code,
            stage=stage,
            old_quantity=result.old_quantity,
            new_quantity=result.new_quantity,
        )
        logger.info(
            "Pool item incremented",
            extra={"item_id": item.id, "pool": pool.value, "batch_code": batch.batch_code, "quantity": quantity},
        )
        return item

    # =========================================================================
    # Final stock
    # =========================================================================

    @staticmethod
    def add_to_final_stock(
        db: Session,
        batch: Batch,
        quantity: int,
        stage: str,
        user: Optional[str] = None,
    ) -> FinalStockLot:
        """
        Append a production lot for the batch's product.

        A legacy product holding a flat quantity has it moved into an
        opening lot first, so the ledger sum stays the available quantity.
        """
        product = (
            ProductService.find_product(db, batch.product_id)
            or ProductService.get_or_create_by_name(db, batch.product_name, user=user)
        )
        old = product.available_quantity

        if not product.is_lot_tracked and (product.quantity or 0) > 0:
            db.add(FinalStockLot(
                product_id=product.id,
                batch_code="OPENING",
                quantity=product.quantity,
                sku="OPENING",
                created_at=product.created_at,
            ))
            product.quantity = Decimal("0")

        parent_code = batch.parent_batch.batch_code if batch.parent_batch is not None else None
        lot = FinalStockLot(
            product_id=product.id,
            batch_code=batch.batch_code,
            source_batch_code=parent_code,
            quantity=Decimal(quantity),
            sku=f"BATCH-{batch.id}",
        )
        db.add(lot)
        db.flush()
        db.expire(product, ["lots"])
        new = product.available_quantity

        record_activity(
            db,
            record_id=product.id,
            record_type=RecordType.FINAL_STOCK,
            action=ActivityAction.BATCH_ADJUSTMENT,
            details=(
                f"Batch {batch.batch_code} ({stage}) added {quantity} pcs to final stock. "
                f"Old qty: {old}, New qty: {new}."
            ),
            user=user,
            batch_code=batch.batch_code,
            stage=stage,
            old_quantity=old,
            new_quantity=new,
        )
        logger.info(
            "Final stock lot added",
            extra={"product_id": product.id, "batch_code": batch.batch_code, "quantity": quantity},
        )
        return lot

    # =========================================================================
    # Movement history
    # =========================================================================

    @staticmethod
    def movements(db: Session, record_id: str) -> List[InventoryMovement]:
        """Inward/outward movements of an item, oldest first."""
        entries = (
            db.query(ActivityLog)
            .filter(ActivityLog.record_id == record_id, ActivityLog.quantity_delta.isnot(None))
            .order_by(ActivityLog.timestamp, ActivityLog.id)
            .all()
        )
        result = []
        for entry in entries:
            delta = Decimal(entry.quantity_delta)
            if delta == 0:
                continue
            result.append(InventoryMovement(
                timestamp=entry.timestamp,
                direction="inward" if delta > 0 else "outward",
                quantity=abs(delta),
                action=entry.action,
                old_quantity=entry.old_quantity,
                new_quantity=entry.new_quantity,
                batch_code=entry.batch_code,
                stage=entry.stage,
                user=entry.user,
                details=entry.details,
            ))
        return result
