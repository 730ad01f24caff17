"""
Inventory Resolver

Locates a material reference across raw materials, the intermediate
pools and Final Stock products, and applies quantity changes to it.

Search order: raw → moulded → machined → assembled → Final Stock product.
Raw and pool items are ``raw`` kind sources (flat quantity). Products are
``final`` kind sources (lot ledger, or a flat quantity for legacy items).

All quantity writes go through a single UPDATE with the floor at zero
computed by the database, never read-modify-write in Python.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import List, Optional, Union

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from prodtrack.core.stage_config import PoolKind, STAGE_INPUT_POOL, parse_stage
from prodtrack.exceptions import InventoryItemNotFoundError
from prodtrack.logging_config import get_logger
from prodtrack.models.inventory_item import InventoryItem
from prodtrack.models.product import Product, FinalStockLot

logger = get_logger(__name__)

ZERO = Decimal("0")

SOURCE_RAW = "raw"
SOURCE_FINAL = "final"

@dataclass
class InventorySource:
    """A resolved material reference."""
    kind: str  # raw | final
    item_id: str
    name: str
    unit: str
    available: Decimal
    pool: Optional[PoolKind] = None  # None for final stock
    lot_tracked: bool = False
    record: Union[InventoryItem, Product, None] = None

    @property
    def record_type(self) -> str:
        return "FinalStock" if self.kind == SOURCE_FINAL else "RawMaterial"


@dataclass
class AdjustResult:
    item_id: str
    old_quantity: Decimal
    new_quantity: Decimal

    @property
    def applied(self) -> Decimal:
        return self.new_quantity - self.old_quantity


def _to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def resolve_inventory_item(db: Session, item_id: str) -> InventorySource:
    """
    Resolve ``item_id`` to an inventory source.

    Raises:
        InventoryItemNotFoundError: nothing matches in any pool or product
    """
    item = db.get(InventoryItem, item_id)
    # Raw and pool items share one table; products are checked last
    if item is not None:
        return InventorySource(
            kind=SOURCE_RAW,
            item_id=item.id,
            name=item.name,
            unit=item.unit,
            available=_to_decimal(item.quantity),
            pool=item.pool_kind,
            record=item,
        )

    product = db.get(Product, item_id)
    if product is not None:
        return InventorySource(
            kind=SOURCE_FINAL,
            item_id=product.id,
            name=product.name,
            unit=product.unit or "pcs",
            available=_to_decimal(product.available_quantity),
            lot_tracked=product.is_lot_tracked,
            record=product,
        )

    raise InventoryItemNotFoundError(item_id)


def find_inventory_item(db: Session, item_id: str) -> Optional[InventorySource]:
    """Like resolve_inventory_item, but returns None when nothing matches."""
    try:
        return resolve_inventory_item(db, item_id)
    except InventoryItemNotFoundError:
        return None


# =============================================================================
# Atomic quantity updates
# =============================================================================

def _atomic_adjust(db: Session, model, item_id: str, delta: Decimal) -> AdjustResult:
    db.flush()
    old = db.execute(
        select(model.quantity).where(model.id == item_id).with_for_update()
    ).scalar_one_or_none()
    if old is None:
        raise InventoryItemNotFoundError(item_id)

    new_value = model.quantity + delta
    db.execute(
        update(model)
        .where(model.id == item_id)
        .values(quantity=case((new_value < 0, 0), else_=new_value))
        .execution_options(synchronize_session="fetch")
    )
    new = db.execute(select(model.quantity).where(model.id == item_id)).scalar_one()
    return AdjustResult(item_id=item_id, old_quantity=_to_decimal(old), new_quantity=_to_decimal(new))


def atomic_adjust(db: Session, item_id: str, delta) -> AdjustResult:
    """Apply a signed change to a raw/pool item's quantity, floored at 0."""
    return _atomic_adjust(db, InventoryItem, item_id, _to_decimal(delta))


def atomic_adjust_product(db: Session, product_id: str, delta) -> AdjustResult:
    """Apply a signed change to a product's legacy flat quantity, floored at 0."""
    return _atomic_adjust(db, Product, product_id, _to_decimal(delta))


def consume_lots_fifo(db: Session, product: Product, amount: Decimal) -> AdjustResult:
    """
    Consume ``amount`` from a product's lot ledger, oldest lot first.

    Lots that reach zero are deleted. Consumption stops when the ledger is
    drained; the caller sees the shortfall as old - new < amount.
    """
    db.flush()
    lots: List[FinalStockLot] = list(db.execute(
        select(FinalStockLot)
        .where(FinalStockLot.product_id == product.id)
        .order_by(FinalStockLot.created_at, FinalStockLot.id)
        .with_for_update()
    ).scalars())

    old = sum((_to_decimal(lot.quantity) for lot in lots), ZERO)
    remaining = _to_decimal(amount)
    for lot in lots:
        if remaining <= 0:
            break
        lot_qty = _to_decimal(lot.quantity)
        take = min(lot_qty, remaining)
        lot.quantity = lot_qty - take
        remaining -= take

    for lot in lots:
        if _to_decimal(lot.quantity) <= 0:
            db.delete(lot)
    db.flush()
    db.expire(product, ["lots"])

    new = old - (_to_decimal(amount) - remaining)
    return AdjustResult(item_id=product.id, old_quantity=old, new_quantity=new)


def adjust_inventory_quantity(db: Session, source: InventorySource, delta) -> AdjustResult:
    """
    Ledger-aware signed quantity change.

    Decrements on lot-tracked products drain lots FIFO. Increments on
    lot-tracked products are recorded as a new lot. Everything else is a
    floored atomic update of the flat quantity.
    """
    delta = _to_decimal(delta)
    if source.kind == SOURCE_RAW:
        return atomic_adjust(db, source.item_id, delta)

    product = source.record if isinstance(source.record, Product) else db.get(Product, source.item_id)
    if product is None:
        raise InventoryItemNotFoundError(source.item_id)

    if product.is_lot_tracked:
        if delta < 0:
            return consume_lots_fifo(db, product, -delta)
        old = _to_decimal(product.available_quantity)
        db.add(FinalStockLot(product_id=product.id, batch_code="MANUAL", quantity=delta, sku="MANUAL"))
        db.flush()
        db.expire(product, ["lots"])
        return AdjustResult(item_id=product.id, old_quantity=old, new_quantity=old + delta)
    return atomic_adjust_product(db, product.id, delta)


# =============================================================================
# Stage input availability
# =============================================================================

_POOL_LINK = {
    PoolKind.MOULDED: "moulded_material_id",
    PoolKind.MACHINED: "machined_material_id",
    PoolKind.ASSEMBLED: "assembled_material_id",
}


def pool_item_for_product(db: Session, product: Product, pool: PoolKind) -> Optional[InventoryItem]:
    """The product's linked intermediate pool item, if one exists."""
    item_id = getattr(product, _POOL_LINK[pool])
    return db.get(InventoryItem, item_id) if item_id else None


def stage_input_available(db: Session, product: Product, stage) -> Optional[Decimal]:
    """
    Units waiting in the pool that feeds ``stage``.

    None for Molding, which draws on raw materials rather than a pool.
    """
    pool = STAGE_INPUT_POOL[parse_stage(stage)]
    if pool is None:
        return None
    item = pool_item_for_product(db, product, pool)
    return _to_decimal(item.quantity) if item is not None else ZERO


def max_units_from_materials(db: Session, batch, stage) -> Optional[int]:
    """
    How many units the stage's materials could cover at their per-piece
    rate. None when the stage has no materials. Informational only:
    submissions are not capped by it.
    """
    stage = parse_stage(stage)
    materials = batch.materials_for_stage(stage.value)
    if not materials or not batch.quantity_to_build:
        return None

    limit = None
    for material in materials:
        per_piece = _to_decimal(material.quantity) / Decimal(batch.quantity_to_build)
        if per_piece <= 0:
            continue
        source = find_inventory_item(db, material.material_id)
        available = source.available if source is not None else ZERO
        units = int((available / per_piece).to_integral_value(rounding=ROUND_FLOOR))
        limit = units if limit is None else min(limit, units)
    return limit

