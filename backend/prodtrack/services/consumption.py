"""
Consumption Calculator

Works out how much of each stage material a submission uses and deducts
it from the resolved inventory source.

Per material:
    1. an explicit positive value from the submission wins
    2. otherwise accepted × (planned quantity / quantity_to_build)
    3. deduct min(amount, on hand); quantities never go below 0

Lot-tracked Final Stock sources are drained oldest lot first. Every
deduction writes a "Stock Adjustment (Batch)" activity entry.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from prodtrack.core.stage_config import ActivityAction, parse_stage
from prodtrack.exceptions import InventoryItemNotFoundError
from prodtrack.logging_config import get_logger
from prodtrack.models.batch import Batch
from prodtrack.services.event_service import record_activity
from prodtrack.services.inventory_resolver import (
    adjust_inventory_quantity,
    resolve_inventory_item,
)

logger = get_logger(__name__)

ZERO = Decimal("0")
QUANTUM = Decimal("0.0001")


@dataclass
class MaterialConsumption:
    """Outcome of consuming one material."""
    material_id: str
    name: Optional[str]
    requested: Decimal
    applied: Decimal
    old_quantity: Decimal
    new_quantity: Decimal
    source_kind: Optional[str]
    found: bool = True

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.applied


def default_consumption(planned_quantity, quantity_to_build: int, accepted: int) -> Decimal:
    """accepted × planned / quantity_to_build, i.e. accepted units at the per-piece rate."""
    if not quantity_to_build:
        return ZERO
    amount = Decimal(str(planned_quantity)) * Decimal(accepted) / Decimal(quantity_to_build)
    return amount.quantize(QUANTUM, rounding=ROUND_HALF_UP)


def compute_consumption(
    batch: Batch,
    stage,
    accepted: int,
    explicit: Optional[Mapping[str, float]] = None,
) -> Dict[str, Decimal]:
    """
    Amount to consume per stage material, keyed by material id.

    An explicit value of 0 counts as not supplied.
    """
    stage = parse_stage(stage)
    explicit = explicit or {}
    amounts: Dict[str, Decimal] = {}
    for material in batch.materials_for_stage(stage.value):
        supplied = explicit.get(material.material_id)
        if supplied is not None and Decimal(str(supplied)) > 0:
            amount = Decimal(str(supplied))
        else:
            amount = default_consumption(material.quantity, batch.quantity_to_build, accepted)
        amounts[material.material_id] = amounts.get(material.material_id, ZERO) + amount

    unknown = set(explicit) - set(amounts)
    if unknown:
        logger.debug(
            "Ignoring consumption for materials outside the stage",
            extra={"batch_code": batch.batch_code, "stage": stage.value, "material_ids": sorted(unknown)},
        )
    return amounts


def _material_names(batch: Batch, stage: str) -> Dict[str, Optional[str]]:
    return {m.material_id: m.name for m in batch.materials_for_stage(stage)}


def apply_consumption(
    db: Session,
    batch: Batch,
    stage,
    amounts: Mapping[str, Decimal],
    user: Optional[str] = None,
) -> List[MaterialConsumption]:
    """
    Deduct ``amounts`` from inventory and write the audit entries.

    Unresolvable materials are logged and reported with nothing applied.
    """
    stage = parse_stage(stage)
    names = _material_names(batch, stage.value)
    results: List[MaterialConsumption] = []

    for material_id, amount in amounts.items():
        if amount <= 0:
            continue
        try:
            source = resolve_inventory_item(db, material_id)
        except InventoryItemNotFoundError:
            logger.error(
                "Stage material not found in inventory; treated as zero available",
                extra={"batch_code": batch.batch_code, "stage": stage.value, "material_id": material_id},
            )
            results.append(MaterialConsumption(
                material_id=material_id,
                name=names.get(material_id),
                requested=amount,
                applied=ZERO,
                old_quantity=ZERO,
                new_quantity=ZERO,
                source_kind=None,
                found=False,
            ))
            continue

        result = adjust_inventory_quantity(db, source, -amount)
        applied = result.old_quantity - result.new_quantity
        consumed = MaterialConsumption(
            material_id=material_id,
            name=source.name,
            requested=amount,
            applied=applied,
            old_quantity=result.old_quantity,
            new_quantity=result.new_quantity,
            source_kind=source.kind,
        )
        results.append(consumed)

        record_activity(
            db,
            record_id=source.item_id,
            record_type=source.record_type,
            action=ActivityAction.BATCH_ADJUSTMENT,
            details=(
                f"Batch {batch.batch_code} ({stage.value}) consumed {amount} {source.unit}. "
                f"Old qty: {result.old_quantity}, New qty: {result.new_quantity}."
            ),
            user=user,
            batch_code=batch.batch_code,
            stage=stage.value,
            old_quantity=result.old_quantity,
            new_quantity=result.new_quantity,
        )

        if consumed.shortfall > 0:
            logger.warning(
                "Consumption exceeded stock; quantity floored at 0",
                extra={
                    "batch_code": batch.batch_code,
                    "stage": stage.value,
                    "material_id": material_id,
                    "requested": str(amount),
                    "shortfall": str(consumed.shortfall),
                },
            )
    db.flush()
    return results


def find_shortages(
    db: Session,
    demands: List[tuple],
) -> List[Dict[str, object]]:
    """
    Stock sufficiency check over several batches.

    ``demands`` is a list of (batch, amounts) pairs in processing order.
    Demand on a shared material accumulates across batches, so every
    batch whose cumulative need exceeds stock is reported.
    """
    shortages: List[Dict[str, object]] = []
    running: Dict[str, Decimal] = {}
    available_cache: Dict[str, Optional[Decimal]] = {}

    for batch, amounts in demands:
        for material_id, amount in amounts.items():
            if amount <= 0:
                continue
            if material_id not in available_cache:
                try:
                    available_cache[material_id] = resolve_inventory_item(db, material_id).available
                except InventoryItemNotFoundError:
                    available_cache[material_id] = None
            available = available_cache[material_id]
            running[material_id] = running.get(material_id, ZERO) + amount

            if available is None or running[material_id] > available:
                name = next(
                    (m.name for m in batch.materials if m.material_id == material_id),
                    None,
                )
                shortages.append({
                    "batch_code": batch.batch_code,
                    "material_id": material_id,
                    "material_name": name or material_id,
                    "required": float(amount),
                    "available": float(available or ZERO),
                })
    return shortages


def consumption_map(results: List[MaterialConsumption]) -> Dict[str, float]:
    """Stage-record form of the consumed amounts (JSON friendly)."""
    return {r.material_id: float(r.requested) for r in results}


