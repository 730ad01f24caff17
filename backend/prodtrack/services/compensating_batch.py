"""
Compensating Batch Generator

When Testing rejects units, a follow-up batch re-runs Assembling and
Testing for the rejected quantity. Only assembly materials the operator
left unchecked ("not confirmed good") are carried into it, scaled from
the parent's per-piece rate.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from prodtrack.core.config import settings
from prodtrack.core.stage_config import (
    ActivityAction,
    COMPENSATING_BATCH_PREFIX,
    ProcessingStage,
    RecordType,
)
from prodtrack.logging_config import get_logger
from prodtrack.models.batch import Batch
from prodtrack.services.batch_service import BatchService
from prodtrack.services.event_service import record_activity
from prodtrack.services.inventory_resolver import find_inventory_item

logger = get_logger(__name__)

ASSEMBLING = ProcessingStage.ASSEMBLING.value


@dataclass
class AssemblyMaterial:
    material_id: str
    name: str
    quantity: Decimal  # for the whole parent batch
    unit: str


def assembly_materials_for_batch(db: Session, batch: Batch) -> List[AssemblyMaterial]:
    """
    Assembling inputs of a batch: the product's Assembling BOM rows scaled
    to the batch, or the batch's own Assembling materials when the product
    has none.
    """
    product = batch.product
    rows = [r for r in product.bom_rows if r.stage == ASSEMBLING] if product is not None else []
    if rows:
        materials = []
        for row in rows:
            source = find_inventory_item(db, row.material_id)
            materials.append(AssemblyMaterial(
                material_id=row.material_id,
                name=source.name if source is not None else row.material_id,
                quantity=Decimal(row.qty_per_piece) * batch.quantity_to_build,
                unit=row.unit or (source.unit if source is not None else settings.DEFAULT_UNIT),
            ))
        return materials

    return [
        AssemblyMaterial(
            material_id=m.material_id,
            name=m.name or m.material_id,
            quantity=Decimal(m.quantity),
            unit=m.unit or settings.DEFAULT_UNIT,
        )
        for m in batch.materials_for_stage(ASSEMBLING)
    ]


def unchecked_materials(
    materials: List[AssemblyMaterial], good_material_ids: Iterable[str]
) -> List[AssemblyMaterial]:
    good = set(good_material_ids or [])
    return [m for m in materials if m.material_id not in good]


def all_materials_marked_good(db: Session, batch: Batch, good_material_ids: Iterable[str]) -> bool:
    """True when the batch has assembly materials and every one is checked."""
    materials = assembly_materials_for_batch(db, batch)
    return bool(materials) and not unchecked_materials(materials, good_material_ids)


def scale_quantity(quantity: Decimal, quantity_to_build: int, rejected: int) -> Decimal:
    """Per-piece rate of the parent batch applied to the rejected count."""
    per_piece = Decimal(quantity) / Decimal(max(1, quantity_to_build or 0))
    if per_piece == 0:
        return Decimal(quantity)
    return per_piece * rejected


def create_compensating_batch(
    db: Session,
    parent: Batch,
    rejected: int,
    good_material_ids: Iterable[str],
    user: Optional[str] = None,
) -> Optional[Batch]:
    """
    Create the rework batch for ``rejected`` Testing failures of ``parent``.

    Returns None when every assembly material was confirmed good.
    Caller commits.
    """
    if rejected <= 0:
        return None

    materials = unchecked_materials(assembly_materials_for_batch(db, parent), good_material_ids)
    if not materials:
        logger.info(
            "No compensating batch: every assembly material confirmed good",
            extra={"batch_code": parent.batch_code, "rejected": rejected},
        )
        return None

    scaled = [
        {
            "material_id": m.material_id,
            "name": m.name,
            "quantity": scale_quantity(m.quantity, parent.quantity_to_build, rejected),
            "unit": m.unit,
            "stage": ASSEMBLING,
        }
        for m in materials
    ]

    child = BatchService.build_batch(
        db,
        parent.product,
        rejected,
        [ProcessingStage.ASSEMBLING, ProcessingStage.TESTING],
        scaled,
        code_prefix=f"{COMPENSATING_BATCH_PREFIX}-",
        auto_created_from_testing_rejected=True,
        parent=parent,
        seeded_accepted={ASSEMBLING: rejected},
    )

    details = (
        f"Failed Assembly batch {child.batch_code} created from Testing batch "
        f"{parent.batch_code} for {rejected} rejected units."
    )
    record_activity(
        db,
        record_id=child.id,
        record_type=RecordType.BATCH,
        action=ActivityAction.CREATED,
        details=details,
        user=user,
        batch_code=child.batch_code,
        stage=ProcessingStage.TESTING.value,
        related_batch_code=parent.batch_code,
    )
    record_activity(
        db,
        record_id=parent.id,
        record_type=RecordType.BATCH,
        action=ActivityAction.UPDATED,
        details=details,
        user=user,
        batch_code=parent.batch_code,
        stage=ProcessingStage.TESTING.value,
        related_batch_code=child.batch_code,
    )
    logger.info(
        "Compensating batch created",
        extra={
            "batch_code": child.batch_code,
            "parent_batch_code": parent.batch_code,
            "rejected": rejected,
            "materials": [m.material_id for m in materials],
        },
    )
    return child
