"""
Batch Service

Batch creation (with BOM expansion), lookup, derived status, stage work
queues, hold/resume and explicit deletion.

Caller commits.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from prodtrack.core.config import settings
from prodtrack.core.stage_config import (
    ActivityAction,
    BatchStatus,
    ProcessingStage,
    RecordType,
    STAGE_CODES,
    STAGE_ORDER,
    parse_stage,
    stage_index,
)
from prodtrack.exceptions import InvalidStateError, NotFoundError, ValidationError
from prodtrack.logging_config import get_logger
from prodtrack.models.batch import Batch, BatchMaterial, BatchStageRecord
from prodtrack.models.product import Product
from prodtrack.services.event_service import record_activity
from prodtrack.services.inventory_resolver import find_inventory_item
from prodtrack.services.product_service import ProductService
from prodtrack.services.readable_ids import next_id, next_sequential
from prodtrack.services.stage_sequence import (
    current_stage,
    previous_stage,
    resolve_effective_stages,
    selected_stages,
    validate_selected_processes,
)

logger = get_logger(__name__)


# =============================================================================
# Derived status
# =============================================================================

def derive_batch_status(batch: Batch) -> BatchStatus:
    """
    Completed when the last selected stage is completed, On Hold when the
    operator paused it, In Progress once any selected stage has started
    or completed, Planned otherwise.
    """
    stages = selected_stages(batch)
    records = batch.processing_stages
    if stages:
        last = records.get(stages[-1].value)
        if last is not None and last.completed:
            return BatchStatus.COMPLETED
    if batch.on_hold:
        return BatchStatus.ON_HOLD
    for stage in stages:
        record = records.get(stage.value)
        if record is not None and (record.completed or record.started_at is not None):
            return BatchStatus.IN_PROGRESS
    return BatchStatus.PLANNED


def status_label(batch: Batch) -> str:
    """Display label such as 'Machining Pending'."""
    stage = current_stage(batch)
    if stage is None:
        return BatchStatus.COMPLETED.value
    return f"{stage.value} Pending"


def refresh_status(batch: Batch) -> BatchStatus:
    status = derive_batch_status(batch)
    batch.status = status.value
    return status


def is_in_stage_queue(batch: Batch, stage) -> bool:
    """
    Whether a batch belongs in the work queue of ``stage``: the stage is
    selected and not completed, and the batch is at its first stage or
    the previous stage is completed. Testing after Assembling also has to
    be started explicitly.
    """
    stage = parse_stage(stage)
    if stage not in selected_stages(batch):
        return False
    record = batch.processing_stages.get(stage.value)
    if record is not None and record.completed:
        return False
    prev = previous_stage(batch, stage)
    if prev is None:
        return True
    prev_record = batch.processing_stages.get(prev.value)
    if prev_record is None or not prev_record.completed:
        return False
    if stage == ProcessingStage.TESTING and prev == ProcessingStage.ASSEMBLING:
        return record is not None and record.started_at is not None
    return True


class BatchService:
    """Production batches. Caller commits."""

    @staticmethod
    def expand_materials(
        db: Session,
        product: Product,
        stages: Sequence[ProcessingStage],
        quantity_to_build: int,
    ) -> List[Dict[str, Any]]:
        """Product BOM rows for the selected stages, scaled to the batch size."""
        selected = {s.value for s in stages}
        rows = sorted(
            (r for r in product.bom_rows if r.stage in selected),
            key=lambda r: (stage_index(r.stage), r.id or 0),
        )
        materials = []
        for row in rows:
            source = find_inventory_item(db, row.material_id)
            unit = row.unit
            if not unit:
                unit = source.unit if source is not None and row.source != "final" else settings.DEFAULT_UNIT
            materials.append({
                "material_id": row.material_id,
                "name": source.name if source is not None else row.material_id,
                "quantity": Decimal(row.qty_per_piece) * quantity_to_build,
                "unit": unit,
                "stage": row.stage,
            })
        return materials

    @staticmethod
    def build_batch(
        db: Session,
        product: Product,
        quantity_to_build: int,
        stages: Sequence[ProcessingStage],
        materials: List[Dict[str, Any]],
        *,
        code_prefix: str,
        auto_created_from_testing_rejected: bool = False,
        parent: Optional[Batch] = None,
        seeded_accepted: Optional[Dict[str, int]] = None,
    ) -> Batch:
        """Insert a batch with a stage record for every canonical stage."""
        batch = Batch(
            id=next_id(db, Batch, "batch"),
            batch_code=next_sequential(db, Batch, "batch_code", code_prefix),
            product_id=product.id,
            product_name=product.name,
            quantity_to_build=quantity_to_build,
            selected_processes=[s.value for s in stages],
            auto_created_from_testing_rejected=auto_created_from_testing_rejected,
            parent_batch_id=parent.id if parent is not None else None,
            status=BatchStatus.PLANNED.value,
        )
        total = Decimal("0")
        for position, material in enumerate(materials):
            quantity = Decimal(str(material["quantity"]))
            total += quantity
            batch.materials.append(BatchMaterial(
                position=position,
                material_id=material["material_id"],
                name=material.get("name"),
                quantity=quantity,
                unit=material.get("unit"),
                stage=str(material["stage"]),
            ))
        batch.total_material_quantity = total

        seeded_accepted = seeded_accepted or {}
        for stage in STAGE_ORDER:
            batch.processing_stages[stage.value] = BatchStageRecord(
                stage=stage.value,
                accepted=seeded_accepted.get(stage.value, 0),
                rejected=0,
                actual_consumption=Decimal("0"),
                completed=False,
            )
        db.add(batch)
        db.flush()
        return batch

    @staticmethod
    def create_batch(
        db: Session,
        product_ref: str,
        quantity_to_build: int,
        selected_processes: Optional[List[str]] = None,
        materials: Optional[List[Dict[str, Any]]] = None,
        user: Optional[str] = None,
    ) -> Batch:
        """
        Plan a production run.

        ``product_ref`` is the product's PID or record id. Without
        explicit processes the product's effective stages are used;
        without explicit materials the BOM is expanded.
        """
        product = ProductService.find_product(db, product_ref)
        if product is None:
            raise NotFoundError("Product", product_ref)
        if quantity_to_build is None or quantity_to_build <= 0:
            raise ValidationError(
                "Quantity to build must be positive", field="quantity_to_build", value=quantity_to_build
            )

        if not selected_processes:
            selected_processes = [s.value for s in resolve_effective_stages(product).stages]
        stages = validate_selected_processes(selected_processes)

        if materials is None:
            materials = BatchService.expand_materials(db, product, stages, quantity_to_build)
        else:
            allowed = {s.value for s in stages}
            for idx, material in enumerate(materials):
                try:
                    stage = parse_stage(material["stage"]).value
                except ValueError as e:
                    raise ValidationError(str(e), field=f"materials[{idx}].stage")
                if stage not in allowed:
                    raise ValidationError(
                        f"Material {material['material_id']} is for {stage}, which is not selected",
                        field=f"materials[{idx}].stage",
                    )
                material["stage"] = stage

        batch = BatchService.build_batch(
            db,
            product,
            quantity_to_build,
            stages,
            materials,
            code_prefix=f"BATCH-{STAGE_CODES[stages[0]]}-",
        )
        record_activity(
            db,
            record_id=batch.id,
            record_type=RecordType.BATCH,
            action=ActivityAction.CREATED,
            details=(
                f"Batch {batch.batch_code} created for {quantity_to_build} x {product.name} "
                f"({' → '.join(s.value for s in stages)})."
            ),
            user=user,
            batch_code=batch.batch_code,
        )
        logger.info(
            "Batch created",
            extra={"batch_code": batch.batch_code, "product_id": product.id, "quantity": quantity_to_build},
        )
        return batch

    @staticmethod
    def get_batch(db: Session, batch_ref: str) -> Batch:
        """Fetch a batch by record id or batch code."""
        batch = db.get(Batch, batch_ref)
        if batch is None:
            batch = db.query(Batch).filter(Batch.batch_code == batch_ref).first()
        if batch is None:
            raise NotFoundError("Batch", batch_ref)
        return batch

    @staticmethod
    def list_batches(
        db: Session,
        status: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> List[Batch]:
        query = db.query(Batch)
        if product_id:
            query = query.filter(Batch.product_id == product_id)
        batches = query.order_by(Batch.created_at.desc(), Batch.id.desc()).all()
        if status:
            batches = [b for b in batches if derive_batch_status(b).value == status]
        return batches

    @staticmethod
    def list_batches_for_stage(db: Session, stage) -> List[Batch]:
        """Work queue of a stage, newest first. Held batches are left out."""
        stage = parse_stage(stage)
        batches = (
            db.query(Batch)
            .filter(Batch.on_hold.is_(False))
            .order_by(Batch.created_at.desc(), Batch.id.desc())
            .all()
        )
        return [b for b in batches if is_in_stage_queue(b, stage)]

    @staticmethod
    def start_stage(db: Session, batch: Batch, stage, user: Optional[str] = None) -> Batch:
        """Stamp started_at on a stage; a no-op if it already started."""
        stage = parse_stage(stage)
        if stage not in selected_stages(batch):
            raise InvalidStateError(
                f"{stage.value} is not a selected process for batch {batch.batch_code}"
            )
        record = batch.processing_stages[stage.value]
        if record.completed:
            raise InvalidStateError(f"{stage.value} of batch {batch.batch_code} is already completed")
        prev = previous_stage(batch, stage)
        if prev is not None and not batch.processing_stages[prev.value].completed:
            raise InvalidStateError(
                f"Batch {batch.batch_code} must complete {prev.value} before starting {stage.value}",
                current_state=prev.value,
            )
        if record.started_at is None:
            record.started_at = datetime.utcnow()
            batch.updated_at = datetime.utcnow()
            refresh_status(batch)
            logger.info("Stage started", extra={"batch_code": batch.batch_code, "stage": stage.value})
        return batch

    @staticmethod
    def hold_batch(db: Session, batch: Batch, user: Optional[str] = None) -> Batch:
        if derive_batch_status(batch) == BatchStatus.COMPLETED:
            raise InvalidStateError("Completed batches cannot be put on hold", current_state="Completed")
        if not batch.on_hold:
            old = derive_batch_status(batch)
            batch.on_hold = True
            refresh_status(batch)
            record_activity(
                db,
                record_id=batch.id,
                record_type=RecordType.BATCH,
                action=ActivityAction.UPDATED,
                details=f"Batch {batch.batch_code} status changed from {old.value} to {batch.status}.",
                user=user,
                batch_code=batch.batch_code,
            )
        return batch

    @staticmethod
    def resume_batch(db: Session, batch: Batch, user: Optional[str] = None) -> Batch:
        if batch.on_hold:
            batch.on_hold = False
            refresh_status(batch)
            record_activity(
                db,
                record_id=batch.id,
                record_type=RecordType.BATCH,
                action=ActivityAction.UPDATED,
                details=f"Batch {batch.batch_code} status changed from On Hold to {batch.status}.",
                user=user,
                batch_code=batch.batch_code,
            )
        return batch

    @staticmethod
    def delete_batch(db: Session, batch: Batch, user: Optional[str] = None) -> None:
        """Explicit operator deletion. Inventory already moved stays moved."""
        record_activity(
            db,
            record_id=batch.id,
            record_type=RecordType.BATCH,
            action=ActivityAction.DELETED,
            details=f"Batch {batch.batch_code} deleted.",
            user=user,
            batch_code=batch.batch_code,
        )
        for child in list(batch.compensating_batches):
            child.parent_batch_id = None
        db.delete(batch)
        db.flush()
        logger.info("Batch deleted", extra={"batch_code": batch.batch_code})
