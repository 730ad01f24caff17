"""
Batch endpoints: planning, lookup, hold/resume, stage start and submission.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from prodtrack.api.v1.deps import get_batch_feed, get_db
from prodtrack.core.stage_config import ProcessingStage, STAGE_ORDER
from prodtrack.models.batch import Batch
from prodtrack.schemas.batch import (
    BatchActionRequest,
    BatchCreate,
    BatchMaterialResponse,
    BatchResponse,
    MaterialConsumptionResponse,
    StageOutcomeResponse,
    StageInputResponse,
    StageRecordResponse,
    StageSubmitRequest,
)
from prodtrack.services.batch_feed import BatchFeed
from prodtrack.services.batch_service import BatchService, derive_batch_status, status_label
from prodtrack.services.inventory_resolver import max_units_from_materials, stage_input_available
from prodtrack.services.stage_engine import (
    StageCompletionEngine,
    StageOutcome,
    StageSubmission,
    is_assembling_locked,
)

router = APIRouter(prefix="/batches", tags=["Batches"])


def build_batch_response(batch: Batch) -> BatchResponse:
    """Build response from batch model."""
    return BatchResponse(
        id=batch.id,
        batch_code=batch.batch_code,
        product_id=batch.product_id,
        product_name=batch.product_name,
        quantity_to_build=batch.quantity_to_build,
        total_material_quantity=batch.total_material_quantity,
        selected_processes=list(batch.selected_processes or []),
        status=derive_batch_status(batch).value,
        status_label=status_label(batch),
        on_hold=batch.on_hold,
        auto_created_from_testing_rejected=batch.auto_created_from_testing_rejected,
        parent_batch_id=batch.parent_batch_id,
        accepted_locked=is_assembling_locked(batch),
        materials=[BatchMaterialResponse.model_validate(m) for m in batch.materials],
        processing_stages={
            stage.value: StageRecordResponse.model_validate(batch.processing_stages[stage.value])
            for stage in STAGE_ORDER
            if stage.value in batch.processing_stages
        },
        version=batch.version,
        created_at=batch.created_at,
        updated_at=batch.updated_at,
    )


def build_outcome_response(outcome: StageOutcome) -> StageOutcomeResponse:
    return StageOutcomeResponse(
        batch_id=outcome.batch_id,
        batch_code=outcome.batch_code,
        stage=outcome.stage,
        accepted=outcome.accepted,
        rejected=outcome.rejected,
        completed=outcome.completed,
        status=outcome.status,
        destination=outcome.destination.value if outcome.destination else None,
        accepted_locked=outcome.accepted_locked,
        consumptions=[
            MaterialConsumptionResponse(
                material_id=c.material_id,
                name=c.name,
                requested=c.requested,
                applied=c.applied,
                old_quantity=c.old_quantity,
                new_quantity=c.new_quantity,
                source_kind=c.source_kind,
                found=c.found,
            )
            for c in outcome.consumptions
        ],
        compensating_batch_id=outcome.compensating_batch_id,
        compensating_batch_code=outcome.compensating_batch_code,
    )


@router.post("", response_model=BatchResponse, status_code=201, summary="Plan a batch")
def create_batch(
    request: BatchCreate,
    db: Session = Depends(get_db),
    feed: BatchFeed = Depends(get_batch_feed),
):
    batch = BatchService.create_batch(
        db,
        product_ref=request.product_id,
        quantity_to_build=request.quantity_to_build,
        selected_processes=[s.value for s in request.selected_processes] if request.selected_processes else None,
        materials=[m.model_dump() for m in request.materials] if request.materials is not None else None,
        user=request.user,
    )
    db.commit()
    feed.publish(db, batch.selected_processes[:1])
    return build_batch_response(batch)


@router.get("", response_model=List[BatchResponse])
def list_batches(
    status: Optional[str] = Query(None, description="Planned, In Progress, On Hold or Completed"),
    product_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    return [build_batch_response(b) for b in BatchService.list_batches(db, status, product_id)]


@router.get("/{batch_id}", response_model=BatchResponse)
def get_batch(batch_id: str, db: Session = Depends(get_db)):
    return build_batch_response(BatchService.get_batch(db, batch_id))


@router.delete("/{batch_id}", status_code=204, summary="Delete a batch")
def delete_batch(
    batch_id: str,
    user: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    feed: BatchFeed = Depends(get_batch_feed),
):
    batch = BatchService.get_batch(db, batch_id)
    stages = list(batch.selected_processes or [])
    BatchService.delete_batch(db, batch, user=user)
    db.commit()
    feed.publish(db, stages)


@router.post("/{batch_id}/hold", response_model=BatchResponse)
def hold_batch(
    batch_id: str,
    request: BatchActionRequest,
    db: Session = Depends(get_db),
    feed: BatchFeed = Depends(get_batch_feed),
):
    batch = BatchService.hold_batch(db, BatchService.get_batch(db, batch_id), user=request.user)
    db.commit()
    feed.publish(db, batch.selected_processes)
    return build_batch_response(batch)


@router.post("/{batch_id}/resume", response_model=BatchResponse)
def resume_batch(
    batch_id: str,
    request: BatchActionRequest,
    db: Session = Depends(get_db),
    feed: BatchFeed = Depends(get_batch_feed),
):
    batch = BatchService.resume_batch(db, BatchService.get_batch(db, batch_id), user=request.user)
    db.commit()
    feed.publish(db, batch.selected_processes)
    return build_batch_response(batch)


@router.post("/{batch_id}/stages/{stage}/start", response_model=BatchResponse, summary="Start a stage")
def start_stage(
    batch_id: str,
    stage: ProcessingStage,
    request: BatchActionRequest,
    db: Session = Depends(get_db),
    feed: BatchFeed = Depends(get_batch_feed),
):
    batch = BatchService.start_stage(db, BatchService.get_batch(db, batch_id), stage, user=request.user)
    db.commit()
    feed.publish(db, [stage])
    return build_batch_response(batch)


@router.post(
    "/{batch_id}/stages/{stage}/submit",
    response_model=StageOutcomeResponse,
    summary="Submit accepted/rejected figures for a stage",
)
def submit_stage(
    batch_id: str,
    stage: ProcessingStage,
    request: StageSubmitRequest,
    db: Session = Depends(get_db),
    feed: BatchFeed = Depends(get_batch_feed),
):
    """
    Record a stage result.

    - accepted + rejected == 0 saves a draft
    - otherwise consumes materials, routes accepted units and completes
      the stage; a completed stage cannot be resubmitted (409)
    - Testing rejections create a compensating Assembling batch
    """
    engine = StageCompletionEngine(db, user=request.user, feed=feed)
    outcome = engine.submit_and_commit(
        stage,
        StageSubmission(
            batch_id=batch_id,
            accepted=request.accepted,
            rejected=request.rejected,
            material_consumptions=request.material_consumptions,
            good_material_ids=request.good_material_ids,
        ),
    )
    return build_outcome_response(outcome)


@router.get(
    "/{batch_id}/stages/{stage}/inputs",
    response_model=StageInputResponse,
    summary="Pool stock and material coverage for a stage",
)
def get_stage_inputs(batch_id: str, stage: ProcessingStage, db: Session = Depends(get_db)):
    batch = BatchService.get_batch(db, batch_id)
    pool_available = None
    if batch.product is not None:
        pool_available = stage_input_available(db, batch.product, stage)
    return StageInputResponse(
        batch_id=batch.id,
        stage=stage.value,
        pool_available=pool_available,
        max_units_from_materials=max_units_from_materials(db, batch, stage),
    )
