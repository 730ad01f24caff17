"""
Stage work queue endpoints and the live queue feed.
"""
import asyncio

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status as http_status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from prodtrack.api.v1.deps import get_batch_feed, get_db
from prodtrack.api.v1.endpoints.batches import build_outcome_response
from prodtrack.core.stage_config import ProcessingStage, parse_stage
from prodtrack.logging_config import get_logger
from prodtrack.schemas.stage import (
    BatchFailureResponse,
    BulkStageRequest,
    BulkStageResponse,
    QueueEntry,
    StageQueueResponse,
)
from prodtrack.services.batch_feed import BatchFeed
from prodtrack.services.stage_engine import BulkStageResult, StageCompletionEngine, StageSubmission

logger = get_logger(__name__)

router = APIRouter(prefix="/stages", tags=["Stages"])


def _submissions(request: BulkStageRequest):
    return [
        StageSubmission(
            batch_id=item.batch_id,
            accepted=item.accepted,
            rejected=item.rejected,
            material_consumptions=item.material_consumptions,
            good_material_ids=item.good_material_ids,
        )
        for item in request.submissions
    ]


def build_bulk_response(result: BulkStageResult) -> BulkStageResponse:
    return BulkStageResponse(
        stage=result.stage,
        succeeded=result.succeeded,
        outcomes=[build_outcome_response(o) for o in result.outcomes],
        failures=[BatchFailureResponse(batch_id=f.batch_id, error=f.error, message=f.message)
                  for f in result.failures],
    )


@router.get("/{stage}/queue", response_model=StageQueueResponse, summary="Batches waiting at a stage")
def get_stage_queue(stage: ProcessingStage, db: Session = Depends(get_db)):
    return StageQueueResponse(
        stage=stage.value,
        batches=[QueueEntry(**entry) for entry in BatchFeed.snapshot(db, stage)],
    )


@router.post("/{stage}/end-cycle", response_model=BulkStageResponse, summary="Submit a stage for several batches")
def end_cycle(
    stage: ProcessingStage,
    request: BulkStageRequest,
    db: Session = Depends(get_db),
    feed: BatchFeed = Depends(get_batch_feed),
):
    """Each batch commits on its own; failures are listed, not fatal."""
    engine = StageCompletionEngine(db, user=request.user, feed=feed)
    return build_bulk_response(engine.end_cycle(stage, _submissions(request)))


@router.post("/{stage}/finish", response_model=BulkStageResponse, summary="Finish several batches at a stage")
def finish_batches(
    stage: ProcessingStage,
    request: BulkStageRequest,
    db: Session = Depends(get_db),
    feed: BatchFeed = Depends(get_batch_feed),
):
    """
    Like end-cycle, but refuses to write anything (422) if stock would
    not cover every listed batch, and (400) if a Testing rejection marks
    every assembly material good.
    """
    engine = StageCompletionEngine(db, user=request.user, feed=feed)
    return build_bulk_response(engine.finish_batch(stage, _submissions(request)))


@router.websocket("/{stage}/feed")
async def stage_feed(websocket: WebSocket, stage: str, db: Session = Depends(get_db)):
    """
    Live queue for a stage: the current queue on connect, then a new
    snapshot after every committed change to it.
    """
    try:
        stage = parse_stage(stage)
    except ValueError:
        await websocket.close(code=http_status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    feed: BatchFeed = get_batch_feed(websocket)
    loop = asyncio.get_running_loop()
    updates: asyncio.Queue = asyncio.Queue()
    subscription = feed.subscribe(
        stage, lambda snapshot: loop.call_soon_threadsafe(updates.put_nowait, snapshot)
    )
    receiver = asyncio.ensure_future(websocket.receive_text())
    try:
        initial = await run_in_threadpool(BatchFeed.snapshot, db, stage)
        await websocket.send_json({"stage": stage.value, "batches": initial})
        while True:
            getter = asyncio.ensure_future(updates.get())
            done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                receiver.result()  # raises WebSocketDisconnect once the client leaves
                receiver = asyncio.ensure_future(websocket.receive_text())
                continue
            await websocket.send_json({"stage": stage.value, "batches": getter.result()})
    except WebSocketDisconnect:
        logger.debug("Stage feed closed", extra={"stage": stage.value})
    finally:
        receiver.cancel()
        subscription.unsubscribe()
