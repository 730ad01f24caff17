"""
Stage Completion Engine

Takes a batch through one stage submission: validates it, applies
accepted/rejected counts, consumes stage materials, routes accepted units
to the next pool or Final Stock, advances the batch and, for Testing
rejections, spawns the compensating batch.

Rules:
- a stage completes once; any later submission raises
  StageAlreadyFinalizedError and changes nothing
- an all-zero submission is a draft and has no inventory effect
- inventory is written before the stage is flagged completed, and the
  commit is the last write of a submission
- bulk operations commit per batch; one batch failing does not undo or
  stop the others
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from prodtrack.core.config import settings
from prodtrack.core.stage_config import PoolKind, ProcessingStage, parse_stage
from prodtrack.exceptions import (
    AssemblySelectionError,
    ConcurrencyError,
    DatabaseError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ProdTrackException,
    StageAlreadyFinalizedError,
    ValidationError,
)
from prodtrack.logging_config import get_logger
from prodtrack.models.batch import Batch
from prodtrack.services.batch_feed import BatchFeed
from prodtrack.services.batch_service import BatchService, refresh_status
from prodtrack.services.compensating_batch import (
    all_materials_marked_good,
    create_compensating_batch,
)
from prodtrack.services.consumption import (
    MaterialConsumption,
    apply_consumption,
    compute_consumption,
    consumption_map,
    find_shortages,
)
from prodtrack.services.inventory_service import InventoryService
from prodtrack.services.stage_sequence import (
    Destination,
    is_last_stage,
    next_stage,
    resolve_effective_stages,
    route_output,
    validate_batch_stage_access,
)

logger = get_logger(__name__)

_POOL_FOR_DESTINATION = {
    Destination.MOULDED_POOL: PoolKind.MOULDED,
    Destination.MACHINED_POOL: PoolKind.MACHINED,
    Destination.ASSEMBLED_POOL: PoolKind.ASSEMBLED,
}


@dataclass
class StageSubmission:
    """Operator input for one batch at one stage."""
    batch_id: str
    accepted: int = 0
    rejected: int = 0
    material_consumptions: Dict[str, float] = field(default_factory=dict)
    # Testing: assembly materials confirmed as not at fault
    good_material_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (self.accepted or 0) + (self.rejected or 0)


@dataclass
class StageOutcome:
    batch_id: str
    batch_code: str
    stage: str
    accepted: int
    rejected: int
    completed: bool
    status: str
    destination: Optional[Destination] = None
    consumptions: List[MaterialConsumption] = field(default_factory=list)
    compensating_batch_id: Optional[str] = None
    compensating_batch_code: Optional[str] = None
    accepted_locked: bool = False


@dataclass
class BatchFailure:
    batch_id: str
    error: str
    message: str


@dataclass
class BulkStageResult:
    stage: str
    outcomes: List[StageOutcome] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.outcomes)


def is_assembling_locked(batch: Batch) -> bool:
    """Assembling output of a compensating batch is fixed to its rejected quantity."""
    return bool(batch.auto_created_from_testing_rejected)


def effective_accepted(batch: Batch, stage: ProcessingStage, accepted: int) -> int:
    if stage == ProcessingStage.ASSEMBLING and is_assembling_locked(batch):
        return batch.quantity_to_build
    return accepted


class StageCompletionEngine:
    """
    Stage submissions for one session.

    ``submit_stage`` leaves the transaction open; ``submit_and_commit``,
    ``end_cycle`` and ``finish_batch`` commit per batch and publish the
    affected queues to ``feed``.
    """

    def __init__(self, db: Session, user: Optional[str] = None, feed: Optional[BatchFeed] = None):
        self.db = db
        self.user = user or settings.SYSTEM_USER
        self.feed = feed

    # =========================================================================
    # Single submission
    # =========================================================================

    def submit_stage(self, stage, submission: StageSubmission) -> StageOutcome:
        stage = parse_stage(stage)
        batch = BatchService.get_batch(self.db, submission.batch_id)

        if batch.on_hold:
            raise InvalidStateError(
                f"Batch {batch.batch_code} is on hold", current_state="On Hold"
            )
        record = batch.processing_stages[stage.value]
        if record.completed:
            raise StageAlreadyFinalizedError(batch.batch_code, stage.value)
        validate_batch_stage_access(batch, stage)

        if submission.accepted is None or submission.accepted < 0:
            raise ValidationError("Accepted must be zero or more", field="accepted", value=submission.accepted)
        if submission.rejected is None or submission.rejected < 0:
            raise ValidationError("Rejected must be zero or more", field="rejected", value=submission.rejected)

        locked = stage == ProcessingStage.ASSEMBLING and is_assembling_locked(batch)
        accepted = effective_accepted(batch, stage, submission.accepted)
        if accepted != submission.accepted:
            logger.info(
                "Assembling accepted is locked; submitted value replaced",
                extra={"batch_code": batch.batch_code, "submitted": submission.accepted, "accepted": accepted},
            )
        rejected = submission.rejected

        if stage == ProcessingStage.TESTING:
            self._check_assembly_selection(batch, rejected, submission.good_material_ids)

        if accepted + rejected == 0:
            record.material_consumptions = dict(submission.material_consumptions or {}) or None
            batch.updated_at = datetime.utcnow()
            self._flush()
            logger.debug("Stage draft saved", extra={"batch_code": batch.batch_code, "stage": stage.value})
            return StageOutcome(
                batch_id=batch.id,
                batch_code=batch.batch_code,
                stage=stage.value,
                accepted=0,
                rejected=0,
                completed=False,
                status=refresh_status(batch).value,
                accepted_locked=locked,
            )

        now = datetime.utcnow()
        consumptions: List[MaterialConsumption] = []

        # 1. consumption
        if stage == ProcessingStage.TESTING:
            # tested units, good or bad, use the Testing materials
            amounts = compute_consumption(batch, stage, accepted + rejected)
            consumptions = apply_consumption(self.db, batch, stage, amounts, user=self.user)
            record.actual_consumption = Decimal(accepted + rejected)
            record.good_material_ids = list(submission.good_material_ids or [])
        else:
            amounts = compute_consumption(batch, stage, accepted, submission.material_consumptions)
            consumptions = apply_consumption(self.db, batch, stage, amounts, user=self.user)
            record.material_consumptions = consumption_map(consumptions)
            record.actual_consumption = sum(amounts.values(), Decimal("0"))

        # 2. routing
        effective = resolve_effective_stages(batch.product, batch)
        destination = route_output(stage, effective)
        self._route(batch, stage, destination, accepted)

        # 3. advance
        following = next_stage(batch, stage)
        if following is not None and not (
            stage == ProcessingStage.ASSEMBLING and following == ProcessingStage.TESTING
        ):
            next_record = batch.processing_stages[following.value]
            if next_record.started_at is None:
                next_record.started_at = now

        # 4. finalize the stage
        record.accepted = accepted
        record.rejected = rejected
        if record.started_at is None:
            record.started_at = now
        record.finished_at = now
        record.completed = True
        batch.updated_at = now
        status = refresh_status(batch)
        self._flush()

        logger.info(
            "Stage completed",
            extra={
                "batch_code": batch.batch_code,
                "stage": stage.value,
                "accepted": accepted,
                "rejected": rejected,
                "destination": destination.value,
                "flow_source": effective.source,
                "batch_completed": is_last_stage(batch, stage),
            },
        )

        outcome = StageOutcome(
            batch_id=batch.id,
            batch_code=batch.batch_code,
            stage=stage.value,
            accepted=accepted,
            rejected=rejected,
            completed=True,
            status=status.value,
            destination=destination,
            consumptions=consumptions,
            accepted_locked=locked,
        )

        # 5. rework for Testing rejections
        if stage == ProcessingStage.TESTING and rejected > 0:
            child = create_compensating_batch(
                self.db, batch, rejected, submission.good_material_ids, user=self.user
            )
            if child is not None:
                outcome.compensating_batch_id = child.id
                outcome.compensating_batch_code = child.batch_code
        return outcome

    def _check_assembly_selection(self, batch: Batch, rejected: int, good_ids: Sequence[str]) -> None:
        if rejected <= 0 or not settings.STRICT_ASSEMBLY_SELECTION:
            return
        if all_materials_marked_good(self.db, batch, good_ids):
            raise AssemblySelectionError(batch.batch_code)

    def _route(self, batch: Batch, stage: ProcessingStage, destination: Destination, accepted: int) -> None:
        if accepted <= 0:
            return
        if destination == Destination.FINAL_STOCK:
            InventoryService.add_to_final_stock(self.db, batch, accepted, stage.value, user=self.user)
        elif destination in _POOL_FOR_DESTINATION:
            InventoryService.add_to_pool(
                self.db, batch, batch.product, _POOL_FOR_DESTINATION[destination],
                accepted, stage.value, user=self.user,
            )
        else:
            logger.warning(
                "Accepted units have no destination",
                extra={"batch_code": batch.batch_code, "stage": stage.value, "accepted": accepted},
            )

    def _flush(self) -> None:
        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrencyError(
                "Batch was modified by another session; reload and resubmit",
                details={"error": str(e)},
            )

    # =========================================================================
    # Committing wrappers
    # =========================================================================

    def submit_and_commit(self, stage, submission: StageSubmission) -> StageOutcome:
        """
        submit_stage in its own transaction, retrying transient storage
        errors. Every attempt re-reads the batch, so a retry after a
        rolled-back attempt applies the submission once.
        """
        stage = parse_stage(stage)
        attempts = settings.WRITE_RETRY_ATTEMPTS
        for attempt in range(1, attempts + 1):
            try:
                outcome = self.submit_stage(stage, submission)
                self.db.commit()
            except StaleDataError as e:
                self.db.rollback()
                raise ConcurrencyError(
                    "Batch was modified by another session; reload and resubmit",
                    details={"error": str(e)},
                ) from e
            except OperationalError as e:
                self.db.rollback()
                if attempt == attempts:
                    raise DatabaseError(
                        f"Could not save {stage.value} for batch {submission.batch_id}",
                        operation="submit_stage",
                        details={"attempts": attempts},
                    ) from e
                logger.warning(
                    "Transient storage error; retrying stage submission",
                    extra={"batch_id": submission.batch_id, "stage": stage.value, "attempt": attempt},
                )
                continue
            except Exception:
                self.db.rollback()
                raise
            self._publish(stage, outcome)
            return outcome

    def _publish(self, stage: ProcessingStage, outcome: StageOutcome) -> None:
        if self.feed is None:
            return
        stages = [stage]
        batch = self.db.get(Batch, outcome.batch_id)
        if batch is not None:
            stages.append(next_stage(batch, stage))
        if outcome.compensating_batch_id:
            stages.append(ProcessingStage.ASSEMBLING)
        self.feed.publish(self.db, stages)

    # =========================================================================
    # Bulk operations
    # =========================================================================

    def end_cycle(self, stage, submissions: Sequence[StageSubmission]) -> BulkStageResult:
        """Apply submissions batch by batch; failures are collected, not fatal."""
        stage = parse_stage(stage)
        result = BulkStageResult(stage=stage.value)
        for submission in submissions:
            try:
                result.outcomes.append(self.submit_and_commit(stage, submission))
            except ProdTrackException as e:
                logger.warning(
                    "Batch skipped in bulk stage submission",
                    extra={"batch_id": submission.batch_id, "stage": stage.value, "error": e.error_code},
                )
                result.failures.append(BatchFailure(submission.batch_id, e.error_code, e.message))
            except SQLAlchemyError as e:
                logger.error(
                    "Storage error in bulk stage submission",
                    extra={"batch_id": submission.batch_id, "stage": stage.value},
                    exc_info=True,
                )
                result.failures.append(BatchFailure(submission.batch_id, "DATABASE_ERROR", str(e)))
        logger.info(
            "Stage cycle processed",
            extra={"stage": stage.value, "succeeded": result.succeeded, "failed": len(result.failures)},
        )
        return result

    def finish_batch(self, stage, submissions: Sequence[StageSubmission]) -> BulkStageResult:
        """
        end_cycle with an upfront check: stock must cover every batch and
        no Testing rejection may mark all assembly materials good.
        Nothing is written if either check fails.
        """
        stage = parse_stage(stage)
        self.precheck(stage, submissions)
        return self.end_cycle(stage, submissions)

    def precheck(self, stage: ProcessingStage, submissions: Sequence[StageSubmission]) -> None:
        demands = []
        for submission in submissions:
            try:
                batch = BatchService.get_batch(self.db, submission.batch_id)
            except NotFoundError:
                # reported per batch by end_cycle
                continue
            if stage == ProcessingStage.TESTING:
                self._check_assembly_selection(batch, submission.rejected or 0, submission.good_material_ids)
                tested = (submission.accepted or 0) + (submission.rejected or 0)
                demands.append((batch, compute_consumption(batch, stage, tested)))
                continue
            accepted = effective_accepted(batch, stage, submission.accepted or 0)
            demands.append((batch, compute_consumption(batch, stage, accepted, submission.material_consumptions)))

        shortages = find_shortages(self.db, demands)
        if shortages:
            raise InsufficientStockError(shortages)
