"""
Stage Sequence Resolver

Works out which stages a batch really goes through and classifies the
product's flow shape once, so routing never re-derives it from raw
stage lists.

Effective stage list, first non-empty tier wins (no cross-validation):
    1. product.manufacturing_stages
    2. stages referenced by the product's BOM rows, in canonical order
    3. the batch's own selected_processes
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

from prodtrack.core.stage_config import (
    ProcessingStage,
    STAGE_ORDER,
    parse_stage,
    sort_stages,
)
from prodtrack.exceptions import StageAccessError, ValidationError
from prodtrack.logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# Flow shapes
# =============================================================================

@dataclass(frozen=True)
class SingleStageFlow:
    """Product made in one stage; output goes straight to Final Stock."""
    stage: ProcessingStage


@dataclass(frozen=True)
class MoldMachineOnlyFlow:
    """Molding then Machining, finished after Machining."""


@dataclass(frozen=True)
class FullPipelineFlow:
    """Any other multi-stage flow."""
    stages: Tuple[ProcessingStage, ...]


FlowShape = Union[SingleStageFlow, MoldMachineOnlyFlow, FullPipelineFlow]


class Destination(str, Enum):
    """Where a stage's accepted units are routed"""
    FINAL_STOCK = "final_stock"
    MOULDED_POOL = "moulded_pool"
    MACHINED_POOL = "machined_pool"
    ASSEMBLED_POOL = "assembled_pool"
    NONE = "none"


@dataclass(frozen=True)
class EffectiveStages:
    stages: Tuple[ProcessingStage, ...]
    source: str  # product | bom | batch
    shape: FlowShape

    @property
    def last(self) -> Optional[ProcessingStage]:
        return self.stages[-1] if self.stages else None


def classify_flow(stages: Sequence[ProcessingStage]) -> FlowShape:
    stages = tuple(parse_stage(s) for s in stages)
    if len(stages) == 1:
        return SingleStageFlow(stages[0])
    if stages == (ProcessingStage.MOLDING, ProcessingStage.MACHINING):
        return MoldMachineOnlyFlow()
    return FullPipelineFlow(stages)


def resolve_effective_stages(product, batch=None) -> EffectiveStages:
    """Three-tier effective stage resolution for a product (and batch)."""
    if product is not None and product.manufacturing_stages:
        stages = tuple(parse_stage(s) for s in product.manufacturing_stages)
        source = "product"
    elif product is not None and product.bom_rows:
        stages = tuple(sort_stages(row.stage for row in product.bom_rows))
        source = "bom"
    elif batch is not None and batch.selected_processes:
        stages = tuple(parse_stage(s) for s in batch.selected_processes)
        source = "batch"
    else:
        stages = ()
        source = "none"

    shape = classify_flow(stages) if stages else FullPipelineFlow(())
    return EffectiveStages(stages=stages, source=source, shape=shape)


def route_output(stage: ProcessingStage, effective: EffectiveStages) -> Destination:
    """
    Destination for the accepted units of ``stage``.

    Testing only reaches Final Stock as the last effective stage; flows
    ending before Testing without a special case feed their pool.
    """
    stage = parse_stage(stage)
    shape = effective.shape

    if isinstance(shape, SingleStageFlow) and shape.stage == stage:
        return Destination.FINAL_STOCK

    if stage == ProcessingStage.MOLDING:
        return Destination.MOULDED_POOL
    if stage == ProcessingStage.MACHINING:
        if isinstance(shape, MoldMachineOnlyFlow):
            return Destination.FINAL_STOCK
        return Destination.MACHINED_POOL
    if stage == ProcessingStage.ASSEMBLING:
        return Destination.ASSEMBLED_POOL
    if stage == ProcessingStage.TESTING:
        if effective.last == ProcessingStage.TESTING and not isinstance(shape, MoldMachineOnlyFlow):
            return Destination.FINAL_STOCK
    return Destination.NONE


# =============================================================================
# Batch stage navigation
# =============================================================================

def selected_stages(batch) -> List[ProcessingStage]:
    return [parse_stage(s) for s in (batch.selected_processes or [])]


def previous_stage(batch, stage) -> Optional[ProcessingStage]:
    stages = selected_stages(batch)
    stage = parse_stage(stage)
    if stage not in stages:
        return None
    idx = stages.index(stage)
    return stages[idx - 1] if idx > 0 else None


def next_stage(batch, stage) -> Optional[ProcessingStage]:
    stages = selected_stages(batch)
    stage = parse_stage(stage)
    if stage not in stages:
        return None
    idx = stages.index(stage)
    return stages[idx + 1] if idx + 1 < len(stages) else None


def is_last_stage(batch, stage) -> bool:
    stages = selected_stages(batch)
    return bool(stages) and stages[-1] == parse_stage(stage)


def current_stage(batch) -> Optional[ProcessingStage]:
    """First selected stage that is not completed."""
    for stage in selected_stages(batch):
        record = batch.processing_stages.get(stage.value)
        if record is None or not record.completed:
            return stage
    return None


def validate_batch_stage_access(batch, stage) -> None:
    """
    Raise StageAccessError unless the batch may take a submission for
    ``stage``: the stage is selected and the previous selected stage is
    completed.
    """
    stage = parse_stage(stage)
    if stage not in selected_stages(batch):
        raise StageAccessError(
            f"{stage.value} is not a selected process for batch {batch.batch_code}",
            current_state=", ".join(s.value for s in selected_stages(batch)),
        )
    prev = previous_stage(batch, stage)
    if prev is not None:
        record = batch.processing_stages.get(prev.value)
        if record is None or not record.completed:
            raise StageAccessError(
                f"Batch {batch.batch_code} must complete {prev.value} before {stage.value}",
                current_state=prev.value,
            )


# =============================================================================
# Configuration validation
# =============================================================================

def validate_manufacturing_stages(stages: Sequence) -> List[ProcessingStage]:
    """
    Validate a product's stage list and return it in canonical order.

    - at least one stage
    - a single stage must be Molding or Machining
    - Assembling/Testing need Molding or Machining before them
    """
    if not stages:
        raise ValidationError("At least one manufacturing stage is required", field="manufacturing_stages")
    try:
        parsed = [parse_stage(s) for s in stages]
    except ValueError as e:
        raise ValidationError(str(e), field="manufacturing_stages")
    if len(set(parsed)) != len(parsed):
        raise ValidationError("Manufacturing stages must not repeat", field="manufacturing_stages")

    ordered = sort_stages(parsed)
    if ordered != parsed:
        raise ValidationError(
            "Manufacturing stages must follow the order "
            + " → ".join(s.value for s in STAGE_ORDER),
            field="manufacturing_stages",
        )

    if len(ordered) == 1 and ordered[0] not in (ProcessingStage.MOLDING, ProcessingStage.MACHINING):
        raise ValidationError(
            "A single-stage product must use Molding or Machining",
            field="manufacturing_stages",
            value=ordered[0].value,
        )

    needs_base = {ProcessingStage.ASSEMBLING, ProcessingStage.TESTING} & set(ordered)
    has_base = {ProcessingStage.MOLDING, ProcessingStage.MACHINING} & set(ordered)
    if needs_base and not has_base:
        raise ValidationError(
            "Assembling and Testing require Molding or Machining",
            field="manufacturing_stages",
        )
    return ordered


def validate_selected_processes(stages: Sequence) -> List[ProcessingStage]:
    """Batch stage selection: non-empty, known stages, put in canonical order."""
    if not stages:
        raise ValidationError("Select at least one process", field="selected_processes")
    try:
        return sort_stages(stages)
    except ValueError as e:
        raise ValidationError(str(e), field="selected_processes")


def validate_bom_against_stages(bom_rows: Sequence, stages: Sequence) -> None:
    """BOM rows may only reference selected stages and need a positive quantity."""
    allowed = {parse_stage(s) for s in stages}
    for idx, row in enumerate(bom_rows):
        stage = row["stage"] if isinstance(row, dict) else row.stage
        qty = row["qty_per_piece"] if isinstance(row, dict) else row.qty_per_piece
        try:
            parsed = parse_stage(stage)
        except ValueError as e:
            raise ValidationError(str(e), field=f"bom_per_piece[{idx}].stage")
        if parsed not in allowed:
            raise ValidationError(
                f"BOM row {idx + 1} uses {parsed.value}, which is not a manufacturing stage of this product",
                field=f"bom_per_piece[{idx}].stage",
                value=parsed.value,
            )
        if qty is None or qty <= 0:
            raise ValidationError(
                f"BOM row {idx + 1} needs a positive quantity per piece",
                field=f"bom_per_piece[{idx}].qty_per_piece",
            )


def describe_flow(stages: Sequence) -> str:
    """Human-readable flow, e.g. 'Molding → Machining → Final Stock'."""
    parsed = tuple(parse_stage(s) for s in stages)
    if not parsed:
        return ""
    effective = EffectiveStages(parsed, "product", classify_flow(parsed))
    parts = [s.value for s in parsed]
    if route_output(parsed[-1], effective) == Destination.FINAL_STOCK:
        parts.append("Final Stock")
    return " → ".join(parts)


def shape_name(shape: FlowShape) -> str:
    if isinstance(shape, SingleStageFlow):
        return "single_stage"
    if isinstance(shape, MoldMachineOnlyFlow):
        return "mold_machine_only"
    return "full_pipeline"
