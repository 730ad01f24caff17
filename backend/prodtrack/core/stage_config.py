"""Stage, status and pool configuration

Defines the canonical manufacturing stages, batch statuses and the
intermediate inventory pools fed by each stage. Batch status is derived
from stage progress (see batch_service.derive_batch_status) rather than
stored as the source of truth.
"""
from enum import Enum
from typing import Dict, Iterable, List, Optional


# =============================================================================
# Manufacturing stages
# =============================================================================

class ProcessingStage(str, Enum):
    """Canonical manufacturing stages, in flow order"""
    MOLDING = "Molding"
    MACHINING = "Machining"
    ASSEMBLING = "Assembling"
    TESTING = "Testing"


STAGE_ORDER: List[ProcessingStage] = [
    ProcessingStage.MOLDING,
    ProcessingStage.MACHINING,
    ProcessingStage.ASSEMBLING,
    ProcessingStage.TESTING,
]

# Short codes used in batch codes (BATCH-MLD-001)
STAGE_CODES: Dict[ProcessingStage, str] = {
    ProcessingStage.MOLDING: "MLD",
    ProcessingStage.MACHINING: "MCH",
    ProcessingStage.ASSEMBLING: "ASM",
    ProcessingStage.TESTING: "TST",
}

# Prefix for batches generated from Testing rejections
COMPENSATING_BATCH_PREFIX = "FT"


def parse_stage(value) -> ProcessingStage:
    """Coerce a stage name into ProcessingStage, raising ValueError if unknown."""
    if isinstance(value, ProcessingStage):
        return value
    try:
        return ProcessingStage(value)
    except ValueError:
        raise ValueError(
            f"Unknown stage '{value}'. Valid stages: {', '.join(s.value for s in STAGE_ORDER)}"
        )


def stage_index(stage) -> int:
    return STAGE_ORDER.index(parse_stage(stage))


def sort_stages(stages: Iterable) -> List[ProcessingStage]:
    """Deduplicate and sort stages into canonical order."""
    unique = {parse_stage(s) for s in stages}
    return sorted(unique, key=STAGE_ORDER.index)


# =============================================================================
# Batch status
# =============================================================================

class BatchStatus(str, Enum):
    """Derived batch status values"""
    PLANNED = "Planned"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"


# =============================================================================
# Intermediate pools
# =============================================================================

class PoolKind(str, Enum):
    """Where an inventory item sits in the flow"""
    RAW = "raw"
    MOULDED = "moulded"
    MACHINED = "machined"
    ASSEMBLED = "assembled"


# Pool naming and SKU prefixes for auto-managed intermediate items
POOL_NAME_PREFIX: Dict[PoolKind, str] = {
    PoolKind.MOULDED: "Moulded",
    PoolKind.MACHINED: "Machined",
    PoolKind.ASSEMBLED: "Assembled",
}

POOL_SKU_PREFIX: Dict[PoolKind, str] = {
    PoolKind.MOULDED: "MOULD",
    PoolKind.MACHINED: "FINISH",
    PoolKind.ASSEMBLED: "ASSEMB",
}

# Pool whose units feed the given stage (first stage draws on raw stock)
STAGE_INPUT_POOL: Dict[ProcessingStage, Optional[PoolKind]] = {
    ProcessingStage.MOLDING: None,
    ProcessingStage.MACHINING: PoolKind.MOULDED,
    ProcessingStage.ASSEMBLING: PoolKind.MACHINED,
    ProcessingStage.TESTING: PoolKind.ASSEMBLED,
}


# =============================================================================
# Activity log vocabulary
# =============================================================================

class ActivityAction(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"
    RESTOCKED = "Restocked"
    BATCH_ADJUSTMENT = "Stock Adjustment (Batch)"
    MANUAL_ADJUSTMENT = "Stock Adjustment (Manual)"


class RecordType(str, Enum):
    RAW_MATERIAL = "RawMaterial"
    BATCH = "Batch"
    FINAL_STOCK = "FinalStock"
