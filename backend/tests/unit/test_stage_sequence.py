"""
Unit tests for stage sequence resolution, flow shapes and routing.

Pure functions; products and batches are stand-ins with the attributes
the resolver reads.
"""
from types import SimpleNamespace

import pytest

from prodtrack.core.stage_config import ProcessingStage
from prodtrack.exceptions import StageAccessError, ValidationError
from prodtrack.services.stage_sequence import (
    Destination,
    FullPipelineFlow,
    MoldMachineOnlyFlow,
    SingleStageFlow,
    classify_flow,
    describe_flow,
    resolve_effective_stages,
    route_output,
    validate_batch_stage_access,
    validate_bom_against_stages,
    validate_manufacturing_stages,
)

M, MC, A, T = (
    ProcessingStage.MOLDING,
    ProcessingStage.MACHINING,
    ProcessingStage.ASSEMBLING,
    ProcessingStage.TESTING,
)


def _product(stages=(), bom_stages=()):
    return SimpleNamespace(
        manufacturing_stages=list(stages),
        bom_rows=[SimpleNamespace(stage=s) for s in bom_stages],
    )


def _batch(selected, completed=(), started=()):
    records = {
        s: SimpleNamespace(completed=s in completed, started_at="x" if s in started else None)
        for s in ["Molding", "Machining", "Assembling", "Testing"]
    }
    return SimpleNamespace(batch_code="BATCH-MLD-001", selected_processes=list(selected), processing_stages=records)


class TestEffectiveStages:
    """Three-tier effective stage resolution"""

    @pytest.mark.unit
    def test_product_stages_win(self):
        product = _product(stages=["Molding", "Machining"], bom_stages=["Assembling"])
        batch = _batch(["Testing"])

        effective = resolve_effective_stages(product, batch)

        assert effective.stages == (M, MC)
        assert effective.source == "product"
        assert isinstance(effective.shape, MoldMachineOnlyFlow)

    @pytest.mark.unit
    def test_bom_stages_sorted_canonically(self):
        product = _product(bom_stages=["Testing", "Molding", "Assembling", "Molding"])

        effective = resolve_effective_stages(product, _batch(["Molding"]))

        assert effective.stages == (M, A, T)
        assert effective.source == "bom"

    @pytest.mark.unit
    def test_falls_back_to_batch_selection(self):
        effective = resolve_effective_stages(_product(), _batch(["Machining"]))

        assert effective.stages == (MC,)
        assert effective.source == "batch"
        assert effective.shape == SingleStageFlow(MC)

    @pytest.mark.unit
    def test_no_product(self):
        effective = resolve_effective_stages(None, _batch(["Molding", "Machining", "Assembling"]))
        assert effective.stages == (M, MC, A)
        assert isinstance(effective.shape, FullPipelineFlow)


class TestFlowShape:

    @pytest.mark.unit
    def test_shapes(self):
        assert classify_flow([M]) == SingleStageFlow(M)
        assert classify_flow([M, MC]) == MoldMachineOnlyFlow()
        assert classify_flow([M, MC, A, T]) == FullPipelineFlow((M, MC, A, T))
        assert classify_flow([MC, A]) == FullPipelineFlow((MC, A))


class TestRouting:
    """Where accepted units go after each stage"""

    @pytest.mark.unit
    @pytest.mark.parametrize("stage", [M, MC, A, T])
    def test_single_stage_always_final_stock(self, stage):
        effective = resolve_effective_stages(None, _batch([stage.value]))
        assert route_output(stage, effective) == Destination.FINAL_STOCK

    @pytest.mark.unit
    def test_full_pipeline(self):
        effective = resolve_effective_stages(_product(stages=["Molding", "Machining", "Assembling", "Testing"]))

        assert route_output(M, effective) == Destination.MOULDED_POOL
        assert route_output(MC, effective) == Destination.MACHINED_POOL
        assert route_output(A, effective) == Destination.ASSEMBLED_POOL
        assert route_output(T, effective) == Destination.FINAL_STOCK

    @pytest.mark.unit
    def test_mold_machine_only_finishes_at_machining(self):
        effective = resolve_effective_stages(_product(stages=["Molding", "Machining"]))

        assert route_output(M, effective) == Destination.MOULDED_POOL
        assert route_output(MC, effective) == Destination.FINAL_STOCK

    @pytest.mark.unit
    def test_assembling_feeds_pool_even_when_last(self):
        effective = resolve_effective_stages(_product(stages=["Molding", "Machining", "Assembling"]))
        assert route_output(A, effective) == Destination.ASSEMBLED_POOL

    @pytest.mark.unit
    def test_testing_not_in_flow_has_no_destination(self):
        effective = resolve_effective_stages(_product(stages=["Molding", "Assembling"]))
        assert route_output(T, effective) == Destination.NONE


class TestStageAccess:

    @pytest.mark.unit
    def test_first_stage_open(self):
        validate_batch_stage_access(_batch(["Molding", "Machining"]), "Molding")

    @pytest.mark.unit
    def test_unselected_stage_rejected(self):
        with pytest.raises(StageAccessError):
            validate_batch_stage_access(_batch(["Molding"]), "Machining")

    @pytest.mark.unit
    def test_previous_stage_must_be_completed(self):
        with pytest.raises(StageAccessError) as exc:
            validate_batch_stage_access(_batch(["Molding", "Machining"]), "Machining")
        assert "Molding" in exc.value.message

        validate_batch_stage_access(_batch(["Molding", "Machining"], completed=["Molding"]), "Machining")

    @pytest.mark.unit
    def test_previous_means_previous_selected(self):
        # Machining is skipped, so Assembling follows Molding directly
        batch = _batch(["Molding", "Assembling"], completed=["Molding"])
        validate_batch_stage_access(batch, "Assembling")


class TestStageValidation:

    @pytest.mark.unit
    def test_valid_lists(self):
        assert validate_manufacturing_stages(["Molding"]) == [M]
        assert validate_manufacturing_stages(["Machining", "Assembling", "Testing"]) == [MC, A, T]

    @pytest.mark.unit
    @pytest.mark.parametrize("stages", [
        [],
        ["Assembling"],
        ["Testing"],
        ["Assembling", "Testing"],
        ["Machining", "Molding"],
        ["Molding", "Molding"],
        ["Painting"],
    ])
    def test_invalid_lists(self, stages):
        with pytest.raises(ValidationError):
            validate_manufacturing_stages(stages)

    @pytest.mark.unit
    def test_bom_must_use_selected_stages(self):
        validate_bom_against_stages([{"stage": "Molding", "qty_per_piece": 2}], ["Molding"])

        with pytest.raises(ValidationError) as exc:
            validate_bom_against_stages([{"stage": "Assembling", "qty_per_piece": 1}], ["Molding"])
        assert exc.value.details["field"] == "bom_per_piece[0].stage"

    @pytest.mark.unit
    def test_bom_needs_positive_quantity(self):
        with pytest.raises(ValidationError):
            validate_bom_against_stages([{"stage": "Molding", "qty_per_piece": 0}], ["Molding"])


class TestDescribeFlow:

    @pytest.mark.unit
    def test_descriptions(self):
        assert describe_flow(["Molding"]) == "Molding → Final Stock"
        assert describe_flow(["Molding", "Machining"]) == "Molding → Machining → Final Stock"
        assert describe_flow(["Molding", "Machining", "Assembling", "Testing"]) == (
            "Molding → Machining → Assembling → Testing → Final Stock"
        )
        assert describe_flow(["Molding", "Machining", "Assembling"]) == "Molding → Machining → Assembling"
