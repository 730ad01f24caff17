"""
Unit tests for BatchService: planning, derived status, queues and
hold/resume/delete.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from prodtrack.exceptions import InvalidStateError, NotFoundError, ValidationError
from prodtrack.models.activity_log import ActivityLog
from prodtrack.models.batch import Batch
from prodtrack.services.batch_service import (
    BatchService,
    derive_batch_status,
    is_in_stage_queue,
    status_label,
)
from prodtrack.services.compensating_batch import create_compensating_batch
from tests.factories import (
    FULL_PIPELINE,
    create_test_batch,
    create_test_material,
    create_test_product,
)


class TestCreateBatch:

    @pytest.mark.unit
    def test_expands_bom_for_selected_stages(self, db_session):
        resin = create_test_material(db_session, name="Resin", quantity=100, unit="kg")
        screws = create_test_material(db_session, name="Screws", quantity=100, unit="pcs")
        product = create_test_product(
            db_session, name="Pump", stages=FULL_PIPELINE,
            bom=[(screws, "Assembling", 4), (resin, "Molding", Decimal("0.5"))],
        )

        batch = BatchService.create_batch(db_session, "PID-001", 10)

        assert batch.id == "batch_001"
        assert batch.batch_code == "BATCH-MLD-001"
        assert batch.selected_processes == FULL_PIPELINE
        assert [(m.name, m.quantity, m.unit, m.stage) for m in batch.materials] == [
            ("Resin", Decimal("5"), "kg", "Molding"),
            ("Screws", Decimal("40"), "pcs", "Assembling"),
        ]
        assert batch.total_material_quantity == Decimal("45")
        assert sorted(batch.processing_stages) == sorted(FULL_PIPELINE)
        assert batch.product is product

    @pytest.mark.unit
    def test_selected_processes_limit_materials(self, db_session):
        resin = create_test_material(db_session, name="Resin", quantity=100)
        screws = create_test_material(db_session, name="Screws", quantity=100)
        product = create_test_product(
            db_session, name="Pump", stages=FULL_PIPELINE,
            bom=[(resin, "Molding", 1), (screws, "Assembling", 4)],
        )

        batch = create_test_batch(
            db_session, product, quantity_to_build=5, selected_processes=["Testing", "Assembling"]
        )

        assert batch.selected_processes == ["Assembling", "Testing"]
        assert batch.batch_code == "BATCH-ASM-001"
        assert [m.material_id for m in batch.materials] == [screws.id]

    @pytest.mark.unit
    def test_codes_are_per_first_stage(self, db_session):
        product = create_test_product(db_session, name="Pump", stages=FULL_PIPELINE)

        codes = [
            create_test_batch(db_session, product).batch_code,
            create_test_batch(db_session, product).batch_code,
            create_test_batch(db_session, product, selected_processes=["Machining"]).batch_code,
        ]

        assert codes == ["BATCH-MLD-001", "BATCH-MLD-002", "BATCH-MCH-001"]

    @pytest.mark.unit
    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            BatchService.create_batch(db_session, "PID-404", 10)

    @pytest.mark.unit
    def test_quantity_must_be_positive(self, db_session):
        create_test_product(db_session, name="Widget")

        with pytest.raises(ValidationError):
            BatchService.create_batch(db_session, "PID-001", 0)

    @pytest.mark.unit
    def test_material_for_unselected_stage(self, db_session):
        product = create_test_product(db_session, name="Widget")

        with pytest.raises(ValidationError) as exc:
            create_test_batch(
                db_session, product,
                materials=[{"material_id": "mat_001", "quantity": 1, "stage": "Testing"}],
            )
        assert exc.value.details["field"] == "materials[0].stage"

    @pytest.mark.unit
    def test_creation_is_logged(self, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product, quantity_to_build=7)
        db_session.flush()

        entry = db_session.query(ActivityLog).filter(ActivityLog.record_id == batch.id).one()
        assert entry.action == "Created"
        assert entry.record_type == "Batch"
        assert "7 x Widget" in entry.details


class TestDerivedStatus:

    @pytest.mark.unit
    def test_progression(self, db_session):
        product = create_test_product(db_session, name="Bracket", stages=["Molding", "Machining"])
        batch = create_test_batch(db_session, product)
        records = batch.processing_stages

        assert derive_batch_status(batch).value == "Planned"
        assert status_label(batch) == "Molding Pending"

        records["Molding"].completed = True
        assert derive_batch_status(batch).value == "In Progress"
        assert status_label(batch) == "Machining Pending"

        records["Machining"].completed = True
        assert derive_batch_status(batch).value == "Completed"
        assert status_label(batch) == "Completed"

    @pytest.mark.unit
    def test_started_stage_is_in_progress(self, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)

        BatchService.start_stage(db_session, batch, "Molding")

        assert batch.status == "In Progress"

    @pytest.mark.unit
    def test_hold_and_resume(self, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)

        BatchService.hold_batch(db_session, batch, user="lead")
        assert batch.status == "On Hold"

        BatchService.resume_batch(db_session, batch, user="lead")
        assert batch.status == "Planned"
        db_session.flush()

        details = [
            e.details for e in db_session.query(ActivityLog)
            .filter(ActivityLog.record_id == batch.id, ActivityLog.action == "Updated")
            .order_by(ActivityLog.id)
        ]
        assert details == [
            f"Batch {batch.batch_code} status changed from Planned to On Hold.",
            f"Batch {batch.batch_code} status changed from On Hold to Planned.",
        ]

    @pytest.mark.unit
    def test_completed_batch_cannot_be_held(self, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)
        batch.processing_stages["Molding"].completed = True

        with pytest.raises(InvalidStateError):
            BatchService.hold_batch(db_session, batch)


class TestStageQueues:

    @pytest.mark.unit
    def test_queue_membership(self, db_session):
        product = create_test_product(db_session, name="Pump", stages=FULL_PIPELINE)
        batch = create_test_batch(db_session, product)
        records = batch.processing_stages

        assert is_in_stage_queue(batch, "Molding") is True
        assert is_in_stage_queue(batch, "Machining") is False

        records["Molding"].completed = True
        records["Machining"].completed = True
        records["Assembling"].completed = True
        assert is_in_stage_queue(batch, "Molding") is False
        # Testing after Assembling waits for an explicit start
        assert is_in_stage_queue(batch, "Testing") is False

        BatchService.start_stage(db_session, batch, "Testing")
        assert is_in_stage_queue(batch, "Testing") is True

    @pytest.mark.unit
    def test_list_for_stage_newest_first_without_held(self, db_session):
        product = create_test_product(db_session, name="Widget")
        older = create_test_batch(db_session, product)
        newer = create_test_batch(db_session, product)
        held = create_test_batch(db_session, product)
        older.created_at = datetime.utcnow() - timedelta(hours=2)
        newer.created_at = datetime.utcnow() - timedelta(hours=1)
        BatchService.hold_batch(db_session, held)
        db_session.flush()

        queue = BatchService.list_batches_for_stage(db_session, "Molding")

        assert [b.id for b in queue] == [newer.id, older.id]

    @pytest.mark.unit
    def test_start_stage_out_of_order(self, db_session):
        product = create_test_product(db_session, name="Pump", stages=FULL_PIPELINE)
        batch = create_test_batch(db_session, product)

        with pytest.raises(InvalidStateError):
            BatchService.start_stage(db_session, batch, "Machining")


class TestLookupAndDelete:

    @pytest.mark.unit
    def test_get_by_id_or_code(self, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)

        assert BatchService.get_batch(db_session, batch.id) is batch
        assert BatchService.get_batch(db_session, batch.batch_code) is batch
        with pytest.raises(NotFoundError):
            BatchService.get_batch(db_session, "BATCH-MLD-999")

    @pytest.mark.unit
    def test_filter_by_status(self, db_session):
        product = create_test_product(db_session, name="Widget")
        done = create_test_batch(db_session, product)
        create_test_batch(db_session, product)
        done.processing_stages["Molding"].completed = True
        db_session.flush()

        completed = BatchService.list_batches(db_session, status="Completed")

        assert [b.id for b in completed] == [done.id]

    @pytest.mark.unit
    def test_delete_keeps_rework_batches(self, db_session):
        product = create_test_product(db_session, name="Pump", stages=FULL_PIPELINE)
        parent = create_test_batch(db_session, product, materials=[
            {"material_id": "mat_001", "quantity": 10, "stage": "Assembling"},
        ])
        child = create_compensating_batch(db_session, parent, 2, [])

        BatchService.delete_batch(db_session, parent, user="lead")

        assert db_session.get(Batch, parent.id) is None
        assert child.parent_batch_id is None
        entry = db_session.query(ActivityLog).filter(ActivityLog.action == "Deleted").one()
        assert entry.record_id == parent.id
        assert entry.user == "lead"
