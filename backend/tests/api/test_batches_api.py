"""
Tests for the /api/v1/batches endpoints.
"""
from decimal import Decimal

from tests.factories import (
    FULL_PIPELINE,
    create_test_batch,
    create_test_material,
    create_test_product,
)


def parse_decimal(value) -> Decimal:
    """Parse a JSON value (string or number) as Decimal for comparison."""
    return Decimal(str(value))


class TestCreateBatch:

    def test_plan_from_product_code(self, client, db_session):
        resin = create_test_material(db_session, name="Resin", quantity=1000)
        create_test_product(db_session, name="Widget", bom=[(resin, "Molding", 2)])
        db_session.commit()

        response = client.post("/api/v1/batches", json={"product_id": "PID-001", "quantity_to_build": 100})

        assert response.status_code == 201
        data = response.json()
        assert data["batch_code"] == "BATCH-MLD-001"
        assert data["status"] == "Planned"
        assert data["status_label"] == "Molding Pending"
        assert data["selected_processes"] == ["Molding"]
        assert parse_decimal(data["materials"][0]["quantity"]) == Decimal("200")
        assert set(data["processing_stages"]) == set(FULL_PIPELINE)

    def test_unknown_product(self, client):
        response = client.post("/api/v1/batches", json={"product_id": "PID-404", "quantity_to_build": 5})

        assert response.status_code == 404

    def test_quantity_must_be_positive(self, client, db_session):
        create_test_product(db_session, name="Widget")
        db_session.commit()

        response = client.post("/api/v1/batches", json={"product_id": "PID-001", "quantity_to_build": 0})

        assert response.status_code == 422


class TestSubmitStage:

    def test_single_stage_batch_completes(self, client, db_session):
        # Setup
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product, quantity_to_build=100)
        db_session.commit()

        # Execute
        response = client.post(
            f"/api/v1/batches/{batch.id}/stages/Molding/submit",
            json={"accepted": 90, "rejected": 10, "user": "op1"},
        )

        # Verify
        assert response.status_code == 200
        data = response.json()
        assert data["completed"] is True
        assert data["destination"] == "final_stock"
        assert data["status"] == "Completed"

        product_data = client.get(f"/api/v1/products/{product.id}").json()
        assert parse_decimal(product_data["available_quantity"]) == Decimal("90")
        assert product_data["lots"][0]["batch_code"] == batch.batch_code

    def test_resubmission_conflict(self, client, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product, quantity_to_build=10)
        db_session.commit()
        url = f"/api/v1/batches/{batch.id}/stages/Molding/submit"

        client.post(url, json={"accepted": 10})
        response = client.post(url, json={"accepted": 10})

        assert response.status_code == 409
        assert response.json()["error"] == "STAGE_ALREADY_FINALIZED"

    def test_out_of_order_submission(self, client, db_session):
        product = create_test_product(db_session, name="Bracket", stages=["Molding", "Machining"])
        batch = create_test_batch(db_session, product)
        db_session.commit()

        response = client.post(f"/api/v1/batches/{batch.id}/stages/Machining/submit", json={"accepted": 5})

        assert response.status_code == 400
        assert response.json()["error"] == "STAGE_ACCESS_DENIED"

    def test_negative_counts_rejected(self, client, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)
        db_session.commit()

        response = client.post(f"/api/v1/batches/{batch.id}/stages/Molding/submit", json={"accepted": -1})

        assert response.status_code == 422

    def test_draft_submission(self, client, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)
        db_session.commit()

        response = client.post(f"/api/v1/batches/{batch.id}/stages/Molding/submit", json={})

        assert response.status_code == 200
        assert response.json()["completed"] is False
        assert client.get(f"/api/v1/batches/{batch.id}").json()["status"] == "Planned"

    def test_testing_rejection_with_everything_marked_good(self, client, db_session):
        screws = create_test_material(db_session, name="Screws", quantity=100, unit="pcs")
        product = create_test_product(
            db_session, name="Pump", stages=["Molding", "Assembling", "Testing"],
            bom=[(screws, "Assembling", 1)],
        )
        batch = create_test_batch(db_session, product, quantity_to_build=10)
        db_session.commit()
        base = f"/api/v1/batches/{batch.id}/stages"
        client.post(f"{base}/Molding/submit", json={"accepted": 10})
        client.post(f"{base}/Assembling/submit", json={"accepted": 10})

        response = client.post(
            f"{base}/Testing/submit",
            json={"accepted": 8, "rejected": 2, "good_material_ids": [screws.id]},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ASSEMBLY_SELECTION_ERROR"


class TestBatchActions:

    def test_hold_and_resume(self, client, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)
        db_session.commit()

        held = client.post(f"/api/v1/batches/{batch.id}/hold", json={"user": "lead"})
        blocked = client.post(f"/api/v1/batches/{batch.id}/stages/Molding/submit", json={"accepted": 1})
        resumed = client.post(f"/api/v1/batches/{batch.id}/resume", json={"user": "lead"})

        assert held.json()["status"] == "On Hold"
        assert blocked.status_code == 400
        assert blocked.json()["error"] == "INVALID_STATE"
        assert resumed.json()["status"] == "Planned"

    def test_start_testing(self, client, db_session):
        product = create_test_product(db_session, name="Pump", stages=FULL_PIPELINE)
        batch = create_test_batch(db_session, product, selected_processes=["Assembling", "Testing"])
        db_session.commit()
        client.post(f"/api/v1/batches/{batch.id}/stages/Assembling/submit", json={"accepted": 10})

        response = client.post(f"/api/v1/batches/{batch.id}/stages/Testing/start", json={})

        assert response.status_code == 200
        assert response.json()["processing_stages"]["Testing"]["started_at"] is not None

    def test_list_filtered_by_status(self, client, db_session):
        product = create_test_product(db_session, name="Widget")
        done = create_test_batch(db_session, product)
        create_test_batch(db_session, product)
        db_session.commit()
        client.post(f"/api/v1/batches/{done.id}/stages/Molding/submit", json={"accepted": 10})

        response = client.get("/api/v1/batches", params={"status": "Completed"})

        assert [b["id"] for b in response.json()] == [done.id]

    def test_delete(self, client, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)
        db_session.commit()

        response = client.delete(f"/api/v1/batches/{batch.id}", params={"user": "lead"})

        assert response.status_code == 204
        assert client.get(f"/api/v1/batches/{batch.id}").status_code == 404
        logs = client.get("/api/v1/activity-logs", params={"record_id": batch.id}).json()
        assert logs[0]["action"] == "Deleted"
        assert logs[0]["user"] == "lead"


class TestStageInputs:

    def test_inputs_report_pool_and_material_coverage(self, client, db_session):
        resin = create_test_material(db_session, name="Resin", quantity=30)
        product = create_test_product(
            db_session, name="Bracket", stages=["Molding", "Machining"], bom=[(resin, "Molding", 2)]
        )
        batch = create_test_batch(db_session, product, quantity_to_build=20)
        db_session.commit()

        molding = client.get(f"/api/v1/batches/{batch.id}/stages/Molding/inputs").json()
        client.post(f"/api/v1/batches/{batch.id}/stages/Molding/submit", json={"accepted": 12})
        machining = client.get(f"/api/v1/batches/{batch.id}/stages/Machining/inputs").json()

        assert molding["pool_available"] is None
        assert molding["max_units_from_materials"] == 15
        assert parse_decimal(machining["pool_available"]) == Decimal("12")
        assert machining["max_units_from_materials"] is None
