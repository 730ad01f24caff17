"""
END-TO-END PRODUCTION FLOW: Materials -> Product -> Batch -> Four Stages -> Final Stock

Drives one full-pipeline batch through the HTTP API, including a Testing
rejection and the rework batch it spawns, and checks pools, lots and the
audit trail at every step.

Each step has assertions. First failure = where the flow is broken.
"""
from decimal import Decimal

import pytest


def parse_decimal(value) -> Decimal:
    return Decimal(str(value))


class TestFullPipelineFlow:

    @pytest.fixture(autouse=True)
    def setup(self, client):
        self.client = client

    def post(self, url, payload):
        response = self.client.post(f"/api/v1{url}", json=payload)
        assert response.status_code in (200, 201), response.text
        return response.json()

    def get(self, url, **params):
        response = self.client.get(f"/api/v1{url}", params=params)
        assert response.status_code == 200, response.text
        return response.json()

    def pool(self, name):
        items = [i for i in self.get("/inventory-items") if i["name"] == name]
        return parse_decimal(items[0]["quantity"]) if items else None

    def test_batch_with_testing_rejection(self):
        # 1. Materials
        resin = self.post("/inventory-items", {"name": "ABS Resin", "quantity": "500", "unit": "kg"})
        screws = self.post("/inventory-items", {"name": "M3 Screw", "quantity": "1000", "unit": "pcs"})
        seal = self.post("/inventory-items", {"name": "O-Ring", "quantity": "200", "unit": "pcs"})

        # 2. Product
        product = self.post("/products", {
            "name": "Valve",
            "product_code": "PID-VALVE",
            "manufacturing_stages": ["Molding", "Machining", "Assembling", "Testing"],
            "bom_per_piece": [
                {"material_id": resin["id"], "stage": "Molding", "qty_per_piece": "0.5"},
                {"material_id": screws["id"], "stage": "Assembling", "qty_per_piece": "4"},
                {"material_id": seal["id"], "stage": "Assembling", "qty_per_piece": "1"},
            ],
        })
        assert self.get(f"/products/{product['id']}/flow")["shape"] == "full_pipeline"

        # 3. Batch
        batch = self.post("/batches", {"product_id": "PID-VALVE", "quantity_to_build": 50, "user": "planner"})
        assert batch["batch_code"] == "BATCH-MLD-001"
        molding_queue = self.get("/stages/Molding/queue")["batches"]
        assert [b["id"] for b in molding_queue] == [batch["id"]]
        stages = f"/batches/{batch['id']}/stages"

        # 4. Molding: 50 accepted, resin drawn at 0.5 per piece
        molding = self.post(f"{stages}/Molding/submit", {"accepted": 50, "user": "op1"})
        assert molding["destination"] == "moulded_pool"
        assert self.pool("Moulded Valve") == Decimal("50")
        assert parse_decimal(self.get(f"/inventory-items/{resin['id']}")["quantity"]) == Decimal("475")

        # 5. Machining: 48 accepted, not final yet
        machining = self.post(f"{stages}/Machining/submit", {"accepted": 48, "rejected": 2})
        assert machining["destination"] == "machined_pool"
        assert self.pool("Machined Valve") == Decimal("48")

        # 6. Assembling: 45 accepted, explicit screw usage
        assembling = self.post(
            f"{stages}/Assembling/submit",
            {"accepted": 45, "rejected": 3, "material_consumptions": {screws["id"]: 200}},
        )
        assert assembling["destination"] == "assembled_pool"
        assert self.pool("Assembled Valve") == Decimal("45")
        assert parse_decimal(self.get(f"/inventory-items/{screws['id']}")["quantity"]) == Decimal("800")
        assert parse_decimal(self.get(f"/inventory-items/{seal['id']}")["quantity"]) == Decimal("155")

        # Testing waits for an explicit start
        assert self.get("/stages/Testing/queue")["batches"] == []
        self.post(f"{stages}/Testing/start", {"user": "qa"})
        assert [b["id"] for b in self.get("/stages/Testing/queue")["batches"]] == [batch["id"]]

        # 7. Testing: 40 pass, 5 fail, screws confirmed good
        testing = self.post(
            f"{stages}/Testing/submit",
            {"accepted": 40, "rejected": 5, "good_material_ids": [screws["id"]], "user": "qa"},
        )
        assert testing["destination"] == "final_stock"
        assert testing["status"] == "Completed"
        assert testing["compensating_batch_code"] == "FT-001"

        valve = self.get(f"/products/{product['id']}")
        assert parse_decimal(valve["available_quantity"]) == Decimal("40")

        # 8. Rework batch: O-Rings only, Assembling output locked to 5
        rework = self.get(f"/batches/{testing['compensating_batch_id']}")
        assert rework["selected_processes"] == ["Assembling", "Testing"]
        assert rework["auto_created_from_testing_rejected"] is True
        assert rework["parent_batch_id"] == batch["id"]
        assert rework["accepted_locked"] is True
        assert [(m["material_id"], parse_decimal(m["quantity"])) for m in rework["materials"]] == [
            (seal["id"], Decimal("5")),
        ]
        assembling_queue = self.get("/stages/Assembling/queue")["batches"]
        assert [b["batch_code"] for b in assembling_queue] == ["FT-001"]

        rework_stages = f"/batches/{rework['id']}/stages"
        locked = self.post(f"{rework_stages}/Assembling/submit", {"accepted": 1})
        assert locked["accepted"] == 5
        assert locked["accepted_locked"] is True
        self.post(f"{rework_stages}/Testing/start", {})
        self.post(f"{rework_stages}/Testing/submit", {"accepted": 5})

        # 9. Final stock ledger
        valve = self.get(f"/products/{product['id']}")
        assert parse_decimal(valve["available_quantity"]) == Decimal("45")
        lots = {lot["batch_code"]: lot for lot in valve["lots"]}
        assert parse_decimal(lots["BATCH-MLD-001"]["quantity"]) == Decimal("40")
        assert lots["FT-001"]["source_batch_code"] == "BATCH-MLD-001"

        # 10. Audit trail cross-references both batches
        parent_logs = self.get("/activity-logs", record_id=batch["id"])
        link = [e for e in parent_logs if e["related_batch_code"] == "FT-001"]
        assert link and link[0]["details"] == (
            "Failed Assembly batch FT-001 created from Testing batch BATCH-MLD-001 for 5 rejected units."
        )
        resin_logs = self.get("/activity-logs", record_id=resin["id"], batch_code="BATCH-MLD-001")
        assert resin_logs[0]["user"] == "op1"
        assert resin_logs[0]["stage"] == "Molding"


class TestMoldMachineFlow:

    def test_machining_finishes_the_product(self, client):
        product = client.post("/api/v1/products", json={
            "name": "Spacer",
            "manufacturing_stages": ["Molding", "Machining"],
        }).json()
        batch = client.post("/api/v1/batches", json={"product_id": product["id"], "quantity_to_build": 20}).json()

        client.post(f"/api/v1/batches/{batch['id']}/stages/Molding/submit", json={"accepted": 20})
        machined = client.post(
            f"/api/v1/batches/{batch['id']}/stages/Machining/submit", json={"accepted": 18}
        ).json()

        assert machined["destination"] == "final_stock"
        names = [i["name"] for i in client.get("/api/v1/inventory-items").json()]
        assert "Moulded Spacer" in names
        assert "Machined Spacer" not in names
        spacer = client.get(f"/api/v1/products/{product['id']}").json()
        assert parse_decimal(spacer["available_quantity"]) == Decimal("18")
