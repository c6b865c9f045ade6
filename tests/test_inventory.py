"""Tests for inventory items, batches, the movement ledger and stock reports."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.dialects import postgresql

from app.core.errors import BusinessRuleError, ConflictError, NotFoundError
from app.core.rbac import UserRole
from app.models.inventory import InventoryMovement, MovementType
from app.services import inventory as inv_svc


def _receive(db, item_id, batch_number, qty, days_to_expiry=365, price="5.00"):
    return inv_svc.create_batch(
        db,
        item_id=item_id,
        batch_number=batch_number,
        quantity=qty,
        unit_cost=Decimal("2.00"),
        selling_price=Decimal(price),
        expiry_date=date.today() + timedelta(days=days_to_expiry),
        received_by=1,
    )


class TestItems:
    def test_create_item(self, client, admin_headers):
        res = client.post("/api/inventory/items", headers=admin_headers, json={
            "name": "Amoxicillin 250mg",
            "generic_name": "Amoxicillin",
            "category": "Antibiotics",
            "unit": "capsule",
            "reorder_level": 50,
        })
        assert res.status_code == 201
        body = res.json()
        assert body["success"] is True
        assert body["data"]["name"] == "Amoxicillin 250mg"
        assert body["data"]["is_active"] is True

    def test_create_item_duplicate_name(self, client, admin_headers, test_item):
        res = client.post("/api/inventory/items", headers=admin_headers, json={
            "name": "paracetamol 500mg",
            "category": "Analgesics",
        })
        assert res.status_code == 409
        assert res.json()["success"] is False

    def test_create_item_validation(self, client, admin_headers):
        res = client.post("/api/inventory/items", headers=admin_headers, json={"name": ""})
        assert res.status_code == 400
        body = res.json()
        assert body["success"] is False
        fields = {e["field"] for e in body["errors"]}
        assert "name" in fields
        assert "category" in fields

    def test_list_and_search(self, client, headers_for, test_item):
        headers = headers_for(UserRole.PHARMACIST)
        res = client.get("/api/inventory/items", headers=headers)
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["meta"]["total"] == 1
        assert data["items"][0]["id"] == test_item.id

        res = client.get("/api/inventory/items", headers=headers, params={"search": "acetamin"})
        assert [i["id"] for i in res.json()["data"]["items"]] == [test_item.id]

    def test_search_pages_results(self, client, db_session, admin_headers):
        for n in range(5):
            inv_svc.create_item(db_session, {"name": f"Amox {n}", "category": "Antibiotics"})

        res = client.get("/api/inventory/items", headers=admin_headers,
                         params={"search": "amox", "page": 2, "limit": 2})
        data = res.json()["data"]
        assert [i["name"] for i in data["items"]] == ["Amox 2", "Amox 3"]
        assert data["meta"]["total"] == 5
        assert data["meta"]["pages"] == 3

    def test_deactivate_hides_item(self, client, admin_headers, test_item):
        res = client.put(f"/api/inventory/items/{test_item.id}", headers=admin_headers,
                         json={"is_active": False})
        assert res.status_code == 200
        assert res.json()["data"]["is_active"] is False

        res = client.get("/api/inventory/items", headers=admin_headers)
        assert res.json()["data"]["meta"]["total"] == 0

    def test_item_detail(self, client, admin_headers, test_batch):
        res = client.get(f"/api/inventory/items/{test_batch.inventory_item_id}", headers=admin_headers)
        assert res.status_code == 200
        data = res.json()["data"]
        assert [b["batch_number"] for b in data["batches"]] == ["PCM-001"]
        assert data["recent_movements"][0]["movement_type"] == "RECEIVE"

    def test_item_not_found(self, client, admin_headers):
        res = client.get("/api/inventory/items/999", headers=admin_headers)
        assert res.status_code == 404
        assert res.json()["message"] == "Inventory item not found"


class TestAuth:
    def test_missing_token(self, client):
        res = client.get("/api/inventory/items")
        assert res.status_code == 401
        assert res.json()["success"] is False

    def test_garbage_token(self, client):
        res = client.get("/api/inventory/items", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_cashier_cannot_create_batch(self, client, headers_for, test_item):
        res = client.post("/api/inventory/batches", headers=headers_for(UserRole.CASHIER), json={
            "inventory_item_id": test_item.id,
            "batch_number": "X-1",
            "quantity": 5,
            "expiry_date": str(date.today() + timedelta(days=90)),
        })
        assert res.status_code == 403

    def test_inventory_manager_cannot_dispense(self, client, headers_for, test_batch):
        res = client.post("/api/inventory/dispense", headers=headers_for(UserRole.INVENTORY_MANAGER),
                          json={"batch_id": test_batch.id, "quantity": 1})
        assert res.status_code == 403


class TestBatches:
    def test_receive_batch_writes_movement(self, client, db_session, headers_for, test_item):
        res = client.post("/api/inventory/batches", headers=headers_for(UserRole.INVENTORY_MANAGER, 7), json={
            "inventory_item_id": test_item.id,
            "batch_number": "PCM-100",
            "quantity": 200,
            "unit_cost": "1.50",
            "selling_price": "3.00",
            "expiry_date": str(date.today() + timedelta(days=400)),
            "supplier_name": "Kenya Pharma Ltd",
        })
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["quantity"] == 200
        assert data["original_quantity"] == 200
        assert data["received_by"] == 7
        assert data["item_name"] == "Paracetamol 500mg"

        moves = db_session.query(InventoryMovement).filter_by(batch_id=data["id"]).all()
        assert len(moves) == 1
        assert moves[0].movement_type == MovementType.RECEIVE.value
        assert moves[0].quantity == 200
        assert moves[0].performed_by == 7

    def test_duplicate_batch_number(self, client, admin_headers, test_batch):
        res = client.post("/api/inventory/batches", headers=admin_headers, json={
            "inventory_item_id": test_batch.inventory_item_id,
            "batch_number": "PCM-001",
            "quantity": 5,
            "expiry_date": str(date.today() + timedelta(days=90)),
        })
        assert res.status_code == 409
        assert res.json()["message"] == "Batch number already exists for this item"

    def test_same_batch_number_other_item(self, db_session, test_batch):
        other = inv_svc.create_item(db_session, {"name": "Ibuprofen 200mg", "category": "Analgesics"})
        b = _receive(db_session, other.id, "PCM-001", 5)
        assert b.batch_number == "PCM-001"

    def test_receive_zero_quantity_rejected(self, db_session, test_item):
        with pytest.raises(BusinessRuleError):
            _receive(db_session, test_item.id, "Z-0", 0)

    def test_receive_unknown_item(self, db_session):
        with pytest.raises(NotFoundError):
            _receive(db_session, 12345, "Z-1", 5)


class TestDispense:
    def test_dispense_then_oversell(self, client, db_session, headers_for, test_batch):
        headers = headers_for(UserRole.PHARMACIST, 3)

        res = client.post("/api/inventory/dispense", headers=headers,
                          json={"batch_id": test_batch.id, "quantity": 4, "reference": "RX-1"})
        assert res.status_code == 200
        body = res.json()
        assert body["message"] == "Dispensed successfully"
        assert body["data"]["quantity"] == 6

        res = client.post("/api/inventory/dispense", headers=headers,
                          json={"batch_id": test_batch.id, "quantity": 10})
        assert res.status_code == 400
        assert res.json()["message"] == "Insufficient stock in batch"

        db_session.refresh(test_batch)
        assert test_batch.quantity == 6

        moves = (db_session.query(InventoryMovement)
                 .filter_by(batch_id=test_batch.id, movement_type=MovementType.DISPENSE.value)
                 .all())
        assert len(moves) == 1
        assert moves[0].quantity == 4
        assert moves[0].reference == "RX-1"
        assert moves[0].performed_by == 3

    def test_dispense_unknown_batch(self, client, headers_for):
        res = client.post("/api/inventory/dispense", headers=headers_for(UserRole.PHARMACIST),
                          json={"batch_id": 999, "quantity": 1})
        assert res.status_code == 404
        assert res.json()["message"] == "Batch not found"

    def test_dispense_quantity_must_be_positive(self, client, headers_for, test_batch):
        res = client.post("/api/inventory/dispense", headers=headers_for(UserRole.PHARMACIST),
                          json={"batch_id": test_batch.id, "quantity": 0})
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "quantity"

    def test_service_rejects_non_positive_dispense(self, db_session, test_batch):
        inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=4, performed_by=1)
        for qty in (-3, 0):
            with pytest.raises(BusinessRuleError):
                inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=qty, performed_by=1)

        db_session.refresh(test_batch)
        assert test_batch.quantity == 6
        dispensed = (db_session.query(InventoryMovement)
                     .filter_by(batch_id=test_batch.id, movement_type=MovementType.DISPENSE.value)
                     .all())
        assert [m.quantity for m in dispensed] == [4]

    def test_dispense_whole_batch(self, db_session, test_batch):
        res = inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=10, performed_by=1)
        assert res.success
        assert res.batch.quantity == 0

        res = inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=1, performed_by=1)
        assert not res.success
        assert res.code == "insufficient_stock"

    def test_sequential_dispenses_never_oversell(self, db_session, test_batch):
        results = [
            inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=3, performed_by=1)
            for _ in range(5)
        ]
        assert [r.success for r in results] == [True, True, True, False, False]
        db_session.refresh(test_batch)
        assert test_batch.quantity == 1

    def test_batch_read_takes_row_lock(self):
        sql = str(inv_svc.batch_for_update(1).compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in sql


class TestAdjustments:
    def test_adjust_down_and_up(self, client, admin_headers, test_batch):
        res = client.post(f"/api/inventory/batches/{test_batch.id}/adjust", headers=admin_headers,
                          json={"movement_type": "ADJUST", "quantity": -3, "notes": "stock count"})
        assert res.status_code == 200
        assert res.json()["data"]["quantity"] == 7

        res = client.post(f"/api/inventory/batches/{test_batch.id}/adjust", headers=admin_headers,
                          json={"movement_type": "ADJUST", "quantity": 2})
        assert res.json()["data"]["quantity"] == 9

    def test_adjust_cannot_exceed_received(self, client, admin_headers, test_batch):
        res = client.post(f"/api/inventory/batches/{test_batch.id}/adjust", headers=admin_headers,
                          json={"movement_type": "ADJUST", "quantity": 1})
        assert res.status_code == 400

    def test_expire_writes_off(self, client, admin_headers, test_batch):
        res = client.post(f"/api/inventory/batches/{test_batch.id}/adjust", headers=admin_headers,
                          json={"movement_type": "EXPIRE", "quantity": 10})
        assert res.status_code == 200
        assert res.json()["data"]["quantity"] == 0

    def test_expire_more_than_on_hand(self, client, admin_headers, test_batch):
        res = client.post(f"/api/inventory/batches/{test_batch.id}/adjust", headers=admin_headers,
                          json={"movement_type": "EXPIRE", "quantity": 11})
        assert res.status_code == 400
        assert res.json()["message"] == "Insufficient stock in batch"

    def test_zero_adjustment_rejected(self, client, admin_headers, test_batch):
        res = client.post(f"/api/inventory/batches/{test_batch.id}/adjust", headers=admin_headers,
                          json={"movement_type": "ADJUST", "quantity": 0})
        assert res.status_code == 400

    def test_transfer_not_accepted_here(self, db_session, test_batch):
        with pytest.raises(BusinessRuleError):
            inv_svc.adjust_batch(db_session, batch_id=test_batch.id, movement_type=MovementType.TRANSFER,
                                 quantity=1, performed_by=1)


class TestLedger:
    def test_quantity_matches_ledger(self, client, db_session, admin_headers, test_batch):
        inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=4, performed_by=1)
        inv_svc.adjust_batch(db_session, batch_id=test_batch.id, movement_type=MovementType.ADJUST,
                             quantity=-1, performed_by=1)
        inv_svc.adjust_batch(db_session, batch_id=test_batch.id, movement_type=MovementType.EXPIRE,
                             quantity=2, performed_by=1)

        res = client.get(f"/api/inventory/batches/{test_batch.id}/reconcile", headers=admin_headers)
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["quantity"] == 3
        assert data["ledger_quantity"] == 3
        assert data["balanced"] is True

    def test_failed_dispense_leaves_ledger_alone(self, db_session, test_batch):
        inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=50, performed_by=1)
        assert inv_svc.ledger_quantity(db_session, test_batch.id) == 10
        assert db_session.query(InventoryMovement).filter_by(batch_id=test_batch.id).count() == 1

    def test_item_movements_newest_first(self, client, db_session, admin_headers, test_batch):
        inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=1, performed_by=1)
        res = client.get(f"/api/inventory/items/{test_batch.inventory_item_id}/movements",
                         headers=admin_headers)
        types = [m["movement_type"] for m in res.json()["data"]]
        assert types == ["DISPENSE", "RECEIVE"]


class TestReports:
    def test_stock_levels_reorder_first(self, client, db_session, headers_for, test_batch):
        big = inv_svc.create_item(db_session, {"name": "Amoxicillin 250mg", "category": "Antibiotics",
                                               "reorder_level": 5})
        _receive(db_session, big.id, "AMX-1", 100)
        _receive(db_session, big.id, "AMX-2", 40, days_to_expiry=10)

        res = client.get("/api/inventory/stock-levels", headers=headers_for(UserRole.PHARMACIST))
        assert res.status_code == 200
        rows = res.json()["data"]
        assert [r["name"] for r in rows] == ["Paracetamol 500mg", "Amoxicillin 250mg"]

        pcm, amx = rows
        assert pcm["total_quantity"] == 10
        assert pcm["needs_reorder"] is True
        assert amx["total_quantity"] == 140
        assert amx["batch_count"] == 2
        assert amx["expiring_batches"] == 1
        assert amx["needs_reorder"] is False

    def test_stock_levels_item_without_batches(self, db_session, test_item):
        rows = inv_svc.get_stock_levels(db_session)
        assert rows[0]["total_quantity"] == 0
        assert rows[0]["batch_count"] == 0
        assert rows[0]["needs_reorder"] is True

    def test_stock_levels_are_repeatable(self, db_session, test_batch):
        _receive(db_session, test_batch.inventory_item_id, "PCM-002", 25, days_to_expiry=12)
        inv_svc.dispense_from_batch(db_session, batch_id=test_batch.id, quantity=3, performed_by=1)

        first = inv_svc.get_stock_levels(db_session, today=date.today())
        second = inv_svc.get_stock_levels(db_session, today=date.today())
        assert first == second
        assert first[0]["total_quantity"] == 32
        assert db_session.query(InventoryMovement).count() == 3

    def test_expiring_window(self, client, db_session, admin_headers, test_item):
        soon = _receive(db_session, test_item.id, "S-1", 5, days_to_expiry=7)
        _receive(db_session, test_item.id, "L-1", 5, days_to_expiry=200)

        res = client.get("/api/inventory/expiring", headers=admin_headers, params={"days": 30})
        assert res.status_code == 200
        rows = res.json()["data"]
        assert [r["batch_id"] for r in rows] == [soon.id]
        assert rows[0]["days_to_expiry"] == 7

    def test_expiring_skips_empty_batches(self, db_session, test_item):
        b = _receive(db_session, test_item.id, "S-2", 5, days_to_expiry=3)
        inv_svc.dispense_from_batch(db_session, batch_id=b.id, quantity=5, performed_by=1)
        assert inv_svc.get_expiring_batches(db_session, 30) == []

    @pytest.mark.parametrize("days", [0, 366])
    def test_expiring_days_out_of_range(self, client, db_session, admin_headers, days):
        res = client.get("/api/inventory/expiring", headers=admin_headers, params={"days": days})
        assert res.status_code == 400
        with pytest.raises(BusinessRuleError):
            inv_svc.get_expiring_batches(db_session, days)

    def test_available_stock_ignores_expired(self, client, db_session, headers_for, test_item):
        _receive(db_session, test_item.id, "EXP-0", 30, days_to_expiry=-1)
        _receive(db_session, test_item.id, "OK-1", 12, days_to_expiry=20, price="4.50")

        res = client.get("/api/inventory/available-stock", headers=headers_for(UserRole.CLINICAL_OFFICER))
        assert res.status_code == 200
        rows = res.json()["data"]
        assert len(rows) == 1
        assert rows[0]["available_quantity"] == 12
        assert rows[0]["has_expiring_stock"] is True

    def test_available_stock_only_expired(self, db_session, test_item):
        _receive(db_session, test_item.id, "EXP-1", 30, days_to_expiry=-5)
        assert inv_svc.get_available_stock(db_session) == []

    def test_stock_levels_export(self, client, admin_headers, test_batch):
        res = client.get("/api/inventory/stock-levels/export", headers=admin_headers)
        assert res.status_code == 200
        assert res.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")
        assert res.content[:2] == b"PK"

    def test_expiring_export(self, client, admin_headers, test_batch):
        res = client.get("/api/inventory/expiring/export", headers=admin_headers, params={"days": 60})
        assert res.status_code == 200
        assert "expiring_batches_60d.xlsx" in res.headers["content-disposition"]
        assert res.content[:2] == b"PK"


def test_conflict_error_is_raised_from_service(db_session, test_batch):
    with pytest.raises(ConflictError):
        _receive(db_session, test_batch.inventory_item_id, "PCM-001", 1)
