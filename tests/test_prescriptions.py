import pytest

from app.core.errors import BusinessRuleError, ConflictError, NotFoundError
from app.core.rbac import UserRole
from app.services import prescriptions as rx_svc


@pytest.fixture
def clinician(headers_for):
    return headers_for(UserRole.CLINICAL_OFFICER, 11)


@pytest.fixture
def pharmacist(headers_for):
    return headers_for(UserRole.PHARMACIST, 12)


def _rx_body(item_id, **extra):
    body = {
        "visit_id": 100,
        "patient_id": 7,
        "consultation_id": 55,
        "items": [{
            "inventory_item_id": item_id,
            "item_name": "Paracetamol 500mg",
            "dosage": "1 tablet",
            "frequency": "TDS",
            "duration": "5 days",
            "quantity_prescribed": 15,
            "instructions": "After meals",
        }],
    }
    body.update(extra)
    return body


def test_create_prescription(client, clinician, test_item):
    res = client.post("/api/prescriptions", headers=clinician, json=_rx_body(test_item.id))
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["status"] == "PENDING"
    assert data["prescribed_by"] == 11
    assert data["items"][0]["quantity_dispensed"] == 0
    assert data["items"][0]["quantity_prescribed"] == 15


def test_create_with_unknown_item(client, clinician):
    res = client.post("/api/prescriptions", headers=clinician, json=_rx_body(999))
    assert res.status_code == 404
    assert res.json()["message"] == "Inventory item 999 not found"


def test_create_requires_items(client, clinician, test_item):
    res = client.post("/api/prescriptions", headers=clinician, json=_rx_body(test_item.id, items=[]))
    assert res.status_code == 400


def test_pharmacist_cannot_prescribe(client, pharmacist, test_item):
    res = client.post("/api/prescriptions", headers=pharmacist, json=_rx_body(test_item.id))
    assert res.status_code == 403


def test_lookup_by_patient_and_visit(client, clinician, pharmacist, test_item):
    created = client.post("/api/prescriptions", headers=clinician, json=_rx_body(test_item.id)).json()["data"]

    by_patient = client.get("/api/prescriptions/patient/7", headers=pharmacist).json()["data"]
    by_visit = client.get("/api/prescriptions/visit/100", headers=pharmacist).json()["data"]
    assert [r["id"] for r in by_patient] == [created["id"]]
    assert [r["id"] for r in by_visit] == [created["id"]]
    assert client.get("/api/prescriptions/patient/8", headers=pharmacist).json()["data"] == []

    res = client.get(f"/api/prescriptions/{created['id']}", headers=pharmacist)
    assert res.json()["data"]["items"][0]["instructions"] == "After meals"


def test_dispensed_quantity_rolls_up(client, clinician, pharmacist, test_item):
    created = client.post("/api/prescriptions", headers=clinician, json=_rx_body(test_item.id)).json()["data"]
    item_id = created["items"][0]["id"]

    res = client.patch(f"/api/prescriptions/items/{item_id}/dispense", headers=pharmacist,
                       json={"quantity_dispensed": 5})
    assert res.status_code == 200
    assert res.json()["data"]["quantity_dispensed"] == 5
    rx = client.get(f"/api/prescriptions/{created['id']}", headers=pharmacist).json()["data"]
    assert rx["status"] == "PARTIALLY_DISPENSED"

    client.patch(f"/api/prescriptions/items/{item_id}/dispense", headers=pharmacist,
                 json={"quantity_dispensed": 15})
    rx = client.get(f"/api/prescriptions/{created['id']}", headers=pharmacist).json()["data"]
    assert rx["status"] == "FULLY_DISPENSED"


def test_dispensed_quantity_bounds(client, clinician, pharmacist, test_item):
    created = client.post("/api/prescriptions", headers=clinician, json=_rx_body(test_item.id)).json()["data"]
    item_id = created["items"][0]["id"]

    res = client.patch(f"/api/prescriptions/items/{item_id}/dispense", headers=pharmacist,
                       json={"quantity_dispensed": 16})
    assert res.status_code == 400

    res = client.patch(f"/api/prescriptions/items/{item_id}/dispense", headers=pharmacist,
                       json={"quantity_dispensed": -1})
    assert res.status_code == 400


def test_cancelled_status_sticks(client, db_session, clinician, pharmacist, test_item):
    created = client.post("/api/prescriptions", headers=clinician, json=_rx_body(test_item.id)).json()["data"]

    res = client.patch(f"/api/prescriptions/{created['id']}/status", headers=pharmacist,
                       json={"status": "CANCELLED"})
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "CANCELLED"

    rx_svc.update_dispensed_quantity(db_session, created["items"][0]["id"], 3)
    assert rx_svc.get_prescription(db_session, created["id"]).status == "CANCELLED"


def test_cancelled_cannot_reopen(client, clinician, pharmacist, test_item):
    created = client.post("/api/prescriptions", headers=clinician, json=_rx_body(test_item.id)).json()["data"]
    client.patch(f"/api/prescriptions/{created['id']}/status", headers=pharmacist, json={"status": "CANCELLED"})

    res = client.patch(f"/api/prescriptions/{created['id']}/status", headers=pharmacist,
                       json={"status": "PENDING"})
    assert res.status_code == 409
    assert res.json()["message"] == "Cannot change status from CANCELLED to PENDING"


def test_status_transitions(db_session, test_item):
    rx = rx_svc.create_prescription(db_session, visit_id=1, patient_id=1, items=[{
        "inventory_item_id": test_item.id, "item_name": "Paracetamol 500mg",
        "dosage": "1 tablet", "frequency": "BD", "duration": "3 days", "quantity_prescribed": 6,
    }])
    assert rx_svc.update_status(db_session, rx.id, "PARTIALLY_DISPENSED").status == "PARTIALLY_DISPENSED"
    with pytest.raises(ConflictError):
        rx_svc.update_status(db_session, rx.id, "PENDING")
    assert rx_svc.update_status(db_session, rx.id, "FULLY_DISPENSED").status == "FULLY_DISPENSED"
    with pytest.raises(ConflictError):
        rx_svc.update_status(db_session, rx.id, "PENDING")
    assert rx_svc.get_prescription(db_session, rx.id).status == "FULLY_DISPENSED"
    with pytest.raises(NotFoundError):
        rx_svc.update_status(db_session, 999, "CANCELLED")


def test_bad_status_value(client, clinician, pharmacist, test_item):
    created = client.post("/api/prescriptions", headers=clinician, json=_rx_body(test_item.id)).json()["data"]
    res = client.patch(f"/api/prescriptions/{created['id']}/status", headers=pharmacist,
                       json={"status": "LOST"})
    assert res.status_code == 400


def test_service_errors(db_session, test_item):
    with pytest.raises(BusinessRuleError):
        rx_svc.create_prescription(db_session, visit_id=1, patient_id=1, items=[])
    with pytest.raises(NotFoundError):
        rx_svc.get_prescription(db_session, 42)
    with pytest.raises(NotFoundError):
        rx_svc.update_dispensed_quantity(db_session, 42, 1)


def test_derive_status_multi_line():
    class Line:
        def __init__(self, prescribed, dispensed):
            self.quantity_prescribed = prescribed
            self.quantity_dispensed = dispensed

    assert rx_svc.derive_prescription_status([Line(10, 0), Line(5, 0)]) == "PENDING"
    assert rx_svc.derive_prescription_status([Line(10, 10), Line(5, 0)]) == "PARTIALLY_DISPENSED"
    assert rx_svc.derive_prescription_status([Line(10, 10), Line(5, 5)]) == "FULLY_DISPENSED"
