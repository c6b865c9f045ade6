# FILE: app/api/routes_prescriptions.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import current_user, get_db
from app.api.response import ok
from app.core.rbac import CurrentUser, UserRole, require_any
from app.schemas.prescription import (
    DispensedQuantityIn,
    PrescriptionCreate,
    PrescriptionItemOut,
    PrescriptionOut,
    PrescriptionStatusIn,
)
from app.services import prescriptions as rx_svc

router = APIRouter(prefix="/prescriptions", tags=["prescriptions"])

R_CREATE = [UserRole.ADMIN, UserRole.CLINICAL_OFFICER]
R_VIEW = [UserRole.ADMIN, UserRole.CLINICAL_OFFICER, UserRole.PHARMACIST]
R_DISPENSE = [UserRole.ADMIN, UserRole.PHARMACIST]


@router.post("")
def create_prescription(
    payload: PrescriptionCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_CREATE)
    rx = rx_svc.create_prescription(
        db,
        visit_id=payload.visit_id,
        patient_id=payload.patient_id,
        consultation_id=payload.consultation_id,
        items=[it.model_dump() for it in payload.items],
        prescribed_by=user.id,
    )
    return ok(PrescriptionOut.model_validate(rx), message="Prescription created", status_code=201)


@router.get("/patient/{patient_id}")
def by_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return ok([PrescriptionOut.model_validate(r) for r in rx_svc.list_by_patient(db, patient_id)])


@router.get("/visit/{visit_id}")
def by_visit(
    visit_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return ok([PrescriptionOut.model_validate(r) for r in rx_svc.list_by_visit(db, visit_id)])


@router.get("/{prescription_id}")
def get_prescription(
    prescription_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return ok(PrescriptionOut.model_validate(rx_svc.get_prescription(db, prescription_id)))


@router.patch("/{prescription_id}/status")
def update_status(
    prescription_id: int,
    payload: PrescriptionStatusIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_DISPENSE)
    rx = rx_svc.update_status(db, prescription_id, payload.status.value)
    return ok(PrescriptionOut.model_validate(rx), message="Prescription status updated")


@router.patch("/items/{item_id}/dispense")
def update_dispensed(
    item_id: int,
    payload: DispensedQuantityIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_DISPENSE)
    item = rx_svc.update_dispensed_quantity(db, item_id, payload.quantity_dispensed)
    return ok(PrescriptionItemOut.model_validate(item), message="Dispensed quantity updated")
